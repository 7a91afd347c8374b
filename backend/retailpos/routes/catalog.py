# Overview: Flask API routes for brands, products, variants and the inventory listing.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import ALL_ROLES, require_auth, require_roles
from ..errors import DomainError
from ..services import catalog_service

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


@catalog_bp.get("/brands")
@require_auth
@require_roles(*ALL_ROLES)
def list_brands_route():
    brands = catalog_service.list_brands()
    return jsonify({"items": [brand.to_dict() for brand in brands], "count": len(brands)}), 200


@catalog_bp.post("/brands")
@require_auth
@require_roles(*ALL_ROLES)
def create_brand_route():
    try:
        brand = catalog_service.create_brand(**(request.get_json(silent=True) or {}))
        return jsonify({"brand": brand.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create brand")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/products")
@require_auth
@require_roles(*ALL_ROLES)
def list_products_route():
    brand_id = request.args.get("brand_id", type=int)
    products = catalog_service.list_products(brand_id=brand_id)
    return jsonify({"items": [product.to_dict() for product in products], "count": len(products)}), 200


@catalog_bp.post("/products")
@require_auth
@require_roles(*ALL_ROLES)
def create_product_route():
    try:
        product = catalog_service.create_product(**(request.get_json(silent=True) or {}))
        return jsonify({"product": product.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/variants")
@require_auth
@require_roles(*ALL_ROLES)
def create_variant_route():
    """
    Create a variant. Stock is not accepted here; seed it with
    POST /api/stock/initial.
    """
    try:
        variant = catalog_service.create_variant(**(request.get_json(silent=True) or {}))
        return jsonify({"variant": catalog_service.variant_with_stock(variant)}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create variant")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/variants/<int:variant_id>")
@require_auth
@require_roles(*ALL_ROLES)
def get_variant_route(variant_id: int):
    try:
        variant = catalog_service.get_variant(variant_id)
        return jsonify({"variant": catalog_service.variant_with_stock(variant)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.patch("/variants/<int:variant_id>")
@require_auth
@require_roles(*ALL_ROLES)
def update_variant_route(variant_id: int):
    try:
        variant = catalog_service.update_variant(variant_id, **(request.get_json(silent=True) or {}))
        return jsonify({"variant": catalog_service.variant_with_stock(variant)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update variant")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/variants/lookup/<path:code>")
@require_auth
@require_roles(*ALL_ROLES)
def lookup_variant_route(code: str):
    """Barcode scan or SKU entry at the register."""
    try:
        variant = catalog_service.lookup_variant(code)
        return jsonify({"variant": catalog_service.variant_with_stock(variant)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.get("/inventory")
@require_auth
@require_roles(*ALL_ROLES)
def list_inventory_route():
    try:
        result = catalog_service.list_inventory(
            page=request.args.get("page", 1),
            page_size=request.args.get("page_size", 25),
            search=request.args.get("search"),
            brand_id=request.args.get("brand_id"),
        )
        return jsonify(result), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
