# backend/retailpos/routes/purchasing.py
"""
Supplier and purchase order routes.

SECURITY: OWNER only. Receiving posts RECEIPT entries to the stock ledger.
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import OWNER_ONLY, current_user_id, require_auth, require_roles
from ..errors import DomainError
from ..services import purchasing_service

purchasing_bp = Blueprint("purchasing", __name__, url_prefix="/api")


def _order_payload(order) -> dict:
    return {"purchase_order": order.to_dict(include_receipts=True)}


@purchasing_bp.get("/suppliers")
@require_auth
@require_roles(*OWNER_ONLY)
def list_suppliers_route():
    suppliers = purchasing_service.list_suppliers()
    return jsonify({"items": [s.to_dict() for s in suppliers], "count": len(suppliers)}), 200


@purchasing_bp.post("/suppliers")
@require_auth
@require_roles(*OWNER_ONLY)
def create_supplier_route():
    try:
        supplier = purchasing_service.create_supplier(**(request.get_json(silent=True) or {}))
        return jsonify({"supplier": supplier.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return jsonify({"error": "Internal server error"}), 500


@purchasing_bp.get("/suppliers/<int:supplier_id>")
@require_auth
@require_roles(*OWNER_ONLY)
def get_supplier_route(supplier_id: int):
    try:
        return jsonify({"supplier": purchasing_service.get_supplier(supplier_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@purchasing_bp.put("/suppliers/<int:supplier_id>")
@require_auth
@require_roles(*OWNER_ONLY)
def update_supplier_route(supplier_id: int):
    try:
        supplier = purchasing_service.update_supplier(supplier_id, **(request.get_json(silent=True) or {}))
        return jsonify({"supplier": supplier.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update supplier")
        return jsonify({"error": "Internal server error"}), 500


@purchasing_bp.delete("/suppliers/<int:supplier_id>")
@require_auth
@require_roles(*OWNER_ONLY)
def delete_supplier_route(supplier_id: int):
    try:
        purchasing_service.delete_supplier(supplier_id)
        return "", 204
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete supplier")
        return jsonify({"error": "Internal server error"}), 500


@purchasing_bp.post("/po")
@require_auth
@require_roles(*OWNER_ONLY)
def create_purchase_order_route():
    """Body: {supplier_id, items: [{variant_id, quantity_ordered, cost_cents?}], notes?}"""
    data = request.get_json(silent=True) or {}

    try:
        order = purchasing_service.create_purchase_order(
            supplier_id=data.get("supplier_id") or data.get("supplierId"),
            items=data.get("items"),
            notes=data.get("notes"),
            actor_id=current_user_id(),
        )
        return jsonify(_order_payload(order)), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchasing_bp.get("/po")
@require_auth
@require_roles(*OWNER_ONLY)
def list_purchase_orders_route():
    try:
        orders = purchasing_service.list_purchase_orders(
            supplier_id=request.args.get("supplier_id"),
            status=request.args.get("status"),
        )
        return jsonify({"items": [order.to_dict() for order in orders], "count": len(orders)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@purchasing_bp.get("/po/<int:po_id>")
@require_auth
@require_roles(*OWNER_ONLY)
def get_purchase_order_route(po_id: int):
    try:
        return jsonify(_order_payload(purchasing_service.get_purchase_order(po_id))), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@purchasing_bp.post("/po/<int:po_id>/receive")
@require_auth
@require_roles(*OWNER_ONLY)
def receive_purchase_order_route(po_id: int):
    """Body: {items: [{item_id, quantity_received, cost_cents?}]}"""
    data = request.get_json(silent=True) or {}

    try:
        order = purchasing_service.receive_purchase_order(
            po_id,
            entries=data.get("items") if "items" in data else data.get("entries"),
            actor_id=current_user_id(),
        )
        return jsonify(_order_payload(order)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchasing_bp.post("/po/<int:po_id>/cancel")
@require_auth
@require_roles(*OWNER_ONLY)
def cancel_purchase_order_route(po_id: int):
    try:
        order = purchasing_service.cancel_purchase_order(po_id, actor_id=current_user_id())
        return jsonify(_order_payload(order)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel purchase order")
        return jsonify({"error": "Internal server error"}), 500
