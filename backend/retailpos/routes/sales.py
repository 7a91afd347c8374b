# Overview: Flask API routes for checkout and receipts.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import ALL_ROLES, current_user_id, require_auth, require_roles
from ..errors import DomainError
from ..services import sales_service

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_roles(*ALL_ROLES)
def complete_sale_route():
    """
    Settle a cart in one step.

    Body:
        items: [{variant_id, quantity, unit_price_cents?, discount_cents?}]
        payments: [{method, amount_cents}]
        sale_discount_cents: int (default 0)
        tax_cents: int (default 0)

    409 with details.items when any variant is short; nothing is recorded.
    """
    data = request.get_json(silent=True) or {}

    try:
        sale = sales_service.complete_sale(
            lines=data.get("items"),
            payments=data.get("payments") or data.get("paymentBreakdown"),
            sale_discount_cents=data.get("sale_discount_cents", data.get("saleDiscountCents", 0)),
            tax_cents=data.get("tax_cents", data.get("taxCents", 0)),
            actor_id=current_user_id(),
        )
        return jsonify({"sale": sale.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_roles(*ALL_ROLES)
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/<int:sale_id>/receipt")
@require_auth
@require_roles(*ALL_ROLES)
def sale_receipt_route(sale_id: int):
    try:
        return jsonify(sales_service.build_receipt(sale_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
