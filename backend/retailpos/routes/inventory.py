# backend/retailpos/routes/inventory.py
"""
Stock ledger routes.

SECURITY: All routes require authentication; every staff role may record
stock movements.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- from/to filtering is inclusive on both ends.
"""
from flask import Blueprint, current_app, jsonify, request

from ..decorators import ALL_ROLES, current_user_id, require_auth, require_roles
from ..errors import DomainError, ValidationError
from ..services import ledger_service

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")


@inventory_bp.post("/variants/<int:variant_id>/adjustments")
@require_auth
@require_roles(*ALL_ROLES)
def record_adjustment_route(variant_id: int):
    """
    Remove damaged or lost units.

    Body: {"reason_code": "damaged"|"lost", "quantity": int > 0, "note": str?}
    """
    data = request.get_json(silent=True) or {}

    try:
        entry, on_hand = ledger_service.record_adjustment(
            variant_id=variant_id,
            reason_code=data.get("reason_code") or data.get("reasonCode"),
            quantity=data.get("quantity"),
            note=data.get("note"),
            actor_id=current_user_id(),
        )
        return jsonify({"entry": entry.to_dict(), "on_hand": on_hand}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record adjustment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/variants/<int:variant_id>/ledger")
@require_auth
@require_roles(*ALL_ROLES)
def list_ledger_route(variant_id: int):
    """
    Newest-first ledger page with current on-hand.

    Query: type, reason, from, to, limit, cursor. Follow next_cursor for
    older entries; it is null on the last page.
    """
    try:
        page = ledger_service.list_entries(
            variant_id,
            type=request.args.get("type"),
            reason=request.args.get("reason"),
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
            limit=request.args.get("limit"),
            cursor=request.args.get("cursor"),
        )
        return jsonify(page.to_dict()), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/stock/initial")
@require_auth
@require_roles(*ALL_ROLES)
def record_initial_stock_route():
    """Body: {"variant_id": int, "quantity": int > 0, "reason": str?, "reference": str?}"""
    data = request.get_json(silent=True) or {}

    try:
        variant_id = data.get("variant_id") or data.get("variantId")
        if variant_id is None:
            raise ValidationError("variant_id is required", details={"field": "variant_id"})
        entry, on_hand = ledger_service.record_initial_count(
            variant_id=variant_id,
            quantity=data.get("quantity"),
            reason=data.get("reason"),
            reference=data.get("reference"),
            actor_id=current_user_id(),
        )
        return jsonify({"entry": entry.to_dict(), "on_hand": on_hand}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record initial stock")
        return jsonify({"error": "Internal server error"}), 500
