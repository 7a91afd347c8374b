# backend/retailpos/routes/reports.py
"""
Reporting routes.

SECURITY: Owners and managers only.
"""
from flask import Blueprint, jsonify, request

from ..decorators import REPORTING_ROLES, require_auth, require_roles
from ..errors import DomainError
from ..services import reporting_service

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/inventory/low-stock")
@require_auth
@require_roles(*REPORTING_ROLES)
def low_stock_route():
    """Query: threshold (default LOW_STOCK_THRESHOLD), limit."""
    try:
        result = reporting_service.low_stock_variants(
            threshold=request.args.get("threshold"),
            limit=request.args.get("limit"),
        )
        return jsonify(result), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
