# backend/retailpos/routes/imports.py
"""
Inventory import routes.

SECURITY: Owner only. Preview never writes; apply writes the whole file in
one transaction or nothing.

The CSV arrives as a multipart upload in the "file" field, or as a text/csv
request body.
"""
from flask import Blueprint, current_app, jsonify, request

from ..decorators import OWNER_ONLY, current_user_id, require_auth, require_roles
from ..errors import DomainError
from ..services import import_service

imports_bp = Blueprint("imports", __name__, url_prefix="/api/inventory/import")


def _read_upload():
    if "file" in request.files:
        return request.files["file"].stream.read()
    if request.mimetype in ("text/csv", "text/plain"):
        return request.get_data()
    return None


@imports_bp.post("/preview")
@require_auth
@require_roles(*OWNER_ONLY)
def preview_import_route():
    content = _read_upload()
    if content is None:
        return jsonify({"error": "file is required"}), 400

    try:
        preview = import_service.preview_import(content)
        return jsonify(preview.to_dict()), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@imports_bp.post("/apply")
@require_auth
@require_roles(*OWNER_ONLY)
def apply_import_route():
    content = _read_upload()
    if content is None:
        return jsonify({"error": "file is required"}), 400

    try:
        result = import_service.apply_import(content, actor_id=current_user_id())
        return jsonify(result.to_dict()), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply inventory import")
        return jsonify({"error": "Internal server error"}), 500
