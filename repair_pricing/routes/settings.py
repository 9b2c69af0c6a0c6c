from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..app.api import json_body, make_service
from ..app.database import session_scope

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
def get_settings():
    with session_scope() as session:
        return jsonify({"settings": make_service(session).get_settings().to_dict()})


@settings_bp.put("")
def put_settings():
    payload = json_body()
    updated_by = payload.pop("updatedBy", None) or request.headers.get("X-User")
    dry_run = request.args.get("dry_run", "0") in {"1", "true", "True"}

    with session_scope() as session:
        service = make_service(session)
        if dry_run:
            proposed = service.settings_store.preview(payload)
            return jsonify({"ok": True, "validated": True, "settings": proposed.to_dict()})
        settings, summary = service.update_settings(payload, updated_by)
        return jsonify({"ok": True, "settings": settings.to_dict(), "recalculation": summary.to_dict()})


@settings_bp.post("/pricing-impact")
def pricing_impact():
    payload = json_body()
    with session_scope() as session:
        return jsonify(make_service(session).preview_settings_impact(payload))
