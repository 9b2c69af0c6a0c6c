from __future__ import annotations

import logging
from typing import Any, Dict

from flask import Blueprint, Flask, current_app, jsonify, request

from .config import get_cascade_settings, get_default_pricing
from .database import session_scope
from .errors import (
    IncompatibleMetalError,
    InvalidCatalogDataError,
    InvalidSettingsError,
    MissingReferenceError,
    PersistenceUnavailableError,
    UnsupportedMetalError,
)
from .services import PricingService

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


def make_service(session) -> PricingService:
    config = current_app.config
    return PricingService(
        session,
        cascade=get_cascade_settings(config),
        defaults=get_default_pricing(config),
    )


def json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidCatalogDataError("request body must be a JSON object", "body")
    return payload


def _flag(name: str) -> bool:
    return request.args.get(name, "0") in {"1", "true", "True"}


# ---------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------

@api.get("/materials")
def list_materials():
    with session_scope() as session:
        materials = make_service(session).list_materials(
            request.args.get("category"), include_archived=_flag("includeArchived")
        )
        return jsonify({"materials": materials})


@api.post("/materials")
def create_material():
    payload = json_body()
    with session_scope() as session:
        material, summary = make_service(session).create_material(payload)
        return jsonify({"material": material, "recalculation": summary.to_dict()}), 201


@api.patch("/materials")
def patch_materials():
    payload = json_body()
    with session_scope() as session:
        materials, summary = make_service(session).patch_materials(
            payload.get("ids"), payload.get("changes") or {}
        )
        return jsonify({"materials": materials, "recalculation": summary.to_dict()})


# ---------------------------------------------------------------------
# Processes
# ---------------------------------------------------------------------

@api.get("/processes")
def list_processes():
    with session_scope() as session:
        return jsonify({"processes": make_service(session).list_processes(request.args.get("category"))})


@api.post("/processes")
def create_process():
    payload = json_body()
    with session_scope() as session:
        process, summary = make_service(session).create_process(payload)
        return jsonify({"process": process, "recalculation": summary.to_dict()}), 201


@api.patch("/processes")
def patch_processes():
    payload = json_body()
    with session_scope() as session:
        processes, summary = make_service(session).patch_processes(
            payload.get("ids"), payload.get("changes") or {}
        )
        return jsonify({"processes": processes, "recalculation": summary.to_dict()})


@api.post("/processes/find-by-materials")
def find_processes_by_materials():
    payload = json_body()
    with session_scope() as session:
        processes = make_service(session).find_processes_using_materials(payload.get("materialIds") or [])
        return jsonify({"processes": processes})


# ---------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------

@api.get("/tasks")
def list_tasks():
    with session_scope() as session:
        return jsonify({"tasks": make_service(session).list_tasks(request.args.get("category"))})


@api.post("/tasks")
def create_task():
    payload = json_body()
    with session_scope() as session:
        task, summary = make_service(session).create_task(payload)
        return jsonify({"task": task, "recalculation": summary.to_dict()}), 201


@api.post("/tasks/find-by-materials-or-processes")
def find_tasks_by_materials_or_processes():
    payload = json_body()
    with session_scope() as session:
        tasks = make_service(session).find_tasks_using_materials_or_processes(
            payload.get("materialIds") or [], payload.get("processIds") or []
        )
        return jsonify({"tasks": tasks})


# ---------------------------------------------------------------------
# Recalculation and migration
# ---------------------------------------------------------------------

@api.post("/recalculate")
def recalculate():
    payload = json_body()
    with session_scope() as session:
        summary = make_service(session).recalculate(payload.get("scope") or "all", payload.get("ids"))
        return jsonify(summary.to_dict())


@api.get("/migration/analysis")
def migration_analysis():
    with session_scope() as session:
        return jsonify(make_service(session).analyze_migration().to_dict())


@api.post("/migration/apply")
def migration_apply():
    payload = json_body()
    base_key = (payload.get("baseKey") or "").strip()
    if not base_key:
        return jsonify({"error": "Missing 'baseKey'", "field": "baseKey"}), 400
    with session_scope() as session:
        return jsonify(make_service(session).apply_migration(base_key))


# ---------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------

def _invalid_payload(exc):
    return jsonify({"error": str(exc), "field": exc.field, "kind": exc.kind}), 400


def _missing_reference(exc: MissingReferenceError):
    return jsonify({"error": str(exc), "kind": exc.kind, "referenceType": exc.reference_type,
                    "referenceId": exc.reference_id}), 404


def _metal_conflict(exc):
    return jsonify({"error": str(exc), "kind": exc.kind, "metalKey": exc.metal_key}), 422


def _unavailable(exc: PersistenceUnavailableError):
    logger.error("Data store unavailable: %s", exc)
    return jsonify({"error": "data store unavailable", "kind": exc.kind}), 503


def register_error_handlers(app: Flask) -> None:
    app.register_error_handler(InvalidSettingsError, _invalid_payload)
    app.register_error_handler(InvalidCatalogDataError, _invalid_payload)
    app.register_error_handler(MissingReferenceError, _missing_reference)
    app.register_error_handler(UnsupportedMetalError, _metal_conflict)
    app.register_error_handler(IncompatibleMetalError, _metal_conflict)
    app.register_error_handler(PersistenceUnavailableError, _unavailable)


def register_api(app: Flask) -> None:
    app.register_blueprint(api)
    register_error_handlers(app)
