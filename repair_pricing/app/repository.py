"""SQLAlchemy-backed catalog store.

Rows are converted to the immutable value types of :mod:`.domain` on the way
out and written back column by column on the way in. ``OperationalError``
from the driver surfaces as :class:`PersistenceUnavailableError`.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .cascade import CatalogSnapshot
from .domain import (
    AdminSettings,
    Material,
    Process,
    Task,
    isoformat,
    material_from_payload,
    material_to_payload,
    process_from_payload,
    process_to_payload,
    task_from_payload,
    task_to_payload,
    utc_now,
)
from .errors import MissingReferenceError, PersistenceUnavailableError
from .models import AuditLog, MaterialRecord, ProcessRecord, TaskRecord


@contextmanager
def store_available() -> Iterator[None]:
    try:
        yield
    except OperationalError as exc:
        raise PersistenceUnavailableError(f"Data store unavailable: {exc.orig or exc}") from exc


# ---------------------------------------------------------------------
# Row <-> value type conversion
# ---------------------------------------------------------------------

def material_record_payload(row: MaterialRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": row.id,
        "displayName": row.display_name,
        "category": row.category,
        "description": row.description or "",
        "supplier": row.supplier or "",
        "isActive": bool(row.is_active),
        "isArchived": bool(row.is_archived),
        "hasVariants": bool(row.has_variants),
    }
    if row.has_variants:
        payload["variants"] = list(row.variants or [])
    else:
        payload.update(
            {
                "unitCost": row.unit_cost if row.unit_cost is not None else 0.0,
                "sku": row.sku or "",
                "metalType": row.metal_type,
                "karat": row.karat,
                "stullerProductId": row.stuller_product_id or "",
                "compatibleMetals": list(row.compatible_metals or []),
            }
        )
    return payload


def to_material(row: MaterialRecord) -> Material:
    return material_from_payload(material_record_payload(row), row.id)


def apply_material(row: MaterialRecord, material: Material) -> MaterialRecord:
    row.display_name = material.display_name
    row.category = material.category
    row.description = material.description
    row.supplier = material.supplier
    row.is_active = material.is_active
    row.is_archived = material.is_archived
    row.has_variants = material.has_variants
    if material.has_variants:
        row.variants = [v.to_dict() for v in material.variants]
        row.unit_cost = None
        row.sku = ""
        row.metal_type = None
        row.karat = None
        row.stuller_product_id = ""
        row.compatible_metals = []
    else:
        row.variants = []
        row.unit_cost = material.unit_cost
        row.sku = material.sku
        row.metal_type = material.metal_type
        row.karat = material.karat
        row.stuller_product_id = material.stuller_product_id
        row.compatible_metals = list(material.compatible_metals)
    return row


def to_process(row: ProcessRecord) -> Process:
    return process_from_payload(
        {
            "id": row.id,
            "displayName": row.display_name,
            "category": row.category,
            "laborMinutes": row.labor_minutes,
            "skillLevel": row.skill_level,
            "riskLevel": row.risk_level,
            "equipmentCost": row.equipment_cost,
            "metalComplexity": dict(row.metal_complexity or {}),
            "materials": list(row.materials or []),
        },
        row.id,
    )


def apply_process(row: ProcessRecord, process: Process) -> ProcessRecord:
    row.display_name = process.display_name
    row.category = process.category
    row.labor_minutes = process.labor_minutes
    row.skill_level = process.skill_level
    row.risk_level = process.risk_level
    row.equipment_cost = process.equipment_cost
    row.metal_complexity = dict(process.metal_complexity)
    row.materials = [usage.to_dict() for usage in process.materials]
    return row


def to_task(row: TaskRecord) -> Task:
    return task_from_payload(
        {
            "id": row.id,
            "title": row.title,
            "category": row.category,
            "metalType": row.metal_type,
            "karat": row.karat,
            "requiresMetalType": row.requires_metal_type,
            "processes": list(row.processes or []),
            "materials": list(row.materials or []),
            "service": dict(row.service or {}),
        },
        row.id,
    )


def apply_task(row: TaskRecord, task: Task) -> TaskRecord:
    row.title = task.title
    row.category = task.category
    row.metal_type = task.metal_type
    row.karat = task.karat
    row.requires_metal_type = task.requires_metal_type
    row.processes = [usage.to_dict() for usage in task.processes]
    row.materials = [usage.to_dict() for usage in task.materials]
    row.service = task.service.to_dict()
    return row


def _with_pricing(payload: Dict[str, Any], row) -> Dict[str, Any]:
    payload["pricing"] = dict(row.pricing) if row.pricing else None
    payload["updatedAt"] = isoformat(row.updated_at)
    return payload


def _repoint(usages: Iterable[Mapping[str, Any]], id_field: str,
             replacements: Mapping[str, str]) -> List[Dict[str, Any]]:
    """Swap referenced ids; an entry that lands on an id already present is dropped."""
    out: List[Dict[str, Any]] = []
    seen = set()
    for usage in usages:
        ref = replacements.get(usage.get(id_field), usage.get(id_field))
        if ref in seen:
            continue
        seen.add(ref)
        out.append({**usage, id_field: ref})
    return out


# ---------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------

class CatalogRepository:
    def __init__(self, session: Session, settings_loader=None):
        self.session = session
        self._settings_loader = settings_loader

    # -- settings -------------------------------------------------------
    def load_settings(self) -> AdminSettings:
        if self._settings_loader is None:
            raise RuntimeError("CatalogRepository was created without a settings loader")
        return self._settings_loader()

    # -- materials ------------------------------------------------------
    def material_rows(self, category: str | None = None,
                      include_archived: bool = False) -> List[MaterialRecord]:
        stmt = select(MaterialRecord).order_by(MaterialRecord.display_name, MaterialRecord.id)
        if category:
            stmt = stmt.where(MaterialRecord.category == category)
        if not include_archived:
            stmt = stmt.where(MaterialRecord.is_archived.is_(False))
        with store_available():
            return list(self.session.scalars(stmt))

    def material_row(self, material_id: str) -> MaterialRecord:
        with store_available():
            row = self.session.get(MaterialRecord, material_id)
        if row is None:
            raise MissingReferenceError("material", material_id)
        return row

    def save_material(self, material: Material) -> MaterialRecord:
        with store_available():
            row = self.session.get(MaterialRecord, material.id)
            if row is None:
                row = MaterialRecord(id=material.id)
                self.session.add(row)
            apply_material(row, material)
            self.session.flush()
        return row

    def material_payload(self, row: MaterialRecord) -> Dict[str, Any]:
        return _with_pricing(material_to_payload(to_material(row)), row)

    # -- processes ------------------------------------------------------
    def process_rows(self, category: str | None = None) -> List[ProcessRecord]:
        stmt = select(ProcessRecord).order_by(ProcessRecord.display_name, ProcessRecord.id)
        if category:
            stmt = stmt.where(ProcessRecord.category == category)
        with store_available():
            return list(self.session.scalars(stmt))

    def process_row(self, process_id: str) -> ProcessRecord:
        with store_available():
            row = self.session.get(ProcessRecord, process_id)
        if row is None:
            raise MissingReferenceError("process", process_id)
        return row

    def save_process(self, process: Process) -> ProcessRecord:
        with store_available():
            row = self.session.get(ProcessRecord, process.id)
            if row is None:
                row = ProcessRecord(id=process.id)
                self.session.add(row)
            apply_process(row, process)
            self.session.flush()
        return row

    def process_payload(self, row: ProcessRecord) -> Dict[str, Any]:
        return _with_pricing(process_to_payload(to_process(row)), row)

    # -- tasks ----------------------------------------------------------
    def task_rows(self, category: str | None = None) -> List[TaskRecord]:
        stmt = select(TaskRecord).order_by(TaskRecord.title, TaskRecord.id)
        if category:
            stmt = stmt.where(TaskRecord.category == category)
        with store_available():
            return list(self.session.scalars(stmt))

    def save_task(self, task: Task) -> TaskRecord:
        with store_available():
            row = self.session.get(TaskRecord, task.id)
            if row is None:
                row = TaskRecord(id=task.id)
                self.session.add(row)
            apply_task(row, task)
            self.session.flush()
        return row

    def task_payload(self, row: TaskRecord) -> Dict[str, Any]:
        return _with_pricing(task_to_payload(to_task(row)), row)

    def exists(self, object_type: str, object_id: str) -> bool:
        model = {"material": MaterialRecord, "process": ProcessRecord, "task": TaskRecord}[object_type]
        with store_available():
            return self.session.get(model, object_id) is not None

    # -- cascade contract -----------------------------------------------
    def load_catalog(self) -> CatalogSnapshot:
        with store_available():
            materials = list(self.session.scalars(select(MaterialRecord)))
            processes = list(self.session.scalars(select(ProcessRecord)))
            tasks = list(self.session.scalars(select(TaskRecord)))
        return CatalogSnapshot(
            materials={row.id: to_material(row) for row in materials},
            processes={row.id: to_process(row) for row in processes},
            tasks={row.id: to_task(row) for row in tasks},
        )

    def save_pricing(
        self,
        materials: Mapping[str, Dict[str, Any]],
        processes: Mapping[str, Dict[str, Any]],
        tasks: Mapping[str, Dict[str, Any]],
    ) -> None:
        """Write every pricing block in one savepoint; all or nothing."""
        with store_available():
            with self.session.begin_nested():
                for model, blocks in (
                    (MaterialRecord, materials),
                    (ProcessRecord, processes),
                    (TaskRecord, tasks),
                ):
                    for object_id in sorted(blocks):
                        row = self.session.get(model, object_id)
                        if row is None:
                            continue
                        row.pricing = dict(blocks[object_id])
                        row.updated_at = utc_now()
                self.session.flush()

    # -- finders --------------------------------------------------------
    def find_processes_using_materials(self, material_ids: Iterable[str]) -> List[ProcessRecord]:
        ids = self.load_catalog().dependency_index.processes_using_materials(material_ids)
        return [self.process_row(pid) for pid in ids]

    def find_tasks_using_materials_or_processes(self, material_ids: Iterable[str],
                                                process_ids: Iterable[str]) -> List[TaskRecord]:
        index = self.load_catalog().dependency_index
        ids = index.tasks_using_materials_or_processes(material_ids, process_ids)
        with store_available():
            return [self.session.get(TaskRecord, tid) for tid in ids]

    # -- migration ------------------------------------------------------
    def repoint_material_references(self, replacements: Mapping[str, str]) -> Dict[str, List[str]]:
        """Replace material ids in process and task references.

        Returns the ids of the processes and tasks that changed.
        """
        changed: Dict[str, List[str]] = {"processes": [], "tasks": []}
        with store_available():
            for row in self.session.scalars(select(ProcessRecord).order_by(ProcessRecord.id)):
                usages = list(row.materials or [])
                if any(u.get("materialId") in replacements for u in usages):
                    row.materials = _repoint(usages, "materialId", replacements)
                    changed["processes"].append(row.id)
            for row in self.session.scalars(select(TaskRecord).order_by(TaskRecord.id)):
                usages = list(row.materials or [])
                if any(u.get("materialId") in replacements for u in usages):
                    row.materials = _repoint(usages, "materialId", replacements)
                    changed["tasks"].append(row.id)
            self.session.flush()
        return changed

    # -- audit ----------------------------------------------------------
    def append_audit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> AuditLog:
        entry = AuditLog(event=event, payload=dict(payload or {}))
        with store_available():
            self.session.add(entry)
            self.session.flush()
        return entry

    def audit_entries(self, event: str | None = None) -> List[AuditLog]:
        stmt = select(AuditLog).order_by(AuditLog.id)
        if event:
            stmt = stmt.where(AuditLog.event == event)
        with store_available():
            return list(self.session.scalars(stmt))
