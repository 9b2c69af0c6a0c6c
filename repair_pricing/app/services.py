from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from .cascade import CascadeUpdatePropagator, RecalculationSummary
from .config import CascadeSettings, DefaultPricing
from .domain import (
    AdminSettings,
    material_from_payload,
    material_to_payload,
    process_from_payload,
    process_to_payload,
    round2,
    task_from_payload,
    task_to_payload,
)
from .errors import InvalidCatalogDataError, MissingReferenceError, PricingError
from .excel import ReportWorkbookWriter
from .migration import MigrationAnalyzer, MigrationReport
from .models import new_id
from .repository import CatalogRepository, to_material, to_process
from .settings_store import AdminSettingsStore
from .task_pricing import TaskPriceCalculator

logger = logging.getLogger(__name__)

RECALCULATION_SCOPES = ("all", "settings", "materials", "processes", "tasks")
UNCHANGED_TOLERANCE = 0.01


def _merge(current: Dict[str, Any], changes: Mapping[str, Any]) -> Dict[str, Any]:
    if not isinstance(changes, Mapping):
        raise InvalidCatalogDataError("changes must be an object", "changes")
    merged = dict(current)
    for key, value in changes.items():
        if key in {"id", "pricing", "updatedAt", "metalKey"}:
            continue
        merged[key] = value
    return merged


def _id_list(ids: Any, field: str) -> List[str]:
    if ids is None:
        return []
    if not isinstance(ids, (list, tuple)) or not all(isinstance(i, str) for i in ids):
        raise InvalidCatalogDataError(f"{field} must be a list of ids", field)
    return list(ids)


class PricingService:
    def __init__(self, session: Session, cascade: CascadeSettings | None = None,
                 defaults: DefaultPricing | None = None):
        self.session = session
        self.cascade_settings = cascade or CascadeSettings()
        self.settings_store = AdminSettingsStore(session, defaults)
        self.repository = CatalogRepository(session, self.settings_store.snapshot)
        self.task_calculator = TaskPriceCalculator()
        self.propagator = CascadeUpdatePropagator(
            self.repository,
            max_workers=self.cascade_settings.max_workers,
            task_calculator=self.task_calculator,
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_settings(self) -> AdminSettings:
        return self.settings_store.snapshot()

    def update_settings(self, payload: Mapping[str, Any],
                        updated_by: str | None = None) -> Tuple[AdminSettings, RecalculationSummary]:
        settings = self.settings_store.update(payload, updated_by)
        self.append_audit("settings_update", {"changes": dict(payload), "version": settings.version})
        summary = self.propagator.on_settings_changed(settings)
        self._audit_summary(summary)
        return settings, summary

    def preview_settings_impact(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Recompute every task against proposed settings without writing."""
        current = self.settings_store.snapshot()
        proposed = self.settings_store.preview(payload)
        catalog = self.repository.load_catalog()

        tasks: List[Dict[str, Any]] = []
        failures: List[Dict[str, Any]] = []
        by_category: Dict[str, List[float]] = defaultdict(list)
        increased = decreased = unchanged = 0
        for task_id in sorted(catalog.tasks):
            task = catalog.tasks[task_id]
            try:
                before = self.task_calculator.calculate(
                    task, current, catalog.processes, catalog.materials
                ).retail_price
                after = self.task_calculator.calculate(
                    task, proposed, catalog.processes, catalog.materials
                ).retail_price
            except (PricingError, ValueError) as exc:
                failures.append(
                    {"taskId": task.id, "title": task.title,
                     "kind": getattr(exc, "kind", "InvalidCatalogDataError"), "message": str(exc)}
                )
                continue
            change = round2(after - before)
            percent = round2(change / before * 100) if before else 0.0
            if abs(after - before) <= UNCHANGED_TOLERANCE:
                unchanged += 1
            elif after > before:
                increased += 1
            else:
                decreased += 1
            by_category[task.category].append(change)
            tasks.append(
                {
                    "taskId": task.id,
                    "title": task.title,
                    "category": task.category,
                    "currentPrice": before,
                    "newPrice": after,
                    "change": change,
                    "percentChange": percent,
                }
            )

        return {
            "currentSettings": current.to_dict(),
            "proposedSettings": proposed.to_dict(),
            "tasks": tasks,
            "failures": failures,
            "categoryAverages": {
                category: round2(sum(changes) / len(changes))
                for category, changes in sorted(by_category.items())
            },
            "summary": {
                "totalTasks": len(catalog.tasks),
                "increased": increased,
                "decreased": decreased,
                "unchanged": unchanged,
                "failed": len(failures),
            },
        }

    # ------------------------------------------------------------------
    # Materials
    # ------------------------------------------------------------------
    def list_materials(self, category: str | None = None,
                       include_archived: bool = False) -> List[Dict[str, Any]]:
        rows = self.repository.material_rows(category, include_archived)
        return [self.repository.material_payload(row) for row in rows]

    def create_material(self, payload: Mapping[str, Any]) -> Tuple[Dict[str, Any], RecalculationSummary]:
        material = material_from_payload(payload, payload.get("id") or new_id())
        self._ensure_new("material", material.id)
        self.repository.save_material(material)
        summary = self.propagator.on_materials_changed([material.id])
        return self.repository.material_payload(self.repository.material_row(material.id)), summary

    def patch_materials(self, ids: Sequence[str],
                        changes: Mapping[str, Any]) -> Tuple[List[Dict[str, Any]], RecalculationSummary]:
        """Apply the same changes to every listed material, then cascade.

        Either every material is updated or none is.
        """
        ids = _id_list(ids, "ids")
        if not ids:
            raise InvalidCatalogDataError("ids must not be empty", "ids")
        updated = []
        for material_id in ids:
            row = self.repository.material_row(material_id)
            current = material_to_payload(to_material(row))
            merged = _merge(current, changes)
            if merged.get("hasVariants"):
                if changes.get("unitCost") is not None:
                    raise InvalidCatalogDataError(
                        "variant materials cannot also carry a scalar unitCost", "unitCost"
                    )
                merged.pop("unitCost", None)
            else:
                merged.pop("variants", None)
            updated.append(material_from_payload(merged, material_id))
        for material in updated:
            self.repository.save_material(material)
        self.append_audit("material_patch", {"ids": list(ids), "changes": dict(changes)})
        summary = self.propagator.on_materials_changed(ids)
        self._audit_summary(summary)
        rows = [self.repository.material_row(mid) for mid in ids]
        return [self.repository.material_payload(row) for row in rows], summary

    # ------------------------------------------------------------------
    # Processes
    # ------------------------------------------------------------------
    def list_processes(self, category: str | None = None) -> List[Dict[str, Any]]:
        return [self.repository.process_payload(row) for row in self.repository.process_rows(category)]

    def create_process(self, payload: Mapping[str, Any]) -> Tuple[Dict[str, Any], RecalculationSummary]:
        payload = dict(payload)
        if not payload.get("metalComplexity"):
            payload["metalComplexity"] = dict(self.get_settings().metal_complexity_multipliers)
        process = process_from_payload(payload, payload.get("id") or new_id())
        self._ensure_new("process", process.id)
        self._check_material_refs(process.materials)
        self.repository.save_process(process)
        summary = self.propagator.on_processes_changed([process.id])
        return self.repository.process_payload(self.repository.process_row(process.id)), summary

    def patch_processes(self, ids: Sequence[str],
                        changes: Mapping[str, Any]) -> Tuple[List[Dict[str, Any]], RecalculationSummary]:
        ids = _id_list(ids, "ids")
        if not ids:
            raise InvalidCatalogDataError("ids must not be empty", "ids")
        updated = []
        for process_id in ids:
            row = self.repository.process_row(process_id)
            current = process_to_payload(to_process(row))
            process = process_from_payload(_merge(current, changes), process_id)
            self._check_material_refs(process.materials)
            updated.append(process)
        for process in updated:
            self.repository.save_process(process)
        self.append_audit("process_patch", {"ids": list(ids), "changes": dict(changes)})
        summary = self.propagator.on_processes_changed(ids)
        self._audit_summary(summary)
        return [self.repository.process_payload(self.repository.process_row(pid)) for pid in ids], summary

    def find_processes_using_materials(self, material_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = _id_list(list(material_ids), "materialIds")
        rows = self.repository.find_processes_using_materials(ids)
        return [self.repository.process_payload(row) for row in rows]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def list_tasks(self, category: str | None = None) -> List[Dict[str, Any]]:
        return [self.repository.task_payload(row) for row in self.repository.task_rows(category)]

    def create_task(self, payload: Mapping[str, Any]) -> Tuple[Dict[str, Any], RecalculationSummary]:
        task = task_from_payload(payload, payload.get("id") or new_id())
        self._ensure_new("task", task.id)
        self._check_material_refs(task.materials)
        for usage in task.processes:
            self.repository.process_row(usage.process_id)
        row = self.repository.save_task(task)
        summary = self.propagator.on_tasks_changed([task.id])
        return self.repository.task_payload(row), summary

    def find_tasks_using_materials_or_processes(self, material_ids: Iterable[str] = (),
                                                process_ids: Iterable[str] = ()) -> List[Dict[str, Any]]:
        mids = _id_list(list(material_ids), "materialIds")
        pids = _id_list(list(process_ids), "processIds")
        rows = self.repository.find_tasks_using_materials_or_processes(mids, pids)
        return [self.repository.task_payload(row) for row in rows]

    def _ensure_new(self, object_type: str, object_id: str) -> None:
        if self.repository.exists(object_type, object_id):
            raise InvalidCatalogDataError(f"{object_type} {object_id} already exists", "id")

    def _check_material_refs(self, usages) -> None:
        for usage in usages:
            self.repository.material_row(usage.material_id)

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------
    def recalculate(self, scope: str = "all", ids: Optional[Sequence[str]] = None) -> RecalculationSummary:
        if scope not in RECALCULATION_SCOPES:
            raise InvalidCatalogDataError(
                f"scope must be one of {', '.join(RECALCULATION_SCOPES)}", "scope"
            )
        ids = _id_list(ids, "ids")
        if scope in {"all", "settings"}:
            summary = self.propagator.on_settings_changed()
        elif scope == "materials":
            summary = self.propagator.on_materials_changed(ids)
        elif scope == "processes":
            summary = self.propagator.on_processes_changed(ids)
        else:
            summary = self.propagator.on_tasks_changed(ids)
        self._audit_summary(summary)
        return summary

    def _audit_summary(self, summary: RecalculationSummary) -> None:
        payload = summary.to_dict()
        payload.pop("updatedIds", None)
        self.append_audit("recalculation", payload)

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------
    def analyze_migration(self) -> MigrationReport:
        catalog = self.repository.load_catalog()
        return MigrationAnalyzer().analyze(
            catalog.materials[mid] for mid in sorted(catalog.materials)
        )

    def apply_migration(self, base_key: str) -> Dict[str, Any]:
        """Merge one analyzed candidate group into its donor material."""
        report = self.analyze_migration()
        candidate = report.candidate(base_key)
        if candidate is None:
            raise MissingReferenceError("migration candidate", base_key)

        self.repository.save_material(candidate.proposed)
        for member in candidate.members:
            if member.id in candidate.materials_to_archive:
                self.repository.save_material(
                    material_from_payload({**material_to_payload(member), "isArchived": True}, member.id)
                )
        replacements = {mid: candidate.donor_id for mid in candidate.materials_to_archive}
        repointed = self.repository.repoint_material_references(replacements)
        logger.info(
            f"Migrated {base_key}: {len(candidate.materials_to_archive)} materials archived into "
            f"{candidate.donor_id}, {len(repointed['processes'])} processes and "
            f"{len(repointed['tasks'])} tasks re-pointed"
        )
        self.append_audit(
            "migration_apply",
            {
                "baseKey": base_key,
                "donorId": candidate.donor_id,
                "archived": list(candidate.materials_to_archive),
                "repointed": repointed,
            },
        )
        summary = self.propagator.on_materials_changed([candidate.donor_id])
        self._audit_summary(summary)
        return {
            "baseKey": base_key,
            "material": self.repository.material_payload(
                self.repository.material_row(candidate.donor_id)
            ),
            "archived": list(candidate.materials_to_archive),
            "repointed": repointed,
            "recalculation": summary.to_dict(),
        }

    def export_migration_report(self, output_dir: str | Path) -> Path:
        report = self.analyze_migration()
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        return ReportWorkbookWriter().write_migration_report(report, output_dir / "material-migration")

    def export_task_prices(self, output_dir: str | Path) -> Path:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        return ReportWorkbookWriter().write_task_prices(self.list_tasks(), output_dir / "task-prices")

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------
    def append_audit(self, event: str, payload: Dict[str, Any]) -> None:
        self.repository.append_audit(event, payload)
