"""Recompute dependent prices after an upstream edit.

A run snapshots the settings and the catalog once, recomputes the affected
objects level by level (materials, then processes, then tasks) and hands
every resulting pricing block to the store in a single write. Per-object
failures are collected and the run carries on; a store failure aborts the
run and nothing is written.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from .dependency_index import DependencyIndex
from .domain import AdminSettings, Material, Process, Task, isoformat, utc_now
from .errors import MissingReferenceError, PersistenceUnavailableError, PricingError
from .material_pricing import MaterialPricingResolver
from .process_pricing import ProcessCostCalculator
from .task_pricing import TaskPriceCalculator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class AdminSettingsChanged:
    settings: Optional[AdminSettings] = None
    name = "AdminSettingsChanged"


@dataclass(frozen=True)
class MaterialsChanged:
    material_ids: Tuple[str, ...]
    name = "MaterialsChanged"


@dataclass(frozen=True)
class ProcessesChanged:
    process_ids: Tuple[str, ...]
    name = "ProcessesChanged"


@dataclass(frozen=True)
class TasksChanged:
    """Recompute the named tasks only; an empty tuple means every task."""

    task_ids: Tuple[str, ...] = ()
    name = "TasksChanged"


CascadeEvent = Union[AdminSettingsChanged, MaterialsChanged, ProcessesChanged, TasksChanged]


class PropagationStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completedWithErrors"
    ABORTED = "aborted"


# ---------------------------------------------------------------------
# Snapshot and store contract
# ---------------------------------------------------------------------

@dataclass
class CatalogSnapshot:
    materials: Dict[str, Material] = field(default_factory=dict)
    processes: Dict[str, Process] = field(default_factory=dict)
    tasks: Dict[str, Task] = field(default_factory=dict)

    @cached_property
    def dependency_index(self) -> DependencyIndex:
        return DependencyIndex(self.processes.values(), self.tasks.values())

    @property
    def active_material_ids(self) -> List[str]:
        return sorted(m.id for m in self.materials.values() if not m.is_archived)


class PricingStore(Protocol):
    def load_settings(self) -> AdminSettings: ...

    def load_catalog(self) -> CatalogSnapshot: ...

    def save_pricing(
        self,
        materials: Mapping[str, Dict[str, Any]],
        processes: Mapping[str, Dict[str, Any]],
        tasks: Mapping[str, Dict[str, Any]],
    ) -> None: ...


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class RecalculationError:
    object_type: str
    object_id: Optional[str]
    kind: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "objectType": self.object_type,
            "objectId": self.object_id,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass
class RecalculationSummary:
    trigger: str
    status: PropagationStatus = PropagationStatus.COMPLETED
    materials_updated: List[str] = field(default_factory=list)
    processes_updated: List[str] = field(default_factory=list)
    tasks_updated: List[str] = field(default_factory=list)
    errors: List[RecalculationError] = field(default_factory=list)
    settings_version: Optional[int] = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def updated_count(self) -> int:
        return len(self.materials_updated) + len(self.processes_updated) + len(self.tasks_updated)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "trigger": self.trigger,
            "materialsUpdated": len(self.materials_updated),
            "processesUpdated": len(self.processes_updated),
            "tasksUpdated": len(self.tasks_updated),
            "updatedIds": {
                "materials": list(self.materials_updated),
                "processes": list(self.processes_updated),
                "tasks": list(self.tasks_updated),
            },
            "errors": [error.to_dict() for error in self.errors],
            "settingsVersion": self.settings_version,
            "startedAt": isoformat(self.started_at),
            "finishedAt": isoformat(self.finished_at),
        }


def _error_for(object_type: str, object_id: Optional[str], exc: Exception) -> RecalculationError:
    kind = getattr(exc, "kind", None) or "InvalidCatalogDataError"
    return RecalculationError(object_type, object_id, kind, str(exc))


# ---------------------------------------------------------------------
# Propagator
# ---------------------------------------------------------------------

class CascadeUpdatePropagator:
    def __init__(self, store: PricingStore, max_workers: int = 1,
                 task_calculator: TaskPriceCalculator | None = None):
        self.store = store
        self.max_workers = max(1, int(max_workers or 1))
        self.task_calculator = task_calculator or TaskPriceCalculator()

    @property
    def process_calculator(self) -> ProcessCostCalculator:
        return self.task_calculator.process_calculator

    @property
    def resolver(self) -> MaterialPricingResolver:
        return self.process_calculator.resolver

    def on_settings_changed(self, settings: AdminSettings | None = None) -> RecalculationSummary:
        return self.propagate(AdminSettingsChanged(settings))

    def on_materials_changed(self, material_ids: Iterable[str]) -> RecalculationSummary:
        return self.propagate(MaterialsChanged(tuple(material_ids)))

    def on_processes_changed(self, process_ids: Iterable[str]) -> RecalculationSummary:
        return self.propagate(ProcessesChanged(tuple(process_ids)))

    def on_tasks_changed(self, task_ids: Iterable[str] = ()) -> RecalculationSummary:
        return self.propagate(TasksChanged(tuple(task_ids)))

    def propagate(self, event: CascadeEvent) -> RecalculationSummary:
        summary = RecalculationSummary(trigger=event.name)
        logger.info(f"Cascade {event.name} started")
        try:
            settings = getattr(event, "settings", None) or self.store.load_settings()
            catalog = self.store.load_catalog()
        except PersistenceUnavailableError as exc:
            logger.exception(f"Cascade {event.name} aborted while loading the catalog")
            return self._aborted(summary, exc)
        summary.settings_version = settings.version

        material_ids, process_ids, task_ids = self._plan(event, catalog, summary)

        try:
            material_blocks = self._compute_level(
                "material", material_ids,
                lambda mid: self.resolver.price_material(catalog.materials[mid], settings).to_dict(),
                summary,
            )
            process_blocks = self._compute_level(
                "process", process_ids,
                lambda pid: self.process_calculator.price_process(
                    catalog.processes[pid], settings, catalog.materials
                ).to_dict(),
                summary,
            )
            task_blocks = self._compute_level(
                "task", task_ids,
                lambda tid: self.task_calculator.calculate(
                    catalog.tasks[tid], settings, catalog.processes, catalog.materials
                ).to_dict(),
                summary,
            )
        except PersistenceUnavailableError as exc:
            logger.exception(f"Cascade {event.name} aborted while pricing")
            return self._aborted(summary, exc)

        try:
            self.store.save_pricing(material_blocks, process_blocks, task_blocks)
        except PersistenceUnavailableError as exc:
            logger.exception(f"Cascade {event.name} aborted while writing pricing")
            return self._aborted(summary, exc)

        summary.materials_updated = list(material_blocks)
        summary.processes_updated = list(process_blocks)
        summary.tasks_updated = list(task_blocks)
        summary.status = (
            PropagationStatus.COMPLETED_WITH_ERRORS if summary.errors else PropagationStatus.COMPLETED
        )
        summary.finished_at = utc_now()
        logger.info(
            f"Cascade {event.name} {summary.status.value}: "
            f"{len(material_blocks)} materials, {len(process_blocks)} processes, "
            f"{len(task_blocks)} tasks, {len(summary.errors)} errors"
        )
        return summary

    def _plan(self, event: CascadeEvent, catalog: CatalogSnapshot,
              summary: RecalculationSummary) -> Tuple[List[str], List[str], List[str]]:
        index = catalog.dependency_index
        if isinstance(event, AdminSettingsChanged):
            return catalog.active_material_ids, sorted(catalog.processes), sorted(catalog.tasks)

        if isinstance(event, MaterialsChanged):
            known = self._known("material", event.material_ids, catalog.materials, summary)
            materials = sorted(mid for mid in known if not catalog.materials[mid].is_archived)
            processes = index.processes_using_materials(known)
            return materials, processes, index.tasks_affected_by_materials(known)

        if isinstance(event, ProcessesChanged):
            known = self._known("process", event.process_ids, catalog.processes, summary)
            return [], sorted(known), index.tasks_using_materials_or_processes((), known)

        if event.task_ids:
            return [], [], sorted(self._known("task", event.task_ids, catalog.tasks, summary))
        return [], [], sorted(catalog.tasks)

    @staticmethod
    def _known(object_type: str, ids: Sequence[str], existing: Mapping[str, Any],
               summary: RecalculationSummary) -> List[str]:
        known = []
        for object_id in dict.fromkeys(ids):
            if object_id in existing:
                known.append(object_id)
            else:
                exc = MissingReferenceError(object_type, object_id)
                logger.warning(f"Cascade skipped {object_type} {object_id}: {exc}")
                summary.errors.append(_error_for(object_type, object_id, exc))
        return known

    def _compute_level(self, object_type: str, ids: Sequence[str],
                       compute: Callable[[str], Dict[str, Any]],
                       summary: RecalculationSummary) -> Dict[str, Dict[str, Any]]:
        def attempt(object_id: str):
            try:
                return compute(object_id), None
            except PersistenceUnavailableError:
                raise
            except (PricingError, ValueError) as exc:
                return None, exc

        if self.max_workers > 1 and len(ids) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(attempt, ids))
        else:
            outcomes = [attempt(object_id) for object_id in ids]

        blocks: Dict[str, Dict[str, Any]] = {}
        for object_id, (block, exc) in sorted(zip(ids, outcomes), key=lambda item: item[0]):
            if exc is not None:
                logger.warning(f"Cascade could not price {object_type} {object_id}: {exc}")
                summary.errors.append(_error_for(object_type, object_id, exc))
                continue
            blocks[object_id] = block
        return blocks

    @staticmethod
    def _aborted(summary: RecalculationSummary, exc: Exception) -> RecalculationSummary:
        summary.status = PropagationStatus.ABORTED
        summary.materials_updated = []
        summary.processes_updated = []
        summary.tasks_updated = []
        summary.errors.append(_error_for("store", None, exc))
        summary.finished_at = utc_now()
        return summary
