from __future__ import annotations

import pytest

from conftest import strip_calculated_at
from repair_pricing.app.cascade import (
    AdminSettingsChanged,
    CascadeUpdatePropagator,
    CatalogSnapshot,
    MaterialsChanged,
    ProcessesChanged,
    PropagationStatus,
)
from repair_pricing.app.domain import (
    LegacyMaterial,
    MaterialUsage,
    MaterialVariant,
    Process,
    ProcessUsage,
    Task,
    VariantMaterial,
)
from repair_pricing.app.errors import PersistenceUnavailableError
from repair_pricing.app.task_pricing import TaskPriceCalculator


class MemoryStore:
    def __init__(self, settings, catalog: CatalogSnapshot):
        self.settings = settings
        self.catalog = catalog
        self.saved = {"materials": {}, "processes": {}, "tasks": {}}
        self.fail_on: str | None = None
        self.settings_loads = 0

    def load_settings(self):
        self.settings_loads += 1
        if self.fail_on == "load":
            raise PersistenceUnavailableError("store offline")
        return self.settings

    def load_catalog(self):
        return self.catalog

    def save_pricing(self, materials, processes, tasks):
        if self.fail_on == "save":
            raise PersistenceUnavailableError("store offline")
        self.saved["materials"].update(materials)
        self.saved["processes"].update(processes)
        self.saved["tasks"].update(tasks)


def build_catalog() -> CatalogSnapshot:
    materials = {
        "m1": LegacyMaterial(id="m1", display_name="Solder", category="solder", unit_cost=10.0),
        "m2": LegacyMaterial(id="m2", display_name="Polish", category="consumables", unit_cost=2.0),
        "v1": VariantMaterial(
            id="v1",
            display_name="Jump ring",
            category="findings",
            variants=(MaterialVariant(metal_type="gold", karat="14k", unit_cost=8.0),),
        ),
        "old": LegacyMaterial(
            id="old", display_name="Old solder", category="solder", unit_cost=1.0, is_archived=True
        ),
    }
    processes = {
        "p1": Process(id="p1", display_name="Solder joint", category="soldering", labor_minutes=90,
                      equipment_cost=5, materials=(MaterialUsage("m1", 2),)),
        "p2": Process(id="p2", display_name="Polish", category="finishing", labor_minutes=20,
                      materials=(MaterialUsage("m2", 1),)),
    }
    tasks = {
        "t1": Task(id="t1", title="Quick fix", category="repairs", materials=(MaterialUsage("m1", 1),)),
        "t2": Task(id="t2", title="Solder chain", category="repairs", processes=(ProcessUsage("p1", 1),)),
        "t3": Task(id="t3", title="Polish ring", category="finishing", processes=(ProcessUsage("p2", 1),)),
        "t4": Task(id="t4", title="Palladium ring", category="repairs", requires_metal_type=True,
                   metal_type="palladium", materials=(MaterialUsage("v1", 1),)),
    }
    return CatalogSnapshot(materials=materials, processes=processes, tasks=tasks)


@pytest.fixture()
def store(settings) -> MemoryStore:
    return MemoryStore(settings, build_catalog())


def test_material_change_reaches_direct_and_indirect_tasks(store):
    summary = CascadeUpdatePropagator(store).propagate(MaterialsChanged(("m1",)))
    assert summary.status is PropagationStatus.COMPLETED
    assert summary.materials_updated == ["m1"]
    assert summary.processes_updated == ["p1"]
    assert summary.tasks_updated == ["t1", "t2"]
    assert set(store.saved["tasks"]) == {"t1", "t2"}
    assert store.saved["tasks"]["t2"]["retailPrice"] == 162.5


def test_settings_change_recomputes_everything(store):
    summary = CascadeUpdatePropagator(store).propagate(AdminSettingsChanged())
    assert summary.status is PropagationStatus.COMPLETED_WITH_ERRORS
    assert summary.materials_updated == ["m1", "m2", "v1"]
    assert summary.processes_updated == ["p1", "p2"]
    assert summary.tasks_updated == ["t1", "t2", "t3"]
    assert [(e.object_id, e.kind) for e in summary.errors] == [("t4", "IncompatibleMetalError")]
    assert summary.to_dict()["tasksUpdated"] == 3
    assert summary.settings_version == 1


def test_process_change_recomputes_process_and_its_tasks(store):
    summary = CascadeUpdatePropagator(store).on_processes_changed(["p2"])
    assert summary.processes_updated == ["p2"]
    assert summary.tasks_updated == ["t3"]
    assert summary.materials_updated == []


def test_unknown_ids_are_reported(store):
    summary = CascadeUpdatePropagator(store).on_materials_changed(["m2", "ghost"])
    assert summary.status is PropagationStatus.COMPLETED_WITH_ERRORS
    assert summary.errors[0].kind == "MissingReferenceError"
    assert summary.errors[0].object_id == "ghost"
    assert summary.tasks_updated == ["t3"]


def test_settings_are_read_once_per_run(store):
    CascadeUpdatePropagator(store).propagate(AdminSettingsChanged())
    assert store.settings_loads == 1


def test_explicit_settings_snapshot_is_used(store, settings):
    CascadeUpdatePropagator(store).on_settings_changed(settings)
    assert store.settings_loads == 0


@pytest.mark.parametrize("fail_on", ["load", "save"])
def test_store_failure_aborts_without_updates(store, fail_on):
    store.fail_on = fail_on
    summary = CascadeUpdatePropagator(store).propagate(AdminSettingsChanged() if fail_on == "load"
                                                       else MaterialsChanged(("m1",)))
    assert summary.status is PropagationStatus.ABORTED
    payload = summary.to_dict()
    assert (payload["materialsUpdated"], payload["processesUpdated"], payload["tasksUpdated"]) == (0, 0, 0)
    assert payload["errors"][-1]["kind"] == "PersistenceUnavailableError"
    assert store.saved == {"materials": {}, "processes": {}, "tasks": {}}


def test_reruns_are_identical_apart_from_timestamps(store):
    propagator = CascadeUpdatePropagator(store)
    propagator.propagate(AdminSettingsChanged())
    first = strip_calculated_at(store.saved)
    propagator.propagate(AdminSettingsChanged())
    assert strip_calculated_at(store.saved) == first


def test_parallel_levels_match_serial(settings):
    serial = MemoryStore(settings, build_catalog())
    parallel = MemoryStore(settings, build_catalog())
    CascadeUpdatePropagator(serial, max_workers=1).propagate(AdminSettingsChanged())
    summary = CascadeUpdatePropagator(parallel, max_workers=4).propagate(AdminSettingsChanged())
    assert strip_calculated_at(parallel.saved) == strip_calculated_at(serial.saved)
    assert summary.tasks_updated == ["t1", "t2", "t3"]


def test_store_failure_while_pricing_aborts(store):
    class OfflineTaskCalculator(TaskPriceCalculator):
        def calculate(self, task, settings, processes, materials):
            raise PersistenceUnavailableError("store offline")

    summary = CascadeUpdatePropagator(store, task_calculator=OfflineTaskCalculator()).propagate(
        MaterialsChanged(("m1",))
    )
    assert summary.status is PropagationStatus.ABORTED
    assert summary.materials_updated == []
    assert summary.errors[-1].object_type == "store"
    assert store.saved == {"materials": {}, "processes": {}, "tasks": {}}


def test_material_change_plan_uses_affected_tasks(store):
    index = store.catalog.dependency_index
    assert index.tasks_affected_by_materials(["m1"]) == ["t1", "t2"]
    assert index.tasks_affected_by_materials(["m2"]) == ["t3"]
