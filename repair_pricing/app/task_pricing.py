from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .domain import AdminSettings, Process, Task, isoformat, round2, utc_now
from .errors import IncompatibleMetalError, MissingReferenceError
from .material_pricing import MaterialPricingResolver
from .process_pricing import MaterialLookup, ProcessCostCalculator, lookup_material

ProcessLookup = Mapping[str, Process]

WHOLESALE_RATIO = 0.5


def lookup_process(processes: ProcessLookup, process_id: str) -> Process:
    process = processes.get(process_id)
    if process is None:
        raise MissingReferenceError("process", process_id)
    return process


@dataclass(frozen=True)
class TaskPricing:
    task_id: str
    metal_key: Optional[str]
    total_labor_minutes: float
    total_material_cost: float
    marked_up_material_cost: float
    total_equipment_cost: float
    labor_cost: float
    base_cost: float
    business_multiplier: float
    retail_price: float
    wholesale_price: float
    rush_price: float
    calculated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metalKey": self.metal_key,
            "totalLaborMinutes": round2(self.total_labor_minutes),
            "totalMaterialCost": round2(self.total_material_cost),
            "markedUpMaterialCost": round2(self.marked_up_material_cost),
            "totalEquipmentCost": round2(self.total_equipment_cost),
            "laborCost": round2(self.labor_cost),
            "baseCost": round2(self.base_cost),
            "businessMultiplier": round(self.business_multiplier, 4),
            "retailPrice": self.retail_price,
            "wholesalePrice": self.wholesale_price,
            "rushPrice": self.rush_price,
            "calculatedAt": isoformat(self.calculated_at),
        }


class TaskPriceCalculator:
    """Prices a task from its processes, standalone materials and the settings.

    Process material costs arrive already marked up from
    :class:`ProcessCostCalculator`; standalone materials are marked up by the
    resolver. Nothing here applies markup a second time.
    """

    def __init__(self, process_calculator: ProcessCostCalculator | None = None):
        self.process_calculator = process_calculator or ProcessCostCalculator()

    @property
    def resolver(self) -> MaterialPricingResolver:
        return self.process_calculator.resolver

    def check_metal_compatibility(self, task: Task, processes: ProcessLookup,
                                  materials: MaterialLookup) -> None:
        """Raise :class:`IncompatibleMetalError` for the first reference that
        cannot serve the task's metal. Processes are checked before
        standalone materials, each in declaration order."""
        for usage in task.processes:
            process = lookup_process(processes, usage.process_id)
            if self.process_calculator.supports(process, task.metal_type, task.karat, materials):
                raise IncompatibleMetalError("process", process.id, task.metal_key)
        for usage in task.materials:
            material = lookup_material(materials, usage.material_id)
            if not self.resolver.supports(material, task.metal_type, task.karat):
                raise IncompatibleMetalError("material", material.id, task.metal_key)

    def calculate(self, task: Task, settings: AdminSettings, processes: ProcessLookup,
                  materials: MaterialLookup) -> TaskPricing:
        if task.requires_metal_type:
            self.check_metal_compatibility(task, processes, materials)

        now = utc_now()
        total_minutes = 0.0
        total_equipment = 0.0
        total_material = 0.0
        marked_up_material = 0.0

        for usage in task.processes:
            process = lookup_process(processes, usage.process_id)
            pricing = self.process_calculator.calculate(
                process, task.metal_type, task.karat, settings, materials, now
            )
            total_minutes += pricing.calculated_labor_minutes * usage.quantity
            total_equipment += pricing.equipment_cost * usage.quantity
            total_material += pricing.base_material_cost * usage.quantity
            marked_up_material += pricing.material_cost * usage.quantity

        for usage in task.materials:
            material = lookup_material(materials, usage.material_id)
            unit_cost = self.resolver.base_unit_cost(material, task.metal_type, task.karat)
            total_material += unit_cost * usage.quantity
            marked_up_material += self.resolver.apply_markup(unit_cost, settings) * usage.quantity

        labor_cost = total_minutes * settings.labor_rate_per_minute
        base_cost = labor_cost + total_equipment + marked_up_material
        multiplier = settings.business_multiplier
        retail = round2(base_cost * multiplier)

        return TaskPricing(
            task_id=task.id,
            metal_key=task.metal_key,
            total_labor_minutes=total_minutes,
            total_material_cost=total_material,
            marked_up_material_cost=marked_up_material,
            total_equipment_cost=total_equipment,
            labor_cost=labor_cost,
            base_cost=base_cost,
            business_multiplier=multiplier,
            retail_price=retail,
            wholesale_price=round2(retail * WHOLESALE_RATIO),
            rush_price=round2(retail * task.service.rush_multiplier),
            calculated_at=now,
        )
