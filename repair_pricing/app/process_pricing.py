from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .domain import AdminSettings, Material, Process, isoformat, round2, utc_now
from .errors import MissingReferenceError, UnsupportedMetalError
from .material_pricing import MaterialPricingResolver
from .metal_keys import metal_key, parse_metal_key

MaterialLookup = Mapping[str, Material]


def lookup_material(materials: MaterialLookup, material_id: str) -> Material:
    material = materials.get(material_id)
    if material is None:
        raise MissingReferenceError("material", material_id)
    return material


@dataclass(frozen=True)
class ProcessPricing:
    """Cost breakdown of one process for one metal.

    Values stay unrounded so task totals do not compound rounding error;
    :meth:`to_dict` rounds for storage.
    """

    process_id: str
    metal_key: Optional[str]
    labor_cost: float
    equipment_cost: float
    material_cost: float
    base_material_cost: float
    total_cost: float
    metal_complexity: float
    calculated_labor_minutes: float
    calculated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metalKey": self.metal_key,
            "laborCost": round2(self.labor_cost),
            "equipmentCost": round2(self.equipment_cost),
            "materialCost": round2(self.material_cost),
            "baseMaterialCost": round2(self.base_material_cost),
            "totalCost": round2(self.total_cost),
            "metalComplexity": self.metal_complexity,
            "calculatedLaborMinutes": round2(self.calculated_labor_minutes),
            "calculatedAt": isoformat(self.calculated_at),
        }


@dataclass(frozen=True)
class ProcessPricingBlock:
    """The derived ``pricing`` block persisted on a process record."""

    process_id: str
    is_metal_dependent: bool
    default: Optional[ProcessPricing] = None
    metal_prices: Mapping[str, ProcessPricing] = field(default_factory=dict)
    unsupported_metals: tuple = ()
    calculated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "isMetalDependent": self.is_metal_dependent,
            "calculatedAt": isoformat(self.calculated_at),
        }
        if self.is_metal_dependent:
            payload["metalPrices"] = {
                key: pricing.to_dict() for key, pricing in sorted(self.metal_prices.items())
            }
            payload["unsupportedMetals"] = list(self.unsupported_metals)
        elif self.default is not None:
            payload["default"] = self.default.to_dict()
        return payload


class ProcessCostCalculator:
    def __init__(self, resolver: MaterialPricingResolver | None = None):
        self.resolver = resolver or MaterialPricingResolver()

    def calculate(
        self,
        process: Process,
        metal_type: Optional[str],
        karat: Optional[str],
        settings: AdminSettings,
        materials: MaterialLookup,
        calculated_at: datetime | None = None,
    ) -> ProcessPricing:
        complexity = process.complexity_for(metal_type)
        calculated_minutes = process.labor_minutes * complexity
        labor_cost = calculated_minutes * settings.labor_rate_per_minute

        material_cost = 0.0
        base_material_cost = 0.0
        for usage in process.materials:
            material = lookup_material(materials, usage.material_id)
            unit_cost = self.resolver.base_unit_cost(material, metal_type, karat)
            base_material_cost += unit_cost * usage.quantity
            material_cost += self.resolver.apply_markup(unit_cost, settings) * usage.quantity

        return ProcessPricing(
            process_id=process.id,
            metal_key=metal_key(metal_type, karat),
            labor_cost=labor_cost,
            equipment_cost=process.equipment_cost,
            material_cost=material_cost,
            base_material_cost=base_material_cost,
            total_cost=labor_cost + process.equipment_cost + material_cost,
            metal_complexity=complexity,
            calculated_labor_minutes=calculated_minutes,
            calculated_at=calculated_at or utc_now(),
        )

    def supports(self, process: Process, metal_type: Optional[str], karat: Optional[str],
                 materials: MaterialLookup) -> Optional[str]:
        """Return the id of the first material that cannot serve the metal, if any."""
        for usage in process.materials:
            material = lookup_material(materials, usage.material_id)
            if not self.resolver.supports(material, metal_type, karat):
                return material.id
        return None

    def metal_keys_for(self, process: Process, materials: MaterialLookup) -> List[str]:
        keys = set()
        for usage in process.materials:
            keys.update(self.resolver.available_metal_keys(lookup_material(materials, usage.material_id)))
        return sorted(keys)

    def price_process(self, process: Process, settings: AdminSettings,
                      materials: MaterialLookup) -> ProcessPricingBlock:
        """Build the persisted pricing block for ``process``.

        Processes using only legacy materials get one metal-neutral
        breakdown. Processes using variant materials get one breakdown per
        metal key offered by any of those materials; keys that some other
        material cannot serve are listed as unsupported.
        """
        now = utc_now()
        keys = self.metal_keys_for(process, materials)
        if not keys:
            return ProcessPricingBlock(
                process_id=process.id,
                is_metal_dependent=False,
                default=self.calculate(process, None, None, settings, materials, now),
                calculated_at=now,
            )

        metal_prices: Dict[str, ProcessPricing] = {}
        unsupported: List[str] = []
        for key in keys:
            family, fineness = parse_metal_key(key)
            try:
                metal_prices[key] = self.calculate(process, family, fineness, settings, materials, now)
            except UnsupportedMetalError:
                unsupported.append(key)
        if not metal_prices:
            blocker = self.supports(process, *parse_metal_key(keys[0]), materials)
            raise UnsupportedMetalError(blocker or process.id, keys[0])
        return ProcessPricingBlock(
            process_id=process.id,
            is_metal_dependent=True,
            metal_prices=metal_prices,
            unsupported_metals=tuple(unsupported),
            calculated_at=now,
        )
