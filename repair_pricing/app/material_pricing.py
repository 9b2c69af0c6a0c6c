from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .domain import AdminSettings, Material, isoformat, round2, utc_now
from .errors import UnsupportedMetalError
from .metal_keys import metal_key


@dataclass(frozen=True)
class MaterialPricing:
    material_id: str
    material_markup: float
    has_variants: bool = False
    base_unit_cost: Optional[float] = None
    marked_up_unit_cost: Optional[float] = None
    variant_prices: Mapping[str, float] = field(default_factory=dict)
    calculated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "materialMarkup": self.material_markup,
            "calculatedAt": isoformat(self.calculated_at),
        }
        if self.has_variants:
            payload["variantPrices"] = {
                key: round2(value) for key, value in sorted(self.variant_prices.items())
            }
        else:
            payload["unitCost"] = round2(self.base_unit_cost or 0.0)
            payload["markedUpCost"] = round2(self.marked_up_unit_cost or 0.0)
        return payload


class MaterialPricingResolver:
    """Resolves unit costs for legacy and variant materials.

    The only place material markup is applied. Legacy materials are treated
    as metal-agnostic and resolve to the same cost for every metal.
    """

    def base_unit_cost(self, material: Material, metal_type: Optional[str],
                       karat: Optional[str]) -> float:
        if material.has_variants:
            key = metal_key(metal_type, karat)
            variant = material.variant_for(key)
            if variant is None or not variant.is_active:
                raise UnsupportedMetalError(material.id, key)
            return float(variant.unit_cost)
        return float(material.unit_cost)

    def resolve_unit_cost(self, material: Material, metal_type: Optional[str],
                          karat: Optional[str], settings: AdminSettings) -> float:
        return self.apply_markup(self.base_unit_cost(material, metal_type, karat), settings)

    @staticmethod
    def apply_markup(cost: float, settings: AdminSettings) -> float:
        return cost * settings.material_markup

    def supports(self, material: Material, metal_type: Optional[str],
                 karat: Optional[str]) -> bool:
        if not material.has_variants:
            return True
        variant = material.variant_for(metal_key(metal_type, karat))
        return variant is not None and variant.is_active

    def available_metal_keys(self, material: Material) -> List[str]:
        if not material.has_variants:
            return []
        return sorted(v.key for v in material.variants if v.is_active and v.key)

    def price_material(self, material: Material, settings: AdminSettings) -> MaterialPricing:
        if material.has_variants:
            prices = {
                v.key: self.apply_markup(v.unit_cost, settings)
                for v in material.variants
                if v.is_active and v.key
            }
            return MaterialPricing(
                material_id=material.id,
                material_markup=settings.material_markup,
                has_variants=True,
                variant_prices=prices,
            )
        return MaterialPricing(
            material_id=material.id,
            material_markup=settings.material_markup,
            base_unit_cost=material.unit_cost,
            marked_up_unit_cost=self.apply_markup(material.unit_cost, settings),
        )
