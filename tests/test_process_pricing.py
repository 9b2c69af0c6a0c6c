from __future__ import annotations

import pytest

from repair_pricing.app.domain import (
    AdminSettings,
    LegacyMaterial,
    MaterialUsage,
    MaterialVariant,
    Process,
    VariantMaterial,
    process_from_payload,
)
from repair_pricing.app.errors import InvalidCatalogDataError, MissingReferenceError, UnsupportedMetalError
from repair_pricing.app.process_pricing import ProcessCostCalculator


def solder() -> LegacyMaterial:
    return LegacyMaterial(id="m1", display_name="Solder", category="solder", unit_cost=10.0)


def variant(material_id: str, *metals) -> VariantMaterial:
    return VariantMaterial(
        id=material_id,
        display_name=f"Variant {material_id}",
        category="solder",
        variants=tuple(MaterialVariant(metal_type=m, karat=k, unit_cost=c) for m, k, c in metals),
    )


def process(*materials: MaterialUsage, **kwargs) -> Process:
    values = dict(
        id="p1",
        display_name="Solder joint",
        category="soldering",
        labor_minutes=90,
        equipment_cost=5,
        metal_complexity={"gold": 1.0, "platinum": 1.3},
        materials=materials or (MaterialUsage("m1", 2),),
    )
    values.update(kwargs)
    return Process(**values)


@pytest.fixture()
def calculator() -> ProcessCostCalculator:
    return ProcessCostCalculator()


def test_labor_equipment_and_material_cost(calculator, settings):
    pricing = calculator.calculate(process(), "gold", "14k", settings, {"m1": solder()})
    assert pricing.labor_cost == pytest.approx(90.0)
    assert pricing.material_cost == pytest.approx(30.0)
    assert pricing.base_material_cost == pytest.approx(20.0)
    assert pricing.total_cost == pytest.approx(125.0)
    assert pricing.metal_key == "gold_14k"


def test_metal_complexity_scales_labor(calculator, settings):
    pricing = calculator.calculate(process(), "platinum", "950", settings, {"m1": solder()})
    assert pricing.metal_complexity == pytest.approx(1.3)
    assert pricing.calculated_labor_minutes == pytest.approx(117.0)
    assert pricing.labor_cost == pytest.approx(117.0)


@pytest.mark.parametrize("metal_type", [None, "unobtanium", "silver"])
def test_unknown_or_unmapped_metal_uses_neutral_complexity(calculator, settings, metal_type):
    pricing = calculator.calculate(process(), metal_type, None, settings, {"m1": solder()})
    assert pricing.metal_complexity == 1.0
    assert pricing.labor_cost == pytest.approx(90.0)


def test_missing_material_raises(calculator, settings):
    with pytest.raises(MissingReferenceError) as excinfo:
        calculator.calculate(process(MaterialUsage("ghost", 1)), None, None, settings, {})
    assert excinfo.value.reference_type == "material"
    assert excinfo.value.reference_id == "ghost"


def test_serialized_values_are_rounded(calculator):
    odd = process(labor_minutes=10, equipment_cost=0, materials=())
    plain = AdminSettings(wage=50, material_markup=1, administrative_fee=0, business_fee=0, consumables_fee=0)
    pricing = calculator.calculate(odd, None, None, plain, {})
    assert pricing.labor_cost == pytest.approx(50 / 6)
    assert pricing.to_dict()["laborCost"] == 8.33


def test_price_process_without_variants_has_default_block(calculator, settings):
    block = calculator.price_process(process(), settings, {"m1": solder()}).to_dict()
    assert block["isMetalDependent"] is False
    assert block["default"]["totalCost"] == 125.0
    assert "metalPrices" not in block


def test_price_process_per_metal_key(calculator, settings):
    materials = {
        "m1": solder(),
        "v1": variant("v1", ("gold", "14k", 10.0), ("silver", "sterling", 4.0)),
        "v2": variant("v2", ("gold", "14k", 2.0)),
    }
    proc = process(MaterialUsage("m1", 1), MaterialUsage("v1", 1), MaterialUsage("v2", 1))
    block = calculator.price_process(proc, settings, materials).to_dict()

    assert block["isMetalDependent"] is True
    assert list(block["metalPrices"]) == ["gold_14k"]
    assert block["unsupportedMetals"] == ["silver_sterling"]
    gold = block["metalPrices"]["gold_14k"]
    assert gold["baseMaterialCost"] == 22.0
    assert gold["materialCost"] == 33.0
    assert gold["totalCost"] == 128.0


def test_price_process_with_no_servable_metal_raises(calculator, settings):
    materials = {
        "v1": variant("v1", ("gold", "14k", 10.0)),
        "v2": variant("v2", ("silver", "sterling", 4.0)),
    }
    proc = process(MaterialUsage("v1", 1), MaterialUsage("v2", 1))
    with pytest.raises(UnsupportedMetalError):
        calculator.price_process(proc, settings, materials)


def test_complexity_keys_normalize_to_metal_families(calculator, settings):
    parsed = process_from_payload(
        {"id": "p2", "displayName": "Sizing", "laborMinutes": 60,
         "metalComplexity": {"yellow-gold": 1.5, "Sterling Silver": 0.5}, "materials": []}
    )
    assert parsed.metal_complexity == {"gold": 1.5, "silver": 0.5}
    pricing = calculator.calculate(parsed, "gold", "14k", settings, {})
    assert pricing.metal_complexity == 1.5


@pytest.mark.parametrize("complexity", [{"unobtanium": 1.2}, {"gold": 0}, {"gold": "fast"}])
def test_bad_complexity_rejected(complexity):
    with pytest.raises(InvalidCatalogDataError) as excinfo:
        process_from_payload({"id": "p2", "displayName": "Sizing", "metalComplexity": complexity})
    assert excinfo.value.field == "metalComplexity"
