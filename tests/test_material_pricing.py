from __future__ import annotations

import pytest

from repair_pricing.app.domain import (
    LegacyMaterial,
    MaterialVariant,
    VariantMaterial,
    material_from_payload,
    material_to_payload,
)
from repair_pricing.app.errors import InvalidCatalogDataError, UnsupportedMetalError
from repair_pricing.app.material_pricing import MaterialPricingResolver


def legacy(unit_cost: float = 10.0, **kwargs) -> LegacyMaterial:
    return LegacyMaterial(id="m1", display_name="Easy Solder", category="solder", unit_cost=unit_cost, **kwargs)


def solder_variants() -> VariantMaterial:
    return VariantMaterial(
        id="v1",
        display_name="Solder",
        category="solder",
        variants=(
            MaterialVariant(metal_type="gold", karat="14k", unit_cost=12.0),
            MaterialVariant(metal_type="silver", karat="sterling", unit_cost=4.0, is_active=False),
        ),
    )


@pytest.fixture()
def resolver() -> MaterialPricingResolver:
    return MaterialPricingResolver()


@pytest.mark.parametrize("metal_type, karat", [("gold", "14k"), ("silver", "sterling"), (None, None)])
def test_legacy_ignores_requested_metal(resolver, settings, metal_type, karat):
    assert resolver.resolve_unit_cost(legacy(), metal_type, karat, settings) == pytest.approx(15.0)
    assert resolver.supports(legacy(), metal_type, karat)


def test_variant_resolves_active_variant(resolver, settings):
    material = solder_variants()
    assert resolver.base_unit_cost(material, "Yellow Gold", "14K") == pytest.approx(12.0)
    assert resolver.resolve_unit_cost(material, "gold", "14k", settings) == pytest.approx(18.0)


def test_inactive_variant_is_unsupported(resolver, settings):
    material = solder_variants()
    assert not resolver.supports(material, "silver", "sterling")
    with pytest.raises(UnsupportedMetalError) as excinfo:
        resolver.resolve_unit_cost(material, "silver", "sterling", settings)
    assert excinfo.value.material_id == "v1"
    assert excinfo.value.metal_key == "silver_sterling"


def test_variant_without_metal_is_unsupported(resolver, settings):
    with pytest.raises(UnsupportedMetalError):
        resolver.resolve_unit_cost(solder_variants(), None, None, settings)


def test_available_metal_keys(resolver):
    assert resolver.available_metal_keys(solder_variants()) == ["gold_14k"]
    assert resolver.available_metal_keys(legacy()) == []


def test_price_material_blocks(resolver, settings):
    legacy_block = resolver.price_material(legacy(), settings).to_dict()
    assert legacy_block["unitCost"] == 10.0
    assert legacy_block["markedUpCost"] == 15.0
    assert "calculatedAt" in legacy_block

    variant_block = resolver.price_material(solder_variants(), settings).to_dict()
    assert variant_block["variantPrices"] == {"gold_14k": 18.0}
    assert "unitCost" not in variant_block


def test_duplicate_variant_keys_rejected():
    with pytest.raises(InvalidCatalogDataError):
        VariantMaterial(
            id="dup",
            display_name="Wire",
            category="wire",
            variants=(
                MaterialVariant(metal_type="Yellow Gold", karat="14K", unit_cost=1.0),
                MaterialVariant(metal_type="gold", karat="14k", unit_cost=2.0),
            ),
        )


def test_payload_cannot_carry_both_shapes():
    with pytest.raises(InvalidCatalogDataError) as excinfo:
        material_from_payload(
            {
                "id": "x",
                "displayName": "X",
                "hasVariants": True,
                "unitCost": 5,
                "variants": [{"metalType": "gold", "karat": "14k", "unitCost": 5}],
            }
        )
    assert excinfo.value.field == "unitCost"


def test_variant_payload_needs_variants():
    with pytest.raises(InvalidCatalogDataError):
        material_from_payload({"id": "x", "displayName": "X", "hasVariants": True, "variants": []})


def test_negative_cost_rejected():
    with pytest.raises(InvalidCatalogDataError) as excinfo:
        material_from_payload({"id": "x", "displayName": "X", "unitCost": -1})
    assert excinfo.value.field == "unitCost"


def test_payload_round_trip_keeps_discriminant():
    material = material_from_payload(material_to_payload(solder_variants()))
    assert material.has_variants
    assert material.variant_for("gold_14k").unit_cost == 12.0
