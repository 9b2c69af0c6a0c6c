from __future__ import annotations

from repair_pricing.app.domain import LegacyMaterial, MaterialVariant, VariantMaterial
from repair_pricing.app.migration import MigrationAnalyzer, base_key, completeness_score


def legacy(material_id, name, category="solder", metal_type=None, karat=None, unit_cost=5.0, **kwargs):
    return LegacyMaterial(
        id=material_id,
        display_name=name,
        category=category,
        unit_cost=unit_cost,
        metal_type=metal_type,
        karat=karat,
        **kwargs,
    )


def solder_catalog():
    return [
        legacy("s1", "Sterling Silver Solder", metal_type="silver", karat="sterling", unit_cost=4.0),
        legacy("s2", "14k Yellow Gold Solder", metal_type="gold", karat="14k", unit_cost=30.0,
               description="Medium flow", sku="SOL-14Y"),
        legacy("s3", "18K Gold Solder", metal_type="gold", karat="18k", unit_cost=40.0),
        legacy("w1", "Round Wire", category="wire", unit_cost=1.0),
        VariantMaterial(
            id="v1",
            display_name="Jump ring",
            category="findings",
            variants=(MaterialVariant(metal_type="gold", karat="14k", unit_cost=1.0),),
        ),
    ]


def test_base_key_strips_metal_tokens():
    assert base_key(legacy("a", "14k Yellow Gold Solder")) == "solder_solder"
    assert base_key(legacy("b", "Sterling  Silver   Solder")) == "solder_solder"
    assert base_key(legacy("c", "Platinum 950 Solder")) == "solder_solder"
    assert base_key(legacy("d", "Solder", category="wire")) == "solder_wire"


def test_clusters_and_donor_selection():
    report = MigrationAnalyzer().analyze(solder_catalog())
    assert report.total_materials == 5
    assert report.already_variants == 1
    assert len(report.candidates) == 1

    candidate = report.candidates[0]
    assert candidate.base_key == "solder_solder"
    assert candidate.base_name == "Solder"
    assert candidate.donor_id == "s2"
    assert candidate.materials_to_archive == ["s1", "s3"]
    assert candidate.potential_savings == 2
    assert sorted(v.key for v in candidate.proposed.variants) == ["gold_14k", "gold_18k", "silver_sterling"]
    assert candidate.proposed.id == "s2"
    assert candidate.proposed.description == "Medium flow"


def test_score_ties_keep_first_member():
    first = legacy("a", "Gold Wire", category="wire", metal_type="gold", karat="14k")
    second = legacy("b", "Silver Wire", category="wire", metal_type="silver", karat="sterling")
    assert completeness_score(first) == completeness_score(second)
    report = MigrationAnalyzer().analyze([first, second])
    assert report.candidates[0].donor_id == "a"


def test_supplier_other_does_not_score():
    assert completeness_score(legacy("a", "X", supplier="Other")) == completeness_score(legacy("b", "Y"))
    assert completeness_score(legacy("c", "Z", supplier="Stuller")) == completeness_score(legacy("d", "W")) + 1


def test_unknown_metal_becomes_other_and_duplicates_are_flagged():
    members = [
        legacy("a", "14k Yellow Gold Wire", category="wire", metal_type="gold", karat="14k"),
        legacy("b", "14k White Gold Wire", category="wire", metal_type="white gold", karat="14K"),
        legacy("c", "Wire", category="wire", metal_type="unobtanium", karat="9k"),
    ]
    candidate = MigrationAnalyzer().analyze(members).candidates[0]
    assert [v.key for v in candidate.proposed.variants] == ["gold_14k", "other_na"]
    assert candidate.duplicate_keys and candidate.duplicate_keys[0].startswith("gold_14k: b")
    assert candidate.higher_risk


def test_risk_flags():
    zero_cost = [
        legacy("a", "Gold Sheet", category="sheet", metal_type="gold", karat="14k", unit_cost=0.0),
        legacy("b", "Silver Sheet", category="sheet", metal_type="silver", karat="sterling"),
    ]
    candidate = MigrationAnalyzer().analyze(zero_cost).candidates[0]
    assert any("zero cost" in risk for risk in candidate.risks)

    many_metals = [
        legacy("g", "Gold Tubing", category="tubing", metal_type="gold", karat="14k"),
        legacy("s", "Silver Tubing", category="tubing", metal_type="silver", karat="sterling"),
        legacy("p", "Platinum Tubing", category="tubing", metal_type="platinum", karat="950"),
        legacy("d", "Palladium Tubing", category="tubing", metal_type="palladium", karat="950"),
    ]
    candidate = MigrationAnalyzer().analyze(many_metals).candidates[0]
    assert candidate.risks == ["Many metal types - ensure compatibility"]
    assert candidate.to_dict()["strategy"]["confidence"] == "medium"


def test_priority_levels():
    analyzer = MigrationAnalyzer()
    solder = analyzer.analyze(solder_catalog()[:3]).candidates[0]
    assert solder.priority == "HIGH"

    sheet = analyzer.analyze(
        [legacy(f"x{i}", f"Gold Sheet {i}", category="sheet", metal_type="gold", karat="14k")
         for i in range(3)]
    ).candidates
    assert sheet == []

    plates = analyzer.analyze(
        [legacy(f"x{i}", "Gold Plate", category="sheet", metal_type="gold", karat=k)
         for i, k in enumerate(("10k", "14k", "18k"))]
    ).candidates[0]
    assert plates.priority == "MEDIUM"

    tools = analyzer.analyze(
        [legacy("t1", "Gold Burr", category="tools"), legacy("t2", "Silver Burr", category="tools")]
    ).candidates[0]
    assert tools.priority == "LOW"


def test_archived_materials_are_ignored():
    archived = legacy("z", "Gold Solder", metal_type="gold", karat="10k", is_archived=True)
    report = MigrationAnalyzer().analyze(solder_catalog() + [archived])
    assert report.total_materials == 5
    assert "z" not in [m.id for m in report.candidates[0].members]


def test_report_summary_and_timeline():
    report = MigrationAnalyzer().analyze(solder_catalog())
    payload = report.to_dict()
    assert payload["summary"]["candidatesCount"] == 1
    assert payload["summary"]["potentialSavings"] == 2
    assert payload["summary"]["migrationRecommendation"] == "Optional - minor optimization potential"
    assert [phase["phase"] for phase in payload["timeline"]] == [1, 2, 3]
    assert payload["timeline"][0]["candidates"] == ["solder_solder"]
    assert payload["timeline"][2]["candidates"] == []


def test_empty_catalog_needs_no_migration():
    report = MigrationAnalyzer().analyze([])
    assert report.recommendation == "No migration needed - materials are already optimized"
    assert report.timeline == []
