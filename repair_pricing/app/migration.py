"""Offline analysis of legacy materials that could be merged into variants.

Legacy records such as "14k Yellow Gold Solder" and "Sterling Silver Solder"
describe the same item in different metals. The analyzer clusters them by a
metal-free base key, proposes one variant-form record per cluster and lists
the records that would be archived. It never writes; applying a proposal is
:meth:`repair_pricing.app.services.PricingService.apply_migration`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .domain import LegacyMaterial, Material, MaterialVariant, VariantMaterial, material_to_payload
from .metal_keys import metal_family, metal_key

_FINENESS_TOKENS = re.compile(r"\b(10k|14k|18k|22k|24k|sterling|fine|925|950)\b", re.IGNORECASE)
_METAL_WORDS = re.compile(r"\b(gold|silver|platinum|palladium|yellow|white|rose)\b", re.IGNORECASE)

PRIORITY_CATEGORIES = ("solder", "wire", "findings")
HIGH_PRIORITY = 10
MEDIUM_PRIORITY = 6
MANY_METALS = 3


def base_name(display_name: str) -> str:
    stripped = _METAL_WORDS.sub("", _FINENESS_TOKENS.sub("", display_name or ""))
    return " ".join(stripped.split())


def base_key(material: Material) -> str:
    return f"{base_name(material.display_name)}_{material.category}".lower()


def completeness_score(material: LegacyMaterial) -> int:
    score = 0
    if material.description:
        score += 2
    if material.sku:
        score += 1
    if material.stuller_product_id:
        score += 1
    if material.compatible_metals:
        score += 1
    if material.unit_cost > 0:
        score += 2
    if material.supplier and material.supplier != "Other":
        score += 1
    return score


def _variant_from_member(member: LegacyMaterial) -> MaterialVariant:
    if metal_key(member.metal_type, member.karat) is None:
        metal_type, karat = "other", "na"
    else:
        metal_type, karat = member.metal_type, member.karat
    return MaterialVariant(
        metal_type=metal_type,
        karat=karat,
        unit_cost=member.unit_cost,
        sku=member.sku,
        stuller_product_id=member.stuller_product_id,
        compatible_metals=member.compatible_metals,
        is_active=member.is_active,
        notes=f"Migrated from: {member.display_name}",
    )


@dataclass
class MigrationCandidate:
    base_key: str
    base_name: str
    category: str
    members: List[LegacyMaterial]
    metal_families: List[str] = field(default_factory=list)
    donor_id: str = ""
    proposed: Optional[VariantMaterial] = None
    materials_to_archive: List[str] = field(default_factory=list)
    duplicate_keys: List[str] = field(default_factory=list)
    risks: List[str] = field(default_factory=list)
    priority: str = "LOW"

    @property
    def material_count(self) -> int:
        return len(self.members)

    @property
    def potential_savings(self) -> int:
        return len(self.members) - 1

    @property
    def higher_risk(self) -> bool:
        return bool(self.risks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseKey": self.base_key,
            "baseName": self.base_name,
            "category": self.category,
            "materialCount": self.material_count,
            "materialIds": [m.id for m in self.members],
            "metalTypes": list(self.metal_families),
            "potentialSavings": self.potential_savings,
            "priority": self.priority,
            "strategy": {
                "action": "merge_to_variants",
                "confidence": "medium" if self.higher_risk else "high",
                "baseMaterialId": self.donor_id,
                "proposedMaterial": material_to_payload(self.proposed) if self.proposed else None,
                "materialsToArchive": list(self.materials_to_archive),
                "duplicateMetalKeys": list(self.duplicate_keys),
                "risks": list(self.risks),
                "benefits": [
                    f"Reduce from {self.material_count} to 1 material record",
                    "Simplified process creation",
                    "Easier price management",
                ],
            },
        }


@dataclass
class MigrationReport:
    total_materials: int
    already_variants: int
    candidates: List[MigrationCandidate]
    recommendation: str
    risk_assessment: Dict[str, List[str]]
    timeline: List[Dict[str, Any]]

    @property
    def potential_savings(self) -> int:
        return sum(c.potential_savings for c in self.candidates)

    def candidate(self, key: str) -> Optional[MigrationCandidate]:
        return next((c for c in self.candidates if c.base_key == key), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "totalMaterials": self.total_materials,
                "alreadyVariants": self.already_variants,
                "candidatesCount": len(self.candidates),
                "potentialSavings": self.potential_savings,
                "migrationRecommendation": self.recommendation,
            },
            "candidateGroups": [c.to_dict() for c in self.candidates],
            "riskAssessment": {k: list(v) for k, v in self.risk_assessment.items()},
            "timeline": self.timeline,
        }


class MigrationAnalyzer:
    def analyze(self, materials: Iterable[Material]) -> MigrationReport:
        active = [m for m in materials if not m.is_archived]
        groups: Dict[str, List[LegacyMaterial]] = {}
        already_variants = 0
        for material in active:
            if material.has_variants:
                already_variants += 1
                continue
            groups.setdefault(base_key(material), []).append(material)

        candidates = [
            self.build_candidate(key, members) for key, members in groups.items() if len(members) > 1
        ]
        candidates.sort(key=lambda c: c.potential_savings, reverse=True)

        savings = sum(c.potential_savings for c in candidates)
        return MigrationReport(
            total_materials=len(active),
            already_variants=already_variants,
            candidates=candidates,
            recommendation=self.recommendation(len(candidates), savings),
            risk_assessment=self.assess_risks(candidates, savings),
            timeline=self.timeline(candidates),
        )

    def build_candidate(self, key: str, members: List[LegacyMaterial]) -> MigrationCandidate:
        donor = members[0]
        donor_score = completeness_score(donor)
        for member in members[1:]:
            score = completeness_score(member)
            if score > donor_score:
                donor, donor_score = member, score

        variants: List[MaterialVariant] = []
        seen: Dict[str, str] = {}
        duplicates: List[str] = []
        families: List[str] = []
        for member in members:
            variant = _variant_from_member(member)
            family = metal_family(variant.metal_type) or "other"
            if family not in families:
                families.append(family)
            if variant.key in seen:
                duplicates.append(f"{variant.key}: {member.id} duplicates {seen[variant.key]}")
                continue
            seen[variant.key] = member.id
            variants.append(variant)

        risks: List[str] = []
        if any(m.unit_cost == 0 for m in members):
            risks.append("Some materials have zero cost - review pricing")
        if len(families) > MANY_METALS:
            risks.append("Many metal types - ensure compatibility")
        if duplicates:
            risks.append("Duplicate metal keys - only the first member of each is kept")

        name = base_name(donor.display_name) or donor.display_name
        proposed = VariantMaterial(
            id=donor.id,
            display_name=name,
            category=donor.category,
            variants=tuple(variants),
            description=donor.description,
            supplier=donor.supplier,
            is_active=donor.is_active,
        )
        candidate = MigrationCandidate(
            base_key=key,
            base_name=name,
            category=donor.category,
            members=list(members),
            metal_families=families,
            donor_id=donor.id,
            proposed=proposed,
            materials_to_archive=[m.id for m in members if m.id != donor.id],
            duplicate_keys=duplicates,
            risks=risks,
        )
        candidate.priority = self.priority(candidate)
        return candidate

    @staticmethod
    def priority(candidate: MigrationCandidate) -> str:
        score = candidate.material_count * 2
        if candidate.category.lower() in PRIORITY_CATEGORIES:
            score += 5
        score += len(candidate.metal_families)
        if score >= HIGH_PRIORITY:
            return "HIGH"
        if score >= MEDIUM_PRIORITY:
            return "MEDIUM"
        return "LOW"

    @staticmethod
    def recommendation(candidate_count: int, savings: int) -> str:
        if candidate_count == 0:
            return "No migration needed - materials are already optimized"
        if savings > 20:
            return "Highly recommended - significant optimization potential"
        if savings > 5:
            return "Recommended - moderate optimization potential"
        return "Optional - minor optimization potential"

    @staticmethod
    def assess_risks(candidates: List[MigrationCandidate], savings: int) -> Dict[str, List[str]]:
        risks: Dict[str, List[str]] = {"dataIntegrity": [], "processImpact": [], "timeline": []}
        if len(candidates) > 10:
            risks["timeline"].append("Large migration scope - plan phased approach")
        if savings > 50:
            risks["dataIntegrity"].append("Major data restructuring - extensive testing required")
        if any(c.higher_risk for c in candidates):
            risks["dataIntegrity"].append("Some candidate groups need pricing review before merging")
        risks["processImpact"].append("Existing processes may need updates")
        risks["processImpact"].append("User training on new variant system required")
        return risks

    @staticmethod
    def timeline(candidates: List[MigrationCandidate]) -> List[Dict[str, Any]]:
        if not candidates:
            return []
        phases: List[Tuple[str, str, Tuple[str, ...]]] = [
            ("High Priority Materials", "Migrate solder and wire materials (highest impact)",
             ("solder", "wire")),
            ("Medium Priority Materials", "Migrate findings and sheet materials",
             ("findings", "sheet")),
        ]
        scheduled: set = set()
        out: List[Dict[str, Any]] = []
        for number, (name, description, categories) in enumerate(phases, start=1):
            picked = [c.base_key for c in candidates if c.category.lower() in categories][:5]
            scheduled.update(picked)
            out.append(
                {"phase": number, "name": name, "duration": "1 week",
                 "description": description, "candidates": picked}
            )
        out.append(
            {
                "phase": len(phases) + 1,
                "name": "Remaining Materials",
                "duration": "1 week",
                "description": "Migrate remaining candidate materials",
                "candidates": [c.base_key for c in candidates if c.base_key not in scheduled],
            }
        )
        return out
