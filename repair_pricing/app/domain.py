"""Catalog value types shared by the calculators, the cascade and the API.

Materials are a tagged union: :class:`LegacyMaterial` (one scalar cost,
``has_variants`` is ``False``) or :class:`VariantMaterial` (metal-keyed
costs, ``has_variants`` is ``True``). Code that prices a material switches
on ``has_variants`` and nothing else.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any, Dict, Literal, Mapping, Optional, Tuple, Union

from .errors import InvalidCatalogDataError
from .metal_keys import metal_family, metal_key

SKILL_LEVELS: Tuple[str, ...] = ("basic", "standard", "advanced", "expert")
RISK_LEVELS: Tuple[str, ...] = ("low", "medium", "high", "critical")

CENT = Decimal("0.01")


def round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime | None) -> str | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _frozen_map(values: Mapping[str, float] | None) -> Mapping[str, float]:
    return MappingProxyType({str(k): float(v) for k, v in (values or {}).items()})


# ---------------------------------------------------------------------
# Admin settings snapshot
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class AdminSettings:
    wage: float
    material_markup: float
    administrative_fee: float
    business_fee: float
    consumables_fee: float
    metal_complexity_multipliers: Mapping[str, float] = field(default_factory=dict)
    version: int = 1
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "metal_complexity_multipliers", _frozen_map(self.metal_complexity_multipliers)
        )

    @property
    def labor_rate_per_minute(self) -> float:
        return self.wage / 60.0

    @property
    def business_multiplier(self) -> float:
        return 1.0 + self.administrative_fee + self.business_fee + self.consumables_fee

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wage": self.wage,
            "materialMarkup": self.material_markup,
            "administrativeFee": self.administrative_fee,
            "businessFee": self.business_fee,
            "consumablesFee": self.consumables_fee,
            "metalComplexityMultipliers": dict(self.metal_complexity_multipliers),
            "businessMultiplier": round(self.business_multiplier, 4),
            "version": self.version,
            "updatedAt": isoformat(self.updated_at),
            "updatedBy": self.updated_by,
        }


# ---------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class MaterialVariant:
    metal_type: str
    karat: str
    unit_cost: float
    sku: str = ""
    stuller_product_id: str = ""
    compatible_metals: Tuple[str, ...] = ()
    is_active: bool = True
    notes: str = ""

    @property
    def key(self) -> Optional[str]:
        return metal_key(self.metal_type, self.karat)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metalType": self.metal_type,
            "karat": self.karat,
            "metalKey": self.key,
            "unitCost": self.unit_cost,
            "sku": self.sku,
            "stullerProductId": self.stuller_product_id,
            "compatibleMetals": list(self.compatible_metals),
            "isActive": self.is_active,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class LegacyMaterial:
    id: str
    display_name: str
    category: str
    unit_cost: float
    sku: str = ""
    metal_type: Optional[str] = None
    karat: Optional[str] = None
    stuller_product_id: str = ""
    compatible_metals: Tuple[str, ...] = ()
    description: str = ""
    supplier: str = ""
    is_active: bool = True
    is_archived: bool = False
    has_variants: Literal[False] = field(default=False, init=False)


@dataclass(frozen=True)
class VariantMaterial:
    id: str
    display_name: str
    category: str
    variants: Tuple[MaterialVariant, ...]
    description: str = ""
    supplier: str = ""
    is_active: bool = True
    is_archived: bool = False
    has_variants: Literal[True] = field(default=True, init=False)

    def __post_init__(self) -> None:
        seen: Dict[str, MaterialVariant] = {}
        for variant in self.variants:
            key = variant.key
            if key is None:
                raise InvalidCatalogDataError(
                    f"Unrecognised metal {variant.metal_type!r}/{variant.karat!r} on material {self.id}",
                    "variants",
                )
            if key in seen:
                raise InvalidCatalogDataError(
                    f"Duplicate variant {key} on material {self.id}", "variants"
                )
            seen[key] = variant

    def variant_for(self, key: Optional[str]) -> Optional[MaterialVariant]:
        if key is None:
            return None
        return next((v for v in self.variants if v.key == key), None)


Material = Union[LegacyMaterial, VariantMaterial]


# ---------------------------------------------------------------------
# Processes and tasks
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class MaterialUsage:
    material_id: str
    quantity: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {"materialId": self.material_id, "quantity": self.quantity}


@dataclass(frozen=True)
class ProcessUsage:
    process_id: str
    quantity: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {"processId": self.process_id, "quantity": self.quantity}


@dataclass(frozen=True)
class Process:
    id: str
    display_name: str
    category: str
    labor_minutes: float
    skill_level: str = "standard"
    risk_level: str = "low"
    equipment_cost: float = 0.0
    metal_complexity: Mapping[str, float] = field(default_factory=dict)
    materials: Tuple[MaterialUsage, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "metal_complexity", _frozen_map(self.metal_complexity))

    def complexity_for(self, metal_type: Optional[str]) -> float:
        family = metal_family(metal_type)
        if family is None:
            return 1.0
        return float(self.metal_complexity.get(family, 1.0))


@dataclass(frozen=True)
class ServiceModifiers:
    rush_multiplier: float = 1.0
    estimated_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"rushMultiplier": self.rush_multiplier, "estimatedDays": self.estimated_days}


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    category: str
    metal_type: Optional[str] = None
    karat: Optional[str] = None
    requires_metal_type: bool = False
    processes: Tuple[ProcessUsage, ...] = ()
    materials: Tuple[MaterialUsage, ...] = ()
    service: ServiceModifiers = field(default_factory=ServiceModifiers)

    @property
    def metal_key(self) -> Optional[str]:
        return metal_key(self.metal_type, self.karat)


# ---------------------------------------------------------------------
# Payload parsing (camelCase JSON <-> value types)
# ---------------------------------------------------------------------

def _number(payload: Mapping[str, Any], name: str, default: float | None = None,
            minimum: float | None = 0.0) -> float:
    raw = payload.get(name, default)
    if raw is None or isinstance(raw, bool):
        raise InvalidCatalogDataError(f"{name} must be a number", name)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidCatalogDataError(f"{name} must be a number", name) from None
    if minimum is not None and value < minimum:
        raise InvalidCatalogDataError(f"{name} must be at least {minimum:g}", name)
    return value


def _text(payload: Mapping[str, Any], name: str, required: bool = False) -> str:
    value = payload.get(name)
    if value is None or value == "":
        if required:
            raise InvalidCatalogDataError(f"missing field: {name}", name)
        return ""
    return str(value).strip()


def _optional_text(payload: Mapping[str, Any], name: str) -> Optional[str]:
    value = _text(payload, name)
    return value or None


def _multipliers(payload: Mapping[str, Any], name: str) -> Dict[str, float]:
    raw = payload.get(name) or {}
    if not isinstance(raw, Mapping):
        raise InvalidCatalogDataError(f"{name} must be an object", name)
    out: Dict[str, float] = {}
    for metal, multiplier in raw.items():
        family = metal_family(metal)
        if family is None:
            raise InvalidCatalogDataError(f"{name}: unknown metal family {metal!r}", name)
        if isinstance(multiplier, bool) or not isinstance(multiplier, (int, float)) or multiplier <= 0:
            raise InvalidCatalogDataError(
                f"{name}: multiplier for {metal} must be a number greater than 0", name
            )
        out[family] = float(multiplier)
    return out


def _variant_from_payload(raw: Mapping[str, Any]) -> MaterialVariant:
    if not isinstance(raw, Mapping):
        raise InvalidCatalogDataError("variants must be objects", "variants")
    return MaterialVariant(
        metal_type=_text(raw, "metalType", required=True),
        karat=_text(raw, "karat", required=True),
        unit_cost=_number(raw, "unitCost"),
        sku=_text(raw, "sku"),
        stuller_product_id=_text(raw, "stullerProductId"),
        compatible_metals=tuple(raw.get("compatibleMetals") or ()),
        is_active=bool(raw.get("isActive", True)),
        notes=_text(raw, "notes"),
    )


def material_from_payload(payload: Mapping[str, Any], material_id: str | None = None) -> Material:
    material_id = material_id or _text(payload, "id", required=True)
    common = dict(
        id=material_id,
        display_name=_text(payload, "displayName", required=True),
        category=_text(payload, "category") or "other",
        description=_text(payload, "description"),
        supplier=_text(payload, "supplier"),
        is_active=bool(payload.get("isActive", True)),
        is_archived=bool(payload.get("isArchived", False)),
    )
    if payload.get("hasVariants"):
        if payload.get("unitCost") is not None:
            raise InvalidCatalogDataError(
                "variant materials cannot also carry a scalar unitCost", "unitCost"
            )
        variants = payload.get("variants")
        if not isinstance(variants, list) or not variants:
            raise InvalidCatalogDataError("variant materials need at least one variant", "variants")
        return VariantMaterial(variants=tuple(_variant_from_payload(v) for v in variants), **common)
    if payload.get("variants"):
        raise InvalidCatalogDataError("legacy materials cannot carry variants", "variants")
    return LegacyMaterial(
        unit_cost=_number(payload, "unitCost"),
        sku=_text(payload, "sku"),
        metal_type=_optional_text(payload, "metalType"),
        karat=_optional_text(payload, "karat"),
        stuller_product_id=_text(payload, "stullerProductId"),
        compatible_metals=tuple(payload.get("compatibleMetals") or ()),
        **common,
    )


def material_to_payload(material: Material) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": material.id,
        "displayName": material.display_name,
        "category": material.category,
        "description": material.description,
        "supplier": material.supplier,
        "isActive": material.is_active,
        "isArchived": material.is_archived,
        "hasVariants": material.has_variants,
    }
    if material.has_variants:
        payload["variants"] = [v.to_dict() for v in material.variants]
    else:
        payload.update(
            {
                "unitCost": material.unit_cost,
                "sku": material.sku,
                "metalType": material.metal_type,
                "karat": material.karat,
                "stullerProductId": material.stuller_product_id,
                "compatibleMetals": list(material.compatible_metals),
            }
        )
    return payload


def _usages(payload: Mapping[str, Any], name: str, id_field: str) -> list[Tuple[str, float]]:
    raw = payload.get(name) or []
    if not isinstance(raw, list):
        raise InvalidCatalogDataError(f"{name} must be a list", name)
    out = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise InvalidCatalogDataError(f"{name} entries must be objects", name)
        ref = _text(entry, id_field, required=True)
        quantity = _number(entry, "quantity", default=1.0)
        if quantity <= 0:
            raise InvalidCatalogDataError(f"{name} quantity must be positive", name)
        out.append((ref, quantity))
    return out


def process_from_payload(payload: Mapping[str, Any], process_id: str | None = None) -> Process:
    skill_level = _text(payload, "skillLevel") or "standard"
    if skill_level not in SKILL_LEVELS:
        raise InvalidCatalogDataError(f"invalid enum for skillLevel: {skill_level}", "skillLevel")
    risk_level = _text(payload, "riskLevel") or "low"
    if risk_level not in RISK_LEVELS:
        raise InvalidCatalogDataError(f"invalid enum for riskLevel: {risk_level}", "riskLevel")
    return Process(
        id=process_id or _text(payload, "id", required=True),
        display_name=_text(payload, "displayName", required=True),
        category=_text(payload, "category") or "other",
        labor_minutes=_number(payload, "laborMinutes", default=0.0),
        skill_level=skill_level,
        risk_level=risk_level,
        equipment_cost=_number(payload, "equipmentCost", default=0.0),
        metal_complexity=_multipliers(payload, "metalComplexity"),
        materials=tuple(
            MaterialUsage(ref, qty) for ref, qty in _usages(payload, "materials", "materialId")
        ),
    )


def process_to_payload(process: Process) -> Dict[str, Any]:
    return {
        "id": process.id,
        "displayName": process.display_name,
        "category": process.category,
        "laborMinutes": process.labor_minutes,
        "skillLevel": process.skill_level,
        "riskLevel": process.risk_level,
        "equipmentCost": process.equipment_cost,
        "metalComplexity": dict(process.metal_complexity),
        "materials": [usage.to_dict() for usage in process.materials],
    }


def _estimated_days(service: Mapping[str, Any]) -> Optional[int]:
    raw = service.get("estimatedDays")
    if raw is None:
        return None
    try:
        days = int(raw) if not isinstance(raw, bool) else None
    except (TypeError, ValueError):
        days = None
    if days is None or days < 0:
        raise InvalidCatalogDataError(
            "estimatedDays must be a non-negative whole number", "service.estimatedDays"
        )
    return days


def task_from_payload(payload: Mapping[str, Any], task_id: str | None = None) -> Task:
    service_raw = payload.get("service") or {}
    if not isinstance(service_raw, Mapping):
        raise InvalidCatalogDataError("service must be an object", "service")
    rush = _number(service_raw, "rushMultiplier", default=1.0)
    if rush < 1.0:
        raise InvalidCatalogDataError("rushMultiplier must be at least 1", "service.rushMultiplier")
    return Task(
        id=task_id or _text(payload, "id", required=True),
        title=_text(payload, "title", required=True),
        category=_text(payload, "category") or "other",
        metal_type=_optional_text(payload, "metalType"),
        karat=_optional_text(payload, "karat"),
        requires_metal_type=bool(payload.get("requiresMetalType", False)),
        processes=tuple(
            ProcessUsage(ref, qty) for ref, qty in _usages(payload, "processes", "processId")
        ),
        materials=tuple(
            MaterialUsage(ref, qty) for ref, qty in _usages(payload, "materials", "materialId")
        ),
        service=ServiceModifiers(
            rush_multiplier=rush,
            estimated_days=_estimated_days(service_raw),
        ),
    )


def task_to_payload(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "category": task.category,
        "metalType": task.metal_type,
        "karat": task.karat,
        "metalKey": task.metal_key,
        "requiresMetalType": task.requires_metal_type,
        "processes": [usage.to_dict() for usage in task.processes],
        "materials": [usage.to_dict() for usage in task.materials],
        "service": task.service.to_dict(),
    }
