from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from .config import DefaultPricing
from .domain import AdminSettings, utc_now
from .errors import InvalidSettingsError
from .metal_keys import metal_family
from .models import AdminSettingsRecord
from .repository import store_available

logger = logging.getLogger(__name__)

SETTINGS_ID = 1


class SettingsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    wage: float = Field(..., ge=0)
    material_markup: float = Field(..., alias="materialMarkup", ge=1)
    administrative_fee: float = Field(..., alias="administrativeFee", ge=0, le=1)
    business_fee: float = Field(..., alias="businessFee", ge=0, le=1)
    consumables_fee: float = Field(..., alias="consumablesFee", ge=0, le=1)
    metal_complexity_multipliers: Dict[str, float] = Field(
        default_factory=dict, alias="metalComplexityMultipliers"
    )

    @field_validator("metal_complexity_multipliers")
    @classmethod
    def _check_multipliers(cls, value: Dict[str, float]) -> Dict[str, float]:
        out: Dict[str, float] = {}
        for name, multiplier in value.items():
            family = metal_family(name)
            if family is None:
                raise ValueError(f"unknown metal family: {name}")
            if multiplier <= 0:
                raise ValueError(f"multiplier for {name} must be greater than 0")
            out[family] = float(multiplier)
        return out


_FIELD_ALIASES = {
    "material_markup": "materialMarkup",
    "administrative_fee": "administrativeFee",
    "business_fee": "businessFee",
    "consumables_fee": "consumablesFee",
    "metal_complexity_multipliers": "metalComplexityMultipliers",
}


def validate_settings_payload(payload: Mapping[str, Any]) -> SettingsPayload:
    """Validate a complete settings payload, raising :class:`InvalidSettingsError`."""
    try:
        return SettingsPayload.model_validate(dict(payload))
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = first.get("loc") or ("settings",)
        field = _FIELD_ALIASES.get(str(loc[0]), str(loc[0]))
        raise InvalidSettingsError(f"{field}: {first.get('msg')}", field) from None


def _snapshot(row: AdminSettingsRecord) -> AdminSettings:
    return AdminSettings(
        wage=row.wage,
        material_markup=row.material_markup,
        administrative_fee=row.administrative_fee,
        business_fee=row.business_fee,
        consumables_fee=row.consumables_fee,
        metal_complexity_multipliers=dict(row.metal_complexity_multipliers or {}),
        version=row.version,
        updated_at=row.updated_at,
        updated_by=row.updated_by,
    )


class AdminSettingsStore:
    """Holds the settings singleton and hands out frozen snapshots."""

    def __init__(self, session: Session, defaults: DefaultPricing | None = None):
        self.session = session
        self.defaults = defaults or DefaultPricing()

    def _row(self) -> Optional[AdminSettingsRecord]:
        with store_available():
            return self.session.get(AdminSettingsRecord, SETTINGS_ID)

    def ensure_bootstrap(self) -> AdminSettingsRecord:
        row = self._row()
        if row is None:
            values = validate_settings_payload(self.defaults.as_payload())
            row = AdminSettingsRecord(
                id=SETTINGS_ID,
                version=1,
                updated_by="bootstrap",
                updated_at=utc_now(),
                **values.model_dump(),
            )
            with store_available():
                self.session.add(row)
                self.session.flush()
            logger.info("Admin settings bootstrapped from configuration defaults")
        return row

    def snapshot(self) -> AdminSettings:
        return _snapshot(self.ensure_bootstrap())

    def merged_payload(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        current = self.snapshot().to_dict()
        merged = {k: current[k] for k in (
            "wage", "materialMarkup", "administrativeFee", "businessFee",
            "consumablesFee", "metalComplexityMultipliers",
        )}
        merged.update({k: v for k, v in dict(changes).items() if v is not None})
        return merged

    def preview(self, changes: Mapping[str, Any]) -> AdminSettings:
        """Validated snapshot of the merged settings; nothing is written."""
        current = self.snapshot()
        values = validate_settings_payload(self.merged_payload(changes))
        return AdminSettings(
            version=current.version + 1,
            updated_at=utc_now(),
            **values.model_dump(),
        )

    def update(self, changes: Mapping[str, Any], updated_by: str | None = None) -> AdminSettings:
        values = validate_settings_payload(self.merged_payload(changes))
        row = self.ensure_bootstrap()
        with store_available():
            for name, value in values.model_dump().items():
                setattr(row, name, value)
            row.version = (row.version or 0) + 1
            row.updated_at = utc_now()
            row.updated_by = updated_by
            self.session.flush()
        logger.info(f"Admin settings updated to version {row.version} by {updated_by or 'unknown'}")
        return _snapshot(row)
