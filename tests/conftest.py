from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from repair_pricing.app.domain import AdminSettings
from repair_pricing.app.models import Base


@pytest.fixture()
def session() -> Session:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, future=True)
    with SessionLocal() as session:
        yield session


@pytest.fixture()
def settings() -> AdminSettings:
    return AdminSettings(
        wage=60.0,
        material_markup=1.5,
        administrative_fee=0.1,
        business_fee=0.15,
        consumables_fee=0.05,
        metal_complexity_multipliers={"gold": 1.0},
    )


def strip_calculated_at(value):
    if isinstance(value, dict):
        return {k: strip_calculated_at(v) for k, v in value.items() if k != "calculatedAt"}
    if isinstance(value, list):
        return [strip_calculated_at(v) for v in value]
    return value
