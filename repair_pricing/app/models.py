from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .domain import utc_now


def new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class AdminSettingsRecord(Base):
    __tablename__ = "admin_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    wage: Mapped[float] = mapped_column(Float)
    material_markup: Mapped[float] = mapped_column(Float)
    administrative_fee: Mapped[float] = mapped_column(Float)
    business_fee: Mapped[float] = mapped_column(Float)
    consumables_fee: Mapped[float] = mapped_column(Float)
    metal_complexity_multipliers: Mapped[dict] = mapped_column(JSON, default=dict)
    version: Mapped[int] = mapped_column(Integer, default=1)
    updated_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class MaterialRecord(Base):
    __tablename__ = "materials"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    display_name: Mapped[str] = mapped_column(String(200))
    category: Mapped[str] = mapped_column(String(50), default="other", index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    supplier: Mapped[str] = mapped_column(String(200), default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    has_variants: Mapped[bool] = mapped_column(Boolean, default=False)
    unit_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    sku: Mapped[str] = mapped_column(String(100), default="")
    metal_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    karat: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    stuller_product_id: Mapped[str] = mapped_column(String(100), default="")
    compatible_metals: Mapped[list] = mapped_column(JSON, default=list)
    variants: Mapped[list] = mapped_column(JSON, default=list)
    pricing: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class ProcessRecord(Base):
    __tablename__ = "processes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    display_name: Mapped[str] = mapped_column(String(200))
    category: Mapped[str] = mapped_column(String(50), default="other", index=True)
    labor_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    skill_level: Mapped[str] = mapped_column(String(20), default="standard")
    risk_level: Mapped[str] = mapped_column(String(20), default="low")
    equipment_cost: Mapped[float] = mapped_column(Float, default=0.0)
    metal_complexity: Mapped[dict] = mapped_column(JSON, default=dict)
    materials: Mapped[list] = mapped_column(JSON, default=list)
    pricing: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class TaskRecord(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200))
    category: Mapped[str] = mapped_column(String(50), default="other", index=True)
    metal_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    karat: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    requires_metal_type: Mapped[bool] = mapped_column(Boolean, default=False)
    processes: Mapped[list] = mapped_column(JSON, default=list)
    materials: Mapped[list] = mapped_column(JSON, default=list)
    service: Mapped[dict] = mapped_column(JSON, default=dict)
    pricing: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event: Mapped[str] = mapped_column(String(100))
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
