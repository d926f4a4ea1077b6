from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class UTCDateTime(TypeDecorator):
    # Store and return timezone-aware UTC datetimes on every backend (SQLite drops tzinfo).
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 4, asdecimal=True)


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    # Only the SHA-256 hash of the tenant API key is stored.
    api_key_hash: Mapped[str] = mapped_column(String, unique=True, index=True)
    api_key_prefix: Mapped[str] = mapped_column(String)
    plan: Mapped[str] = mapped_column(String, default="free")
    enabled_services: Mapped[list[str]] = mapped_column(JSONType, default=lambda: ["Standard"])
    onboarding_status: Mapped[str] = mapped_column(String, default="pending")
    # Tenants are soft-deactivated, never deleted.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now, onupdate=_utc_now)


class TenantUser(Base):
    __tablename__ = "tenant_users"
    __table_args__ = (Index("ix_tenant_users_tenant_role", "tenant_id", "role"),)

    # Maps an identity-provider subject onto exactly one tenant.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    external_subject: Mapped[str] = mapped_column(String, unique=True, index=True)
    role: Mapped[str] = mapped_column(String, default="customer")
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="active")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)


class Shipment(Base):
    __tablename__ = "shipments"
    __table_args__ = (
        UniqueConstraint("tenant_id", "tracking_number", name="uq_shipments_tenant_tracking"),
        Index("ix_shipments_tenant_status", "tenant_id", "status"),
        Index("ix_shipments_tracking_number", "tracking_number"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    tracking_number: Mapped[str] = mapped_column(String)
    sender: Mapped[dict[str, Any]] = mapped_column(JSONType)
    receiver: Mapped[dict[str, Any]] = mapped_column(JSONType)
    parcel: Mapped[dict[str, Any]] = mapped_column(JSONType)
    service_type: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="Created")
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_delivery: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    # Compare-and-swap counter for status transitions.
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)


class ShipmentEvent(Base):
    __tablename__ = "shipment_events"
    __table_args__ = (
        Index("ix_shipment_events_tenant_tracking", "tenant_id", "tracking_number"),
    )

    # Append-only; one row per accepted transition.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    shipment_id: Mapped[str] = mapped_column(String, ForeignKey("shipments.id"), index=True)
    tracking_number: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    location: Mapped[str] = mapped_column(String)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)


class Rate(Base):
    __tablename__ = "rates"
    __table_args__ = (
        CheckConstraint("min_weight < max_weight", name="ck_rates_weight_bracket"),
        CheckConstraint(
            "base_rate >= 0 AND additional_kg_rate >= 0 AND fuel_surcharge_percent >= 0",
            name="ck_rates_non_negative",
        ),
        CheckConstraint("volumetric_divisor > 0", name="ck_rates_divisor_positive"),
        Index("ix_rates_tenant_service", "tenant_id", "service_type"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    service_type: Mapped[str] = mapped_column(String)
    base_rate: Mapped[Decimal] = mapped_column(Money)
    additional_kg_rate: Mapped[Decimal] = mapped_column(Money)
    min_weight: Mapped[Decimal] = mapped_column(Money)
    max_weight: Mapped[Decimal] = mapped_column(Money)
    volumetric_divisor: Mapped[int] = mapped_column(Integer, default=5000)
    fuel_surcharge_percent: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    remote_surcharge: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    currency: Mapped[str] = mapped_column(String, default="USD")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now, onupdate=_utc_now)


class ChatSession(Base):
    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_tenant_user_channel", "tenant_id", "user_id", "channel"),
        Index("ix_sessions_active_expires", "is_active", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    session_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    user_id: Mapped[str] = mapped_column(String)
    # web, telegram, whatsapp, api
    channel: Mapped[str] = mapped_column(String)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
