from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.core.config import get_settings
from couriercore.core.errors import InvalidInput, NotFound
from couriercore.domain.models import Rate
from couriercore.domain.tenancy import TenantContext
from couriercore.persistence.repos import rates as rates_repo
from couriercore.services import tenancy
from couriercore.services.rate_engine import (
    RateQuote,
    RateRow,
    calculate,
    delivery_window,
    validate_parcel,
)


logger = logging.getLogger(__name__)

_MONEY_FIELDS = ("base_rate", "additional_kg_rate", "fuel_surcharge_percent", "remote_surcharge")


@dataclass(frozen=True)
class RateInput:
    service_type: str
    base_rate: Decimal
    additional_kg_rate: Decimal
    min_weight: Decimal
    max_weight: Decimal
    volumetric_divisor: int | None = None
    fuel_surcharge_percent: Decimal = Decimal("0")
    remote_surcharge: Decimal | None = None
    currency: str | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _validate(values: dict[str, Any]) -> None:
    # Mirror the table check constraints so callers get a 400 instead of an IntegrityError.
    delivery_window(values["service_type"])
    if values["min_weight"] < 0:
        raise InvalidInput("min_weight must be non-negative")
    if values["min_weight"] >= values["max_weight"]:
        raise InvalidInput(
            "min_weight must be less than max_weight",
            details={"min_weight": str(values["min_weight"]), "max_weight": str(values["max_weight"])},
        )
    for field in _MONEY_FIELDS:
        value = values.get(field)
        if value is not None and value < 0:
            raise InvalidInput(f"{field} must be non-negative", details={field: str(value)})
    if values["volumetric_divisor"] <= 0:
        raise InvalidInput("volumetric_divisor must be positive")


async def list_rates(
    session: AsyncSession, context: TenantContext, *, service_type: str | None = None
) -> list[Rate]:
    return await rates_repo.list_rates(session, context.tenant_id, service_type=service_type)


async def get_rate(session: AsyncSession, context: TenantContext, rate_id: str) -> Rate:
    rate = await rates_repo.get_rate(session, context.tenant_id, rate_id)
    if rate is None:
        raise NotFound("Rate not found")
    return rate


async def create_rate(session: AsyncSession, context: TenantContext, payload: RateInput) -> Rate:
    settings = get_settings()
    values = {
        "service_type": payload.service_type,
        "base_rate": payload.base_rate,
        "additional_kg_rate": payload.additional_kg_rate,
        "min_weight": payload.min_weight,
        "max_weight": payload.max_weight,
        "volumetric_divisor": payload.volumetric_divisor or settings.default_volumetric_divisor,
        "fuel_surcharge_percent": payload.fuel_surcharge_percent,
        "remote_surcharge": payload.remote_surcharge,
        "currency": (payload.currency or settings.default_currency).upper(),
    }
    _validate(values)
    now = _utc_now()
    rate = Rate(id=uuid4().hex, tenant_id=context.tenant_id, created_at=now, updated_at=now, **values)
    session.add(rate)
    # The first configured rate completes onboarding.
    await tenancy.mark_onboarding_done(session, context)
    await session.commit()
    logger.info(
        "rate_created tenant_id=%s rate_id=%s service_type=%s",
        context.tenant_id,
        rate.id,
        rate.service_type,
    )
    return rate


async def update_rate(
    session: AsyncSession, context: TenantContext, rate_id: str, changes: dict[str, Any]
) -> Rate:
    rate = await get_rate(session, context, rate_id)
    values = {
        "service_type": rate.service_type,
        "base_rate": rate.base_rate,
        "additional_kg_rate": rate.additional_kg_rate,
        "min_weight": rate.min_weight,
        "max_weight": rate.max_weight,
        "volumetric_divisor": rate.volumetric_divisor,
        "fuel_surcharge_percent": rate.fuel_surcharge_percent,
        "remote_surcharge": rate.remote_surcharge,
        "currency": rate.currency,
    }
    for key, value in changes.items():
        if key not in values:
            raise InvalidInput(f"Unknown rate field: {key}")
        # Only the remote surcharge may be cleared.
        if value is None and key != "remote_surcharge":
            continue
        values[key] = value
    if values["currency"]:
        values["currency"] = str(values["currency"]).upper()
    # Validate the merged row so a partial update cannot invert the bracket.
    _validate(values)
    for key, value in values.items():
        setattr(rate, key, value)
    rate.updated_at = _utc_now()
    await session.commit()
    return rate


async def delete_rate(session: AsyncSession, context: TenantContext, rate_id: str) -> None:
    deleted = await rates_repo.delete_rate(session, context.tenant_id, rate_id)
    if not deleted:
        raise NotFound("Rate not found")
    await session.commit()
    logger.info("rate_deleted tenant_id=%s rate_id=%s", context.tenant_id, rate_id)


async def quote(
    session: AsyncSession,
    context: TenantContext,
    *,
    weight: Any,
    service_type: str,
    length: Any | None = None,
    width: Any | None = None,
    height: Any | None = None,
    is_remote: bool = False,
) -> RateQuote:
    # Reject bad input before querying, then snapshot rows so the engine stays I/O free.
    validate_parcel(weight, length, width, height)
    delivery_window(service_type)
    rows = await rates_repo.list_rates(session, context.tenant_id, service_type=service_type)
    return calculate(
        weight=weight,
        service_type=service_type,
        rate_table=[RateRow.from_model(row) for row in rows],
        length=length,
        width=width,
        height=height,
        is_remote=is_remote,
    )
