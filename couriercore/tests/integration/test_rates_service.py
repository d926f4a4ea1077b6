from __future__ import annotations

from decimal import Decimal

import pytest

from couriercore.core.errors import InvalidInput, NotFound, RateNotConfigured
from couriercore.persistence.db import SessionLocal
from couriercore.persistence.repos import tenants as tenants_repo
from couriercore.services import rates as rates_service
from couriercore.services.rates import RateInput
from couriercore.tests.utils.tenants import create_test_rate, create_test_tenant


pytestmark = pytest.mark.usefixtures("db_schema")


def _standard(**overrides) -> RateInput:
    values = {
        "service_type": "Standard",
        "base_rate": Decimal("10"),
        "additional_kg_rate": Decimal("2"),
        "min_weight": Decimal("0.5"),
        "max_weight": Decimal("30"),
    }
    values.update(overrides)
    return RateInput(**values)


@pytest.mark.asyncio
async def test_first_rate_completes_onboarding() -> None:
    tenant = await create_test_tenant()
    async with SessionLocal() as session:
        stored = await tenants_repo.get_tenant(session, tenant.tenant_id)
        stored.onboarding_status = "pending"
        await session.commit()

    async with SessionLocal() as session:
        rate = await rates_service.create_rate(session, tenant.context, _standard(currency="eur"))

    assert rate.volumetric_divisor == 5000
    assert rate.currency == "EUR"
    async with SessionLocal() as session:
        stored = await tenants_repo.get_tenant(session, tenant.tenant_id)
    assert stored.onboarding_status == "done"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"min_weight": Decimal("30"), "max_weight": Decimal("30")},
        {"min_weight": Decimal("-1")},
        {"base_rate": Decimal("-0.01")},
        {"volumetric_divisor": -5},
        {"service_type": "Drone"},
    ],
)
async def test_invalid_rate_rows_are_rejected(overrides) -> None:
    tenant = await create_test_tenant()
    async with SessionLocal() as session:
        with pytest.raises(InvalidInput):
            await rates_service.create_rate(session, tenant.context, _standard(**overrides))
        assert await rates_service.list_rates(session, tenant.context) == []


@pytest.mark.asyncio
async def test_update_validates_the_merged_row() -> None:
    tenant = await create_test_tenant()
    rate_id = await create_test_rate(tenant.tenant_id)
    async with SessionLocal() as session:
        with pytest.raises(InvalidInput):
            await rates_service.update_rate(
                session, tenant.context, rate_id, {"min_weight": Decimal("40")}
            )
    async with SessionLocal() as session:
        updated = await rates_service.update_rate(
            session, tenant.context, rate_id, {"base_rate": Decimal("12"), "max_weight": None}
        )
    assert updated.base_rate == Decimal("12")
    assert updated.max_weight == Decimal("30")


@pytest.mark.asyncio
async def test_rates_are_tenant_scoped() -> None:
    owner = await create_test_tenant()
    other = await create_test_tenant()
    rate_id = await create_test_rate(owner.tenant_id)
    async with SessionLocal() as session:
        with pytest.raises(NotFound):
            await rates_service.get_rate(session, other.context, rate_id)
        with pytest.raises(NotFound):
            await rates_service.delete_rate(session, other.context, rate_id)
        with pytest.raises(RateNotConfigured):
            await rates_service.quote(
                session, other.context, weight=Decimal("5"), service_type="Standard"
            )
        await rates_service.delete_rate(session, owner.context, rate_id)
        assert await rates_service.list_rates(session, owner.context) == []


@pytest.mark.asyncio
async def test_quote_uses_the_tenant_table() -> None:
    tenant = await create_test_tenant()
    await create_test_rate(tenant.tenant_id, max_weight="10")
    await create_test_rate(
        tenant.tenant_id, min_weight="10", max_weight="30", base_rate="25", additional_kg_rate="1.5"
    )
    async with SessionLocal() as session:
        light = await rates_service.quote(
            session, tenant.context, weight=Decimal("5"), service_type="Standard"
        )
        heavy = await rates_service.quote(
            session,
            tenant.context,
            weight=Decimal("2"),
            length=60,
            width=50,
            height=40,
            service_type="Standard",
        )

    assert light.total == Decimal("18.00")
    # 60x50x40 / 5000 = 24kg billable, priced from the 10-30kg bracket.
    assert heavy.chargeable_weight == Decimal("24.000")
    assert heavy.total == Decimal("59.50")


@pytest.mark.asyncio
async def test_quote_rejects_bad_weight_before_lookup() -> None:
    tenant = await create_test_tenant()
    async with SessionLocal() as session:
        with pytest.raises(InvalidInput):
            await rates_service.quote(
                session, tenant.context, weight=Decimal("0"), service_type="Standard"
            )
