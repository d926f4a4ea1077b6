from __future__ import annotations

import pytest

from couriercore.persistence.db import SessionLocal
from couriercore.persistence.repos import shipments as shipments_repo
from couriercore.services.shipments import ShipmentLifecycle
from couriercore.tests.utils.tenants import create_test_tenant
from couriercore.workers.status_simulator import advance_shipments


pytestmark = pytest.mark.usefixtures("db_schema")


async def _seed(lifecycle: ShipmentLifecycle, tenant) -> str:
    async with SessionLocal() as session:
        shipment = await lifecycle.create(
            session,
            tenant.context,
            sender={"name": "Sender"},
            receiver={"name": "Receiver"},
            parcel={"weight": 1},
            service_type="Standard",
        )
    return shipment.tracking_number


@pytest.mark.asyncio
async def test_simulator_advances_one_step_per_tick() -> None:
    tenant = await create_test_tenant()
    other = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    first = await _seed(lifecycle, tenant)
    second = await _seed(lifecycle, other)

    async with SessionLocal() as session:
        result = await advance_shipments(session, lifecycle=lifecycle)
    assert (result.advanced, result.skipped) == (2, 0)

    async with SessionLocal() as session:
        first_row = await shipments_repo.get_by_tracking(session, tenant.tenant_id, first)
        second_row = await shipments_repo.get_by_tracking(session, other.tenant_id, second)
        events = await shipments_repo.list_events(session, tenant.tenant_id, first_row.id)
    assert first_row.status == "PickedUp"
    assert second_row.status == "PickedUp"
    assert [(event.status, event.location) for event in events] == [("PickedUp", "Sorting Facility")]


@pytest.mark.asyncio
async def test_simulator_leaves_terminal_shipments_alone() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    tracking_number = await _seed(lifecycle, tenant)
    async with SessionLocal() as session:
        await lifecycle.record_event(
            session,
            tenant.context,
            tracking_number=tracking_number,
            new_status="Cancelled",
            location="Customer request",
        )

    async with SessionLocal() as session:
        result = await advance_shipments(session, lifecycle=lifecycle)
    assert (result.advanced, result.skipped) == (0, 0)


@pytest.mark.asyncio
async def test_simulator_walks_to_delivered() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    tracking_number = await _seed(lifecycle, tenant)
    for _ in range(6):
        async with SessionLocal() as session:
            await advance_shipments(session, lifecycle=lifecycle)

    async with SessionLocal() as session:
        row = await shipments_repo.get_by_tracking(session, tenant.tenant_id, tracking_number)
    assert row.status == "Delivered"
    assert row.version == 4
