from __future__ import annotations

from datetime import timedelta
import re

import pytest

from couriercore.core.config import get_settings
from couriercore.core.errors import (
    BusinessRuleViolation,
    Conflict,
    InvalidInput,
    InvalidTransition,
    NotFound,
)
from couriercore.persistence.db import SessionLocal
from couriercore.persistence.repos import shipments as shipments_repo
from couriercore.services.shipments import ShipmentLifecycle
from couriercore.tests.utils.tenants import create_test_tenant


pytestmark = pytest.mark.usefixtures("db_schema")

_SENDER = {"name": "Ana Lopez", "phone": "+34 600 000 000", "address": "Calle Mayor 1"}
_RECEIVER = {"name": "Ben Ode", "phone": "+44 7700 900000", "address": "1 High St"}
_PARCEL = {"weight": "2.5", "length": 30, "width": 20, "height": 10}


async def _create(lifecycle: ShipmentLifecycle, tenant, *, service_type: str = "Standard"):
    async with SessionLocal() as session:
        return await lifecycle.create(
            session,
            tenant.context,
            sender=_SENDER,
            receiver=_RECEIVER,
            parcel=_PARCEL,
            service_type=service_type,
        )


async def _reload(tenant, tracking_number: str):
    async with SessionLocal() as session:
        shipment = await shipments_repo.get_by_tracking(session, tenant.tenant_id, tracking_number)
        events = await shipments_repo.list_events(session, tenant.tenant_id, shipment.id)
    return shipment, events


@pytest.mark.asyncio
async def test_create_starts_in_created_with_estimated_delivery() -> None:
    tenant = await create_test_tenant()
    shipment = await _create(ShipmentLifecycle(), tenant, service_type="Express")

    assert re.match(r"^LMS-[A-Z0-9]{8}$", shipment.tracking_number)
    assert shipment.status == "Created"
    assert shipment.version == 0
    # Express delivers within 2 days.
    assert shipment.estimated_delivery - shipment.created_at == timedelta(days=2)


@pytest.mark.asyncio
async def test_walk_the_delivery_path_appends_events() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    shipment = await _create(lifecycle, tenant)

    for status in ("PickedUp", "InTransit", "OutForDelivery", "Delivered"):
        async with SessionLocal() as session:
            updated = await lifecycle.record_event(
                session,
                tenant.context,
                tracking_number=shipment.tracking_number,
                new_status=status,
                location="Madrid Hub",
            )
        assert updated.status == status

    stored, events = await _reload(tenant, shipment.tracking_number)
    assert stored.status == "Delivered"
    assert stored.version == 4
    assert [event.status for event in events] == ["PickedUp", "InTransit", "OutForDelivery", "Delivered"]


@pytest.mark.asyncio
async def test_invalid_transition_leaves_shipment_untouched() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    shipment = await _create(lifecycle, tenant)

    async with SessionLocal() as session:
        with pytest.raises(InvalidTransition) as excinfo:
            await lifecycle.record_event(
                session,
                tenant.context,
                tracking_number=shipment.tracking_number,
                new_status="Delivered",
                location="Madrid Hub",
            )
    assert excinfo.value.details["current_status"] == "Created"
    assert excinfo.value.details["allowed"] == ["Cancelled", "PickedUp"]

    stored, events = await _reload(tenant, shipment.tracking_number)
    assert stored.status == "Created"
    assert stored.version == 0
    assert events == []


@pytest.mark.asyncio
async def test_terminal_status_rejects_further_updates() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    shipment = await _create(lifecycle, tenant)
    async with SessionLocal() as session:
        await lifecycle.record_event(
            session,
            tenant.context,
            tracking_number=shipment.tracking_number,
            new_status="Cancelled",
            location="Customer request",
        )
    async with SessionLocal() as session:
        with pytest.raises(InvalidTransition):
            await lifecycle.record_event(
                session,
                tenant.context,
                tracking_number=shipment.tracking_number,
                new_status="PickedUp",
                location="Madrid Hub",
            )


@pytest.mark.asyncio
async def test_unknown_status_and_blank_location_are_invalid_input() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    shipment = await _create(lifecycle, tenant)
    async with SessionLocal() as session:
        with pytest.raises(InvalidInput):
            await lifecycle.record_event(
                session,
                tenant.context,
                tracking_number=shipment.tracking_number,
                new_status="Lost",
                location="Madrid Hub",
            )
        with pytest.raises(InvalidInput):
            await lifecycle.record_event(
                session,
                tenant.context,
                tracking_number=shipment.tracking_number,
                new_status="PickedUp",
                location="   ",
            )


@pytest.mark.asyncio
async def test_stale_expected_version_is_a_conflict() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    shipment = await _create(lifecycle, tenant)
    async with SessionLocal() as session:
        await lifecycle.record_event(
            session,
            tenant.context,
            tracking_number=shipment.tracking_number,
            new_status="PickedUp",
            location="Madrid Hub",
            expected_version=0,
        )
    async with SessionLocal() as session:
        with pytest.raises(Conflict) as excinfo:
            await lifecycle.record_event(
                session,
                tenant.context,
                tracking_number=shipment.tracking_number,
                new_status="InTransit",
                location="Madrid Hub",
                expected_version=0,
            )
    assert excinfo.value.details == {"expected_version": 0, "current_version": 1}


@pytest.mark.asyncio
async def test_concurrent_update_loses_compare_and_swap(monkeypatch) -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    shipment = await _create(lifecycle, tenant)
    original = shipments_repo.compare_and_set_status
    raced = False

    async def racing_compare_and_set(session, **kwargs):
        # Commit a competing update between this writer's read and its write.
        nonlocal raced
        if not raced:
            raced = True
            async with SessionLocal() as other:
                await lifecycle.record_event(
                    other,
                    tenant.context,
                    tracking_number=shipment.tracking_number,
                    new_status="Cancelled",
                    location="Customer request",
                )
        return await original(session, **kwargs)

    monkeypatch.setattr(shipments_repo, "compare_and_set_status", racing_compare_and_set)

    async with SessionLocal() as session:
        with pytest.raises(Conflict):
            await lifecycle.record_event(
                session,
                tenant.context,
                tracking_number=shipment.tracking_number,
                new_status="PickedUp",
                location="Madrid Hub",
            )

    stored, events = await _reload(tenant, shipment.tracking_number)
    assert stored.status == "Cancelled"
    assert stored.version == 1
    assert [event.status for event in events] == ["Cancelled"]


@pytest.mark.asyncio
async def test_other_tenants_cannot_read_or_update() -> None:
    owner = await create_test_tenant()
    intruder = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    shipment = await _create(lifecycle, owner)

    async with SessionLocal() as session:
        with pytest.raises(NotFound):
            await lifecycle.get_by_tracking(session, intruder.context, shipment.tracking_number)
        with pytest.raises(NotFound):
            await lifecycle.record_event(
                session,
                intruder.context,
                tracking_number=shipment.tracking_number,
                new_status="PickedUp",
                location="Elsewhere",
            )
        page = await lifecycle.list_shipments(session, intruder.context)
    assert page.total == 0

    stored, _events = await _reload(owner, shipment.tracking_number)
    assert stored.status == "Created"


@pytest.mark.asyncio
async def test_tracking_number_collision_is_retried() -> None:
    tenant = await create_test_tenant()
    candidates = iter(["LMS-AAAAAAAA", "LMS-AAAAAAAA", "LMS-BBBBBBBB"])
    lifecycle = ShipmentLifecycle(tracking_generator=lambda: next(candidates))

    first = await _create(lifecycle, tenant)
    second = await _create(lifecycle, tenant)

    assert first.tracking_number == "LMS-AAAAAAAA"
    assert second.tracking_number == "LMS-BBBBBBBB"


@pytest.mark.asyncio
async def test_same_tracking_number_is_allowed_in_another_tenant() -> None:
    first_tenant = await create_test_tenant()
    second_tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle(tracking_generator=lambda: "LMS-SHARED01")

    first = await _create(lifecycle, first_tenant)
    second = await _create(lifecycle, second_tenant)

    assert first.tracking_number == second.tracking_number
    assert first.tenant_id != second.tenant_id


@pytest.mark.asyncio
async def test_tracking_number_exhaustion_is_a_conflict(monkeypatch) -> None:
    monkeypatch.setenv("TRACKING_NUMBER_MAX_ATTEMPTS", "3")
    get_settings.cache_clear()
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle(tracking_generator=lambda: "LMS-TAKEN000")
    await _create(lifecycle, tenant)

    with pytest.raises(Conflict) as excinfo:
        await _create(lifecycle, tenant)
    assert excinfo.value.code == "TRACKING_NUMBER_EXHAUSTED"


@pytest.mark.asyncio
async def test_disabled_service_is_rejected() -> None:
    tenant = await create_test_tenant(enabled_services=["Standard"])
    with pytest.raises(BusinessRuleViolation) as excinfo:
        await _create(ShipmentLifecycle(), tenant, service_type="Overnight")
    assert excinfo.value.code == "SERVICE_NOT_ENABLED"


@pytest.mark.asyncio
async def test_non_positive_parcel_weight_is_rejected() -> None:
    tenant = await create_test_tenant()
    async with SessionLocal() as session:
        with pytest.raises(InvalidInput):
            await ShipmentLifecycle().create(
                session,
                tenant.context,
                sender=_SENDER,
                receiver=_RECEIVER,
                parcel={"weight": 0},
                service_type="Standard",
            )


@pytest.mark.asyncio
async def test_public_tracking_exposes_no_contact_data() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    shipment = await _create(lifecycle, tenant)
    async with SessionLocal() as session:
        await lifecycle.record_event(
            session,
            tenant.context,
            tracking_number=shipment.tracking_number,
            new_status="PickedUp",
            location="Madrid Hub",
            notes="Left with concierge, door code 1234",
        )
    async with SessionLocal() as session:
        tracking = await lifecycle.public_tracking(session, shipment.tracking_number)

    assert tracking.status == "PickedUp"
    assert tracking.last_location == "Madrid Hub"
    assert [event.status for event in tracking.history] == ["PickedUp"]
    rendered = repr(tracking)
    for secret in ("Ana Lopez", "Ben Ode", "+34", "door code", tenant.tenant_id):
        assert secret not in rendered


@pytest.mark.asyncio
async def test_list_shipments_paginates_and_filters() -> None:
    tenant = await create_test_tenant()
    lifecycle = ShipmentLifecycle()
    created = [await _create(lifecycle, tenant) for _ in range(3)]
    async with SessionLocal() as session:
        await lifecycle.record_event(
            session,
            tenant.context,
            tracking_number=created[0].tracking_number,
            new_status="PickedUp",
            location="Madrid Hub",
        )
        page = await lifecycle.list_shipments(session, tenant.context, page=1, page_size=2)
        picked_up = await lifecycle.list_shipments(session, tenant.context, status="PickedUp")

    assert page.total == 3
    assert len(page.items) == 2
    assert [item.tracking_number for item in picked_up.items] == [created[0].tracking_number]
