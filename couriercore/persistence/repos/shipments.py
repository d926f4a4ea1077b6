from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.domain.lifecycle import TERMINAL_STATUSES
from couriercore.domain.models import Shipment, ShipmentEvent
from couriercore.persistence.guards import scoped_select, tenant_predicate


async def get_by_tracking(
    session: AsyncSession, tenant_id: str, tracking_number: str
) -> Shipment | None:
    # An exact tracking number match in another tenant must never be returned.
    result = await session.execute(
        scoped_select(Shipment, tenant_id, Shipment.tracking_number == tracking_number)
    )
    return result.scalar_one_or_none()


async def tracking_number_exists(
    session: AsyncSession, tenant_id: str, tracking_number: str
) -> bool:
    result = await session.execute(
        select(func.count())
        .select_from(Shipment)
        .where(
            tenant_predicate(Shipment, tenant_id),
            Shipment.tracking_number == tracking_number,
        )
    )
    return int(result.scalar_one()) > 0


async def list_shipments(
    session: AsyncSession,
    tenant_id: str,
    *,
    offset: int,
    limit: int,
    status: str | None = None,
) -> tuple[list[Shipment], int]:
    criteria = [tenant_predicate(Shipment, tenant_id)]
    if status is not None:
        criteria.append(Shipment.status == status)
    total = await session.execute(select(func.count()).select_from(Shipment).where(*criteria))
    # Newest first, tie-broken by id so pages are stable.
    rows = await session.execute(
        select(Shipment)
        .where(*criteria)
        .order_by(Shipment.created_at.desc(), Shipment.id)
        .offset(offset)
        .limit(limit)
    )
    return list(rows.scalars().all()), int(total.scalar_one())


async def compare_and_set_status(
    session: AsyncSession,
    *,
    tenant_id: str,
    shipment_id: str,
    expected_version: int,
    expected_status: str,
    new_status: str,
    updated_at: datetime,
) -> bool:
    # Returns False when another writer changed the row since it was read.
    result = await session.execute(
        update(Shipment)
        .where(
            tenant_predicate(Shipment, tenant_id),
            Shipment.id == shipment_id,
            Shipment.version == expected_version,
            Shipment.status == expected_status,
        )
        .values(status=new_status, updated_at=updated_at, version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def list_events(
    session: AsyncSession, tenant_id: str, shipment_id: str
) -> list[ShipmentEvent]:
    result = await session.execute(
        scoped_select(ShipmentEvent, tenant_id, ShipmentEvent.shipment_id == shipment_id)
        .order_by(ShipmentEvent.timestamp, ShipmentEvent.id)
    )
    return list(result.scalars().all())


async def find_for_public_tracking(
    session: AsyncSession, tracking_number: str
) -> Shipment | None:
    # Tenant-agnostic; callers must only expose the public projection.
    result = await session.execute(
        select(Shipment)
        .where(Shipment.tracking_number == tracking_number)
        .order_by(Shipment.created_at.desc(), Shipment.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_public_events(session: AsyncSession, shipment: Shipment) -> list[ShipmentEvent]:
    # Scope history to the owning tenant of the shipment that was found.
    return await list_events(session, shipment.tenant_id, shipment.id)


async def list_advanceable(
    session: AsyncSession, *, limit: int
) -> list[tuple[str, str, str]]:
    # Cross-tenant scan for the status simulator: (tenant_id, tracking_number, status).
    result = await session.execute(
        select(Shipment.tenant_id, Shipment.tracking_number, Shipment.status)
        .where(Shipment.status.not_in(TERMINAL_STATUSES))
        .order_by(Shipment.updated_at, Shipment.id)
        .limit(limit)
    )
    return [(row[0], row[1], row[2]) for row in result.all()]
