from __future__ import annotations

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.domain.models import Rate
from couriercore.persistence.guards import scoped_select, tenant_predicate


async def list_rates(
    session: AsyncSession, tenant_id: str, *, service_type: str | None = None
) -> list[Rate]:
    criteria = []
    if service_type is not None:
        criteria.append(Rate.service_type == service_type)
    result = await session.execute(
        scoped_select(Rate, tenant_id, *criteria).order_by(
            Rate.service_type, Rate.min_weight, Rate.id
        )
    )
    return list(result.scalars().all())


async def get_rate(session: AsyncSession, tenant_id: str, rate_id: str) -> Rate | None:
    result = await session.execute(scoped_select(Rate, tenant_id, Rate.id == rate_id))
    return result.scalar_one_or_none()


async def delete_rate(session: AsyncSession, tenant_id: str, rate_id: str) -> bool:
    result = await session.execute(
        delete(Rate).where(tenant_predicate(Rate, tenant_id), Rate.id == rate_id)
    )
    return (result.rowcount or 0) > 0
