from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.domain.models import Tenant, TenantUser
from couriercore.persistence.guards import scoped_select


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_tenant_by_api_key_hash(session: AsyncSession, key_hash: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.api_key_hash == key_hash))
    return result.scalar_one_or_none()


async def get_user_by_subject(session: AsyncSession, external_subject: str) -> TenantUser | None:
    # Subjects are globally unique, so this lookup is what binds a principal to a tenant.
    result = await session.execute(
        select(TenantUser).where(TenantUser.external_subject == external_subject)
    )
    return result.scalar_one_or_none()


async def list_users(session: AsyncSession, tenant_id: str) -> list[TenantUser]:
    result = await session.execute(
        scoped_select(TenantUser, tenant_id).order_by(TenantUser.created_at, TenantUser.id)
    )
    return list(result.scalars().all())
