from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.domain.models import ChatSession
from couriercore.persistence.guards import scoped_select, tenant_predicate


async def get_by_session_id(
    session: AsyncSession, tenant_id: str, session_id: str
) -> ChatSession | None:
    result = await session.execute(
        scoped_select(ChatSession, tenant_id, ChatSession.session_id == session_id)
    )
    return result.scalar_one_or_none()


async def find_latest_active(
    session: AsyncSession, tenant_id: str, *, user_id: str, channel: str
) -> ChatSession | None:
    # Most recently expiring active session for the (tenant, user, channel) key.
    result = await session.execute(
        scoped_select(
            ChatSession,
            tenant_id,
            ChatSession.user_id == user_id,
            ChatSession.channel == channel,
            ChatSession.is_active.is_(True),
        )
        .order_by(ChatSession.expires_at.desc(), ChatSession.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_user_sessions(
    session: AsyncSession, tenant_id: str, user_id: str
) -> list[ChatSession]:
    result = await session.execute(
        scoped_select(ChatSession, tenant_id, ChatSession.user_id == user_id)
        .order_by(ChatSession.created_at.desc(), ChatSession.id)
    )
    return list(result.scalars().all())


async def list_active_sessions(
    session: AsyncSession, tenant_id: str, *, now: datetime
) -> list[ChatSession]:
    result = await session.execute(
        scoped_select(
            ChatSession,
            tenant_id,
            ChatSession.is_active.is_(True),
            ChatSession.expires_at > now,
        ).order_by(ChatSession.expires_at, ChatSession.id)
    )
    return list(result.scalars().all())


async def delete_by_session_id(session: AsyncSession, tenant_id: str, session_id: str) -> bool:
    result = await session.execute(
        delete(ChatSession).where(
            tenant_predicate(ChatSession, tenant_id),
            ChatSession.session_id == session_id,
        )
    )
    return (result.rowcount or 0) > 0


async def deactivate_expired(session: AsyncSession, *, now: datetime) -> int:
    # Set-based update so the reaper never holds rows while iterating.
    result = await session.execute(
        update(ChatSession)
        .where(ChatSession.is_active.is_(True), ChatSession.expires_at <= now)
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def purge_expired_before(session: AsyncSession, *, cutoff: datetime) -> int:
    result = await session.execute(
        delete(ChatSession)
        .where(ChatSession.is_active.is_(False), ChatSession.expires_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
