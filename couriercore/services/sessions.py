from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.core.config import get_settings
from couriercore.core.errors import InvalidInput, NotFound
from couriercore.domain.models import ChatSession
from couriercore.domain.tenancy import TenantContext
from couriercore.persistence.repos import sessions as sessions_repo


logger = logging.getLogger(__name__)

CHANNELS = frozenset({"web", "telegram", "whatsapp", "api"})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReapResult:
    deactivated: int
    purged: int


def _validate_channel(channel: str) -> str:
    normalized = channel.strip().lower()
    if normalized not in CHANNELS:
        raise InvalidInput(f"Unsupported channel: {channel}", details={"channel": channel})
    return normalized


def _validate_hours(name: str, hours: float | None) -> None:
    if hours is not None and hours <= 0:
        raise InvalidInput(f"{name} must be positive", details={name: hours})


class SessionStore:
    """Tenant-scoped conversational state for chat channel integrations.

    A session is live while is_active is set and expires_at is in the future.
    Expiry is enforced lazily on every read; the reaper only tidies rows up
    and is never needed for correctness.
    """

    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        # Allow time injection for deterministic expiry tests.
        self._time_provider = time_provider or _utc_now

    def _is_live(self, row: ChatSession, now: datetime) -> bool:
        return bool(row.is_active) and row.expires_at > now

    async def create(
        self,
        session: AsyncSession,
        context: TenantContext,
        *,
        user_id: str,
        channel: str,
        ttl_hours: float | None = None,
        data: dict[str, Any] | None = None,
    ) -> ChatSession:
        _validate_hours("ttl_hours", ttl_hours)
        if not user_id:
            raise InvalidInput("user_id is required")
        settings = get_settings()
        now = self._time_provider()
        ttl = ttl_hours if ttl_hours is not None else settings.session_default_ttl_hours
        row = ChatSession(
            id=uuid4().hex,
            tenant_id=context.tenant_id,
            session_id=str(uuid4()),
            user_id=user_id,
            channel=_validate_channel(channel),
            data=dict(data or {}),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(hours=ttl),
            is_active=True,
        )
        session.add(row)
        await session.commit()
        logger.info(
            "session_created tenant_id=%s channel=%s session_id=%s",
            context.tenant_id,
            row.channel,
            row.session_id,
        )
        return row

    async def get(
        self, session: AsyncSession, context: TenantContext, session_id: str
    ) -> ChatSession | None:
        # Expired or deactivated sessions read as absent.
        row = await sessions_repo.get_by_session_id(session, context.tenant_id, session_id)
        if row is None or not self._is_live(row, self._time_provider()):
            return None
        return row

    async def require(
        self, session: AsyncSession, context: TenantContext, session_id: str
    ) -> ChatSession:
        row = await self.get(session, context, session_id)
        if row is None:
            raise NotFound("Session not found")
        return row

    async def update(
        self,
        session: AsyncSession,
        context: TenantContext,
        session_id: str,
        *,
        data: dict[str, Any],
        extend_hours: float | None = None,
    ) -> ChatSession:
        _validate_hours("extend_hours", extend_hours)
        row = await self.require(session, context, session_id)
        now = self._time_provider()
        # Callers send the whole conversation state; keys left out are dropped.
        row.data = dict(data)
        row.updated_at = now
        if extend_hours is not None:
            row.expires_at = row.expires_at + timedelta(hours=extend_hours)
        await session.commit()
        return row

    async def delete(self, session: AsyncSession, context: TenantContext, session_id: str) -> None:
        deleted = await sessions_repo.delete_by_session_id(session, context.tenant_id, session_id)
        if not deleted:
            raise NotFound("Session not found")
        await session.commit()
        logger.info("session_deleted tenant_id=%s session_id=%s", context.tenant_id, session_id)

    async def get_or_create(
        self,
        session: AsyncSession,
        context: TenantContext,
        *,
        user_id: str,
        channel: str,
    ) -> ChatSession:
        """Return the live session for (tenant, user, channel), creating one if needed.

        A live session that expires within the refresh threshold is extended
        by the default TTL and keeps its session_id; an expired one is left
        for the reaper and a new session is created.
        """
        settings = get_settings()
        normalized_channel = _validate_channel(channel)
        now = self._time_provider()
        row = await sessions_repo.find_latest_active(
            session, context.tenant_id, user_id=user_id, channel=normalized_channel
        )
        if row is not None and self._is_live(row, now):
            threshold = now + timedelta(hours=settings.session_refresh_threshold_hours)
            if row.expires_at <= threshold:
                row.expires_at = row.expires_at + timedelta(hours=settings.session_default_ttl_hours)
                row.updated_at = now
                await session.commit()
                logger.info(
                    "session_extended tenant_id=%s session_id=%s", context.tenant_id, row.session_id
                )
            return row
        return await self.create(session, context, user_id=user_id, channel=normalized_channel)

    async def list_user_sessions(
        self, session: AsyncSession, context: TenantContext, user_id: str
    ) -> list[ChatSession]:
        return await sessions_repo.list_user_sessions(session, context.tenant_id, user_id)

    async def list_active_sessions(
        self, session: AsyncSession, context: TenantContext
    ) -> list[ChatSession]:
        return await sessions_repo.list_active_sessions(
            session, context.tenant_id, now=self._time_provider()
        )

    async def reap_expired_sessions(self, session: AsyncSession) -> ReapResult:
        # Runs across tenants; each statement is set-based and commits on its own.
        settings = get_settings()
        now = self._time_provider()
        deactivated = await sessions_repo.deactivate_expired(session, now=now)
        await session.commit()
        cutoff = now - timedelta(hours=settings.session_purge_after_hours)
        purged = await sessions_repo.purge_expired_before(session, cutoff=cutoff)
        await session.commit()
        if deactivated or purged:
            logger.info("sessions_reaped deactivated=%s purged=%s", deactivated, purged)
        return ReapResult(deactivated=deactivated, purged=purged)


_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    # Cache the session store for reuse across requests.
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store


def reset_session_store() -> None:
    # Reset cached services for deterministic tests.
    global _session_store
    _session_store = None
