from __future__ import annotations

import asyncio
import logging

from arq.connections import RedisSettings

from couriercore.core.config import get_settings
from couriercore.persistence.db import SessionLocal
from couriercore.services.sessions import get_session_store


logger = logging.getLogger(__name__)


async def reap_sessions(ctx) -> dict[str, int]:
    # One reaper pass; each statement is set-based so request traffic is never blocked.
    async with SessionLocal() as session:
        result = await get_session_store().reap_expired_sessions(session)
    return {"deactivated": result.deactivated, "purged": result.purged}


async def _reaper_loop() -> None:
    settings = get_settings()
    interval_s = max(1, int(settings.session_reaper_interval_s))
    while True:
        try:
            await reap_sessions({})
        except Exception:  # noqa: BLE001 - keep the reaper alive while surfacing failures in worker logs.
            logger.exception("session reaper pass failed")
        await asyncio.sleep(interval_s)


async def _startup(ctx) -> None:
    # The reaper runs on its own cadence, independent of API traffic.
    ctx["reaper_task"] = asyncio.create_task(_reaper_loop())


async def _shutdown(ctx) -> None:
    task = ctx.get("reaper_task")
    if task:
        task.cancel()


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = f"{settings.worker_queue_name}:sessions"
    functions = [reap_sessions]
    on_startup = _startup
    on_shutdown = _shutdown
