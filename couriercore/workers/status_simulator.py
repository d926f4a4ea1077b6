from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

from arq.connections import RedisSettings

from couriercore.core.config import get_settings
from couriercore.core.errors import Conflict, InvalidTransition
from couriercore.domain.lifecycle import next_status
from couriercore.domain.tenancy import TenantContext
from couriercore.persistence.db import SessionLocal
from couriercore.persistence.repos import shipments as shipments_repo
from couriercore.services.shipments import ShipmentLifecycle, get_shipment_lifecycle


logger = logging.getLogger(__name__)

SIMULATOR_LOCATION = "Sorting Facility"


@dataclass(frozen=True)
class SimulationResult:
    advanced: int
    skipped: int


async def advance_shipments(
    session,
    *,
    lifecycle: ShipmentLifecycle | None = None,
    limit: int | None = None,
) -> SimulationResult:
    """Move each non-terminal shipment one step along the delivery path.

    Goes through record_event like any operator update, so a shipment that
    changed underneath it raises Conflict and is simply retried next tick.
    """
    settings = get_settings()
    lifecycle = lifecycle or get_shipment_lifecycle()
    batch = limit if limit is not None else max(1, int(settings.status_simulator_batch_size))
    candidates = await shipments_repo.list_advanceable(session, limit=batch)
    advanced = 0
    skipped = 0
    for tenant_id, tracking_number, status in candidates:
        target = next_status(status)
        if target is None:
            continue
        context = TenantContext.system(tenant_id)
        try:
            await lifecycle.record_event(
                session,
                context,
                tracking_number=tracking_number,
                new_status=target,
                location=SIMULATOR_LOCATION,
                notes="Automated status update",
            )
        except (Conflict, InvalidTransition):
            # An operator got there first; never overwrite their update.
            skipped += 1
            continue
        advanced += 1
    if advanced or skipped:
        logger.info("status_simulator_tick advanced=%s skipped=%s", advanced, skipped)
    return SimulationResult(advanced=advanced, skipped=skipped)


async def simulate_status_updates(ctx) -> dict[str, int]:
    async with SessionLocal() as session:
        result = await advance_shipments(session)
    return {"advanced": result.advanced, "skipped": result.skipped}


async def _simulator_loop() -> None:
    settings = get_settings()
    interval_s = max(1, int(settings.status_simulator_interval_s))
    while True:
        try:
            await simulate_status_updates({})
        except Exception:  # noqa: BLE001 - keep the simulator alive while surfacing failures in worker logs.
            logger.exception("status simulator tick failed")
        await asyncio.sleep(interval_s)


async def _startup(ctx) -> None:
    # Only runs in demo environments; production leaves statuses to operators.
    if get_settings().status_simulator_enabled:
        ctx["simulator_task"] = asyncio.create_task(_simulator_loop())
    else:
        logger.info("status_simulator_disabled")


async def _shutdown(ctx) -> None:
    task = ctx.get("simulator_task")
    if task:
        task.cancel()


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = f"{settings.worker_queue_name}:simulator"
    functions = [simulate_status_updates]
    on_startup = _startup
    on_shutdown = _shutdown
