from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import secrets
import string
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.core.config import get_settings
from couriercore.core.errors import Conflict, InvalidInput, InvalidTransition, NotFound
from couriercore.domain.lifecycle import (
    ALL_STATUSES,
    STATUS_CREATED,
    allowed_transitions,
    can_transition,
)
from couriercore.domain.models import Shipment, ShipmentEvent
from couriercore.domain.tenancy import TenantContext
from couriercore.persistence.repos import shipments as shipments_repo
from couriercore.services import tenancy
from couriercore.services.rate_engine import delivery_window, validate_parcel


logger = logging.getLogger(__name__)

TRACKING_ALPHABET = string.ascii_uppercase + string.digits
TRACKING_SUFFIX_LENGTH = 8


def generate_tracking_number(prefix: str | None = None) -> str:
    # prefix + 8 chars of [A-Z0-9] drawn from the OS CSPRNG.
    resolved_prefix = get_settings().tracking_number_prefix if prefix is None else prefix
    suffix = "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(TRACKING_SUFFIX_LENGTH))
    return f"{resolved_prefix}{suffix}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PublicTrackingEvent:
    status: str
    location: str
    timestamp: datetime


@dataclass(frozen=True)
class PublicTracking:
    # Tenant-agnostic view; carries no sender/receiver data and no operator notes.
    tracking_number: str
    status: str
    service_type: str
    estimated_delivery: datetime | None
    last_location: str | None
    updated_at: datetime
    history: list[PublicTrackingEvent]


@dataclass(frozen=True)
class ShipmentPage:
    items: list[Shipment]
    total: int
    page: int
    page_size: int


class ShipmentLifecycle:
    def __init__(
        self,
        *,
        time_provider: Callable[[], datetime] | None = None,
        tracking_generator: Callable[[], str] | None = None,
    ) -> None:
        # Allow clock and tracking number injection for deterministic tests.
        self._time_provider = time_provider or _utc_now
        self._tracking_generator = tracking_generator or generate_tracking_number

    async def create(
        self,
        session: AsyncSession,
        context: TenantContext,
        *,
        sender: dict[str, Any],
        receiver: dict[str, Any],
        parcel: dict[str, Any],
        service_type: str,
        special_instructions: str | None = None,
    ) -> Shipment:
        """Create a shipment in status Created under a fresh tracking number.

        Tracking numbers are unique per tenant. A candidate that already exists
        is skipped; a concurrent insert that wins the unique constraint first is
        rolled back and retried with a new candidate. Raises Conflict once the
        attempt budget is spent.
        """
        validate_parcel(
            parcel.get("weight"), parcel.get("length"), parcel.get("width"), parcel.get("height")
        )
        window = delivery_window(service_type)
        tenant = await tenancy.get_current_tenant(session, context)
        tenancy.require_service_enabled(tenant, service_type)

        settings = get_settings()
        attempts = max(1, int(settings.tracking_number_max_attempts))
        for attempt in range(1, attempts + 1):
            tracking_number = self._tracking_generator()
            if await shipments_repo.tracking_number_exists(
                session, context.tenant_id, tracking_number
            ):
                logger.info(
                    "tracking_number_collision tenant_id=%s attempt=%s", context.tenant_id, attempt
                )
                continue
            now = self._time_provider()
            shipment = Shipment(
                tenant_id=context.tenant_id,
                tracking_number=tracking_number,
                sender=sender,
                receiver=receiver,
                parcel=parcel,
                service_type=service_type,
                status=STATUS_CREATED,
                special_instructions=special_instructions,
                estimated_delivery=now + timedelta(days=window.max_days),
                version=0,
                created_at=now,
                updated_at=now,
            )
            session.add(shipment)
            try:
                await session.commit()
            except IntegrityError:
                # Lost a race on (tenant_id, tracking_number); retry with a new candidate.
                await session.rollback()
                logger.info(
                    "tracking_number_race tenant_id=%s attempt=%s", context.tenant_id, attempt
                )
                continue
            logger.info(
                "shipment_created tenant_id=%s tracking_number=%s service_type=%s",
                context.tenant_id,
                tracking_number,
                service_type,
            )
            return shipment
        logger.warning(
            "tracking_number_exhausted tenant_id=%s attempts=%s", context.tenant_id, attempts
        )
        raise Conflict(
            "Could not allocate a unique tracking number",
            code="TRACKING_NUMBER_EXHAUSTED",
        )

    async def get_by_tracking(
        self, session: AsyncSession, context: TenantContext, tracking_number: str
    ) -> Shipment:
        shipment = await shipments_repo.get_by_tracking(
            session, context.tenant_id, tracking_number
        )
        if shipment is None:
            raise NotFound("Shipment not found")
        return shipment

    async def record_event(
        self,
        session: AsyncSession,
        context: TenantContext,
        *,
        tracking_number: str,
        new_status: str,
        location: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> Shipment:
        """Apply one status transition and append its event.

        The row is updated with a compare-and-swap on (version, status), so a
        concurrent writer that got there first makes this call fail with
        Conflict instead of being overwritten. Illegal transitions raise
        InvalidTransition and leave the shipment untouched.
        """
        if new_status not in ALL_STATUSES:
            raise InvalidInput(f"Unknown status: {new_status}", details={"status": new_status})
        if not location or not location.strip():
            raise InvalidInput("Location is required")
        shipment = await self.get_by_tracking(session, context, tracking_number)
        read_version = shipment.version
        read_status = shipment.status
        if expected_version is not None and expected_version != read_version:
            raise Conflict(
                "Shipment was modified; reload and retry",
                details={"expected_version": expected_version, "current_version": read_version},
            )
        if not can_transition(read_status, new_status):
            raise InvalidTransition(
                f"Cannot transition from {read_status} to {new_status}",
                details={
                    "current_status": read_status,
                    "requested_status": new_status,
                    "allowed": sorted(allowed_transitions(read_status)),
                },
            )

        now = self._time_provider()
        swapped = await shipments_repo.compare_and_set_status(
            session,
            tenant_id=context.tenant_id,
            shipment_id=shipment.id,
            expected_version=read_version,
            expected_status=read_status,
            new_status=new_status,
            updated_at=now,
        )
        if not swapped:
            await session.rollback()
            logger.info(
                "shipment_transition_conflict tenant_id=%s tracking_number=%s from=%s to=%s",
                context.tenant_id,
                tracking_number,
                read_status,
                new_status,
            )
            raise Conflict(
                "Shipment status changed concurrently; reload and retry",
                details={"read_status": read_status, "read_version": read_version},
            )
        session.add(
            ShipmentEvent(
                tenant_id=context.tenant_id,
                shipment_id=shipment.id,
                tracking_number=shipment.tracking_number,
                status=new_status,
                location=location.strip(),
                notes=notes,
                timestamp=now,
            )
        )
        # Status update and event row commit together.
        await session.commit()
        await session.refresh(shipment)
        logger.info(
            "shipment_transition tenant_id=%s tracking_number=%s from=%s to=%s actor=%s",
            context.tenant_id,
            tracking_number,
            read_status,
            new_status,
            context.subject_id,
        )
        return shipment

    async def list_shipments(
        self,
        session: AsyncSession,
        context: TenantContext,
        *,
        page: int = 1,
        page_size: int = 20,
        status: str | None = None,
    ) -> ShipmentPage:
        if page < 1 or page_size < 1:
            raise InvalidInput("page and page_size must be positive")
        if status is not None and status not in ALL_STATUSES:
            raise InvalidInput(f"Unknown status: {status}", details={"status": status})
        items, total = await shipments_repo.list_shipments(
            session,
            context.tenant_id,
            offset=(page - 1) * page_size,
            limit=page_size,
            status=status,
        )
        return ShipmentPage(items=items, total=total, page=page, page_size=page_size)

    async def list_events(
        self, session: AsyncSession, context: TenantContext, tracking_number: str
    ) -> list[ShipmentEvent]:
        shipment = await self.get_by_tracking(session, context, tracking_number)
        return await shipments_repo.list_events(session, context.tenant_id, shipment.id)

    async def public_tracking(self, session: AsyncSession, tracking_number: str) -> PublicTracking:
        shipment = await shipments_repo.find_for_public_tracking(session, tracking_number)
        if shipment is None:
            raise NotFound("Shipment not found")
        events = await shipments_repo.list_public_events(session, shipment)
        history = [
            PublicTrackingEvent(status=event.status, location=event.location, timestamp=event.timestamp)
            for event in events
        ]
        return PublicTracking(
            tracking_number=shipment.tracking_number,
            status=shipment.status,
            service_type=shipment.service_type,
            estimated_delivery=shipment.estimated_delivery,
            last_location=history[-1].location if history else None,
            updated_at=shipment.updated_at,
            history=history,
        )


_shipment_lifecycle: ShipmentLifecycle | None = None


def get_shipment_lifecycle() -> ShipmentLifecycle:
    # Cache the lifecycle service for reuse across requests.
    global _shipment_lifecycle
    if _shipment_lifecycle is None:
        _shipment_lifecycle = ShipmentLifecycle()
    return _shipment_lifecycle


def reset_shipment_lifecycle() -> None:
    # Reset cached services for deterministic tests.
    global _shipment_lifecycle
    _shipment_lifecycle = None
