from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.apps.api.deps import get_db, get_tenant_context, reject_tenant_id_in_body, require_role
from couriercore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from couriercore.apps.api.response import SuccessEnvelope, success_response
from couriercore.domain.lifecycle import ServiceType, ShipmentStatus
from couriercore.domain.models import Shipment, ShipmentEvent
from couriercore.domain.tenancy import ROLE_CSR, TenantContext
from couriercore.services.shipments import get_shipment_lifecycle


router = APIRouter(prefix="/shipments", tags=["shipments"], responses=DEFAULT_ERROR_RESPONSES)


class Contact(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone: str | None = Field(default=None, max_length=40)
    email: str | None = Field(default=None, max_length=320)
    address: str = Field(min_length=1, max_length=500)
    city: str | None = Field(default=None, max_length=120)
    postal_code: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=2)


class Parcel(BaseModel):
    weight: float = Field(gt=0, description="Actual weight in kg")
    length: float | None = Field(default=None, gt=0, description="cm")
    width: float | None = Field(default=None, gt=0, description="cm")
    height: float | None = Field(default=None, gt=0, description="cm")
    description: str | None = Field(default=None, max_length=500)
    value: float | None = Field(default=None, ge=0)


class ShipmentCreateRequest(BaseModel):
    sender: Contact
    receiver: Contact
    parcel: Parcel
    service_type: ServiceType = "Standard"
    special_instructions: str | None = Field(default=None, max_length=1000)

    model_config = {"extra": "forbid"}


class ShipmentEventRequest(BaseModel):
    status: ShipmentStatus
    location: str = Field(min_length=1, max_length=200)
    notes: str | None = Field(default=None, max_length=1000)
    # Optional optimistic-concurrency token from a prior read.
    expected_version: int | None = Field(default=None, ge=0)

    model_config = {"extra": "forbid"}


class ShipmentResponse(BaseModel):
    id: str
    tracking_number: str
    sender: dict[str, Any]
    receiver: dict[str, Any]
    parcel: dict[str, Any]
    service_type: str
    status: str
    special_instructions: str | None
    estimated_delivery: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime


class ShipmentPageResponse(BaseModel):
    items: list[ShipmentResponse]
    total: int
    page: int
    page_size: int


class ShipmentEventResponse(BaseModel):
    id: str
    tracking_number: str
    status: str
    location: str
    notes: str | None
    timestamp: datetime


class PublicTrackingEventResponse(BaseModel):
    status: str
    location: str
    timestamp: datetime


class PublicTrackingResponse(BaseModel):
    tracking_number: str
    status: str
    service_type: str
    estimated_delivery: datetime | None
    last_location: str | None
    updated_at: datetime
    history: list[PublicTrackingEventResponse]


def _to_response(shipment: Shipment) -> ShipmentResponse:
    return ShipmentResponse(
        id=shipment.id,
        tracking_number=shipment.tracking_number,
        sender=shipment.sender,
        receiver=shipment.receiver,
        parcel=shipment.parcel,
        service_type=shipment.service_type,
        status=shipment.status,
        special_instructions=shipment.special_instructions,
        estimated_delivery=shipment.estimated_delivery,
        version=shipment.version,
        created_at=shipment.created_at,
        updated_at=shipment.updated_at,
    )


def _event_to_response(event: ShipmentEvent) -> ShipmentEventResponse:
    return ShipmentEventResponse(
        id=event.id,
        tracking_number=event.tracking_number,
        status=event.status,
        location=event.location,
        notes=event.notes,
        timestamp=event.timestamp,
    )


# Public lookup: no tenant context and no quota; registered ahead of the tenant routes.
@router.get("/tracking/{tracking_number}", response_model=SuccessEnvelope[PublicTrackingResponse])
async def public_tracking(
    tracking_number: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    projection = await get_shipment_lifecycle().public_tracking(db, tracking_number)
    data = PublicTrackingResponse(
        tracking_number=projection.tracking_number,
        status=projection.status,
        service_type=projection.service_type,
        estimated_delivery=projection.estimated_delivery,
        last_location=projection.last_location,
        updated_at=projection.updated_at,
        history=[
            PublicTrackingEventResponse(
                status=item.status, location=item.location, timestamp=item.timestamp
            )
            for item in projection.history
        ],
    )
    return success_response(request=request, data=data)


@router.post("", status_code=201, response_model=SuccessEnvelope[ShipmentResponse])
async def create_shipment(
    request: Request,
    payload: ShipmentCreateRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    shipment = await get_shipment_lifecycle().create(
        db,
        context,
        sender=payload.sender.model_dump(mode="json", exclude_none=True),
        receiver=payload.receiver.model_dump(mode="json", exclude_none=True),
        parcel=payload.parcel.model_dump(mode="json", exclude_none=True),
        service_type=payload.service_type,
        special_instructions=payload.special_instructions,
    )
    return success_response(request=request, data=_to_response(shipment))


@router.get("", response_model=SuccessEnvelope[ShipmentPageResponse])
async def list_shipments(
    request: Request,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: ShipmentStatus | None = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await get_shipment_lifecycle().list_shipments(
        db, context, page=page, page_size=page_size, status=status
    )
    data = ShipmentPageResponse(
        items=[_to_response(item) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )
    return success_response(request=request, data=data)


@router.get("/{tracking_number}", response_model=SuccessEnvelope[ShipmentResponse])
async def get_shipment(
    tracking_number: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    shipment = await get_shipment_lifecycle().get_by_tracking(db, context, tracking_number)
    return success_response(request=request, data=_to_response(shipment))


@router.post("/{tracking_number}/events", response_model=SuccessEnvelope[ShipmentResponse])
async def record_shipment_event(
    tracking_number: str,
    request: Request,
    payload: ShipmentEventRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(require_role(ROLE_CSR)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    shipment = await get_shipment_lifecycle().record_event(
        db,
        context,
        tracking_number=tracking_number,
        new_status=payload.status,
        location=payload.location,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )
    return success_response(request=request, data=_to_response(shipment))


@router.get(
    "/{tracking_number}/events",
    response_model=SuccessEnvelope[list[ShipmentEventResponse]],
)
async def list_shipment_events(
    tracking_number: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    events = await get_shipment_lifecycle().list_events(db, context, tracking_number)
    return success_response(request=request, data=[_event_to_response(item) for item in events])
