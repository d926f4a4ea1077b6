from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.apps.api.deps import get_db, get_tenant_context, reject_tenant_id_in_body, require_role
from couriercore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from couriercore.apps.api.response import SuccessEnvelope, success_response
from couriercore.domain.lifecycle import ServiceType
from couriercore.domain.models import Rate
from couriercore.domain.tenancy import ROLE_ADMIN, TenantContext
from couriercore.services import rates as rates_service
from couriercore.services.rates import RateInput


router = APIRouter(prefix="/rates", tags=["rates"], responses=DEFAULT_ERROR_RESPONSES)


class RateCreateRequest(BaseModel):
    service_type: ServiceType
    base_rate: Decimal = Field(ge=0)
    additional_kg_rate: Decimal = Field(ge=0)
    min_weight: Decimal = Field(default=Decimal("0.5"), ge=0)
    max_weight: Decimal = Field(default=Decimal("30"), gt=0)
    volumetric_divisor: int | None = Field(default=None, gt=0)
    fuel_surcharge_percent: Decimal = Field(default=Decimal("0"), ge=0)
    remote_surcharge: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)

    model_config = {"extra": "forbid"}


class RatePatchRequest(BaseModel):
    service_type: ServiceType | None = None
    base_rate: Decimal | None = Field(default=None, ge=0)
    additional_kg_rate: Decimal | None = Field(default=None, ge=0)
    min_weight: Decimal | None = Field(default=None, ge=0)
    max_weight: Decimal | None = Field(default=None, gt=0)
    volumetric_divisor: int | None = Field(default=None, gt=0)
    fuel_surcharge_percent: Decimal | None = Field(default=None, ge=0)
    remote_surcharge: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)

    model_config = {"extra": "forbid"}


class RateResponse(BaseModel):
    id: str
    service_type: str
    base_rate: Decimal
    additional_kg_rate: Decimal
    min_weight: Decimal
    max_weight: Decimal
    volumetric_divisor: int
    fuel_surcharge_percent: Decimal
    remote_surcharge: Decimal | None
    currency: str
    created_at: datetime
    updated_at: datetime


class RateCalculateRequest(BaseModel):
    weight: Decimal = Field(description="Actual weight in kg")
    length: Decimal | None = None
    width: Decimal | None = None
    height: Decimal | None = None
    service_type: ServiceType = "Standard"
    is_remote: bool = False

    model_config = {"extra": "forbid"}


class RateQuoteResponse(BaseModel):
    service_type: str
    weight: Decimal
    volumetric_weight: Decimal | None
    chargeable_weight: Decimal
    base_rate: Decimal
    additional_charges: Decimal
    cost: Decimal
    fuel_surcharge: Decimal
    remote_surcharge: Decimal
    total: Decimal
    currency: str
    estimated_delivery_days: str
    min_delivery_days: int
    max_delivery_days: int


def _to_response(rate: Rate) -> RateResponse:
    return RateResponse(
        id=rate.id,
        service_type=rate.service_type,
        base_rate=rate.base_rate,
        additional_kg_rate=rate.additional_kg_rate,
        min_weight=rate.min_weight,
        max_weight=rate.max_weight,
        volumetric_divisor=rate.volumetric_divisor,
        fuel_surcharge_percent=rate.fuel_surcharge_percent,
        remote_surcharge=rate.remote_surcharge,
        currency=rate.currency,
        created_at=rate.created_at,
        updated_at=rate.updated_at,
    )


@router.get("", response_model=SuccessEnvelope[list[RateResponse]])
async def list_rates(
    request: Request,
    service_type: ServiceType | None = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await rates_service.list_rates(db, context, service_type=service_type)
    return success_response(request=request, data=[_to_response(row) for row in rows])


# Declared before /{rate_id} so "calculate" is never read as an id.
@router.post("/calculate", response_model=SuccessEnvelope[RateQuoteResponse])
async def calculate_rate(
    request: Request,
    payload: RateCalculateRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    quote = await rates_service.quote(
        db,
        context,
        weight=payload.weight,
        service_type=payload.service_type,
        length=payload.length,
        width=payload.width,
        height=payload.height,
        is_remote=payload.is_remote,
    )
    data = RateQuoteResponse(
        service_type=quote.service_type,
        weight=quote.actual_weight,
        volumetric_weight=quote.volumetric_weight,
        chargeable_weight=quote.chargeable_weight,
        base_rate=quote.base_rate,
        additional_charges=quote.additional_charges,
        cost=quote.cost,
        fuel_surcharge=quote.fuel_surcharge,
        remote_surcharge=quote.remote_surcharge,
        total=quote.total,
        currency=quote.currency,
        estimated_delivery_days=quote.delivery.label,
        min_delivery_days=quote.delivery.min_days,
        max_delivery_days=quote.delivery.max_days,
    )
    return success_response(request=request, data=data)


@router.get("/{rate_id}", response_model=SuccessEnvelope[RateResponse])
async def get_rate(
    rate_id: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rate = await rates_service.get_rate(db, context, rate_id)
    return success_response(request=request, data=_to_response(rate))


@router.post("", status_code=201, response_model=SuccessEnvelope[RateResponse])
async def create_rate(
    request: Request,
    payload: RateCreateRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rate = await rates_service.create_rate(db, context, RateInput(**payload.model_dump()))
    return success_response(request=request, data=_to_response(rate))


@router.patch("/{rate_id}", response_model=SuccessEnvelope[RateResponse])
async def patch_rate(
    rate_id: str,
    request: Request,
    payload: RatePatchRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rate = await rates_service.update_rate(
        db, context, rate_id, payload.model_dump(exclude_unset=True)
    )
    return success_response(request=request, data=_to_response(rate))


@router.delete("/{rate_id}", status_code=204)
async def delete_rate(
    rate_id: str,
    context: TenantContext = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await rates_service.delete_rate(db, context, rate_id)
    return Response(status_code=204)
