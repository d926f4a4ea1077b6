from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.apps.api.deps import get_db, get_principal
from couriercore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from couriercore.apps.api.response import SuccessEnvelope, success_response
from couriercore.apps.api.routes.tenant import TenantResponse, tenant_to_response
from couriercore.domain.lifecycle import ServiceType
from couriercore.domain.tenancy import Plan, Principal
from couriercore.services.tenancy import signup_tenant


router = APIRouter(prefix="/onboarding", tags=["onboarding"], responses=DEFAULT_ERROR_RESPONSES)


class SignupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    plan: Plan = "free"
    enabled_services: list[ServiceType] = Field(default_factory=lambda: ["Standard"], min_length=1)
    email: str | None = Field(default=None, max_length=320)

    model_config = {"extra": "forbid"}


class SignupResponse(BaseModel):
    tenant: TenantResponse
    admin_subject: str
    # Shown once; only the hash is stored.
    api_key: str
    created_at: datetime


@router.post(
    "/tenants",
    status_code=201,
    response_model=SuccessEnvelope[SignupResponse],
)
async def signup(
    request: Request,
    payload: SignupRequest,
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await signup_tenant(
        db,
        principal=principal,
        name=payload.name,
        plan=payload.plan,
        enabled_services=list(payload.enabled_services),
        email=payload.email,
    )
    data = SignupResponse(
        tenant=tenant_to_response(result.tenant),
        admin_subject=result.admin_user.external_subject,
        api_key=result.api_key,
        created_at=result.tenant.created_at,
    )
    return success_response(request=request, data=data)
