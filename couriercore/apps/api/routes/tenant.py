from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.apps.api.deps import get_db, get_tenant_context, reject_tenant_id_in_body, require_role
from couriercore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from couriercore.apps.api.response import SuccessEnvelope, success_response
from couriercore.domain.lifecycle import ServiceType
from couriercore.domain.models import Tenant, TenantUser
from couriercore.domain.tenancy import ROLE_ADMIN, Plan, Role, TenantContext
from couriercore.services import tenancy


router = APIRouter(prefix="/tenant", tags=["tenant"], responses=DEFAULT_ERROR_RESPONSES)


class TenantResponse(BaseModel):
    id: str
    name: str
    plan: str
    api_key_prefix: str
    enabled_services: list[str]
    onboarding_status: str
    is_active: bool
    deactivated_at: datetime | None
    created_at: datetime
    updated_at: datetime


class TenantPatchRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    plan: Plan | None = None
    enabled_services: list[ServiceType] | None = Field(default=None, min_length=1)

    model_config = {"extra": "forbid"}


class TenantUserRequest(BaseModel):
    external_subject: str = Field(min_length=1, max_length=255)
    role: Role = "customer"
    email: str | None = Field(default=None, max_length=320)

    model_config = {"extra": "forbid"}


class TenantUserResponse(BaseModel):
    id: str
    external_subject: str
    role: str
    email: str | None
    status: str
    created_at: datetime


class ApiKeyRotateResponse(BaseModel):
    # Shown once; the previous key is revoked immediately.
    api_key: str
    api_key_prefix: str
    rotated_at: datetime


def tenant_to_response(tenant: Tenant) -> TenantResponse:
    return TenantResponse(
        id=tenant.id,
        name=tenant.name,
        plan=tenant.plan,
        api_key_prefix=tenant.api_key_prefix,
        enabled_services=list(tenant.enabled_services or []),
        onboarding_status=tenant.onboarding_status,
        is_active=tenant.is_active,
        deactivated_at=tenant.deactivated_at,
        created_at=tenant.created_at,
        updated_at=tenant.updated_at,
    )


def _user_to_response(user: TenantUser) -> TenantUserResponse:
    return TenantUserResponse(
        id=user.id,
        external_subject=user.external_subject,
        role=user.role,
        email=user.email,
        status=user.status,
        created_at=user.created_at,
    )


@router.get("", response_model=SuccessEnvelope[TenantResponse])
async def get_tenant(
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await tenancy.get_current_tenant(db, context)
    return success_response(request=request, data=tenant_to_response(tenant))


@router.patch("", response_model=SuccessEnvelope[TenantResponse])
async def patch_tenant(
    request: Request,
    payload: TenantPatchRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await tenancy.update_tenant(
        db,
        context,
        plan=payload.plan,
        enabled_services=(
            list(payload.enabled_services) if payload.enabled_services is not None else None
        ),
        name=payload.name,
    )
    return success_response(request=request, data=tenant_to_response(tenant))


@router.post("/deactivate", response_model=SuccessEnvelope[TenantResponse])
async def deactivate_tenant(
    request: Request,
    context: TenantContext = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await tenancy.deactivate_tenant(db, context)
    return success_response(request=request, data=tenant_to_response(tenant))


@router.post("/api-key/rotate", response_model=SuccessEnvelope[ApiKeyRotateResponse])
async def rotate_api_key(
    request: Request,
    context: TenantContext = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant, raw_key = await tenancy.rotate_api_key(db, context)
    data = ApiKeyRotateResponse(
        api_key=raw_key, api_key_prefix=tenant.api_key_prefix, rotated_at=tenant.updated_at
    )
    return success_response(request=request, data=data)


@router.get("/users", response_model=SuccessEnvelope[list[TenantUserResponse]])
async def list_tenant_users(
    request: Request,
    context: TenantContext = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    users = await tenancy.list_tenant_users(db, context)
    return success_response(request=request, data=[_user_to_response(user) for user in users])


@router.post("/users", status_code=201, response_model=SuccessEnvelope[TenantUserResponse])
async def add_tenant_user(
    request: Request,
    payload: TenantUserRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await tenancy.add_tenant_user(
        db,
        context,
        external_subject=payload.external_subject,
        role=payload.role,
        email=payload.email,
    )
    return success_response(request=request, data=_user_to_response(user))
