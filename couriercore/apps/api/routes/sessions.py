from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.apps.api.deps import get_db, get_tenant_context, reject_tenant_id_in_body
from couriercore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from couriercore.apps.api.response import SuccessEnvelope, success_response
from couriercore.domain.models import ChatSession
from couriercore.domain.tenancy import TenantContext
from couriercore.services.sessions import get_session_store


router = APIRouter(prefix="/sessions", tags=["sessions"], responses=DEFAULT_ERROR_RESPONSES)

Channel = Literal["web", "telegram", "whatsapp", "api"]


class SessionCreateRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)
    channel: Channel
    ttl_hours: float | None = Field(default=None, gt=0, le=24 * 30)
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


class SessionResolveRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)
    channel: Channel

    model_config = {"extra": "forbid"}


class SessionUpdateRequest(BaseModel):
    data: dict[str, Any]
    extend_hours: float | None = Field(default=None, gt=0, le=24 * 30)

    model_config = {"extra": "forbid"}


class SessionResponse(BaseModel):
    session_id: str
    user_id: str
    channel: str
    data: dict[str, Any]
    is_active: bool
    created_at: datetime
    updated_at: datetime
    expires_at: datetime


def _to_response(row: ChatSession) -> SessionResponse:
    return SessionResponse(
        session_id=row.session_id,
        user_id=row.user_id,
        channel=row.channel,
        data=dict(row.data or {}),
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
        expires_at=row.expires_at,
    )


@router.post("", status_code=201, response_model=SuccessEnvelope[SessionResponse])
async def create_session(
    request: Request,
    payload: SessionCreateRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await get_session_store().create(
        db,
        context,
        user_id=payload.user_id,
        channel=payload.channel,
        ttl_hours=payload.ttl_hours,
        data=payload.data,
    )
    return success_response(request=request, data=_to_response(row))


@router.post("/resolve", response_model=SuccessEnvelope[SessionResponse])
async def resolve_session(
    request: Request,
    payload: SessionResolveRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Channel integrations call this on every inbound message.
    row = await get_session_store().get_or_create(
        db, context, user_id=payload.user_id, channel=payload.channel
    )
    return success_response(request=request, data=_to_response(row))


@router.get("", response_model=SuccessEnvelope[list[SessionResponse]])
async def list_active_sessions(
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await get_session_store().list_active_sessions(db, context)
    return success_response(request=request, data=[_to_response(row) for row in rows])


@router.get("/user/{user_id}", response_model=SuccessEnvelope[list[SessionResponse]])
async def list_user_sessions(
    user_id: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await get_session_store().list_user_sessions(db, context, user_id)
    return success_response(request=request, data=[_to_response(row) for row in rows])


@router.get("/{session_id}", response_model=SuccessEnvelope[SessionResponse])
async def get_session(
    session_id: str,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await get_session_store().require(db, context, session_id)
    return success_response(request=request, data=_to_response(row))


@router.put("/{session_id}", response_model=SuccessEnvelope[SessionResponse])
async def update_session(
    session_id: str,
    request: Request,
    payload: SessionUpdateRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await get_session_store().update(
        db, context, session_id, data=payload.data, extend_hours=payload.extend_hours
    )
    return success_response(request=request, data=_to_response(row))


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await get_session_store().delete(db, context, session_id)
    return Response(status_code=204)
