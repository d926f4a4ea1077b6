from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.apps.api.rate_limit import enforce_rate_limit
from couriercore.core.config import get_settings
from couriercore.core.errors import Forbidden, TenantNotFound, Unauthenticated, ValidationError
from couriercore.domain.tenancy import (
    AUTH_METHOD_API_KEY,
    AUTH_METHOD_SUBJECT,
    Principal,
    TenantContext,
    role_allows,
)
from couriercore.persistence.db import get_session
from couriercore.services.tenancy import hash_api_key, resolve_tenant_context


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthenticated(
            "Missing or invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return parts[1]


def get_principal(request: Request) -> Principal | None:
    # The identity gateway has already verified the subject; API keys are matched by hash.
    settings = get_settings()
    subject = (request.headers.get(settings.auth_subject_header) or "").strip()
    if subject:
        return Principal(subject_id=subject, auth_method=AUTH_METHOD_SUBJECT)
    token = _parse_bearer_token(request.headers.get(settings.auth_api_key_header))
    if token:
        return Principal(subject_id=hash_api_key(token), auth_method=AUTH_METHOD_API_KEY)
    return None


async def get_tenant_context(
    request: Request,
    response: Response,
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    # Resolve first, then spend quota, so unknown callers never consume a tenant's budget.
    context = await resolve_tenant_context(db, principal, request.url.path)
    if context is None:
        raise TenantNotFound("Tenant context not available")
    await enforce_rate_limit(request=request, response=response, context=context)
    return context


def require_role(minimum_role: str):
    # Dependency factory to enforce RBAC at the route level.
    async def _dependency(
        request: Request,
        context: TenantContext = Depends(get_tenant_context),
    ) -> TenantContext:
        if not role_allows(role=context.role, minimum_role=minimum_role):
            logger.info(
                "rbac_forbidden tenant_id=%s role=%s required=%s path=%s",
                context.tenant_id,
                context.role,
                minimum_role,
                request.url.path,
            )
            raise Forbidden(
                "Insufficient role for this operation",
                details={"required_role": minimum_role},
            )
        return context

    return _dependency


async def reject_tenant_id_in_body(request: Request) -> None:
    # Tenant scope comes from the credential, never from the payload.
    content_type = (request.headers.get("content-type") or "").lower()
    if not content_type.startswith("application/json"):
        return
    try:
        payload = await request.json()
    except ValueError:
        return
    if isinstance(payload, dict) and "tenant_id" in payload:
        raise ValidationError(
            "tenant_id must be derived from the caller's credentials",
            code="TENANT_ID_NOT_ALLOWED",
        )
