from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
import logging
import secrets
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from couriercore.core.errors import (
    BusinessRuleViolation,
    Conflict,
    InvalidInput,
    TenantNotFound,
    Unauthenticated,
)
from couriercore.domain.lifecycle import SERVICE_STANDARD, SERVICE_TYPES
from couriercore.domain.models import Tenant, TenantUser
from couriercore.domain.tenancy import (
    AUTH_METHOD_API_KEY,
    ONBOARDING_DONE,
    ONBOARDING_PENDING,
    PLAN_FREE,
    PLANS,
    ROLE_ADMIN,
    Principal,
    TenantContext,
    normalize_role,
)
from couriercore.persistence.repos import tenants as tenants_repo


logger = logging.getLogger(__name__)

API_KEY_PREFIX = "cck_"

# Paths that are served without a tenant context.
PUBLIC_PATH_PREFIXES: tuple[str, ...] = (
    "/health",
    "/v1/health",
    "/v1/onboarding",
    "/v1/shipments/tracking/",
    "/docs",
    "/openapi.json",
    "/v1/docs",
    "/v1/openapi.json",
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_public_path(path: str) -> bool:
    return path.startswith(PUBLIC_PATH_PREFIXES)


def hash_api_key(raw_key: str) -> str:
    # Use SHA-256 for deterministic, non-reversible key storage.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str, str]:
    # Returns (raw_key, key_prefix, key_hash); the raw key is shown to the tenant once.
    raw_key = f"{API_KEY_PREFIX}{uuid4().hex[:8]}_{secrets.token_urlsafe(32)}"
    return raw_key, raw_key[:12], hash_api_key(raw_key)


async def resolve_tenant_context(
    session: AsyncSession,
    principal: Principal | None,
    path: str,
) -> TenantContext | None:
    """Resolve the caller's tenant scope.

    Lookup runs principal -> tenant user -> tenant -> plan. Public paths
    without a principal resolve to None; any other path without a principal
    raises Unauthenticated, and a principal without an active tenant raises
    TenantNotFound.
    """
    if principal is None:
        if is_public_path(path):
            return None
        raise Unauthenticated("Authentication required")

    if principal.auth_method == AUTH_METHOD_API_KEY:
        tenant = await tenants_repo.get_tenant_by_api_key_hash(session, principal.subject_id)
        if tenant is None or not tenant.is_active:
            logger.warning("tenant_not_found auth_method=api_key path=%s", path)
            raise TenantNotFound("Tenant context not available")
        return TenantContext(
            tenant_id=tenant.id,
            plan=tenant.plan,
            subject_id=f"api_key:{tenant.api_key_prefix}",
            role=ROLE_ADMIN,
        )

    tenant_user = await tenants_repo.get_user_by_subject(session, principal.subject_id)
    if tenant_user is None or tenant_user.status != "active":
        logger.warning("tenant_not_found auth_method=subject path=%s", path)
        raise TenantNotFound("Tenant context not available")
    tenant = await tenants_repo.get_tenant(session, tenant_user.tenant_id)
    if tenant is None or not tenant.is_active:
        logger.warning("tenant_inactive tenant_id=%s path=%s", tenant_user.tenant_id, path)
        raise TenantNotFound("Tenant context not available")
    return TenantContext(
        tenant_id=tenant.id,
        plan=tenant.plan,
        subject_id=principal.subject_id,
        role=tenant_user.role,
    )


def _validate_plan(plan: str) -> str:
    normalized = plan.strip().lower()
    if normalized not in PLANS:
        raise InvalidInput(f"Unsupported plan: {plan}", details={"plan": plan})
    return normalized


def _validate_services(services: list[str]) -> list[str]:
    unknown = [service for service in services if service not in SERVICE_TYPES]
    if unknown:
        raise InvalidInput("Unsupported service types", details={"service_types": unknown})
    if not services:
        raise InvalidInput("At least one service type must be enabled")
    # Preserve caller order while dropping duplicates.
    return list(dict.fromkeys(services))


@dataclass(frozen=True)
class SignupResult:
    tenant: Tenant
    admin_user: TenantUser
    api_key: str


async def signup_tenant(
    session: AsyncSession,
    *,
    principal: Principal | None,
    name: str,
    plan: str = PLAN_FREE,
    enabled_services: list[str] | None = None,
    email: str | None = None,
) -> SignupResult:
    # Onboarding creates the tenant and maps the signing-up subject as its admin.
    if principal is None or principal.auth_method == AUTH_METHOD_API_KEY:
        raise Unauthenticated("Signup requires an authenticated user subject")
    existing = await tenants_repo.get_user_by_subject(session, principal.subject_id)
    if existing is not None:
        raise Conflict(
            "Subject is already mapped to a tenant",
            code="TENANT_ALREADY_EXISTS",
        )
    raw_key, key_prefix, key_hash = generate_api_key()
    now = _utc_now()
    tenant = Tenant(
        id=uuid4().hex,
        name=name,
        api_key_hash=key_hash,
        api_key_prefix=key_prefix,
        plan=_validate_plan(plan),
        enabled_services=_validate_services(enabled_services or [SERVICE_STANDARD]),
        onboarding_status=ONBOARDING_PENDING,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    admin_user = TenantUser(
        id=uuid4().hex,
        tenant_id=tenant.id,
        external_subject=principal.subject_id,
        role=ROLE_ADMIN,
        email=email,
        status="active",
        created_at=now,
    )
    session.add(tenant)
    # Flush the tenant before the mapping to satisfy the foreign key.
    await session.flush()
    session.add(admin_user)
    await session.commit()
    logger.info("tenant_signup tenant_id=%s plan=%s", tenant.id, tenant.plan)
    return SignupResult(tenant=tenant, admin_user=admin_user, api_key=raw_key)


async def get_current_tenant(session: AsyncSession, context: TenantContext) -> Tenant:
    tenant = await tenants_repo.get_tenant(session, context.tenant_id)
    if tenant is None:
        raise TenantNotFound("Tenant context not available")
    return tenant


async def update_tenant(
    session: AsyncSession,
    context: TenantContext,
    *,
    plan: str | None = None,
    enabled_services: list[str] | None = None,
    name: str | None = None,
) -> Tenant:
    tenant = await get_current_tenant(session, context)
    if plan is not None:
        new_plan = _validate_plan(plan)
        if new_plan != tenant.plan:
            logger.info(
                "tenant_plan_changed tenant_id=%s from=%s to=%s actor=%s",
                tenant.id,
                tenant.plan,
                new_plan,
                context.subject_id,
            )
        tenant.plan = new_plan
    if enabled_services is not None:
        tenant.enabled_services = _validate_services(enabled_services)
    if name is not None:
        tenant.name = name
    tenant.updated_at = _utc_now()
    await session.commit()
    return tenant


async def deactivate_tenant(session: AsyncSession, context: TenantContext) -> Tenant:
    # Soft-deactivate; rows stay for audit and the resolver stops admitting the tenant.
    tenant = await get_current_tenant(session, context)
    if tenant.is_active:
        now = _utc_now()
        tenant.is_active = False
        tenant.deactivated_at = now
        tenant.updated_at = now
        await session.commit()
        logger.info("tenant_deactivated tenant_id=%s actor=%s", tenant.id, context.subject_id)
    return tenant


async def rotate_api_key(session: AsyncSession, context: TenantContext) -> tuple[Tenant, str]:
    # Replace the tenant key in place; the previous key stops resolving on commit.
    tenant = await get_current_tenant(session, context)
    raw_key, key_prefix, key_hash = generate_api_key()
    old_prefix = tenant.api_key_prefix
    tenant.api_key_hash = key_hash
    tenant.api_key_prefix = key_prefix
    tenant.updated_at = _utc_now()
    await session.commit()
    logger.info(
        "tenant_api_key_rotated tenant_id=%s old_prefix=%s new_prefix=%s actor=%s",
        tenant.id,
        old_prefix,
        key_prefix,
        context.subject_id,
    )
    return tenant, raw_key


async def add_tenant_user(
    session: AsyncSession,
    context: TenantContext,
    *,
    external_subject: str,
    role: str,
    email: str | None = None,
) -> TenantUser:
    try:
        normalized_role = normalize_role(role)
    except ValueError as exc:
        raise InvalidInput(str(exc), details={"role": role}) from exc
    existing = await tenants_repo.get_user_by_subject(session, external_subject)
    if existing is not None:
        # A subject maps to exactly one tenant; do not reveal which.
        raise Conflict("Subject is already mapped to a tenant", code="TENANT_USER_EXISTS")
    tenant_user = TenantUser(
        id=uuid4().hex,
        tenant_id=context.tenant_id,
        external_subject=external_subject,
        role=normalized_role,
        email=email,
        status="active",
        created_at=_utc_now(),
    )
    session.add(tenant_user)
    await session.commit()
    return tenant_user


async def list_tenant_users(session: AsyncSession, context: TenantContext) -> list[TenantUser]:
    return await tenants_repo.list_users(session, context.tenant_id)


async def mark_onboarding_done(session: AsyncSession, context: TenantContext) -> None:
    # Called once the tenant has a usable rate table.
    tenant = await get_current_tenant(session, context)
    if tenant.onboarding_status != ONBOARDING_DONE:
        tenant.onboarding_status = ONBOARDING_DONE
        tenant.updated_at = _utc_now()


def require_service_enabled(tenant: Tenant, service_type: str) -> None:
    if service_type not in (tenant.enabled_services or []):
        raise BusinessRuleViolation(
            f"Service type {service_type} is not enabled for this tenant",
            code="SERVICE_NOT_ENABLED",
            details={"service_type": service_type},
        )
