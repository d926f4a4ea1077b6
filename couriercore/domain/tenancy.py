from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


PLAN_FREE = "free"
PLAN_PRO = "pro"
PLAN_ENTERPRISE = "enterprise"

Plan = Literal["free", "pro", "enterprise"]

PLANS = frozenset({PLAN_FREE, PLAN_PRO, PLAN_ENTERPRISE})

ROLE_CUSTOMER = "customer"
ROLE_CSR = "csr"
ROLE_ADMIN = "admin"

Role = Literal["customer", "csr", "admin"]

ROLE_ORDER: dict[str, int] = {
    ROLE_CUSTOMER: 1,
    ROLE_CSR: 2,
    ROLE_ADMIN: 3,
}

ONBOARDING_PENDING = "pending"
ONBOARDING_RATES_COMPLETED = "rates_completed"
ONBOARDING_DONE = "done"

AUTH_METHOD_SUBJECT = "subject"
AUTH_METHOD_API_KEY = "api_key"
AUTH_METHOD_SYSTEM = "system"


@dataclass(frozen=True)
class Principal:
    # Identity presented by the caller before tenant resolution.
    subject_id: str
    auth_method: str = AUTH_METHOD_SUBJECT


@dataclass(frozen=True)
class TenantContext:
    # Resolved per request and passed explicitly to every tenant-scoped call.
    tenant_id: str
    plan: str
    subject_id: str
    role: str = ROLE_CUSTOMER

    @classmethod
    def system(cls, tenant_id: str, plan: str = PLAN_FREE) -> "TenantContext":
        # Background workers act inside one tenant at a time.
        return cls(tenant_id=tenant_id, plan=plan, subject_id="system", role=ROLE_ADMIN)


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for RBAC checks.
    normalized = role.strip().lower()
    if normalized not in ROLE_ORDER:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def role_allows(*, role: str, minimum_role: str) -> bool:
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)
