from __future__ import annotations

from typing import Any

from sqlalchemy import Select, select

from couriercore.core.config import get_settings


class TenantPredicateError(RuntimeError):
    # Raised when a tenant-owned table is queried without a tenant id.
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def require_tenant_id(tenant_id: str | None) -> None:
    settings = get_settings()
    if not settings.authz_require_tenant_predicate:
        return
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")


def tenant_predicate(model: Any, tenant_id: str) -> Any:
    # Every tenant-owned query goes through here so the guard cannot be skipped.
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id


def scoped_select(model: Any, tenant_id: str, *criteria: Any) -> Select:
    # SELECT model rows owned by tenant_id, narrowed by extra criteria.
    return select(model).where(tenant_predicate(model, tenant_id), *criteria)
