from __future__ import annotations

import pytest

from couriercore.core.config import get_settings
from couriercore.domain.models import Shipment
from couriercore.domain.tenancy import TenantContext, normalize_role, role_allows
from couriercore.persistence.guards import TenantPredicateError, scoped_select, tenant_predicate
from couriercore.services.tenancy import hash_api_key, is_public_path


def test_tenant_predicate_requires_tenant_id() -> None:
    with pytest.raises(TenantPredicateError):
        tenant_predicate(Shipment, "")


def test_tenant_predicate_can_be_relaxed(monkeypatch) -> None:
    monkeypatch.setenv("AUTHZ_REQUIRE_TENANT_PREDICATE", "false")
    get_settings.cache_clear()
    tenant_predicate(Shipment, "")


def test_scoped_select_always_filters_by_tenant() -> None:
    statement = scoped_select(Shipment, "t1", Shipment.tracking_number == "LMS-AAAA0000")
    compiled = str(statement.compile(compile_kwargs={"literal_binds": True}))
    assert "shipments.tenant_id = 't1'" in compiled
    assert "shipments.tracking_number = 'LMS-AAAA0000'" in compiled


def test_role_ordering() -> None:
    assert role_allows(role="admin", minimum_role="csr")
    assert role_allows(role="csr", minimum_role="csr")
    assert not role_allows(role="customer", minimum_role="csr")
    assert normalize_role(" CSR ") == "csr"
    with pytest.raises(ValueError):
        normalize_role("owner")


def test_tenant_context_is_immutable() -> None:
    context = TenantContext(tenant_id="t1", plan="free", subject_id="s1")
    with pytest.raises(AttributeError):
        context.tenant_id = "t2"  # type: ignore[misc]
    assert TenantContext.system("t1").role == "admin"


def test_public_paths() -> None:
    assert is_public_path("/health")
    assert is_public_path("/v1/shipments/tracking/LMS-ABCDEFGH")
    assert is_public_path("/v1/onboarding/tenants")
    assert not is_public_path("/v1/shipments")
    assert not is_public_path("/v1/shipments/LMS-ABCDEFGH")


def test_api_key_hash_is_stable_and_opaque() -> None:
    assert hash_api_key("cck_abc") == hash_api_key("cck_abc")
    assert hash_api_key("cck_abc") != "cck_abc"
    assert len(hash_api_key("cck_abc")) == 64
