from __future__ import annotations

import os
import tempfile
from uuid import uuid4

# Point the engine at a throwaway SQLite file before couriercore.persistence.db is imported.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"couriercore-test-{uuid4().hex}.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_PATH}")
os.environ.setdefault("RL_BACKEND", "memory")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest

from couriercore.apps.api import rate_limit
from couriercore.core.config import get_settings
from couriercore.domain.models import Base
from couriercore.persistence.db import engine
from couriercore.services.sessions import reset_session_store
from couriercore.services.shipments import reset_shipment_lifecycle


@pytest.fixture
async def db_schema():
    # Fresh tables per test so rows never leak between cases.
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests():
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_cached_state():
    # Clear settings cache and cached services so env overrides never leak.
    yield
    get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()
    reset_session_store()
    reset_shipment_lifecycle()


def pytest_sessionfinish(session, exitstatus) -> None:
    if os.path.exists(_TEST_DB_PATH):
        os.remove(_TEST_DB_PATH)
