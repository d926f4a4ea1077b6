from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from couriercore.core.config import Settings, get_settings


logger = logging.getLogger(__name__)


def engine_options(settings: Settings) -> dict[str, Any]:
    """Build create_async_engine keyword arguments for the configured backend.

    SQLite (tests, local demos) keeps SQLAlchemy's default pool. Postgres gets a
    bounded asyncpg pool tagged with the app name, plus a server-side statement
    timeout when one is configured.
    """
    if make_url(settings.database_url).get_backend_name() == "sqlite":
        return {}
    server_settings = {"application_name": settings.app_name}
    if settings.api_db_statement_timeout_ms > 0:
        server_settings["statement_timeout"] = str(int(settings.api_db_statement_timeout_ms))
    return {
        "pool_pre_ping": True,
        "pool_size": max(1, int(settings.api_db_pool_size)),
        "max_overflow": max(0, int(settings.api_db_max_overflow)),
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "connect_args": {"server_settings": server_settings},
    }


settings = get_settings()
engine = create_async_engine(settings.database_url, **engine_options(settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def ping_database() -> bool:
    # One round trip on a pooled connection; no tenant tables are touched.
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("database_ping_failed error=%s", type(exc).__name__)
        return False
    return True
