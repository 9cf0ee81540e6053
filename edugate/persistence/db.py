from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from edugate.core.config import Settings, get_settings
from edugate.domain.models import Base


def engine_options(settings: Settings, database_url: str) -> dict[str, Any]:
    """Pool options for ``database_url``.

    SQLite gets the driver defaults. Postgres gets a bounded pool and a
    server-side statement timeout so a slow lookup surfaces as an error
    instead of holding an authorization decision open.
    """
    if database_url.startswith("sqlite"):
        return {}
    options: dict[str, Any] = {
        "pool_pre_ping": True,
        "pool_size": max(1, settings.api_db_pool_size),
        "max_overflow": max(0, settings.api_db_max_overflow),
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }
    if settings.api_db_statement_timeout_ms > 0:
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(settings.api_db_statement_timeout_ms)}
        }
    return options


def build_engine(database_url: str | None = None) -> AsyncEngine:
    settings = get_settings()
    url = database_url or settings.database_url
    return create_async_engine(url, **engine_options(settings, url))


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Decisions read attributes after commit; keep them loaded.
    return async_sessionmaker(bind, expire_on_commit=False)


async def create_schema(bind: AsyncEngine) -> None:
    # Local development and tests only; deployments manage DDL separately.
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = build_engine()
SessionLocal = build_session_factory(engine)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session
