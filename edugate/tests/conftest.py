from __future__ import annotations

import os
from typing import Iterator

# Keep the module-level engine off Postgres; tests build their own file-backed engines.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWT_SECRET", "edugate-test-secret")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edugate.core.config import get_settings
from edugate.persistence.db import build_engine, build_session_factory, create_schema


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Iterator[None]:
    # Settings are lru-cached; env tweaks in one test must not leak into the next.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    # A file database gives each session its own connection, like a real pool.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'edugate.db'}")
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as db_session:
        yield db_session
