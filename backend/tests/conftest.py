"""Shared test fixtures: a throwaway SQLite database per test."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from oppscan.config import Settings
from oppscan.database import Base, build_session_factory
from oppscan.services.locks import LocalTriggerLocks
from oppscan.services.scan_engine import ScanEngine


@pytest.fixture
def scan_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        redis_url="",
        environment="test",
        scan_concurrency=1,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'oppscan.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def locks() -> LocalTriggerLocks:
    return LocalTriggerLocks()


@pytest.fixture
def scan_engine(session_factory, scan_settings, locks) -> ScanEngine:
    return ScanEngine(session_factory, scan_settings, locks)
