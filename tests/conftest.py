"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tenant_queue.db import create_tables, job_tables
from tenant_queue.db.repository import DatabaseQueueStore
from tenant_queue.queue.backoff import ExponentialBackoff
from tenant_queue.queue.base import QueueStore
from tenant_queue.queue.memory import MemoryQueueStore
from tenant_queue.tenancy.catalog import StaticTenantCatalog
from tenant_queue.tenancy.resolver import TenantConnectionResolver
from tenant_queue.worker.handlers import HandlerRegistry

LEASE_SECONDS = 30


class FakeClock:
    """Manually advanced clock handed to stores."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def clock() -> FakeClock:
    """Create a clock frozen at a fixed instant."""
    return FakeClock()


@pytest.fixture
def backoff() -> ExponentialBackoff:
    """Deterministic backoff: 5s, 10s, 20s, ..."""
    return ExponentialBackoff(base_seconds=5, max_seconds=300, jitter=0.0)


@pytest_asyncio.fixture
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Create the central database with the job tables."""
    engine = create_async_engine(sqlite_url(tmp_path / "central.db"))
    await create_tables(engine, list(job_tables()))
    async with engine.begin() as conn:
        await conn.execute(text("CREATE TABLE notes (body TEXT NOT NULL)"))

    yield engine

    await engine.dispose()


@pytest.fixture
def memory_store(clock: FakeClock, backoff: ExponentialBackoff) -> MemoryQueueStore:
    return MemoryQueueStore(
        "memory",
        lease_duration_seconds=LEASE_SECONDS,
        backoff=backoff,
        clock=clock,
    )


@pytest.fixture
def db_store(
    async_engine: AsyncEngine,
    clock: FakeClock,
    backoff: ExponentialBackoff,
) -> DatabaseQueueStore:
    return DatabaseQueueStore(
        "database",
        engine=async_engine,
        lease_duration_seconds=LEASE_SECONDS,
        backoff=backoff,
        clock=clock,
    )


@pytest.fixture(params=["memory", "database"])
def store(
    request: pytest.FixtureRequest,
    memory_store: MemoryQueueStore,
    db_store: DatabaseQueueStore,
) -> QueueStore:
    """Run a test against every store backend."""
    if request.param == "memory":
        return memory_store
    return db_store


async def create_tenant_database(path: Path) -> str:
    """Create a tenant database holding a notes table; returns its URL."""
    url = sqlite_url(path)
    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.execute(text("CREATE TABLE notes (body TEXT NOT NULL)"))
    await engine.dispose()
    return url


@pytest.fixture
def make_tenant_database():
    """Create extra tenant databases inside a test."""
    return create_tenant_database


@pytest_asyncio.fixture
async def tenant_catalog(tmp_path: Path) -> StaticTenantCatalog:
    """Catalog with tenants 42 and 7, each in its own database."""
    return StaticTenantCatalog(
        {
            "42": await create_tenant_database(tmp_path / "tenant_42.db"),
            "7": await create_tenant_database(tmp_path / "tenant_7.db"),
        }
    )


@pytest_asyncio.fixture
async def resolver(
    tenant_catalog: StaticTenantCatalog,
    async_engine: AsyncEngine,
) -> AsyncGenerator[TenantConnectionResolver]:
    """Create a resolver whose default connection is the central database."""
    resolver = TenantConnectionResolver(
        tenant_catalog,
        default_engine=async_engine,
        engine_factory=create_async_engine,
    )

    yield resolver

    await resolver.close()


@pytest.fixture
def registry() -> HandlerRegistry:
    """Create an empty handler registry."""
    return HandlerRegistry()


@pytest.fixture
def read_notes():
    """Read back the notes handlers wrote to a database."""

    async def _read(engine: AsyncEngine) -> list[str]:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT body FROM notes ORDER BY body"))
            return [row.body for row in result]

    return _read
