"""
Tenant connection resolution.

A job carries only its tenant id. Before the handler runs, the worker turns
that id into a live connection and makes it the active connection for the
duration of the job. Handler code reaches it through current_connection()
or tenant_session() without knowing which tenant it serves.

The active connection lives in a ContextVar and is reset when the job ends,
so a long-lived worker never carries one tenant's connection into the next
job.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tenant_queue.db.connection import build_engine, create_session_factory, session_scope
from tenant_queue.exceptions import TenantConnectionError, TenantNotFoundError
from tenant_queue.tenancy.catalog import TenantCatalog

logger = logging.getLogger(__name__)

_active_connection: ContextVar["ConnectionHandle | None"] = ContextVar(
    "active_tenant_connection",
    default=None,
)


@dataclass
class ConnectionHandle:
    """A connection to one tenant's backing store, or to the default store."""

    tenant_id: str | None
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession] = field(repr=False)

    @property
    def is_default(self) -> bool:
        return self.tenant_id is None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """Open a transactional session on this connection."""
        async with session_scope(self.session_factory) as session:
            yield session


class TenantConnectionResolver:
    """
    Resolves tenant ids to connection handles.

    Engines are cached per tenant so that their pools are reused across
    jobs; the cache is not the active connection, which is set per job by
    activate().
    """

    def __init__(
        self,
        catalog: TenantCatalog,
        default_engine: AsyncEngine,
        engine_factory: Callable[[str], AsyncEngine] = build_engine,
        verify_connection: bool = True,
    ):
        """
        Initialize the resolver.

        Args:
            catalog: Where tenant connection parameters are looked up.
            default_engine: Engine used for jobs without a tenant.
            engine_factory: Builds an engine from a tenant database URL.
            verify_connection: Round-trip to the tenant database on every
                resolve, so unreachable stores fail before the handler runs.
        """
        self._catalog = catalog
        self._default = ConnectionHandle(
            tenant_id=None,
            engine=default_engine,
            session_factory=create_session_factory(default_engine),
        )
        self._engine_factory = engine_factory
        self._verify = verify_connection
        self._handles: dict[str, tuple[str, ConnectionHandle]] = {}
        self._lock = asyncio.Lock()

    async def resolve(self, tenant_id: str) -> ConnectionHandle:
        """
        Get a connection bound to a tenant's backing store.

        Raises:
            TenantNotFoundError: If the catalog does not know the tenant.
            TenantConnectionError: If the catalog or the tenant's store
                could not be reached.
        """
        try:
            params = await self._catalog.get_tenant(tenant_id)
        except (SQLAlchemyError, OSError) as e:
            raise TenantConnectionError(
                f"Tenant catalog lookup failed for [{tenant_id}]: {e}",
                tenant_id=tenant_id,
            ) from e

        if params is None:
            raise TenantNotFoundError(f"Tenant [{tenant_id}] does not exist", tenant_id=tenant_id)

        async with self._lock:
            cached = self._handles.get(tenant_id)
            if cached is not None and cached[0] == params.database_url:
                handle = cached[1]
            else:
                if cached is not None:
                    logger.info("Tenant database moved, replacing engine", extra={"tenant_id": tenant_id})
                    await cached[1].engine.dispose()
                handle = self._create_handle(tenant_id, params.database_url)
                self._handles[tenant_id] = (params.database_url, handle)

        if self._verify:
            await self._ping(handle)
        return handle

    async def resolve_default(self) -> ConnectionHandle:
        """
        Get the process-wide default connection.

        Raises:
            TenantConnectionError: If the default store is unreachable.
        """
        if self._verify:
            await self._ping(self._default)
        return self._default

    @asynccontextmanager
    async def activate(self, tenant_id: str | None) -> AsyncGenerator[ConnectionHandle]:
        """
        Resolve a connection and make it active for the enclosed block.

        Args:
            tenant_id: The tenant, or None for the default connection.

        Yields:
            ConnectionHandle: The active handle. The previously active handle
            (normally none) is restored on exit, even if the block raises.
        """
        if tenant_id is None:
            handle = await self.resolve_default()
        else:
            handle = await self.resolve(tenant_id)

        token = _active_connection.set(handle)
        try:
            yield handle
        finally:
            _active_connection.reset(token)

    async def close(self) -> None:
        """Dispose every cached tenant engine. The default engine is left to its owner."""
        async with self._lock:
            for _, handle in self._handles.values():
                await handle.engine.dispose()
            self._handles.clear()

    def _create_handle(self, tenant_id: str, database_url: str) -> ConnectionHandle:
        try:
            engine = self._engine_factory(database_url)
        except (SQLAlchemyError, ImportError) as e:
            raise TenantConnectionError(
                f"Could not configure connection for tenant [{tenant_id}]: {e}",
                tenant_id=tenant_id,
            ) from e
        return ConnectionHandle(
            tenant_id=tenant_id,
            engine=engine,
            session_factory=create_session_factory(engine),
        )

    async def _ping(self, handle: ConnectionHandle) -> None:
        try:
            async with handle.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            label = handle.tenant_id or "default"
            raise TenantConnectionError(
                f"Database for tenant [{label}] is unreachable: {e}",
                tenant_id=handle.tenant_id,
            ) from e


def current_connection() -> ConnectionHandle:
    """
    Get the connection activated for the running job.

    Raises:
        RuntimeError: If called outside an activated job.
    """
    handle = _active_connection.get()
    if handle is None:
        raise RuntimeError("No tenant connection is active")
    return handle


def current_tenant_id() -> str | None:
    """Get the tenant of the running job, or None for the default connection or outside a job."""
    handle = _active_connection.get()
    return handle.tenant_id if handle is not None else None


@asynccontextmanager
async def tenant_session() -> AsyncGenerator[AsyncSession]:
    """Open a transactional session on the active connection."""
    async with current_connection().session() as session:
        yield session
