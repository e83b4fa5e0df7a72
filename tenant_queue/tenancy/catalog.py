"""
Tenant catalog adapters.

The catalog is the source of truth for where each tenant's data lives. The
queue only reads it; tenants are provisioned elsewhere.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from tenant_queue.config import Settings
from tenant_queue.db.models import tenants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantConnectionParams:
    """Connection parameters for one tenant's backing store."""

    tenant_id: str
    database_url: str
    options: dict[str, Any] = field(default_factory=dict)


class TenantCatalog(ABC):
    """Port for looking up tenant connection parameters."""

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> TenantConnectionParams | None:
        """
        Look up a tenant.

        Args:
            tenant_id: The tenant identifier.

        Returns:
            The tenant's connection parameters, or None if unknown.
        """
        pass


class StaticTenantCatalog(TenantCatalog):
    """Catalog held in memory, typically loaded from settings."""

    def __init__(self, databases: Mapping[str, str]):
        self._databases = dict(databases)

    async def get_tenant(self, tenant_id: str) -> TenantConnectionParams | None:
        url = self._databases.get(tenant_id)
        if url is None:
            return None
        return TenantConnectionParams(tenant_id=tenant_id, database_url=url)

    def add(self, tenant_id: str, database_url: str) -> None:
        """Register or move a tenant."""
        self._databases[tenant_id] = database_url


class DatabaseTenantCatalog(TenantCatalog):
    """Catalog stored in the central database's tenants table."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def get_tenant(self, tenant_id: str) -> TenantConnectionParams | None:
        stmt = select(tenants.c.id, tenants.c.database_url).where(tenants.c.id == tenant_id)
        async with self._engine.connect() as conn:
            result = await conn.execute(stmt)
            row = result.one_or_none()

        if row is None:
            return None
        return TenantConnectionParams(tenant_id=row.id, database_url=row.database_url)


def catalog_from_settings(settings: Settings, central_engine: AsyncEngine | None = None) -> TenantCatalog:
    """
    Build the catalog selected by settings.tenant_catalog.

    Args:
        settings: Application settings.
        central_engine: Engine of the central database, required for the
            database catalog.
    """
    if settings.tenant_catalog == "static":
        return StaticTenantCatalog(settings.tenant_databases)
    if settings.tenant_catalog == "database":
        if central_engine is None:
            raise ValueError("The database tenant catalog needs the central engine")
        return DatabaseTenantCatalog(central_engine)
    raise ValueError(f"Unsupported tenant catalog [{settings.tenant_catalog}]")
