"""
Tenancy module.
Contains the tenant catalog adapters and the connection resolver.
"""

from tenant_queue.tenancy.catalog import (
    DatabaseTenantCatalog,
    StaticTenantCatalog,
    TenantCatalog,
    TenantConnectionParams,
    catalog_from_settings,
)
from tenant_queue.tenancy.resolver import (
    ConnectionHandle,
    TenantConnectionResolver,
    current_connection,
    current_tenant_id,
    tenant_session,
)

__all__ = [
    "TenantCatalog",
    "StaticTenantCatalog",
    "DatabaseTenantCatalog",
    "TenantConnectionParams",
    "catalog_from_settings",
    "ConnectionHandle",
    "TenantConnectionResolver",
    "current_connection",
    "current_tenant_id",
    "tenant_session",
]
