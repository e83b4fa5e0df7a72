"""
Database module.
Contains database connection, table definitions, and the relational job store.
"""

from tenant_queue.db.connection import (
    build_engine,
    close_db,
    create_session_factory,
    create_tables,
    get_engine,
    session_scope,
)
from tenant_queue.db.models import JobTables, job_tables, metadata, tenants

__all__ = [
    "build_engine",
    "get_engine",
    "create_session_factory",
    "create_tables",
    "close_db",
    "session_scope",
    "metadata",
    "job_tables",
    "JobTables",
    "tenants",
]
