"""
SQLAlchemy table definitions.
Defines the active job table, the failed-job table and the tenant catalog table.

Job tables are built per configured table name, so several queue
connections can keep their lanes in separate tables of one database.
"""

from functools import lru_cache
from typing import Any, NamedTuple

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
)

from tenant_queue.constants import (
    DEFAULT_FAILED_TABLE,
    DEFAULT_JOBS_TABLE,
    DEFAULT_TENANTS_TABLE,
)

metadata = MetaData()

# SQLite only autoincrements INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer, "sqlite")


def _define(name: str, *columns: Any) -> Table:
    # Several connections may share one failed-job table
    existing = metadata.tables.get(name)
    if existing is not None:
        return existing
    # Without AUTOINCREMENT SQLite hands out the id of a deleted last row again
    return Table(name, metadata, *columns, sqlite_autoincrement=True)


class JobTables(NamedTuple):
    jobs: Table
    failed: Table


@lru_cache
def job_tables(
    table: str = DEFAULT_JOBS_TABLE,
    failed_table: str = DEFAULT_FAILED_TABLE,
) -> JobTables:
    """
    Get (creating on first use) the active and failed job tables.

    Key constraints:
    - id is assigned by the database and only ever grows
    - the poll index covers the reservation ordering (queue, available_at, id)
    - reserved_at is NULL while the record is not leased
    """
    jobs = _define(
        table,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("queue", String(255), nullable=False),
        Column("payload", LargeBinary, nullable=False),
        Column("tenant_id", String(255), nullable=True),
        Column("attempts", Integer, nullable=False, default=0),
        Column("reserved_at", DateTime, nullable=True),
        Column("available_at", DateTime, nullable=False),
        Column("created_at", DateTime, nullable=False),
        Index(f"ix_{table}_poll", "queue", "available_at", "id"),
    )

    failed = _define(
        failed_table,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("job_id", BigInteger, nullable=False),
        Column("queue", String(255), nullable=False),
        Column("payload", LargeBinary, nullable=False),
        Column("tenant_id", String(255), nullable=True),
        Column("attempts", Integer, nullable=False),
        Column("reserved_at", DateTime, nullable=True),
        Column("available_at", DateTime, nullable=False),
        Column("created_at", DateTime, nullable=False),
        Column("failed_at", DateTime, nullable=False),
        Column("last_error", Text, nullable=False, default=""),
        Index(f"ix_{failed_table}_queue_failed_at", "queue", "failed_at"),
    )

    return JobTables(jobs=jobs, failed=failed)


tenants = Table(
    DEFAULT_TENANTS_TABLE,
    metadata,
    Column("id", String(255), primary_key=True),
    Column("name", String(255), nullable=True),
    Column("database_url", Text, nullable=False),
    Column("created_at", DateTime, nullable=True),
)
