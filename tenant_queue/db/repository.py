"""
Relational job store.
Implements the QueueStore contract on SQLAlchemy tables.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy import and_, case, delete, func, insert, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from tenant_queue.constants import DEFAULT_FAILED_TABLE, DEFAULT_JOBS_TABLE
from tenant_queue.db.connection import create_session_factory, session_scope
from tenant_queue.db.models import job_tables
from tenant_queue.exceptions import StorageError
from tenant_queue.queue.base import QueueStore, to_timedelta
from tenant_queue.types.job import FailedJobRecord, JobRecord

logger = logging.getLogger(__name__)


def _eligible(table, queue: str, now: datetime, cutoff: datetime):
    """Rows of a lane that are due and either unleased or past their lease."""
    return and_(
        table.c.queue == queue,
        table.c.available_at <= now,
        or_(table.c.reserved_at.is_(None), table.c.reserved_at < cutoff),
    )


def _held(table, job_id: int, lease: datetime | None):
    """The row of job_id, restricted to the given lease when there is one."""
    if lease is None:
        return table.c.id == job_id
    return and_(table.c.id == job_id, table.c.reserved_at == lease)


class DatabaseQueueStore(QueueStore):
    """
    QueueStore backed by a relational table.

    Reservation is one conditional UPDATE ... RETURNING whose WHERE clause
    repeats the eligibility test, so two racing workers can never both
    lease the same row. On PostgreSQL the candidate subquery also uses
    FOR UPDATE SKIP LOCKED so that concurrent pollers pick different rows
    instead of queueing behind each other's row locks.
    """

    def __init__(
        self,
        connection_name: str,
        engine: AsyncEngine,
        table: str = DEFAULT_JOBS_TABLE,
        failed_table: str = DEFAULT_FAILED_TABLE,
        **kwargs,
    ):
        """
        Initialize the store.

        Args:
            connection_name: Name of the queue connection this store serves.
            engine: Engine of the database holding the job tables.
            table: Active job table name.
            failed_table: Failed job table name.
            **kwargs: lease_duration_seconds, backoff and clock, see QueueStore.
        """
        super().__init__(connection_name, **kwargs)
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self.tables = job_tables(table, failed_table)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession]:
        try:
            async with session_scope(self._session_factory) as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "Job store operation failed",
                extra={"operation": operation, "connection": self.connection_name, "error": str(e)},
            )
            raise StorageError(f"{operation} failed on [{self.connection_name}]: {e}") from e

    async def enqueue(
        self,
        queue: str,
        payload: bytes,
        tenant_id: str | None = None,
        delay: float | timedelta | None = None,
    ) -> int:
        jobs = self.tables.jobs
        now = self.now()
        stmt = (
            insert(jobs)
            .values(
                queue=queue,
                payload=payload,
                tenant_id=tenant_id,
                attempts=0,
                reserved_at=None,
                available_at=now + to_timedelta(delay),
                created_at=now,
            )
            .returning(jobs.c.id)
        )

        async with self._session("enqueue") as session:
            result = await session.execute(stmt)
            job_id = result.scalar_one()

        logger.debug(
            "Inserted job",
            extra={"job_id": job_id, "queue": queue, "tenant_id": tenant_id},
        )
        return job_id

    def reserve_statement(self, queue: str, now: datetime, cutoff: datetime):
        """Build the UPDATE that leases the next due record of a lane."""
        jobs = self.tables.jobs

        # The candidate query runs on an alias so it stays uncorrelated
        # from the table being updated.
        pick = jobs.alias("candidate")
        candidate = (
            select(pick.c.id)
            .where(_eligible(pick, queue, now, cutoff))
            .order_by(pick.c.available_at, pick.c.id)
            .limit(1)
        )
        if self._engine.dialect.name == "postgresql":
            candidate = candidate.with_for_update(skip_locked=True)

        # SET expressions read the pre-update row, so a reclaimed lease
        # (reserved_at still set) is counted as an abandoned attempt.
        return (
            update(jobs)
            .where(
                jobs.c.id == candidate.scalar_subquery(),
                _eligible(jobs, queue, now, cutoff),
            )
            .values(
                reserved_at=now,
                attempts=case(
                    (jobs.c.reserved_at.is_(None), jobs.c.attempts),
                    else_=jobs.c.attempts + 1,
                ),
            )
            .returning(*jobs.c)
        )

    async def reserve_next(
        self,
        queue: str,
        lease_duration: float | timedelta | None = None,
    ) -> JobRecord | None:
        now = self.now()
        stmt = self.reserve_statement(queue, now, self._lease_cutoff(now, lease_duration))

        async with self._session("reserve_next") as session:
            result = await session.execute(stmt)
            row = result.one_or_none()

        if row is None:
            return None
        return JobRecord(**row._mapping)

    async def complete(self, job_id: int) -> None:
        jobs = self.tables.jobs
        async with self._session("complete") as session:
            await session.execute(delete(jobs).where(jobs.c.id == job_id))

    async def release(
        self,
        job_id: int,
        backoff_delay: float | timedelta = 0,
        lease: datetime | None = None,
    ) -> bool:
        jobs = self.tables.jobs
        stmt = (
            update(jobs)
            .where(_held(jobs, job_id, lease))
            .values(
                reserved_at=None,
                attempts=jobs.c.attempts + 1,
                available_at=self.now() + to_timedelta(backoff_delay),
            )
        )
        async with self._session("release") as session:
            result = await session.execute(stmt)

        if result.rowcount == 0:
            logger.warning("Release ignored, job gone or leased again", extra={"job_id": job_id})
            return False
        return True

    async def dead_letter(
        self,
        job_id: int,
        error: str = "",
        count_attempt: bool = True,
        lease: datetime | None = None,
    ) -> FailedJobRecord | None:
        jobs, failed = self.tables

        async with self._session("dead_letter") as session:
            # Delete first: whichever caller gets the row is the only one
            # that writes the failed record.
            result = await session.execute(
                delete(jobs).where(_held(jobs, job_id, lease)).returning(*jobs.c)
            )
            row = result.one_or_none()
            if row is None:
                return None

            attempts = row.attempts + 1 if count_attempt else row.attempts
            result = await session.execute(
                insert(failed)
                .values(
                    job_id=row.id,
                    queue=row.queue,
                    payload=row.payload,
                    tenant_id=row.tenant_id,
                    attempts=attempts,
                    reserved_at=row.reserved_at,
                    available_at=row.available_at,
                    created_at=row.created_at,
                    failed_at=self.now(),
                    last_error=error,
                )
                .returning(*failed.c)
            )
            failed_row = result.one()

        return FailedJobRecord(**failed_row._mapping)

    async def get(self, job_id: int) -> JobRecord | None:
        jobs = self.tables.jobs
        async with self._session("get") as session:
            result = await session.execute(select(jobs).where(jobs.c.id == job_id))
            row = result.one_or_none()
        return JobRecord(**row._mapping) if row is not None else None

    async def size(self, queue: str) -> int:
        jobs = self.tables.jobs
        stmt = select(func.count()).select_from(jobs).where(jobs.c.queue == queue)
        async with self._session("size") as session:
            result = await session.execute(stmt)
            return result.scalar() or 0

    async def clear(self, queue: str) -> int:
        jobs = self.tables.jobs
        async with self._session("clear") as session:
            result = await session.execute(delete(jobs).where(jobs.c.queue == queue))
        count = result.rowcount
        if count > 0:
            logger.info(f"Cleared {count} jobs", extra={"queue": queue})
        return count

    async def list_failed(
        self,
        queue: str | None = None,
        limit: int = 50,
    ) -> list[FailedJobRecord]:
        failed = self.tables.failed
        stmt = select(failed).order_by(failed.c.failed_at.desc(), failed.c.id.desc()).limit(limit)
        if queue is not None:
            stmt = stmt.where(failed.c.queue == queue)

        async with self._session("list_failed") as session:
            result = await session.execute(stmt)
            return [FailedJobRecord(**row._mapping) for row in result.all()]

    async def get_failed(self, failed_id: int) -> FailedJobRecord | None:
        failed = self.tables.failed
        async with self._session("get_failed") as session:
            result = await session.execute(select(failed).where(failed.c.id == failed_id))
            row = result.one_or_none()
        return FailedJobRecord(**row._mapping) if row is not None else None

    async def retry_failed(self, failed_id: int) -> int | None:
        jobs, failed = self.tables
        now = self.now()

        async with self._session("retry_failed") as session:
            result = await session.execute(
                delete(failed).where(failed.c.id == failed_id).returning(*failed.c)
            )
            row = result.one_or_none()
            if row is None:
                return None

            result = await session.execute(
                insert(jobs)
                .values(
                    queue=row.queue,
                    payload=row.payload,
                    tenant_id=row.tenant_id,
                    attempts=0,
                    reserved_at=None,
                    available_at=now,
                    created_at=now,
                )
                .returning(jobs.c.id)
            )
            job_id = result.scalar_one()

        logger.info(
            "Failed job pushed back onto queue",
            extra={"failed_id": failed_id, "job_id": job_id, "queue": row.queue},
        )
        return job_id

    async def forget_failed(self, failed_id: int) -> bool:
        failed = self.tables.failed
        async with self._session("forget_failed") as session:
            result = await session.execute(delete(failed).where(failed.c.id == failed_id))
        return result.rowcount > 0

    async def flush_failed(self, queue: str | None = None) -> int:
        failed = self.tables.failed
        stmt = delete(failed)
        if queue is not None:
            stmt = stmt.where(failed.c.queue == queue)
        async with self._session("flush_failed") as session:
            result = await session.execute(stmt)
        return result.rowcount

    async def prune_failed(self, before: datetime) -> int:
        failed = self.tables.failed
        async with self._session("prune_failed") as session:
            result = await session.execute(delete(failed).where(failed.c.failed_at < before))
        return result.rowcount
