"""
Job store interface.

Every backend implements QueueStore. The worker and the enqueuer only
depend on this interface, never on a concrete backend.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from tenant_queue.constants import DEFAULT_LEASE_DURATION_SECONDS
from tenant_queue.queue.backoff import ExponentialBackoff
from tenant_queue.types.job import FailedJobRecord, JobRecord

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the job tables."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timedelta(seconds: float | timedelta | None) -> timedelta:
    """Normalize a delay given in seconds or as a timedelta."""
    if seconds is None:
        return timedelta(0)
    if isinstance(seconds, timedelta):
        return seconds
    return timedelta(seconds=seconds)


class QueueStore(ABC):
    """
    Durable store of pending and leased job records.

    Implementations:
    - DatabaseQueueStore: SQLAlchemy tables, atomic UPDATE ... RETURNING
    - MemoryQueueStore: in-process dict guarded by a lock

    A record is eligible for reservation when available_at <= now and it is
    either unleased or its lease started more than lease_duration ago.
    """

    def __init__(
        self,
        connection_name: str,
        lease_duration_seconds: float = DEFAULT_LEASE_DURATION_SECONDS,
        backoff: ExponentialBackoff | None = None,
        clock: Clock | None = None,
    ):
        self.connection_name = connection_name
        self.lease_duration_seconds = lease_duration_seconds
        self.backoff = backoff or ExponentialBackoff()
        self._clock = clock or utcnow

    def now(self) -> datetime:
        """Current time according to the store's clock."""
        return self._clock()

    @abstractmethod
    async def enqueue(
        self,
        queue: str,
        payload: bytes,
        tenant_id: str | None = None,
        delay: float | timedelta | None = None,
    ) -> int:
        """
        Insert a new record with attempts=0 and available_at = now + delay.

        Returns:
            The new record id.

        Raises:
            StorageError: If the write failed. Nothing was stored; the
                caller may retry.
        """
        pass

    @abstractmethod
    async def reserve_next(
        self,
        queue: str,
        lease_duration: float | timedelta | None = None,
    ) -> JobRecord | None:
        """
        Atomically lease the oldest eligible record in a lane.

        Ordering is lowest available_at, then lowest id. Reclaiming a
        record whose previous lease expired counts as an abandoned attempt
        and increments attempts.

        Args:
            queue: Lane name.
            lease_duration: Lease length. Defaults to the store's.

        Returns:
            The leased record, or None if nothing is eligible.

        Raises:
            StorageError: If the store could not be queried.
        """
        pass

    @abstractmethod
    async def complete(self, job_id: int) -> None:
        """Delete a record. Unknown ids are ignored."""
        pass

    @abstractmethod
    async def release(
        self,
        job_id: int,
        backoff_delay: float | timedelta = 0,
        lease: datetime | None = None,
    ) -> bool:
        """
        Return a leased record to its lane after a failed attempt.

        Clears reserved_at, increments attempts and sets
        available_at = now + backoff_delay.

        Args:
            job_id: The record to release.
            backoff_delay: How long the record stays hidden.
            lease: The reserved_at the caller was handed. When given, the
                record is only touched while it still carries this lease.

        Returns:
            False if the record is gone or is now leased by someone else.
        """
        pass

    @abstractmethod
    async def dead_letter(
        self,
        job_id: int,
        error: str = "",
        count_attempt: bool = True,
        lease: datetime | None = None,
    ) -> FailedJobRecord | None:
        """
        Move a record into the failed-job store in one atomic step.

        Args:
            job_id: The record to move.
            error: Description of the last failure.
            count_attempt: Whether the failing attempt still has to be
                added to the record's attempts.
            lease: The reserved_at the caller was handed, as for release().

        Returns:
            The failed-job record, or None if the record was already gone
            or its lease has passed to another worker.
        """
        pass

    @abstractmethod
    async def get(self, job_id: int) -> JobRecord | None:
        """Get an active record by id."""
        pass

    @abstractmethod
    async def size(self, queue: str) -> int:
        """Count active records in a lane, leased or not."""
        pass

    @abstractmethod
    async def clear(self, queue: str) -> int:
        """Delete every active record in a lane. Returns the count removed."""
        pass

    @abstractmethod
    async def list_failed(
        self,
        queue: str | None = None,
        limit: int = 50,
    ) -> list[FailedJobRecord]:
        """List failed jobs, most recently failed first."""
        pass

    @abstractmethod
    async def get_failed(self, failed_id: int) -> FailedJobRecord | None:
        """Get a failed job by its failed-store id."""
        pass

    @abstractmethod
    async def retry_failed(self, failed_id: int) -> int | None:
        """
        Push a failed job back into its lane with attempts reset to 0.

        Returns:
            The new active record id, or None if the failed job is unknown.
        """
        pass

    @abstractmethod
    async def forget_failed(self, failed_id: int) -> bool:
        """Delete a failed job. Returns whether it existed."""
        pass

    @abstractmethod
    async def flush_failed(self, queue: str | None = None) -> int:
        """Delete all failed jobs, optionally for one lane only."""
        pass

    @abstractmethod
    async def prune_failed(self, before: datetime) -> int:
        """Delete failed jobs that failed before the given instant."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    def _lease_cutoff(self, now: datetime, lease_duration: float | timedelta | None) -> datetime:
        if lease_duration is None:
            lease_duration = self.lease_duration_seconds
        return now - to_timedelta(lease_duration)
