"""
In-process job store.

Useful for tests and single-process deployments. Records do not survive a
restart. Every operation runs under one lock, so reservation is atomic
across threads and coroutines sharing the store.
"""

import dataclasses
import itertools
import logging
import threading
from datetime import datetime, timedelta

from tenant_queue.queue.base import QueueStore, to_timedelta
from tenant_queue.types.job import FailedJobRecord, JobRecord

logger = logging.getLogger(__name__)


class MemoryQueueStore(QueueStore):
    """QueueStore backed by dictionaries."""

    def __init__(self, connection_name: str = "memory", **kwargs):
        super().__init__(connection_name, **kwargs)
        self._lock = threading.Lock()
        self._jobs: dict[int, JobRecord] = {}
        self._failed: dict[int, FailedJobRecord] = {}
        self._job_ids = itertools.count(1)
        self._failed_ids = itertools.count(1)

    async def enqueue(
        self,
        queue: str,
        payload: bytes,
        tenant_id: str | None = None,
        delay: float | timedelta | None = None,
    ) -> int:
        with self._lock:
            return self._insert(queue, payload, tenant_id, delay)

    def _insert(
        self,
        queue: str,
        payload: bytes,
        tenant_id: str | None,
        delay: float | timedelta | None,
    ) -> int:
        now = self.now()
        job_id = next(self._job_ids)
        self._jobs[job_id] = JobRecord(
            id=job_id,
            queue=queue,
            payload=bytes(payload),
            tenant_id=tenant_id,
            attempts=0,
            available_at=now + to_timedelta(delay),
            reserved_at=None,
            created_at=now,
        )
        return job_id

    async def reserve_next(
        self,
        queue: str,
        lease_duration: float | timedelta | None = None,
    ) -> JobRecord | None:
        with self._lock:
            now = self.now()
            cutoff = self._lease_cutoff(now, lease_duration)
            eligible = [
                job
                for job in self._jobs.values()
                if job.queue == queue
                and job.available_at <= now
                and (job.reserved_at is None or job.reserved_at < cutoff)
            ]
            if not eligible:
                return None

            job = min(eligible, key=lambda j: (j.available_at, j.id))
            attempts = job.attempts if job.reserved_at is None else job.attempts + 1
            leased = dataclasses.replace(job, reserved_at=now, attempts=attempts)
            self._jobs[job.id] = leased
            return leased

    async def complete(self, job_id: int) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    async def release(
        self,
        job_id: int,
        backoff_delay: float | timedelta = 0,
        lease: datetime | None = None,
    ) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or (lease is not None and job.reserved_at != lease):
                logger.warning(
                    "Release ignored, job gone or leased again",
                    extra={"job_id": job_id},
                )
                return False
            self._jobs[job_id] = dataclasses.replace(
                job,
                reserved_at=None,
                attempts=job.attempts + 1,
                available_at=self.now() + to_timedelta(backoff_delay),
            )
            return True

    async def dead_letter(
        self,
        job_id: int,
        error: str = "",
        count_attempt: bool = True,
        lease: datetime | None = None,
    ) -> FailedJobRecord | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or (lease is not None and job.reserved_at != lease):
                return None
            del self._jobs[job_id]

            failed_id = next(self._failed_ids)
            failed = FailedJobRecord(
                id=failed_id,
                job_id=job.id,
                queue=job.queue,
                payload=job.payload,
                tenant_id=job.tenant_id,
                attempts=job.attempts + 1 if count_attempt else job.attempts,
                available_at=job.available_at,
                reserved_at=job.reserved_at,
                created_at=job.created_at,
                failed_at=self.now(),
                last_error=error,
            )
            self._failed[failed_id] = failed
            return failed

    async def get(self, job_id: int) -> JobRecord | None:
        with self._lock:
            return self._jobs.get(job_id)

    async def size(self, queue: str) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if job.queue == queue)

    async def clear(self, queue: str) -> int:
        with self._lock:
            doomed = [job_id for job_id, job in self._jobs.items() if job.queue == queue]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)

    async def list_failed(
        self,
        queue: str | None = None,
        limit: int = 50,
    ) -> list[FailedJobRecord]:
        with self._lock:
            failed = [
                f for f in self._failed.values() if queue is None or f.queue == queue
            ]
        failed.sort(key=lambda f: (f.failed_at, f.id), reverse=True)
        return failed[:limit]

    async def get_failed(self, failed_id: int) -> FailedJobRecord | None:
        with self._lock:
            return self._failed.get(failed_id)

    async def retry_failed(self, failed_id: int) -> int | None:
        with self._lock:
            failed = self._failed.pop(failed_id, None)
            if failed is None:
                return None
            return self._insert(failed.queue, failed.payload, failed.tenant_id, None)

    async def forget_failed(self, failed_id: int) -> bool:
        with self._lock:
            return self._failed.pop(failed_id, None) is not None

    async def flush_failed(self, queue: str | None = None) -> int:
        with self._lock:
            doomed = [
                f.id for f in self._failed.values() if queue is None or f.queue == queue
            ]
            for failed_id in doomed:
                del self._failed[failed_id]
            return len(doomed)

    async def prune_failed(self, before: datetime) -> int:
        with self._lock:
            doomed = [f.id for f in self._failed.values() if f.failed_at < before]
            for failed_id in doomed:
                del self._failed[failed_id]
            return len(doomed)
