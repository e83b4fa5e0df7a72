"""
Worker process for executing jobs.

The worker leases jobs from the store one at a time, activates the owning
tenant's connection, runs the handler and resolves each reservation into
completion, a delayed retry or the dead-letter store.
"""

import asyncio
import importlib
import logging
import os
import signal
import time
from collections.abc import Awaitable, Callable

from tenant_queue.config import Settings, get_settings
from tenant_queue.constants import (
    MAX_TIMEOUT_LEASE_FRACTION,
    SPAN_EXECUTE_JOB,
    SPAN_RESERVE_JOB,
    JobOutcome,
)
from tenant_queue.db import close_db, get_engine
from tenant_queue.exceptions import (
    HandlerError,
    SerializationError,
    StorageError,
    TenantNotFoundError,
    TenantResolutionError,
)
from tenant_queue.observability.logging import bind_context, job_log_context, setup_logging
from tenant_queue.observability.metrics import get_metrics, setup_metrics
from tenant_queue.observability.tracing import instrument_sqlalchemy, job_span, setup_tracing
from tenant_queue.queue.backoff import ExponentialBackoff
from tenant_queue.queue.base import QueueStore
from tenant_queue.queue.manager import QueueManager
from tenant_queue.serialization import deserialize_task
from tenant_queue.tenancy.catalog import catalog_from_settings
from tenant_queue.tenancy.resolver import TenantConnectionResolver
from tenant_queue.types.job import JobContext, JobRecord, TaskDescriptor
from tenant_queue.worker.handlers import HandlerRegistry, default_registry

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic lease acquisition through the store
    - Tenant connection activated per job and reset afterwards
    - Retry with exponential backoff, dead-lettering on exhaustion
    - Polling pauses with backoff while the store is unreachable
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        store: QueueStore,
        resolver: TenantConnectionResolver,
        registry: HandlerRegistry | None = None,
        queues: list[str] | None = None,
        worker_id: str | None = None,
        lease_duration: float | None = None,
        max_attempts: int | None = None,
        job_timeout: float | None = None,
        poll_interval: float | None = None,
        max_poll_backoff: float | None = None,
        backoff: ExponentialBackoff | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the worker.

        Args:
            store: Store to lease jobs from.
            resolver: Tenant connection resolver.
            registry: Handlers by job type. Defaults to the process-wide registry.
            queues: Lanes to serve, highest priority first.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            lease_duration: Lease length in seconds. Defaults to the store's.
            max_attempts: Attempts before a job is dead-lettered.
            job_timeout: Seconds a handler may run before it counts as failed.
                Any timeout, including a task's own, is capped below the lease.
            poll_interval: Seconds between polls when the queues are empty.
            max_poll_backoff: Upper bound of the pause after store failures.
            backoff: Retry delay policy. Defaults to the store's.
            sleep: Awaitable sleep, replaceable in tests.
        """
        settings = get_settings()

        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.queues = queues or list(settings.worker_queues)
        self.lease_duration = lease_duration or store.lease_duration_seconds
        self.max_attempts = max_attempts or settings.worker_max_attempts
        self.job_timeout = job_timeout or settings.worker_job_timeout_seconds
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.max_poll_backoff = max_poll_backoff or settings.worker_max_poll_backoff_seconds

        self._store = store
        self._resolver = resolver
        self._registry = registry or default_registry
        self._backoff = backoff or store.backoff
        self._sleep = sleep
        self._running = False
        self._metrics = get_metrics()

        self.max_job_timeout = self.lease_duration * MAX_TIMEOUT_LEASE_FRACTION

        if self.job_timeout > self.max_job_timeout:
            logger.warning(
                "Job timeout does not fit in the lease, capping it",
                extra={"job_timeout": self.job_timeout, "cap": self.max_job_timeout},
            )
            self.job_timeout = self.max_job_timeout

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, max_jobs: int | None = None, stop_when_empty: bool = False) -> int:
        """
        Run the polling loop until stopped.

        Args:
            max_jobs: Stop after resolving this many reservations.
            stop_when_empty: Stop as soon as a poll finds no job.

        Returns:
            Number of reservations resolved.
        """
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "queues": self.queues},
        )

        self._running = True
        processed = 0
        poll_failures = 0

        while self._running:
            try:
                outcome = await self.run_once()
            except StorageError as e:
                poll_failures += 1
                pause = min(self.max_poll_backoff, self.poll_interval * (2 ** poll_failures))
                self._metrics.record_poll_error(self.worker_id)
                logger.error(
                    f"Job store unavailable, pausing for {pause:.1f}s: {e}",
                    extra={"worker_id": self.worker_id, "failures": poll_failures},
                )
                await self._sleep(pause)
                continue
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                await self._sleep(self.poll_interval)
                continue

            poll_failures = 0

            if outcome is None:
                if stop_when_empty:
                    break
                await self._sleep(self.poll_interval)
                continue

            processed += 1
            if max_jobs is not None and processed >= max_jobs:
                break

        self._running = False
        logger.info(
            "Worker stopped",
            extra={"worker_id": self.worker_id, "processed": processed},
        )
        return processed

    async def stop(self) -> None:
        """Stop the worker after the job in progress, if any."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False

    async def run_once(self) -> JobOutcome | None:
        """
        Lease and process at most one job.

        Returns:
            How the reservation was resolved, or None if no job was due.

        Raises:
            StorageError: If the store failed while leasing or resolving.
        """
        job = await self._reserve()
        if job is None:
            await self._report_depth()
            return None
        return await self.process(job)

    async def _reserve(self) -> JobRecord | None:
        with job_span(SPAN_RESERVE_JOB, worker_id=self.worker_id) as span:
            for queue in self.queues:
                job = await self._store.reserve_next(queue, self.lease_duration)
                if job is not None:
                    span.set_attribute("queue", queue)
                    span.set_attribute("job_id", job.id)
                    self._metrics.record_lease_acquired(self.worker_id, queue)
                    return job
        return None

    async def _report_depth(self) -> None:
        for queue in self.queues:
            self._metrics.update_queue_depth(queue, await self._store.size(queue))

    async def process(self, job: JobRecord) -> JobOutcome:
        """
        Execute a leased job and resolve its reservation.

        Handles the full lifecycle:
        1. Decode the payload (undecodable payloads are dead-lettered at once)
        2. Activate the tenant connection
        3. Execute the handler
        4. Complete, release for retry, or dead-letter

        A worker whose lease ran out before step 4 leaves the record to
        the worker that reclaimed it and reports LEASE_LOST.

        Per-job failures never escape; only store failures do.
        """
        start_time = time.monotonic()

        with job_log_context(job_id=job.id, queue=job.queue, tenant_id=job.tenant_id):
            outcome = await self._process(job)

            duration = time.monotonic() - start_time
            self._metrics.record_job_processed(
                queue=job.queue,
                tenant_id=job.tenant_id,
                outcome=outcome,
                duration_seconds=duration,
            )
            logger.info(
                "Job resolved",
                extra={"outcome": outcome.value, "duration": f"{duration:.2f}s"},
            )
        return outcome

    def timeout_for(self, task: TaskDescriptor) -> float:
        """Seconds the handler of a task may run, never outlasting the lease."""
        timeout = task.timeout_seconds or self.job_timeout
        if timeout > self.max_job_timeout:
            logger.warning(
                "Task timeout does not fit in the lease, capping it",
                extra={"job_type": task.job_type, "timeout": timeout, "cap": self.max_job_timeout},
            )
            return self.max_job_timeout
        return timeout

    async def _process(self, job: JobRecord) -> JobOutcome:
        try:
            task = deserialize_task(job.payload)
        except SerializationError as e:
            logger.error(f"Undecodable payload, dead-lettering: {e}")
            return await self._dead_letter(job, str(e))

        max_attempts = task.max_attempts or self.max_attempts
        timeout = self.timeout_for(task)

        # Leases abandoned by crashed workers already used up every attempt
        if job.attempts >= max_attempts:
            logger.warning(
                "Job exceeded its attempts through expired leases",
                extra={"attempts": job.attempts, "max_attempts": max_attempts},
            )
            return await self._dead_letter(
                job,
                f"Job attempted {job.attempts} times without finishing",
                count_attempt=False,
            )

        try:
            async with self._resolver.activate(job.tenant_id) as connection:
                context = JobContext(
                    job_id=job.id,
                    queue=job.queue,
                    tenant_id=job.tenant_id,
                    attempt=job.attempts + 1,
                    max_attempts=max_attempts,
                    task=task,
                    worker_id=self.worker_id,
                    connection=connection,
                )

                logger.info(
                    "Executing job",
                    extra={"job_type": task.job_type, "attempt": context.attempt},
                )

                with job_span(
                    SPAN_EXECUTE_JOB,
                    job_id=job.id,
                    job_type=task.job_type,
                    attempt=context.attempt,
                    tenant_id=job.tenant_id,
                ):
                    await self._registry.execute(context, timeout=timeout)

        except TenantResolutionError as e:
            reason = "not_found" if isinstance(e, TenantNotFoundError) else "unreachable"
            self._metrics.record_tenant_resolution_failure(reason)
            logger.warning(f"Tenant connection failed: {e}")
            return await self._fail(job, str(e), max_attempts)
        except HandlerError as e:
            logger.warning(f"Job failed: {e}")
            return await self._fail(job, str(e), max_attempts, retryable=e.retryable)
        except Exception as e:
            logger.exception(f"Exception executing job: {e}")
            return await self._fail(job, f"Worker exception: {e}", max_attempts)

        await self._store.complete(job.id)
        return JobOutcome.COMPLETED

    async def _fail(
        self,
        job: JobRecord,
        error: str,
        max_attempts: int,
        retryable: bool = True,
    ) -> JobOutcome:
        """Release the job for a later retry, or dead-letter it when out of attempts."""
        if retryable and job.attempts + 1 < max_attempts:
            delay = self._backoff(job.attempts)
            if not await self._store.release(job.id, delay, lease=job.reserved_at):
                return self._lease_lost(job)
            logger.info(
                "Job queued for retry",
                extra={"attempt": job.attempts + 1, "retry_in": f"{delay:.1f}s"},
            )
            return JobOutcome.RELEASED

        outcome = await self._dead_letter(job, error)
        if outcome is JobOutcome.DEAD_LETTERED:
            logger.warning(
                f"Job moved to dead-letter store after {job.attempts + 1} attempts",
                extra={"error": error},
            )
        return outcome

    async def _dead_letter(self, job: JobRecord, error: str, count_attempt: bool = True) -> JobOutcome:
        failed = await self._store.dead_letter(
            job.id,
            error=error,
            count_attempt=count_attempt,
            lease=job.reserved_at,
        )
        if failed is None:
            return self._lease_lost(job)
        return JobOutcome.DEAD_LETTERED

    def _lease_lost(self, job: JobRecord) -> JobOutcome:
        # The record now belongs to whoever reclaimed it; leave it untouched.
        logger.warning(
            "Lease lost before the job was resolved",
            extra={"leased_at": job.reserved_at.isoformat() if job.reserved_at else None},
        )
        return JobOutcome.LEASE_LOST


def _import_handler_modules(modules: list[str]) -> None:
    """Import modules whose handlers register themselves on import."""
    for module in modules:
        importlib.import_module(module)
        logger.info(f"Loaded handler module: {module}")


async def run_async(settings: Settings | None = None) -> None:
    """Run a worker for the default queue connection."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_tracing(settings)
    setup_metrics(settings.prometheus_port)
    _import_handler_modules(settings.worker_handler_modules)

    central_engine = get_engine(settings.database_url)
    instrument_sqlalchemy(central_engine.sync_engine)

    manager = QueueManager(settings)
    resolver = TenantConnectionResolver(
        catalog_from_settings(settings, central_engine),
        default_engine=central_engine,
        verify_connection=settings.tenant_verify_connection,
    )
    worker = Worker(manager.connection(), resolver)
    bind_context(worker_id=worker.worker_id)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await resolver.close()
        await manager.close()
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
