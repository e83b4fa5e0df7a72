"""
Job submission.

The enqueuer stamps each job with the tenant it belongs to. The tenant is
passed explicitly, or read from an accessor the caller hands in (for
example one returning the tenant of the authenticated request).
"""

import logging
from collections.abc import Callable
from datetime import timedelta

from tenant_queue.constants import SPAN_ENQUEUE_JOB
from tenant_queue.observability.metrics import get_metrics
from tenant_queue.observability.tracing import job_span
from tenant_queue.queue.base import QueueStore
from tenant_queue.serialization import serialize_task
from tenant_queue.types.job import TaskDescriptor

logger = logging.getLogger(__name__)

TenantAccessor = Callable[[], str | int | None]


class Enqueuer:
    """Builds job records from task descriptors and writes them to a store."""

    def __init__(self, store: QueueStore, current_tenant: TenantAccessor | None = None):
        """
        Initialize the enqueuer.

        Args:
            store: Store the jobs are written to.
            current_tenant: Accessor for the caller's tenant, used when push()
                is not given a tenant_id. Without it such jobs have no tenant.
        """
        self._store = store
        self._current_tenant = current_tenant

    async def push(
        self,
        queue: str,
        task: TaskDescriptor | dict,
        delay: float | timedelta | None = None,
        tenant_id: str | int | None = None,
    ) -> int:
        """
        Serialize a task and enqueue it.

        Args:
            queue: Lane name.
            task: Task descriptor, or a dict with its fields.
            delay: Seconds (or a timedelta) before the job becomes available.
            tenant_id: Owning tenant. Falls back to the current_tenant accessor.

        Returns:
            The new job id.

        Raises:
            SerializationError: If the task cannot be encoded.
            StorageError: If the store write failed. Safe to retry.
        """
        if tenant_id is None and self._current_tenant is not None:
            tenant_id = self._current_tenant()
        tenant = str(tenant_id) if tenant_id is not None else None

        payload = serialize_task(task)

        with job_span(SPAN_ENQUEUE_JOB, queue=queue, tenant_id=tenant):
            job_id = await self._store.enqueue(queue, payload, tenant, delay)

        get_metrics().record_job_enqueued(queue=queue, tenant_id=tenant)
        logger.info(
            "Job enqueued",
            extra={"job_id": job_id, "queue": queue, "tenant_id": tenant},
        )
        return job_id

    async def later(
        self,
        delay: float | timedelta,
        queue: str,
        task: TaskDescriptor | dict,
        tenant_id: str | int | None = None,
    ) -> int:
        """Enqueue a task that becomes available after a delay."""
        return await self.push(queue, task, delay=delay, tenant_id=tenant_id)
