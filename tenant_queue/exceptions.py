"""
Exception taxonomy for the queue.

Storage failures surface to the caller; tenant and handler failures are
resolved by the worker into a retry or dead-letter decision.
"""


class QueueError(Exception):
    """Base exception for queue operations."""

    pass


class StorageError(QueueError):
    """The job store was unreachable or a write failed."""

    pass


class SerializationError(QueueError):
    """A task descriptor could not be encoded or a payload decoded."""

    pass


class TenantResolutionError(QueueError):
    """Base exception for failures activating a tenant connection."""

    def __init__(self, message: str, tenant_id: str | None = None):
        super().__init__(message)
        self.tenant_id = tenant_id


class TenantNotFoundError(TenantResolutionError):
    """The tenant catalog has no entry for the tenant id."""

    pass


class TenantConnectionError(TenantResolutionError, ConnectionError):
    """The tenant's backing store could not be reached."""

    pass


class HandlerError(QueueError):
    """
    A job handler failed.

    Handlers may raise this with retryable=False to send the job
    straight to the dead-letter store.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class HandlerNotFoundError(HandlerError):
    """No handler is registered for the task's job type."""

    pass
