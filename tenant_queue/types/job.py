"""
Job-related type definitions for internal use.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from tenant_queue.tenancy.resolver import ConnectionHandle


class TaskDescriptor(BaseModel):
    """
    Task descriptor structure.
    Serialized into the job payload; names the handler and carries its arguments.
    """

    job_type: str
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None

    # Per-task overrides of the worker defaults
    max_attempts: int | None = Field(default=None, ge=1)
    timeout_seconds: float | None = Field(default=None, gt=0)


class JobResult(BaseModel):
    """
    Result of job execution.
    Handlers may return one; returning anything else counts as success.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass(frozen=True)
class JobRecord:
    """
    A unit of durable work as held by the active job store.

    Records are snapshots: store operations return fresh copies, and
    mutating a record never changes what is persisted.
    """

    id: int
    queue: str
    payload: bytes
    tenant_id: str | None
    attempts: int
    available_at: datetime
    reserved_at: datetime | None
    created_at: datetime

    @property
    def is_reserved(self) -> bool:
        """Check if the record carries a lease start."""
        return self.reserved_at is not None

    def lease_expires_at(self, lease_duration_seconds: float) -> datetime | None:
        """Get the instant the current lease lapses, if leased."""
        if self.reserved_at is None:
            return None
        return self.reserved_at + timedelta(seconds=lease_duration_seconds)


@dataclass(frozen=True)
class FailedJobRecord:
    """A job that exhausted its attempts, kept for inspection and manual retry."""

    id: int
    job_id: int
    queue: str
    payload: bytes
    tenant_id: str | None
    attempts: int
    available_at: datetime
    reserved_at: datetime | None
    created_at: datetime
    failed_at: datetime
    last_error: str


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and the tenant connection active for this run.
    """

    job_id: int
    queue: str
    tenant_id: str | None
    attempt: int
    max_attempts: int
    task: TaskDescriptor
    worker_id: str
    connection: ConnectionHandle | None = None

    @property
    def payload(self) -> dict[str, Any]:
        """Get the task arguments."""
        return self.task.data

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)
