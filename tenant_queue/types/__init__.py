"""
Type definitions for the job queue.
Contains the persisted record shapes and the types exchanged with handlers.
"""

from tenant_queue.types.job import (
    FailedJobRecord,
    JobContext,
    JobRecord,
    JobResult,
    TaskDescriptor,
)

__all__ = [
    "JobRecord",
    "FailedJobRecord",
    "TaskDescriptor",
    "JobResult",
    "JobContext",
]
