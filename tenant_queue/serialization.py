"""
Payload encoding for task descriptors.

The store treats payloads as opaque bytes; only the enqueuer and the
worker know they hold JSON-encoded TaskDescriptor models.
"""

from pydantic import ValidationError

from tenant_queue.exceptions import SerializationError
from tenant_queue.types.job import TaskDescriptor


def serialize_task(task: TaskDescriptor | dict) -> bytes:
    """
    Encode a task descriptor into a job payload.

    Args:
        task: A TaskDescriptor, or a dict with the same fields.

    Returns:
        UTF-8 JSON bytes.

    Raises:
        SerializationError: If the task is not a valid descriptor or its
            arguments are not JSON-serializable.
    """
    try:
        if not isinstance(task, TaskDescriptor):
            task = TaskDescriptor.model_validate(task)
        return task.model_dump_json(exclude_none=True).encode("utf-8")
    except (ValidationError, ValueError, TypeError) as e:
        raise SerializationError(f"Could not serialize task: {e}") from e


def deserialize_task(payload: bytes) -> TaskDescriptor:
    """
    Decode a job payload back into a task descriptor.

    Raises:
        SerializationError: If the payload is not a valid descriptor.
    """
    try:
        return TaskDescriptor.model_validate_json(payload)
    except (ValidationError, ValueError) as e:
        raise SerializationError(f"Could not deserialize payload: {e}") from e
