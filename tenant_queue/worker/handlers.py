"""
Job handler registry.

Job handlers must be idempotent - they may be executed multiple times
for the same job in case of worker crashes or slow workers losing their lease.

A handler receives a JobContext and may be a coroutine function or a plain
callable (run in a thread). It signals failure by raising, or by returning
JobResult(success=False). Anything else it returns counts as success.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tenant_queue.exceptions import HandlerError, HandlerNotFoundError
from tenant_queue.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[Any] | Any]


class HandlerRegistry:
    """Maps job types to handler callables."""

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> JobHandler:
        """
        Register a handler for a job type, replacing any previous one.

        Returns:
            The handler, so this can back a decorator.
        """
        if job_type in self._handlers:
            logger.warning(f"Replacing handler for job type: {job_type}")
        self._handlers[job_type] = handler
        logger.debug(f"Registered handler for job type: {job_type}")
        return handler

    def handler(self, job_type: str) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator to register a job handler.

        Example:
            @registry.handler("send_email")
            async def handle_send_email(context: JobContext) -> JobResult:
                ...
        """
        def decorator(fn: JobHandler) -> JobHandler:
            return self.register(job_type, fn)
        return decorator

    def get(self, job_type: str) -> JobHandler | None:
        return self._handlers.get(job_type)

    def job_types(self) -> list[str]:
        """List all registered job types."""
        return list(self._handlers.keys())

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    async def execute(self, context: JobContext, timeout: float | None = None) -> JobResult:
        """
        Run the handler for a job.

        Args:
            context: The job context; context.task.job_type picks the handler.
            timeout: Seconds before the run counts as failed. A coroutine
                handler is cancelled; a thread handler is abandoned and keeps
                running until it returns.

        Returns:
            JobResult of a successful run.

        Raises:
            HandlerError: On any failure, including timeout. Unexpected
                exceptions are wrapped and chained.
        """
        job_type = context.task.job_type
        handler = self.get(job_type)
        if handler is None:
            raise HandlerNotFoundError(f"No handler registered for job type: {job_type}")

        try:
            if inspect.iscoroutinefunction(handler):
                outcome = await asyncio.wait_for(handler(context), timeout)
            else:
                outcome = await asyncio.wait_for(asyncio.to_thread(handler, context), timeout)
        except HandlerError:
            raise
        except TimeoutError as e:
            raise HandlerError(f"Handler for {job_type} timed out after {timeout}s") from e
        except Exception as e:
            raise HandlerError(f"Handler exception: {type(e).__name__}: {e}") from e

        if isinstance(outcome, JobResult):
            if not outcome.success:
                raise HandlerError(outcome.error or f"Handler for {job_type} reported failure")
            return outcome
        return JobResult(
            success=True,
            output=outcome if isinstance(outcome, dict) else None,
        )


# Process-wide registry used when a worker is not given its own
default_registry = HandlerRegistry()


def register_handler(
    job_type: str,
    handler: JobHandler | None = None,
) -> Callable[[JobHandler], JobHandler] | JobHandler:
    """
    Register a handler on the default registry.

    Works as a direct call, register_handler("send_email", fn), or as a
    decorator, @register_handler("send_email").
    """
    if handler is not None:
        return default_registry.register(job_type, handler)
    return default_registry.handler(job_type)


def get_handler(job_type: str) -> JobHandler | None:
    """Get the handler for a job type from the default registry."""
    return default_registry.get(job_type)


def list_handlers() -> list[str]:
    """List all job types on the default registry."""
    return default_registry.job_types()
