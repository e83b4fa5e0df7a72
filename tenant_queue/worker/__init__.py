"""
Worker module.
Contains the job worker loop and the handler registry.
"""

from tenant_queue.worker.handlers import (
    HandlerRegistry,
    default_registry,
    get_handler,
    list_handlers,
    register_handler,
)
from tenant_queue.worker.main import Worker, run

__all__ = [
    "Worker",
    "run",
    "HandlerRegistry",
    "default_registry",
    "register_handler",
    "get_handler",
    "list_handlers",
]
