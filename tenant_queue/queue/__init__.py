"""
Queue module.
Contains the store interface, the in-memory store, the connection manager
and the enqueuer.
"""

from tenant_queue.queue.backoff import ExponentialBackoff
from tenant_queue.queue.base import QueueStore, utcnow
from tenant_queue.queue.enqueuer import Enqueuer
from tenant_queue.queue.manager import QueueManager
from tenant_queue.queue.memory import MemoryQueueStore

__all__ = [
    "QueueStore",
    "MemoryQueueStore",
    "QueueManager",
    "Enqueuer",
    "ExponentialBackoff",
    "utcnow",
]
