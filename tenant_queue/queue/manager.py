"""
Queue connection manager.

Maps named connections from settings to configured QueueStore instances.
New backends are plugged in with QueueManager.extend().
"""

import logging
from collections.abc import Callable
from typing import Any

from tenant_queue.config import QueueConnectionConfig, Settings, get_settings
from tenant_queue.constants import QueueDriver
from tenant_queue.queue.backoff import ExponentialBackoff
from tenant_queue.queue.base import Clock, QueueStore
from tenant_queue.queue.memory import MemoryQueueStore

logger = logging.getLogger(__name__)

# factory(connection_name, config, **store_kwargs) -> QueueStore
StoreFactory = Callable[..., QueueStore]


def _create_database_store(
    name: str,
    config: QueueConnectionConfig,
    **kwargs: Any,
) -> QueueStore:
    # Imported here: the relational store depends on this package's base module
    from tenant_queue.db.connection import get_engine
    from tenant_queue.db.repository import DatabaseQueueStore

    return DatabaseQueueStore(
        name,
        engine=get_engine(config.database_url),
        table=config.table,
        failed_table=config.failed_table,
        **kwargs,
    )


def _create_memory_store(
    name: str,
    config: QueueConnectionConfig,
    **kwargs: Any,
) -> QueueStore:
    return MemoryQueueStore(name, **kwargs)


class QueueManager:
    """
    Resolves queue connections to store instances.

    Stores are built once per connection name and reused. Example:

        manager = QueueManager()
        manager.extend("redis", create_redis_store)
        store = manager.connection("database")
    """

    def __init__(self, settings: Settings | None = None, clock: Clock | None = None):
        """
        Initialize the manager.

        Args:
            settings: Settings holding the queue connections. Defaults to
                the cached application settings.
            clock: Optional clock handed to every store, for tests.
        """
        self._settings = settings or get_settings()
        self._clock = clock
        self._stores: dict[str, QueueStore] = {}
        self._drivers: dict[str, StoreFactory] = {
            QueueDriver.DATABASE: _create_database_store,
            QueueDriver.MEMORY: _create_memory_store,
        }

    @property
    def default_connection(self) -> str:
        return self._settings.queue_default_connection

    def extend(self, driver: str, factory: StoreFactory) -> None:
        """
        Register a store factory for a driver name.

        Args:
            driver: Driver name used in QueueConnectionConfig.driver.
            factory: Callable building the store; receives the connection
                name, its config and the keyword arguments for QueueStore.
        """
        self._drivers[driver] = factory
        logger.info(f"Registered queue driver: {driver}")

    def connection(self, name: str | None = None) -> QueueStore:
        """
        Get the store for a named connection.

        Args:
            name: Connection name. Defaults to the configured default.

        Returns:
            The configured store, created on first use.

        Raises:
            KeyError: If the connection is not configured.
            ValueError: If its driver is not registered.
        """
        name = name or self.default_connection
        store = self._stores.get(name)
        if store is None:
            store = self._resolve(name)
            self._stores[name] = store
        return store

    def set_connection(self, name: str, store: QueueStore) -> None:
        """Install a ready-made store under a connection name."""
        self._stores[name] = store

    def _resolve(self, name: str) -> QueueStore:
        config = self._settings.connection_config(name)

        factory = self._drivers.get(config.driver)
        if factory is None:
            raise ValueError(f"Unsupported queue driver [{config.driver}] for connection [{name}]")

        store = factory(
            name,
            config,
            lease_duration_seconds=config.lease_duration_seconds,
            backoff=ExponentialBackoff(
                base_seconds=config.backoff_base_seconds,
                max_seconds=config.backoff_max_seconds,
                jitter=config.backoff_jitter,
            ),
            clock=self._clock,
        )
        logger.info(
            "Queue connection resolved",
            extra={"connection": name, "driver": config.driver},
        )
        return store

    async def close(self) -> None:
        """Close every store built by this manager."""
        for store in self._stores.values():
            await store.close()
        self._stores.clear()
