"""Construction and lifecycle of the read-state components.

ReadSyncEngine wires the backend client, the storage slot, the
ReadStateStore and the ReconciliationScheduler together, and owns their
lifecycle: ``start()`` loads persisted state and starts the timer,
``stop()`` stops the timer, cancels in-flight pushes and closes the HTTP
client. Tests construct isolated engines directly.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

from client import AsyncZenfeedClient
from models.read_state import ReadStateStore, ReadStatusBackend
from models.scheduler import ReconciliationScheduler
from models.storage import JSONFileStorage, LocalStorage, MemoryStorage

if TYPE_CHECKING:
    from config import Settings

logger = logging.getLogger(__name__)


class ReadSyncEngine:
    """Owns one store, its scheduler and the backend client.

    Args:
        backend: Read-status backend (usually ``client.feeds``).
        storage: Persistence slot for read state.
        sync_interval: Interval for both the scheduler and the sync throttle.
        client: Client to close on stop(), if the engine owns one.
    """

    def __init__(
        self,
        backend: ReadStatusBackend,
        storage: LocalStorage,
        sync_interval: timedelta = timedelta(minutes=30),
        client: Optional[AsyncZenfeedClient] = None,
    ) -> None:
        self.storage = storage
        self.store = ReadStateStore(backend=backend, storage=storage, sync_interval=sync_interval)
        self.scheduler = ReconciliationScheduler(self.store, interval=sync_interval)
        self._client = client
        self.is_running = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ReadSyncEngine":
        """Build an engine talking to the configured backend."""
        client = AsyncZenfeedClient(
            base_url=settings.backend_url,
            timeout=settings.request_timeout,
            bearer_token=settings.bearer_token,
            retry_enabled=settings.retry_enabled,
        )
        storage: LocalStorage
        if settings.storage_path is not None:
            storage = JSONFileStorage(settings.storage_path)
        else:
            storage = MemoryStorage()
        return cls(
            backend=client.feeds,
            storage=storage,
            sync_interval=timedelta(seconds=settings.sync_interval_seconds),
            client=client,
        )

    async def start(self) -> None:
        """Load persisted state and start periodic reconciliation.

        Raises:
            RuntimeError: If the engine is already running.
        """
        if self.is_running:
            raise RuntimeError("ReadSyncEngine is already running")
        self.store.initialize()
        self.scheduler.start()
        self.is_running = True
        logger.info("ReadSyncEngine started")

    async def stop(self) -> None:
        """Stop reconciliation and release resources. Safe to call twice."""
        if not self.is_running:
            return
        await self.scheduler.stop()
        await self.store.close()
        if self._client is not None:
            await self._client.close()
        self.is_running = False
        logger.info("ReadSyncEngine stopped")
