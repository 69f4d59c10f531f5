"""Client-local read state and its reconciliation with the feed backend.

ReadStateStore owns the map from item id to the time the item was marked
read locally. It is the single source of truth for rendering: marks are
applied to the map immediately and persisted, then pushed to the backend in
a background task. The backend is authoritative when it answers; when it
cannot be reached the local state is kept and the item is queued in a
RetryQueue that the ReconciliationScheduler drains later.

Every network result is checked against a per-item generation counter that
is bumped on each local mark, and against an epoch bumped by reset(), so a
slow response can never overwrite a newer local mark for the same item.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Protocol

from pydantic import BaseModel, FiniteFloat, TypeAdapter, ValidationError

from client import PushableStatus, ReadStatus, ZenfeedClientError
from models.feed import IdOrItem, ItemId, to_item_id
from models.observable import Derived, Observable
from models.retry_queue import RetryQueue
from models.storage import LocalStorage

logger = logging.getLogger(__name__)

READ_ITEMS_STORAGE_KEY = "zenfeed_read_feeds"
SYNC_TIMESTAMP_KEY = "zenfeed_read_sync_timestamp"
DEFAULT_SYNC_INTERVAL = timedelta(minutes=30)

ReadMarkers = Mapping[ItemId, int]

_PERSISTED_MARKERS = TypeAdapter(list[tuple[str, FiniteFloat]])


def now_millis() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def today_read_count(markers: ReadMarkers, now: Optional[datetime] = None) -> int:
    """Count markers whose timestamp falls within the current local day.

    The window runs from local midnight to the next local midnight, so it
    is 23 or 25 hours long on DST transition days.
    """
    if now is None:
        now = datetime.now()
    elif now.tzinfo is not None:
        now = now.astimezone().replace(tzinfo=None)
    # Naive datetimes resolve to epoch time through the local zone rules.
    start = datetime.combine(now.date(), datetime.min.time())
    end = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
    start_ms = int(start.timestamp() * 1000)
    end_ms = int(end.timestamp() * 1000)
    return sum(1 for read_at in markers.values() if start_ms <= read_at < end_ms)


def read_predicate(markers: ReadMarkers) -> Callable[[ItemId], bool]:
    """Return a membership test bound to one snapshot of the markers."""
    return lambda item_id: item_id in markers


class ReadStatusBackend(Protocol):
    """The two backend operations the store relies on.

    Implementations raise ZenfeedClientError for transport failures and
    non-2xx responses. AsyncFeedsClient satisfies this protocol.
    """

    async def get_read_status(self, item_id: str) -> ReadStatus: ...

    async def update_read_status(
        self, item_id: str, read_status: PushableStatus
    ) -> ReadStatus: ...


class PushOutcome(str, Enum):
    """How a read-status push ended."""

    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    QUEUED = "queued"
    SUPERSEDED = "superseded"


class PullOutcome(str, Enum):
    """How a read-status pull ended."""

    APPLIED = "applied"
    THROTTLED = "throttled"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class PushResult(BaseModel):
    """Result of the background push scheduled by a mark operation.

    Args:
        item_id: The item that was marked.
        requested: The status pushed to the backend.
        confirmed: The status the backend reported, None if the push failed.
        outcome: What the store did with the answer.
    """

    item_id: ItemId
    requested: PushableStatus
    confirmed: Optional[ReadStatus] = None
    outcome: PushOutcome


class DrainReport(BaseModel):
    """Summary of one pass over the retry queue."""

    attempted: int = 0
    applied: int = 0
    failed: int = 0
    superseded: int = 0


class ReadStateStore(Observable[ReadMarkers]):
    """Read markers with optimistic updates and backend reconciliation.

    The store is an Observable: subscribers receive an immutable snapshot
    of the markers on subscription and after every change. ``today_count``
    and ``read_predicate`` are derived observables over the same snapshots.

    Mark operations must be called from a running event loop. They return
    the background push task, which callers may await or ignore.

    Args:
        backend: Read-status backend client.
        storage: Persistence slot for markers and the sync timestamp.
        sync_interval: Minimum time between throttled pulls.
        clock: Millisecond clock, injectable for tests.
        retry_queue: Queue for failed syncs (default: a new empty queue).
    """

    def __init__(
        self,
        backend: ReadStatusBackend,
        storage: LocalStorage,
        sync_interval: timedelta = DEFAULT_SYNC_INTERVAL,
        clock: Callable[[], int] = now_millis,
        retry_queue: Optional[RetryQueue] = None,
    ) -> None:
        super().__init__()
        self._backend = backend
        self._storage = storage
        self.sync_interval = sync_interval
        self._clock = clock
        self._retry_queue = retry_queue if retry_queue is not None else RetryQueue()

        self._markers: dict[ItemId, int] = {}
        self._snapshot: ReadMarkers = MappingProxyType({})
        self._generations: dict[ItemId, int] = {}
        self._epoch = 0
        self._pending_pushes: set[asyncio.Task] = set()
        self._syncing: set[ItemId] = set()
        self._initialized = False

        self.today_count: Derived[ReadMarkers, int] = Derived(self, self._count_today)
        self.read_predicate: Derived[ReadMarkers, Callable[[ItemId], bool]] = Derived(
            self, read_predicate
        )

    # ===== Lifecycle =====

    def initialize(self) -> None:
        """Load persisted markers. Only the first call has an effect.

        Malformed persisted data is discarded and its slot cleared; the
        store then starts empty.
        """
        if self._initialized:
            return
        self._initialized = True
        self._markers = self._load_markers()
        self._snapshot = MappingProxyType(dict(self._markers))
        logger.info(f"Loaded {len(self._markers)} read markers")
        self._notify(self._snapshot)

    async def close(self) -> None:
        """Cancel in-flight pushes and wait for them to finish."""
        tasks = list(self._pending_pushes)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def reset(self) -> None:
        """Forget all read state.

        Clears the markers, both persisted slots and the retry queue. Results
        of requests still in flight are ignored when they arrive.
        """
        self._initialized = True
        self._epoch += 1
        self._markers.clear()
        self._storage.remove_item(READ_ITEMS_STORAGE_KEY)
        self._storage.remove_item(SYNC_TIMESTAMP_KEY)
        self._retry_queue.clear()
        self._snapshot = MappingProxyType({})
        logger.info("Read state reset")
        self._notify(self._snapshot)

    # ===== Reads =====

    def get(self) -> ReadMarkers:
        return self._snapshot

    @property
    def retry_queue(self) -> RetryQueue:
        return self._retry_queue

    @property
    def pending_push_count(self) -> int:
        return len(self._pending_pushes)

    def is_read(self, id_or_item: IdOrItem, snapshot: Optional[ReadMarkers] = None) -> bool:
        """Whether the item is marked read in snapshot (default: current)."""
        markers = self._snapshot if snapshot is None else snapshot
        return to_item_id(id_or_item) in markers

    @property
    def last_synced_at(self) -> Optional[int]:
        """Millisecond timestamp of the last successful throttled pull."""
        raw = self._storage.get_item(SYNC_TIMESTAMP_KEY)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed sync timestamp {raw!r}")
            return None

    def should_sync(self) -> bool:
        """Whether the sync interval has elapsed since the last throttled pull."""
        last = self.last_synced_at
        if last is None:
            return True
        interval_ms = int(self.sync_interval.total_seconds() * 1000)
        return self._clock() - last > interval_ms

    # ===== Mutations =====

    def mark_read(self, id_or_item: IdOrItem) -> "asyncio.Task[PushResult]":
        """Mark an item read locally and push the change to the backend."""
        return self._mark(to_item_id(id_or_item), "read")

    def mark_unread(self, id_or_item: IdOrItem) -> "asyncio.Task[PushResult]":
        """Mark an item unread locally and push the change to the backend."""
        return self._mark(to_item_id(id_or_item), "unread")

    def _mark(self, item_id: ItemId, status: PushableStatus) -> "asyncio.Task[PushResult]":
        loop = asyncio.get_running_loop()
        self.initialize()
        token = self._bump_generation(item_id)
        self._apply_local(item_id, is_read=status == "read")

        task = loop.create_task(
            self._push(item_id, status, token),
            name=f"push-read-status-{item_id}",
        )
        self._pending_pushes.add(task)
        task.add_done_callback(self._pending_pushes.discard)
        return task

    async def _push(
        self, item_id: ItemId, status: PushableStatus, token: tuple[int, int]
    ) -> PushResult:
        try:
            confirmed = await self._backend.update_read_status(item_id, status)
        except ZenfeedClientError as e:
            if not self._is_current(item_id, token):
                return PushResult(
                    item_id=item_id, requested=status, outcome=PushOutcome.SUPERSEDED
                )
            logger.warning(
                f"Failed to push read_status={status} for item {item_id}, queued for retry: {e}"
            )
            self._retry_queue.add(item_id, error=str(e))
            return PushResult(item_id=item_id, requested=status, outcome=PushOutcome.QUEUED)

        if not self._is_current(item_id, token):
            logger.debug(
                f"Ignoring stale confirmation {confirmed!r} for item {item_id}: "
                "a newer mark was issued"
            )
            return PushResult(
                item_id=item_id,
                requested=status,
                confirmed=confirmed,
                outcome=PushOutcome.SUPERSEDED,
            )

        if confirmed == status:
            self._retry_queue.discard(item_id)
            return PushResult(
                item_id=item_id,
                requested=status,
                confirmed=confirmed,
                outcome=PushOutcome.CONFIRMED,
            )

        logger.info(
            f"Backend answered read_status={confirmed} for item {item_id} "
            f"after requesting {status}; rolling back"
        )
        self._apply_local(item_id, is_read=status != "read")
        return PushResult(
            item_id=item_id,
            requested=status,
            confirmed=confirmed,
            outcome=PushOutcome.ROLLED_BACK,
        )

    # ===== Reconciliation =====

    async def sync(self, id_or_item: IdOrItem) -> PullOutcome:
        """Pull the backend status for one item, at most once per interval.

        Skipped entirely while the sync interval has not elapsed since the
        last successful pull, or while a throttled pull for the same item is
        running. Pulls for different items may overlap. A failed pull queues
        the item for retry.
        """
        item_id = to_item_id(id_or_item)
        self.initialize()
        if item_id in self._syncing or not self.should_sync():
            logger.debug(f"Sync for item {item_id} throttled")
            return PullOutcome.THROTTLED

        self._syncing.add(item_id)
        try:
            outcome = await self._pull(item_id)
        finally:
            self._syncing.discard(item_id)

        if outcome is PullOutcome.APPLIED:
            self._storage.set_item(SYNC_TIMESTAMP_KEY, str(self._clock()))
        return outcome

    async def sync_all(self) -> DrainReport:
        """Retry every queued item with a pull, ignoring the sync throttle.

        Successful pulls apply the backend status and leave the queue;
        failed ones stay queued for the next pass.
        """
        self.initialize()
        report = DrainReport()
        for item_id in self._retry_queue.item_ids:
            if item_id not in self._retry_queue:
                # Confirmed by a push that finished during this pass.
                continue
            report.attempted += 1
            outcome = await self._pull(item_id)
            if outcome is PullOutcome.APPLIED:
                report.applied += 1
            elif outcome is PullOutcome.FAILED:
                report.failed += 1
            else:
                report.superseded += 1

        if report.attempted:
            logger.info(
                f"Retry pass: {report.applied} applied, {report.failed} failed, "
                f"{report.superseded} superseded, {len(self._retry_queue)} still queued"
            )
        return report

    async def _pull(self, item_id: ItemId) -> PullOutcome:
        token = self._token(item_id)
        try:
            status = await self._backend.get_read_status(item_id)
        except ZenfeedClientError as e:
            if not self._is_current(item_id, token):
                return PullOutcome.SUPERSEDED
            logger.warning(f"Failed to fetch read status for item {item_id}: {e}")
            self._retry_queue.add(item_id, error=str(e))
            return PullOutcome.FAILED

        if not self._is_current(item_id, token):
            logger.debug(f"Ignoring stale read_status={status} for item {item_id}")
            return PullOutcome.SUPERSEDED

        if status == "read":
            self._apply_local(item_id, is_read=True)
        elif status == "unread":
            self._apply_local(item_id, is_read=False)
        self._retry_queue.discard(item_id)
        return PullOutcome.APPLIED

    # ===== Internals =====

    def _token(self, item_id: ItemId) -> tuple[int, int]:
        return self._epoch, self._generations.get(item_id, 0)

    def _bump_generation(self, item_id: ItemId) -> tuple[int, int]:
        self._generations[item_id] = self._generations.get(item_id, 0) + 1
        return self._token(item_id)

    def _is_current(self, item_id: ItemId, token: tuple[int, int]) -> bool:
        return self._token(item_id) == token

    def _count_today(self, markers: ReadMarkers) -> int:
        return today_read_count(markers, datetime.fromtimestamp(self._clock() / 1000))

    def _apply_local(self, item_id: ItemId, is_read: bool) -> bool:
        if is_read and item_id not in self._markers:
            self._markers[item_id] = self._clock()
        elif not is_read and item_id in self._markers:
            del self._markers[item_id]
        else:
            return False
        self._save_markers()
        self._snapshot = MappingProxyType(dict(self._markers))
        self._notify(self._snapshot)
        return True

    def _load_markers(self) -> dict[ItemId, int]:
        raw = self._storage.get_item(READ_ITEMS_STORAGE_KEY)
        if raw is None:
            return {}
        try:
            pairs = _PERSISTED_MARKERS.validate_json(raw)
        except ValidationError as e:
            logger.warning(
                f"Invalid read items format in storage, clearing: {e.error_count()} error(s)"
            )
            self._storage.remove_item(READ_ITEMS_STORAGE_KEY)
            return {}
        # Other clients may have written fractional millisecond timestamps.
        return {item_id: int(read_at) for item_id, read_at in pairs}

    def _save_markers(self) -> None:
        payload = json.dumps([[item_id, read_at] for item_id, read_at in self._markers.items()])
        try:
            self._storage.set_item(READ_ITEMS_STORAGE_KEY, payload)
        except OSError as e:
            logger.error(f"Failed to persist read markers: {e}")
