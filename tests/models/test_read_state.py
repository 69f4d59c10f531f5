"""Unit tests for ReadStateStore.

This module tests:
- Initialization from persisted markers, including malformed data
- Optimistic marks and the background push: confirm, rollback, queue
- Ordering: stale push and pull results never overwrite newer marks
- Throttled sync and the retry drain
- reset(), close() and subscriptions
- Transport and format failures from the real HTTP client
"""

import asyncio
import json
import time
from datetime import datetime, timedelta
from types import MappingProxyType

import httpx
import pytest

from client import AsyncZenfeedClient, ConnectionError, ServerError
from models.feed import resolve_id
from models.read_state import (
    READ_ITEMS_STORAGE_KEY,
    SYNC_TIMESTAMP_KEY,
    PullOutcome,
    PushOutcome,
    today_read_count,
)
from models.storage import MemoryStorage
from tests.fixtures.core.stores import (
    DEFAULT_NOW_MS,
    SYNC_INTERVAL,
    create_backend,
    create_read_state_store,
)


def offline(url: str = "http://localhost:1300/feed/1") -> ConnectionError:
    return ConnectionError("Failed to connect", url=url)


class Gate:
    """Backend side effect that blocks until released.

    Calls for ids in ``hold`` wait on an event, then return ``result`` or
    raise ``error``. Other calls answer immediately by echoing the pushed
    status, or ``result`` for pulls.
    """

    def __init__(self, hold, result=None, error=None):
        self.hold = set(hold)
        self.result = result
        self.error = error
        self.event = asyncio.Event()
        self.calls = []

    def release(self):
        self.event.set()

    async def __call__(self, item_id, read_status=None):
        self.calls.append((item_id, read_status))
        if item_id in self.hold:
            self.hold.discard(item_id)
            await self.event.wait()
            if self.error is not None:
                raise self.error
            return self.result
        return read_status if read_status is not None else self.result


async def settle():
    """Let already-scheduled tasks run up to their next suspension point."""
    for _ in range(3):
        await asyncio.sleep(0)


# =============================================================================
# Initialization
# =============================================================================


class TestInitialize:
    """Tests for loading persisted state."""

    def test_empty_storage(self, store):
        assert dict(store.get()) == {}

    def test_loads_persisted_pairs(self, backend):
        storage = MemoryStorage({READ_ITEMS_STORAGE_KEY: '[["1", 100], ["2", 200]]'})
        store = create_read_state_store(backend=backend, storage=storage)
        assert dict(store.get()) == {"1": 100, "2": 200}

    @pytest.mark.parametrize(
        "raw",
        ['"not-an-array"', "{broken", '{"1": 100}', '[["1", "yesterday"]]'],
    )
    def test_malformed_data_is_cleared(self, backend, raw):
        storage = MemoryStorage({READ_ITEMS_STORAGE_KEY: raw})
        store = create_read_state_store(backend=backend, storage=storage)

        assert dict(store.get()) == {}
        assert storage.get_item(READ_ITEMS_STORAGE_KEY) is None

    def test_fractional_timestamps_are_truncated(self, backend):
        storage = MemoryStorage(
            {READ_ITEMS_STORAGE_KEY: '[["1", 1700000000000.5], ["2", 200]]'}
        )
        store = create_read_state_store(backend=backend, storage=storage)

        assert dict(store.get()) == {"1": 1700000000000, "2": 200}
        assert storage.get_item(READ_ITEMS_STORAGE_KEY) is not None

    def test_initialize_runs_once(self, backend):
        storage = MemoryStorage({READ_ITEMS_STORAGE_KEY: '[["1", 100]]'})
        store = create_read_state_store(backend=backend, storage=storage)

        storage.set_item(READ_ITEMS_STORAGE_KEY, '[["9", 900]]')
        store.initialize()

        assert dict(store.get()) == {"1": 100}

    async def test_mark_initializes_lazily(self, backend):
        storage = MemoryStorage({READ_ITEMS_STORAGE_KEY: '[["1", 100]]'})
        store = create_read_state_store(backend=backend, storage=storage, initialize=False)

        await store.mark_read("2")

        assert set(store.get()) == {"1", "2"}


# =============================================================================
# Marks and pushes
# =============================================================================


class TestMarkRead:
    """Tests for optimistic marks and their confirmation."""

    async def test_update_is_visible_before_push_completes(self, store, backend):
        gate = Gate(hold={"1"}, result="read")
        backend.update_read_status.side_effect = gate.__call__

        task = store.mark_read("1")

        assert store.is_read("1")
        assert not task.done()
        gate.release()
        result = await task
        assert result.outcome is PushOutcome.CONFIRMED

    async def test_confirmed_push(self, store, backend):
        result = await store.mark_read("1")

        assert result.item_id == "1"
        assert result.requested == "read"
        assert result.confirmed == "read"
        assert result.outcome is PushOutcome.CONFIRMED
        backend.update_read_status.assert_awaited_once_with("1", "read")
        assert store.get()["1"] == DEFAULT_NOW_MS

    async def test_marker_is_persisted_as_pairs(self, store, storage):
        await store.mark_read("1")

        persisted = json.loads(storage.get_item(READ_ITEMS_STORAGE_KEY))
        assert persisted == [["1", DEFAULT_NOW_MS]]

    async def test_marking_read_twice_keeps_first_timestamp(self, store, clock):
        await store.mark_read("1")
        clock.advance(timedelta(minutes=5))
        await store.mark_read("1")

        assert store.get()["1"] == DEFAULT_NOW_MS

    async def test_mark_unread(self, store, backend):
        await store.mark_read("1")
        result = await store.mark_unread("1")

        assert result.outcome is PushOutcome.CONFIRMED
        assert not store.is_read("1")
        backend.update_read_status.assert_awaited_with("1", "unread")

    async def test_mark_feed_item(self, store, feed_item, backend_feed_item):
        await store.mark_read(feed_item)
        await store.mark_read(backend_feed_item)

        assert store.is_read(resolve_id(feed_item))
        assert store.is_read(feed_item)
        assert store.is_read("42")

    async def test_backend_disagreement_rolls_back(self, store, backend):
        backend.update_read_status.side_effect = None
        backend.update_read_status.return_value = "unread"

        result = await store.mark_read("1")

        assert result.outcome is PushOutcome.ROLLED_BACK
        assert result.confirmed == "unread"
        assert not store.is_read("1")
        assert "1" not in store.retry_queue

    async def test_deleted_answer_to_unread_restores_read(self, store, backend):
        await store.mark_read("1")
        backend.update_read_status.side_effect = None
        backend.update_read_status.return_value = "deleted"

        result = await store.mark_unread("1")

        assert result.outcome is PushOutcome.ROLLED_BACK
        assert store.is_read("1")

    async def test_transport_failure_keeps_local_state(self, store, backend):
        backend.update_read_status.side_effect = offline()

        result = await store.mark_read("42")

        assert result.outcome is PushOutcome.QUEUED
        assert result.confirmed is None
        assert store.is_read("42")
        assert "42" in store.retry_queue

    async def test_error_response_is_queued(self, store, backend):
        backend.update_read_status.side_effect = ServerError("boom", status_code=502)

        result = await store.mark_read("1")

        assert result.outcome is PushOutcome.QUEUED
        assert "[HTTP 502] boom" in store.retry_queue.entries["1"].last_error

    async def test_confirmed_push_leaves_retry_queue(self, store, backend):
        backend.update_read_status.side_effect = offline()
        await store.mark_read("1")

        backend.update_read_status.side_effect = create_backend().update_read_status.side_effect
        await store.mark_unread("1")

        assert "1" not in store.retry_queue

    def test_mark_requires_running_loop(self, store):
        with pytest.raises(RuntimeError):
            store.mark_read("1")
        assert not store.is_read("1")

    async def test_pending_push_count(self, store, backend):
        gate = Gate(hold={"1"}, result="read")
        backend.update_read_status.side_effect = gate.__call__

        task = store.mark_read("1")
        assert store.pending_push_count == 1

        gate.release()
        await task
        await settle()
        assert store.pending_push_count == 0


# =============================================================================
# Ordering
# =============================================================================


class TestSupersededResults:
    """A slower answer never overwrites a newer local mark."""

    async def test_stale_rollback_is_ignored(self, store, backend):
        # The first push would roll back, but a newer mark supersedes it.
        gate = Gate(hold={"1"}, result="unread")
        backend.update_read_status.side_effect = gate.__call__

        first = store.mark_read("1")
        second = store.mark_unread("1")
        await second
        await store.mark_read("1")
        gate.release()

        assert (await first).outcome is PushOutcome.SUPERSEDED
        assert store.is_read("1")

    async def test_stale_confirmation_is_ignored(self, store, backend):
        gate = Gate(hold={"1"}, result="read")
        backend.update_read_status.side_effect = gate.__call__

        first = store.mark_read("1")
        second = store.mark_unread("1")
        gate.release()

        assert (await first).outcome is PushOutcome.SUPERSEDED
        assert (await second).outcome is PushOutcome.CONFIRMED
        assert not store.is_read("1")

    async def test_stale_failure_does_not_queue(self, store, backend):
        gate = Gate(hold={"1"}, error=offline())
        backend.update_read_status.side_effect = gate.__call__

        first = store.mark_read("1")
        await store.mark_unread("1")
        gate.release()

        assert (await first).outcome is PushOutcome.SUPERSEDED
        assert "1" not in store.retry_queue

    async def test_other_items_are_unaffected(self, store, backend):
        gate = Gate(hold={"1"}, result="unread")
        backend.update_read_status.side_effect = gate.__call__

        first = store.mark_read("1")
        await store.mark_read("2")
        gate.release()

        assert (await first).outcome is PushOutcome.ROLLED_BACK
        assert store.is_read("2")

    async def test_stale_pull_is_ignored(self, store, backend):
        gate = Gate(hold={"1"}, result="unread")
        backend.get_read_status.side_effect = gate.__call__

        pull = asyncio.create_task(store.sync("1"))
        await settle()
        await store.mark_read("1")
        gate.release()

        assert await pull is PullOutcome.SUPERSEDED
        assert store.is_read("1")
        assert store.last_synced_at is None

    async def test_result_arriving_after_reset_is_ignored(self, store, backend):
        gate = Gate(hold={"1"}, result="unread")
        backend.update_read_status.side_effect = gate.__call__

        task = store.mark_read("1")
        store.reset()
        gate.release()

        assert (await task).outcome is PushOutcome.SUPERSEDED
        assert dict(store.get()) == {}

    async def test_failure_arriving_after_reset_is_not_queued(self, store, backend):
        gate = Gate(hold={"1"}, error=offline())
        backend.update_read_status.side_effect = gate.__call__

        task = store.mark_read("1")
        store.reset()
        gate.release()

        assert (await task).outcome is PushOutcome.SUPERSEDED
        assert len(store.retry_queue) == 0


# =============================================================================
# Sync
# =============================================================================


class TestSync:
    """Tests for the throttled single-item pull."""

    async def test_first_sync_applies_backend_status(self, store, backend, storage):
        backend.get_read_status.return_value = "read"

        assert await store.sync("1") is PullOutcome.APPLIED

        assert store.is_read("1")
        assert storage.get_item(SYNC_TIMESTAMP_KEY) == str(DEFAULT_NOW_MS)
        assert store.last_synced_at == DEFAULT_NOW_MS

    async def test_unread_status_removes_marker(self, store, backend):
        await store.mark_read("1")
        backend.get_read_status.return_value = "unread"

        await store.sync("1")

        assert not store.is_read("1")

    @pytest.mark.parametrize("local_read", [True, False])
    async def test_deleted_status_leaves_local_state(self, store, backend, local_read):
        if local_read:
            await store.mark_read("1")
        backend.get_read_status.return_value = "deleted"

        assert await store.sync("1") is PullOutcome.APPLIED
        assert store.is_read("1") is local_read

    async def test_sync_accepts_feed_items(self, store, backend, backend_feed_item):
        await store.sync(backend_feed_item)
        backend.get_read_status.assert_awaited_once_with("42")

    async def test_sync_is_throttled_within_interval(self, store, backend, clock):
        await store.sync("1")
        clock.advance(SYNC_INTERVAL)

        assert await store.sync("2") is PullOutcome.THROTTLED
        backend.get_read_status.assert_awaited_once_with("1")

    async def test_sync_runs_after_interval(self, store, backend, clock):
        await store.sync("1")
        clock.advance(SYNC_INTERVAL + timedelta(milliseconds=1))

        assert await store.sync("2") is PullOutcome.APPLIED
        assert store.last_synced_at == clock()

    async def test_failed_sync_queues_item(self, store, backend, storage):
        backend.get_read_status.side_effect = offline()

        assert await store.sync("1") is PullOutcome.FAILED

        assert "1" in store.retry_queue
        assert storage.get_item(SYNC_TIMESTAMP_KEY) is None

    async def test_concurrent_sync_of_same_item_is_throttled(self, store, backend):
        gate = Gate(hold={"1"}, result="read")
        backend.get_read_status.side_effect = gate.__call__

        first = asyncio.create_task(store.sync("1"))
        await settle()

        assert await store.sync("1") is PullOutcome.THROTTLED
        gate.release()
        assert await first is PullOutcome.APPLIED
        assert gate.calls == [("1", None)]

    async def test_sync_of_other_item_is_not_blocked_by_pending_pull(self, store, backend):
        gate = Gate(hold={"1"}, result="read", error=offline())
        backend.get_read_status.side_effect = gate.__call__

        first = asyncio.create_task(store.sync("1"))
        await settle()

        assert await store.sync("2") is PullOutcome.APPLIED
        assert store.is_read("2")
        gate.release()
        assert await first is PullOutcome.FAILED
        assert store.retry_queue.item_ids == ["1"]

    async def test_successful_sync_removes_queued_item(self, store, backend):
        store.retry_queue.add("1")

        await store.sync("1")

        assert "1" not in store.retry_queue

    def test_malformed_timestamp_allows_sync(self, backend):
        storage = MemoryStorage({SYNC_TIMESTAMP_KEY: "soon"})
        store = create_read_state_store(backend=backend, storage=storage)

        assert store.last_synced_at is None
        assert store.should_sync()


class TestSyncAll:
    """Tests for draining the retry queue."""

    async def test_empty_queue(self, store, backend):
        report = await store.sync_all()

        assert report.attempted == 0
        backend.get_read_status.assert_not_awaited()

    async def test_drain_applies_and_removes(self, store, backend):
        for item_id in ["1", "2"]:
            store.retry_queue.add(item_id)
        backend.get_read_status.return_value = "read"

        report = await store.sync_all()

        assert report.attempted == 2
        assert report.applied == 2
        assert len(store.retry_queue) == 0
        assert store.is_read("1") and store.is_read("2")

    async def test_failures_stay_queued(self, store, backend):
        for item_id in ["1", "2"]:
            store.retry_queue.add(item_id)

        async def respond(item_id):
            if item_id == "1":
                raise offline()
            return "unread"

        backend.get_read_status.side_effect = respond

        report = await store.sync_all()

        assert report.applied == 1
        assert report.failed == 1
        assert store.retry_queue.item_ids == ["1"]
        assert store.retry_queue.entries["1"].failures == 2

    async def test_drain_ignores_throttle(self, store, backend, storage, clock):
        storage.set_item(SYNC_TIMESTAMP_KEY, str(clock()))
        store.retry_queue.add("1")

        report = await store.sync_all()

        assert report.applied == 1
        assert storage.get_item(SYNC_TIMESTAMP_KEY) == str(clock())

    async def test_queued_push_reconciles_on_drain(self, store, backend):
        backend.update_read_status.side_effect = offline()
        await store.mark_read("1")
        backend.get_read_status.return_value = "unread"

        await store.sync_all()

        assert not store.is_read("1")
        assert "1" not in store.retry_queue

    async def test_mark_during_drain_supersedes_pull(self, store, backend):
        store.retry_queue.add("1")
        gate = Gate(hold={"1"}, result="unread")
        backend.get_read_status.side_effect = gate.__call__

        drain = asyncio.create_task(store.sync_all())
        await settle()
        push = store.mark_read("1")
        gate.release()

        report = await drain
        await push
        assert report.superseded == 1
        assert store.is_read("1")
        assert "1" not in store.retry_queue

    async def test_item_confirmed_mid_pass_is_skipped(self, store, backend):
        store.retry_queue.add("1")
        store.retry_queue.add("2")
        gate = Gate(hold={"1"}, result="read")
        backend.get_read_status.side_effect = gate.__call__

        drain = asyncio.create_task(store.sync_all())
        await settle()
        await store.mark_read("2")
        gate.release()

        report = await drain
        assert report.attempted == 1
        assert [call.args for call in backend.get_read_status.await_args_list] == [("1",)]


# =============================================================================
# Reset, close, subscriptions
# =============================================================================


class TestReset:
    """Tests for reset()."""

    async def test_reset_clears_everything(self, store, backend, storage):
        await store.mark_read("1")
        await store.sync("1")
        store.retry_queue.add("2")

        store.reset()

        assert dict(store.get()) == {}
        assert storage.get_item(READ_ITEMS_STORAGE_KEY) is None
        assert storage.get_item(SYNC_TIMESTAMP_KEY) is None
        assert len(store.retry_queue) == 0

    def test_reset_notifies_subscribers(self, store):
        seen = []
        store.subscribe(seen.append)
        store.reset()
        assert len(seen) == 2
        assert dict(seen[-1]) == {}

    def test_reset_before_initialize_discards_persisted_state(self, backend):
        storage = MemoryStorage({READ_ITEMS_STORAGE_KEY: '[["1", 100]]'})
        store = create_read_state_store(backend=backend, storage=storage, initialize=False)

        store.reset()
        store.initialize()

        assert dict(store.get()) == {}


class TestClose:
    """Tests for close()."""

    async def test_close_cancels_pending_pushes(self, store, backend):
        gate = Gate(hold={"1"}, result="read")
        backend.update_read_status.side_effect = gate.__call__

        task = store.mark_read("1")
        await settle()
        await store.close()
        await settle()

        assert task.cancelled()
        assert store.pending_push_count == 0
        assert store.is_read("1")

    async def test_close_without_pending_pushes(self, store):
        await store.close()


class TestSubscriptions:
    """Tests for snapshots and derived values."""

    async def test_subscribers_receive_snapshots(self, store):
        seen = []
        store.subscribe(seen.append)

        await store.mark_read("1")
        await store.mark_unread("1")

        assert [dict(s) for s in seen] == [{}, {"1": DEFAULT_NOW_MS}, {}]

    async def test_snapshots_are_immutable(self, store):
        await store.mark_read("1")
        snapshot = store.get()

        assert isinstance(snapshot, MappingProxyType)
        with pytest.raises(TypeError):
            snapshot["2"] = 1

    async def test_old_snapshots_do_not_change(self, store):
        before = store.get()
        await store.mark_read("1")

        assert "1" not in before
        assert store.is_read("1", snapshot=store.get())
        assert not store.is_read("1", snapshot=before)

    async def test_no_notification_without_change(self, store):
        await store.mark_read("1")
        seen = []
        store.subscribe(seen.append)

        await store.mark_read("1")

        assert len(seen) == 1

    async def test_today_count(self, store, clock):
        counts = []
        store.today_count.subscribe(counts.append)

        await store.mark_read("1")
        await store.mark_read("2")

        assert counts == [0, 1, 2]

    async def test_today_count_ignores_earlier_days(self, backend, clock):
        yesterday = DEFAULT_NOW_MS - int(timedelta(days=1).total_seconds() * 1000)
        storage = MemoryStorage({READ_ITEMS_STORAGE_KEY: json.dumps([["old", yesterday]])})
        store = create_read_state_store(backend=backend, storage=storage, clock=clock)

        await store.mark_read("1")

        assert store.today_count.get() == 1

    async def test_read_predicate(self, store):
        predicates = []
        store.read_predicate.subscribe(predicates.append)

        await store.mark_read("1")

        assert not predicates[0]("1")
        assert predicates[-1]("1")
        assert not predicates[-1]("2")

    async def test_failing_subscriber_does_not_break_mark(self, store):
        def broken(snapshot):
            if snapshot:
                raise RuntimeError("render failed")

        store.subscribe(broken)
        result = await store.mark_read("1")

        assert result.outcome is PushOutcome.CONFIRMED
        assert store.is_read("1")


class TestTodayReadCount:
    """Tests for the day-window helper."""

    def test_counts_local_day_boundaries(self):
        now = datetime(2025, 1, 15, 12, 0).astimezone()
        midnight = datetime(2025, 1, 15, 0, 0).astimezone()
        just_before = midnight - timedelta(milliseconds=1)
        tomorrow = datetime(2025, 1, 16, 0, 0).astimezone()

        markers = {
            "a": int(midnight.timestamp() * 1000),
            "b": int(just_before.timestamp() * 1000),
            "c": int(now.timestamp() * 1000),
            "d": int(tomorrow.timestamp() * 1000),
        }

        assert today_read_count(markers, now) == 2

    def test_empty(self):
        assert today_read_count({}) == 0

    def test_day_window_follows_dst_transition(self, us_eastern_tz):
        # 2025-03-09 is 23 hours long: clocks jump from 02:00 to 03:00.
        now = datetime(2025, 3, 9, 12, 0)
        markers = {
            "late-saturday": int(datetime(2025, 3, 8, 23, 30).timestamp() * 1000),
            "after-midnight": int(datetime(2025, 3, 9, 0, 30).timestamp() * 1000),
            "late-sunday": int(datetime(2025, 3, 9, 23, 30).timestamp() * 1000),
            "monday": int(datetime(2025, 3, 10, 0, 30).timestamp() * 1000),
        }

        assert today_read_count(markers, now) == 2


@pytest.fixture
def us_eastern_tz(monkeypatch):
    """Switch the process to US Eastern rules for the duration of a test."""
    monkeypatch.setenv("TZ", "EST5EDT,M3.2.0,M11.1.0")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


# =============================================================================
# Backend failures through the HTTP client
# =============================================================================


@pytest.fixture
async def store_over_http(storage, clock):
    """Factory for stores whose backend is an AsyncZenfeedClient on a mock transport."""
    clients = []

    def create(handler):
        client = AsyncZenfeedClient(
            base_url="http://backend:1300",
            transport=httpx.MockTransport(handler),
        )
        clients.append(client)
        return create_read_state_store(backend=client.feeds, storage=storage, clock=clock)

    yield create

    for client in clients:
        await client.close()


class TestBackendFailuresOverHttp:
    """Every transport or format failure keeps the mark and queues the item."""

    @pytest.mark.parametrize(
        "error_cls",
        [httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError, httpx.ConnectError],
    )
    async def test_dropped_connection_on_push_is_queued(self, store_over_http, error_cls):
        def handler(request: httpx.Request) -> httpx.Response:
            raise error_cls("connection dropped", request=request)

        store = store_over_http(handler)

        result = await store.mark_read("42")

        assert result.outcome is PushOutcome.QUEUED
        assert store.is_read("42")
        assert "42" in store.retry_queue

    async def test_html_answer_to_push_is_queued(self, store_over_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html><body>Bad Gateway</body></html>")

        store = store_over_http(handler)

        result = await store.mark_read("42")

        assert result.outcome is PushOutcome.QUEUED
        assert store.is_read("42")
        assert "42" in store.retry_queue

    async def test_dropped_connection_on_sync_is_reported(self, store_over_http, storage):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadError("connection reset", request=request)

        store = store_over_http(handler)

        assert await store.sync("1") is PullOutcome.FAILED
        assert "1" in store.retry_queue
        assert storage.get_item(SYNC_TIMESTAMP_KEY) is None

    async def test_drain_continues_past_dropped_connections(self, store_over_http):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path == "/feed/1":
                raise httpx.ReadError("connection reset", request=request)
            return httpx.Response(200, json={"read_status": "read"})

        store = store_over_http(handler)
        store.retry_queue.add("1")
        store.retry_queue.add("2")

        report = await store.sync_all()

        assert paths == ["/feed/1", "/feed/2"]
        assert report.failed == 1
        assert report.applied == 1
        assert store.retry_queue.item_ids == ["1"]
        assert store.is_read("2")
