"""Zenfeed reader data models package.

This package contains the feed item model and identity derivation, the
client-local read-state store with its retry queue and reconciliation
scheduler, and the persistence and subscription primitives they build on.
"""

from models.feed import FeedItem, ItemId, compare_feeds, resolve_id, sort_feeds
from models.observable import Derived, Observable
from models.storage import JSONFileStorage, LocalStorage, MemoryStorage
from models.retry_queue import RetryEntry, RetryQueue
from models.read_state import (
    DrainReport,
    PullOutcome,
    PushOutcome,
    PushResult,
    ReadStateStore,
    today_read_count,
)
from models.scheduler import ReconciliationScheduler
from models.engine import ReadSyncEngine

__all__ = [
    "FeedItem",
    "ItemId",
    "compare_feeds",
    "resolve_id",
    "sort_feeds",
    "Derived",
    "Observable",
    "LocalStorage",
    "MemoryStorage",
    "JSONFileStorage",
    "RetryEntry",
    "RetryQueue",
    "DrainReport",
    "PullOutcome",
    "PushOutcome",
    "PushResult",
    "ReadStateStore",
    "today_read_count",
    "ReconciliationScheduler",
    "ReadSyncEngine",
]
