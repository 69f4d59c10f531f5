"""Retry queue for item ids whose last backend sync failed."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from models.feed import ItemId


class RetryEntry(BaseModel):
    """Bookkeeping for one pending item.

    Args:
        item_id: The item whose backend sync must be retried.
        first_failed_at: When the item entered the queue.
        failures: Number of failed attempts recorded while queued.
        last_error: Description of the most recent failure.
    """

    item_id: ItemId
    first_failed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    failures: int = Field(default=1, ge=1)
    last_error: Optional[str] = None


class RetryQueue(BaseModel):
    """Deduplicated set of item ids pending a backend retry.

    Membership means the last attempted backend sync for the id did not
    complete successfully. Adding an id that is already queued does not
    change membership; it only bumps the entry's failure count. Ids are
    retried in the order they first failed. The queue lives for the process
    only and is never persisted.

    Args:
        entries: Pending entries keyed by item id, in insertion order.
    """

    entries: dict[ItemId, RetryEntry] = Field(default_factory=dict)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def item_ids(self) -> list[ItemId]:
        """Queued ids in retry order."""
        return list(self.entries)

    def add(self, item_id: ItemId, error: Optional[str] = None) -> bool:
        """Queue item_id for retry.

        Returns:
            True if the id was newly queued, False if it was already present.
        """
        entry = self.entries.get(item_id)
        if entry is not None:
            entry.failures += 1
            entry.last_error = error
            return False
        self.entries[item_id] = RetryEntry(item_id=item_id, last_error=error)
        return True

    def discard(self, item_id: ItemId) -> bool:
        """Remove item_id if queued. Returns True if it was present."""
        return self.entries.pop(item_id, None) is not None

    def clear(self) -> None:
        self.entries.clear()
