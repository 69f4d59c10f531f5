"""Feed item model and item identity.

A FeedItem is owned by the feed-listing side of the application; the
read-state engine only reads it. Items served by the backend usually carry a
numeric id. Items without one get an id derived from their labels so that
the same item maps to the same read marker across restarts.
"""

import functools
import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ItemId = str


class FeedItem(BaseModel):
    """A single feed entry.

    Args:
        id: Backend-assigned numeric identifier, if any.
        labels: String labels describing the item (title, author, link, ...).
            Key order carries no meaning.
        time: Publication time, parseable as a timestamp.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = Field(default=None, description="Backend-assigned numeric id")
    labels: dict[str, str] = Field(default_factory=dict, description="Item labels")
    time: str = Field(default="", description="Publication time")


IdOrItem = Union[ItemId, FeedItem]


def string_hash(text: str) -> int:
    """Deterministic 32-bit string hash.

    Computes ``h = h * 31 + unit`` over the UTF-16 code units of ``text``,
    wrapping to a signed 32-bit integer after every step. The result
    matches the common browser-side ``(h << 5) - h + charCodeAt(i)`` hash,
    so both sides derive the same ids.
    """
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def canonical_labels(labels: dict[str, str]) -> str:
    """Join labels as ``key=value`` pairs with ``&`` in sorted key order."""
    return "&".join(f"{key}={labels[key]}" for key in sorted(labels))


def resolve_id(item: FeedItem) -> ItemId:
    """Return the stable identifier for a feed item.

    A backend-provided id is authoritative and returned as-is. Otherwise the
    id is the decimal hash of the item's canonical label string.
    """
    if item.id is not None:
        return str(item.id)
    return str(string_hash(canonical_labels(item.labels)))


def to_item_id(id_or_item: IdOrItem) -> ItemId:
    """Accept either a raw ItemId or a FeedItem and return the ItemId."""
    if isinstance(id_or_item, FeedItem):
        return resolve_id(id_or_item)
    return id_or_item


def parse_feed_time(value: str) -> datetime:
    """Parse an ISO 8601 or RFC 2822 timestamp into an aware datetime.

    Naive values are interpreted in local time.

    Raises:
        ValueError: If the value is not a recognizable timestamp.
    """
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Unrecognized feed time: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def _compare_titles(a: FeedItem, b: FeedItem) -> int:
    title_a = a.labels.get("title", "")
    title_b = b.labels.get("title", "")
    key_a = (title_a.casefold(), title_a)
    key_b = (title_b.casefold(), title_b)
    return (key_a > key_b) - (key_a < key_b)


def compare_feeds(a: FeedItem, b: FeedItem) -> int:
    """Order feed items newest first, then by title.

    Returns a negative number when ``a`` sorts before ``b``. If either time
    cannot be parsed, only titles are compared.
    """
    try:
        time_a = parse_feed_time(a.time)
        time_b = parse_feed_time(b.time)
    except ValueError as e:
        logger.debug(f"Falling back to title order: {e}")
        return _compare_titles(a, b)

    if time_a > time_b:
        return -1
    if time_a < time_b:
        return 1
    return _compare_titles(a, b)


def sort_feeds(items: list[FeedItem]) -> list[FeedItem]:
    """Return a new list of items sorted with compare_feeds."""
    return sorted(items, key=functools.cmp_to_key(compare_feeds))
