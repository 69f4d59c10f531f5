"""Response models for the read-state endpoints."""

from typing import Optional

from pydantic import BaseModel, Field

from models.read_state import DrainReport, PullOutcome, PushResult


class ReadStateResponse(BaseModel):
    """Full read state as seen by the UI.

    Attributes:
        markers: Item id to read-at milliseconds.
        today_count: Number of items marked read today (local time).
        pending_retries: Item ids queued for a backend retry, in retry order.
        last_synced_at: Milliseconds of the last successful throttled pull.
    """

    markers: dict[str, int]
    today_count: int
    pending_retries: list[str]
    last_synced_at: Optional[int] = None


class TodayCountResponse(BaseModel):
    """Number of items marked read during the current local day."""

    count: int


class ItemReadStateResponse(BaseModel):
    """Read state of one item.

    Attributes:
        item_id: The item identifier.
        is_read: Whether the item is marked read locally.
        read_at: When it was marked read, in milliseconds, if read.
        pending_retry: Whether a backend retry is queued for it.
    """

    item_id: str
    is_read: bool
    read_at: Optional[int] = None
    pending_retry: bool = False


class MarkResponse(ItemReadStateResponse):
    """Local state right after a mark, plus the push result when awaited.

    Attributes:
        push: Result of the backend push; None unless the request asked to
            wait for it.
    """

    push: Optional[PushResult] = None


class ResolveIdResponse(BaseModel):
    """Identifier derived for a feed item."""

    item_id: str


class SyncResponse(BaseModel):
    """Outcome of a throttled pull for one item."""

    item_id: str
    outcome: PullOutcome
    is_read: bool


class DrainResponse(BaseModel):
    """Outcome of an immediate pass over the retry queue."""

    report: DrainReport
    pending_retries: list[str] = Field(default_factory=list)


class ResetResponse(BaseModel):
    """Confirmation that read state was cleared."""

    message: str
