"""Read-state endpoints.

These endpoints expose the ReadStateStore to the UI: marking items read or
unread, reading the derived projections, and triggering reconciliation.
Mark endpoints answer as soon as the local state is updated; pass
``?wait=true`` to also wait for the backend push.
"""

from fastapi import APIRouter

from api.dependencies import ReadStateStoreDep
from api.models import (
    DrainResponse,
    ItemReadStateResponse,
    MarkResponse,
    ReadStateResponse,
    ResetResponse,
    ResolveIdResponse,
    SyncResponse,
    TodayCountResponse,
)
from models.feed import FeedItem, resolve_id
from models.read_state import ReadStateStore


router = APIRouter(
    prefix="/read-state",
    tags=["read-state"],
)


def _item_state(store: ReadStateStore, item_id: str) -> dict:
    snapshot = store.get()
    return {
        "item_id": item_id,
        "is_read": store.is_read(item_id, snapshot),
        "read_at": snapshot.get(item_id),
        "pending_retry": item_id in store.retry_queue,
    }


@router.get("", response_model=ReadStateResponse)
async def get_read_state(store: ReadStateStoreDep):
    """Get every read marker plus the derived projections.

    Args:
        store: The ReadStateStore instance (injected by FastAPI).

    Returns:
        Markers, today's read count, queued retries and the last sync time.
    """
    return ReadStateResponse(
        markers=dict(store.get()),
        today_count=store.today_count.get(),
        pending_retries=store.retry_queue.item_ids,
        last_synced_at=store.last_synced_at,
    )


@router.get("/today", response_model=TodayCountResponse)
async def get_today_count(store: ReadStateStoreDep):
    """Get the number of items marked read during the current local day."""
    return TodayCountResponse(count=store.today_count.get())


@router.get("/items/{item_id}", response_model=ItemReadStateResponse)
async def get_item_state(item_id: str, store: ReadStateStoreDep):
    """Get the local read state of one item."""
    return ItemReadStateResponse(**_item_state(store, item_id))


@router.post("/resolve", response_model=ResolveIdResponse)
async def resolve_item_id(item: FeedItem):
    """Derive the stable identifier for a feed item.

    Args:
        item: The feed item, with or without a backend id.

    Returns:
        The identifier the store uses for this item.
    """
    return ResolveIdResponse(item_id=resolve_id(item))


@router.post("/items/{item_id}/read", response_model=MarkResponse)
async def mark_item_read(item_id: str, store: ReadStateStoreDep, wait: bool = False):
    """Mark an item read.

    The local state changes before the backend is contacted. With
    ``wait=true`` the response also carries the push result, reflecting any
    rollback or retry queuing it caused.
    """
    push_task = store.mark_read(item_id)
    push = await push_task if wait else None
    return MarkResponse(**_item_state(store, item_id), push=push)


@router.post("/items/{item_id}/unread", response_model=MarkResponse)
async def mark_item_unread(item_id: str, store: ReadStateStoreDep, wait: bool = False):
    """Mark an item unread. See mark_item_read for the ``wait`` flag."""
    push_task = store.mark_unread(item_id)
    push = await push_task if wait else None
    return MarkResponse(**_item_state(store, item_id), push=push)


@router.post("/items/{item_id}/sync", response_model=SyncResponse)
async def sync_item(item_id: str, store: ReadStateStoreDep):
    """Pull the backend status for one item, subject to the sync throttle."""
    outcome = await store.sync(item_id)
    return SyncResponse(item_id=item_id, outcome=outcome, is_read=store.is_read(item_id))


@router.post("/sync-all", response_model=DrainResponse)
async def sync_all(store: ReadStateStoreDep):
    """Retry every queued item now instead of waiting for the next tick."""
    report = await store.sync_all()
    return DrainResponse(report=report, pending_retries=store.retry_queue.item_ids)


@router.post("/reset", response_model=ResetResponse)
async def reset_read_state(store: ReadStateStoreDep):
    """Forget all local read state, persisted slots and queued retries."""
    store.reset()
    return ResetResponse(message="Read state cleared")
