"""Feed read-status sub-client.

Provides AsyncFeedsClient for the two backend read-status endpoints:

- ``GET /feed/{item_id}`` returns the current status of an item.
- ``POST /feed/{item_id}`` sets a new status and returns the status the
  backend actually recorded.

This is an internal module. Import from `client` instead.
"""

from typing import TYPE_CHECKING, Literal
from urllib.parse import quote

from pydantic import BaseModel, ValidationError

from client.exceptions import ResponseFormatError

if TYPE_CHECKING:
    from client._http import AsyncHTTPClient

ReadStatus = Literal["read", "unread", "deleted"]
PushableStatus = Literal["read", "unread"]


class FeedReadStatusResponse(BaseModel):
    """Read status as recorded by the backend.

    Attributes:
        read_status: One of "read", "unread" or "deleted".
    """

    read_status: ReadStatus


class UpdateReadStatusRequest(BaseModel):
    """Body of a read-status push.

    Attributes:
        read_status: The status to record; "deleted" is never pushed.
    """

    read_status: PushableStatus


def _parse_status(data: object) -> ReadStatus:
    try:
        return FeedReadStatusResponse.model_validate(data).read_status
    except ValidationError as e:
        raise ResponseFormatError(
            f"Unexpected read-status response: {data!r}",
            response_body=data,
        ) from e


class AsyncFeedsClient:
    """Asynchronous client for the feed read-status endpoints.

    Example:
        async with AsyncZenfeedClient(base_url="http://localhost:1300") as client:
            status = await client.feeds.get_read_status("42")
            confirmed = await client.feeds.update_read_status("42", "read")
    """

    _BASE_PATH = "/feed"

    def __init__(self, http_client: "AsyncHTTPClient") -> None:
        self._http = http_client

    def _item_path(self, item_id: str) -> str:
        return f"{self._BASE_PATH}/{quote(item_id, safe='')}"

    async def get_read_status(self, item_id: str) -> ReadStatus:
        """Fetch the backend's current read status for an item.

        Args:
            item_id: The item identifier.

        Returns:
            "read", "unread" or "deleted".

        Raises:
            ZenfeedClientError: If the request fails or the response is malformed.
        """
        data = await self._http.get(self._item_path(item_id))
        return _parse_status(data)

    async def update_read_status(self, item_id: str, read_status: PushableStatus) -> ReadStatus:
        """Push a new read status for an item.

        Args:
            item_id: The item identifier.
            read_status: "read" or "unread".

        Returns:
            The status the backend confirmed, which may differ from the
            requested one.

        Raises:
            ZenfeedClientError: If the request fails or the response is malformed.
        """
        body = UpdateReadStatusRequest(read_status=read_status)
        data = await self._http.post(self._item_path(item_id), json=body.model_dump())
        return _parse_status(data)
