"""Zenfeed backend client library.

An asynchronous, typed client for the feed backend's read-status API.

Example:
    Asynchronous usage::

        from client import AsyncZenfeedClient

        async with AsyncZenfeedClient(base_url="http://localhost:1300") as client:
            await client.feeds.update_read_status("42", "read")

Exports:
    AsyncZenfeedClient: Asynchronous client for the feed backend.
    AsyncFeedsClient: Read-status sub-client.

    Exceptions:
        ZenfeedClientError: Base exception for all client errors.
        ConnectionError: Failed to connect to the backend.
        TimeoutError: Request timed out.
        ResponseFormatError: Unexpected response body.
        APIError: Backend returned an error response.
        NotFoundError: Item not found (HTTP 404).
        ServerError: Backend-side error (HTTP 5xx).
"""

from client._feeds import (
    AsyncFeedsClient,
    FeedReadStatusResponse,
    PushableStatus,
    ReadStatus,
    UpdateReadStatusRequest,
)
from client.client import AsyncZenfeedClient
from client.exceptions import (
    APIError,
    ConnectionError,
    NotFoundError,
    ResponseFormatError,
    ServerError,
    TimeoutError,
    ZenfeedClientError,
)

__all__ = [
    "AsyncZenfeedClient",
    "AsyncFeedsClient",
    "FeedReadStatusResponse",
    "PushableStatus",
    "ReadStatus",
    "UpdateReadStatusRequest",
    "ZenfeedClientError",
    "ConnectionError",
    "TimeoutError",
    "ResponseFormatError",
    "APIError",
    "NotFoundError",
    "ServerError",
]
