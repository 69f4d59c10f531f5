"""Main Zenfeed backend client class.

AsyncZenfeedClient is the entry point for talking to the feed backend.
Functionality is namespaced through sub-client properties
(e.g., ``client.feeds``).

Example:
    Asynchronous usage::

        from client import AsyncZenfeedClient

        async with AsyncZenfeedClient(base_url="http://localhost:1300") as client:
            status = await client.feeds.get_read_status("42")
"""

from typing import Any

from client._feeds import AsyncFeedsClient
from client._http import AsyncHTTPClient


class AsyncZenfeedClient:
    """Asynchronous client for the feed backend REST API.

    Attributes:
        base_url: The base URL of the feed backend.
        timeout: Request timeout in seconds.
        retry_enabled: Whether automatic retry is enabled.
        max_retries: Maximum number of retry attempts.

    Example:
        Manual lifecycle management::

            client = AsyncZenfeedClient(bearer_token="secret")
            try:
                await client.feeds.update_read_status("42", "read")
            finally:
                await client.close()
    """

    def __init__(
        self,
        base_url: str = "http://localhost:1300",
        timeout: float = 30.0,
        bearer_token: str | None = None,
        retry_enabled: bool = False,
        max_retries: int = 3,
        transport: Any = None,
    ) -> None:
        """Initialize the async client.

        Args:
            base_url: The base URL of the feed backend.
            timeout: Request timeout in seconds (default: 30.0).
            bearer_token: Optional token sent as ``Authorization: Bearer``.
            retry_enabled: Whether to retry connection errors, timeouts and
                HTTP 502/503/504 with exponential backoff (default: False).
            max_retries: Maximum number of retry attempts when retry is enabled.
            transport: Custom HTTP transport (e.g., MockTransport for testing).
        """
        self._base_url = base_url
        self._timeout = timeout
        self._retry_enabled = retry_enabled
        self._max_retries = max_retries

        self._http = AsyncHTTPClient(
            base_url=base_url,
            timeout=timeout,
            bearer_token=bearer_token,
            retry_enabled=retry_enabled,
            max_retries=max_retries,
            transport=transport,
        )

        self._feeds: AsyncFeedsClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def retry_enabled(self) -> bool:
        return self._retry_enabled

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def feeds(self) -> AsyncFeedsClient:
        """Sub-client for feed read-status endpoints."""
        if self._feeds is None:
            self._feeds = AsyncFeedsClient(self._http)
        return self._feeds

    async def close(self) -> None:
        """Close the client and release resources."""
        await self._http.close()

    async def __aenter__(self) -> "AsyncZenfeedClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"AsyncZenfeedClient(base_url={self._base_url!r})"
