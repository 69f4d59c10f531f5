"""Internal HTTP layer for the Zenfeed backend client.

Wraps httpx.AsyncClient with:
- mapping of error responses onto the client exception hierarchy
- optional retry with exponential backoff for gateway errors and
  transport failures
- bearer-token authentication

This is an internal module. Import from `client` instead.
"""

import asyncio
import logging
from typing import Any, Literal

import httpx

from client.exceptions import (
    APIError,
    ConnectionError,
    NotFoundError,
    ResponseFormatError,
    ServerError,
    TimeoutError,
)

logger = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

# Status codes that trigger automatic retry (when retry is enabled)
RETRYABLE_STATUS_CODES = {502, 503, 504}

DEFAULT_RETRY_BACKOFF_BASE = 0.5  # seconds
DEFAULT_RETRY_BACKOFF_MAX = 30.0  # seconds


def _parse_error_response(response: httpx.Response) -> tuple[str, dict | None]:
    """Extract a message and optional details from an error response.

    The feed backend answers errors either with a JSON object carrying a
    "message", "error" or "detail" key, or with plain text.

    Args:
        response: The HTTP response to parse.

    Returns:
        A tuple of (message, details).
    """
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return (text or f"HTTP {response.status_code} error"), None

    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str):
                return value, body.get("details")
    return str(body), None


def _raise_for_status(response: httpx.Response) -> None:
    """Raise the matching client exception for non-2xx responses.

    Args:
        response: The HTTP response to check.

    Raises:
        NotFoundError: For HTTP 404 responses.
        ServerError: For HTTP 5xx responses.
        APIError: For any other non-2xx response.
    """
    if response.is_success:
        return

    message, details = _parse_error_response(response)
    status_code = response.status_code

    try:
        response_body = response.json()
    except ValueError:
        response_body = response.text

    if status_code == 404:
        raise NotFoundError(message=message, details=details, response_body=response_body)
    if status_code >= 500:
        raise ServerError(
            message=message,
            status_code=status_code,
            details=details,
            response_body=response_body,
        )
    raise APIError(
        message=message,
        status_code=status_code,
        details=details,
        response_body=response_body,
    )


def _parse_success_body(response: httpx.Response) -> Any:
    """Decode a 2xx body as JSON, or None when it is empty.

    Raises:
        ResponseFormatError: If the body is not valid JSON (for example an
            HTML page served by a proxy in front of the backend).
    """
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise ResponseFormatError(
            message=f"Expected a JSON body from {response.request.url}",
            response_body=response.text,
        ) from e


def _calculate_backoff(attempt: int, base: float = DEFAULT_RETRY_BACKOFF_BASE) -> float:
    """Exponential backoff delay for a 0-indexed retry attempt, capped."""
    delay = base * (2 ** attempt)
    return min(delay, DEFAULT_RETRY_BACKOFF_MAX)


class AsyncHTTPClient:
    """Asynchronous HTTP client for the feed backend.

    Attributes:
        base_url: The base URL for all API requests.
        timeout: Request timeout in seconds.
        retry_enabled: Whether to retry on transient failures.
        max_retries: Maximum number of retry attempts.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        bearer_token: str | None = None,
        retry_enabled: bool = False,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the async HTTP client.

        Args:
            base_url: The base URL for all API requests.
            timeout: Request timeout in seconds.
            bearer_token: Sent as an Authorization header when set.
            retry_enabled: Whether to retry on transient failures.
            max_retries: Maximum number of retry attempts.
            transport: Custom transport (e.g., MockTransport for testing).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_enabled = retry_enabled
        self.max_retries = max_retries

        headers = {"Accept": "application/json"}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncHTTPClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def request(
        self,
        method: HttpMethod,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Make a request and return the parsed JSON response.

        Args:
            method: The HTTP method.
            path: The URL path (appended to base_url).
            params: Query parameters; None values are dropped.
            json: JSON body to send with the request.

        Returns:
            The parsed JSON response body, or None for empty responses.

        Raises:
            ConnectionError: If the connection fails or breaks mid-request.
            TimeoutError: If the request times out.
            APIError: If the backend returns an error response.
            ResponseFormatError: If a 2xx body is not JSON.
        """
        url = f"{self.base_url}{path}"

        if params:
            params = {k: v for k, v in params.items() if v is not None}

        attempts = self.max_retries + 1 if self.retry_enabled else 1

        for attempt in range(attempts):
            is_last = attempt >= attempts - 1
            try:
                response = await self._client.request(
                    method=method,
                    url=path,
                    params=params,
                    json=json,
                )
            except httpx.ConnectError as e:
                if is_last:
                    raise ConnectionError(
                        message=f"Failed to connect to {url}",
                        url=url,
                        cause=e,
                    ) from e
            except httpx.TimeoutException as e:
                if is_last:
                    raise TimeoutError(
                        message=f"Request to {url} timed out",
                        timeout=self.timeout,
                        url=url,
                    ) from e
            except httpx.TransportError as e:
                # Any other transport failure, such as a dropped connection.
                if is_last:
                    raise ConnectionError(
                        message=f"Request to {url} failed: {type(e).__name__}",
                        url=url,
                        cause=e,
                    ) from e
            else:
                if (
                    self.retry_enabled
                    and response.status_code in RETRYABLE_STATUS_CODES
                    and not is_last
                ):
                    logger.debug(
                        f"{method} {url} returned {response.status_code}, "
                        f"retrying (attempt {attempt + 1}/{attempts})"
                    )
                else:
                    _raise_for_status(response)
                    return _parse_success_body(response)

            await asyncio.sleep(_calculate_backoff(attempt))

        raise RuntimeError("Unexpected error in request retry loop")

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self.request("POST", path, params=params, json=json)
