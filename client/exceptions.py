"""Errors raised by the Zenfeed backend client.

    ZenfeedClientError
    ├── ConnectionError       backend unreachable or connection broken
    ├── TimeoutError          no answer within the client timeout
    ├── ResponseFormatError   2xx answer with a body we cannot read
    └── APIError              non-2xx answer
        ├── NotFoundError     404
        └── ServerError       5xx

ReadStateStore treats any ZenfeedClientError as a failed sync: the local
state is kept and the item goes to the retry queue.
"""

from typing import Any


class ZenfeedClientError(Exception):
    """Root of every error raised by the backend client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConnectionError(ZenfeedClientError):
    """The backend could not be reached.

    Attributes:
        url: Address of the failed request.
        cause: The transport-level exception, if any.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.message} (url: {self.url})" if self.url else self.message


class TimeoutError(ZenfeedClientError):
    """The backend did not answer in time.

    Attributes:
        timeout: The client timeout in seconds.
        url: Address of the request that timed out.
    """

    def __init__(
        self,
        message: str,
        timeout: float | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.timeout = timeout
        self.url = url

    def __str__(self) -> str:
        context = []
        if self.timeout is not None:
            context.append(f"timeout: {self.timeout}s")
        if self.url:
            context.append(f"url: {self.url}")
        return f"{self.message} ({', '.join(context)})" if context else self.message


class ResponseFormatError(ZenfeedClientError):
    """A successful answer whose body is not the expected shape."""

    def __init__(self, message: str, response_body: Any = None) -> None:
        super().__init__(message)
        self.response_body = response_body


class APIError(ZenfeedClientError):
    """The backend answered with an error status.

    Attributes:
        status_code: HTTP status of the answer.
        details: Structured details from the error body, if present.
        response_body: The decoded body (JSON or text).
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details
        self.response_body = response_body

    def __str__(self) -> str:
        return f"[HTTP {self.status_code}] {self.message}"


class NotFoundError(APIError):
    """The backend does not know the item (404)."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(message, 404, details, response_body)


class ServerError(APIError):
    """The backend failed (5xx). Gateway errors may already have been retried."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(message, status_code, details, response_body)
