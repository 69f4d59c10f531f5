"""Exception handlers for the Zenfeed FastAPI application.

Custom exceptions raised by route handlers are converted into consistent
JSON responses of the form ``{"error": ..., "detail": ...}``.
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ProxyRequestError(Exception):
    """Raised when a proxied request cannot be forwarded.

    Args:
        status_code: HTTP status to answer with.
        message: Description of what went wrong.
    """

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class ProxyEndpointDisabledError(ProxyRequestError):
    """Raised when the requested proxy endpoint is switched off by config.

    Args:
        endpoint: The disabled endpoint prefix.
    """

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__(
            status.HTTP_404_NOT_FOUND,
            f"Not Found: {endpoint.replace('_', ' ').capitalize()} endpoint is disabled.",
        )


async def proxy_request_error_handler(request: Request, exc: ProxyRequestError):
    """Answer with the status carried by the ProxyRequestError."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "Proxy Error",
            "detail": exc.message,
        },
    )


async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions as 400 Bad Request."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid Value",
            "detail": str(exc),
            "type": "ValueError",
        },
    )


async def runtime_error_handler(request: Request, exc: RuntimeError):
    """Handle RuntimeError exceptions.

    Raised mostly when a request arrives before the engine is started.
    """
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "Service Unavailable",
            "detail": str(exc),
            "type": "RuntimeError",
        },
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all handler that hides stack traces from clients."""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "detail": "An unexpected error occurred",
            "type": type(exc).__name__,
        },
    )
