"""API proxy endpoint.

Forwards any request under ``/api/{path}`` to ``{backendUrl}/{path}``, where
``backendUrl`` is a required query parameter. The configured bearer token
is attached to the forwarded request, and the ``query_config`` and
``apply_config`` endpoints can be switched off through settings.
"""

import logging
from typing import Annotated, Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request, Response, status

from api.dependencies import SettingsDep
from api.exceptions import ProxyEndpointDisabledError, ProxyRequestError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["proxy"],
)

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]

# Not forwarded back: httpx already decoded the body and the server sets
# its own framing headers.
_EXCLUDED_RESPONSE_HEADERS = {
    "content-encoding",
    "content-length",
    "transfer-encoding",
    "connection",
}


def get_proxy_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport used for upstream requests; None means the network."""
    return None


ProxyTransportDep = Annotated[Optional[httpx.AsyncBaseTransport], Depends(get_proxy_transport)]


def _validate_backend_url(backend_url: Optional[str]) -> httpx.URL:
    if not backend_url:
        raise ProxyRequestError(
            status.HTTP_400_BAD_REQUEST,
            "Bad Request: Missing backendUrl query parameter for proxy request.",
        )
    try:
        url = httpx.URL(backend_url)
    except httpx.InvalidURL:
        url = None
    if url is None or url.scheme not in ("http", "https") or not url.host:
        raise ProxyRequestError(
            status.HTTP_400_BAD_REQUEST,
            f"Bad Request: Invalid backendUrl format: {backend_url}",
        )
    return url


@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_request(
    path: str,
    request: Request,
    settings: SettingsDep,
    transport: ProxyTransportDep,
    backend_url: Annotated[Optional[str], Query(alias="backendUrl")] = None,
):
    """Forward the request to the backend named by ``backendUrl``.

    Args:
        path: Path after ``/api/``, appended to the backend URL.
        request: The incoming request; its method, body and remaining query
            parameters are forwarded.
        settings: Application settings (injected by FastAPI).
        transport: Upstream transport (injected by FastAPI).
        backend_url: Absolute http(s) URL of the backend.

    Returns:
        The backend's response with its status code, body and headers.

    Raises:
        ProxyRequestError: 400 for a missing or invalid backendUrl, 404 for
            a disabled endpoint, 503 when the backend refuses the
            connection, 500 for any other transport failure.
    """
    _validate_backend_url(backend_url)

    if settings.disable_api_proxy_query_config and path.startswith("query_config"):
        raise ProxyEndpointDisabledError("query_config")
    if settings.disable_api_proxy_apply_config and path.startswith("apply_config"):
        raise ProxyEndpointDisabledError("apply_config")

    target_url = f"{backend_url.rstrip('/')}/{path}"
    logger.info(f"Proxying {request.method} request for /api/{path} to: {target_url}")

    headers = {
        "Content-Type": request.headers.get("content-type", "application/json"),
        "Accept": request.headers.get("accept", "*/*"),
    }
    if settings.bearer_token:
        headers["Authorization"] = f"Bearer {settings.bearer_token}"

    params = [(k, v) for k, v in request.query_params.multi_items() if k != "backendUrl"]
    body = await request.body() if request.method not in ("GET", "HEAD") else None

    try:
        async with httpx.AsyncClient(
            timeout=settings.request_timeout, transport=transport
        ) as client:
            upstream = await client.request(
                request.method,
                target_url,
                params=params,
                headers=headers,
                content=body,
            )
    except httpx.ConnectError as e:
        logger.error(f"Error proxying /api/{path}: {e}")
        raise ProxyRequestError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            f"Service Unavailable: Could not connect to backend at {backend_url}",
        ) from e
    except httpx.HTTPError as e:
        logger.error(f"Error proxying /api/{path}: {e}")
        raise ProxyRequestError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Failed to proxy request to backend: {str(e) or type(e).__name__}",
        ) from e

    if not upstream.is_success:
        logger.info(f"Backend response: {upstream.status_code}")

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers={
            k: v
            for k, v in upstream.headers.items()
            if k.lower() not in _EXCLUDED_RESPONSE_HEADERS
        },
    )
