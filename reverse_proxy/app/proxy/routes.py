"""
Proxy Routes - Request Forwarding
=================================

Catch-all FastAPI route that adapts framework requests to the handler and
renders its result.

The request path is ignored: the destination is taken only from the ``url``
query parameter, so ``/?url=...`` and ``/anything?url=...`` are equivalent.
"""

import logging
from typing import List, Optional, Tuple

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..config import get_settings
from ..models import ConnectionInfo, IncomingRequest, ProxyResponse
from .handler import handle
from .transport import HOP_BY_HOP_HEADERS, HttpxTransport

logger = logging.getLogger(__name__)

proxy_router = APIRouter()

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# ============================================================================
# Dependencies
# ============================================================================

def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    Dependency to get the shared upstream HTTP client from app state.

    Args:
        request: FastAPI request object

    Returns:
        httpx.AsyncClient created during application startup
    """
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream HTTP client not initialized"
        )

    return client


# ============================================================================
# Framework Adapters
# ============================================================================

def colo_from_ray(ray: Optional[str]) -> Optional[str]:
    """Data centre code from a ``CF-Ray`` value such as ``8a1b2c3d4e5f-SJC``."""
    if not ray or "-" not in ray:
        return None
    return ray.rsplit("-", 1)[1] or None


def connection_info(request: Request) -> ConnectionInfo:
    headers = request.headers
    peer = request.client.host if request.client else None

    return ConnectionInfo(
        client_ip=headers.get("cf-connecting-ip") or peer,
        country=headers.get("cf-ipcountry"),
        colo=colo_from_ray(headers.get("cf-ray")),
    )


async def to_incoming_request(request: Request) -> IncomingRequest:
    body = await request.body()

    return IncomingRequest(
        method=request.method,
        url=str(request.url),
        headers=httpx.Headers(request.headers.raw),
        body=body or None,
        connection=connection_info(request),
    )


def to_raw_headers(result: ProxyResponse, method: str) -> List[Tuple[bytes, bytes]]:
    """
    Header list for the ASGI response.

    Connection-level headers belong to the server. ``Content-Length`` is
    recomputed from the actual body, except for HEAD where there is no body
    to measure.
    """
    raw_headers = []
    for name, value in result.headers.raw:
        lowered = name.lower()
        if lowered.decode("latin-1") in HOP_BY_HOP_HEADERS:
            continue
        if lowered == b"content-length" and method != "HEAD":
            continue
        raw_headers.append((lowered, value))

    if method != "HEAD" and result.status_code >= 200 and result.status_code not in (204, 304):
        raw_headers.append((b"content-length", str(len(result.body)).encode("ascii")))

    return raw_headers


def to_response(result: ProxyResponse, method: str) -> Response:
    response = Response(content=result.body, status_code=result.status_code)
    # Replace the defaults Starlette derived from the body
    response.raw_headers = to_raw_headers(result, method)
    return response


# ============================================================================
# Proxy Endpoint
# ============================================================================

@proxy_router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy(
    request: Request,
    path: str,
    http_client: httpx.AsyncClient = Depends(get_http_client)
) -> Response:
    """
    Forward the request to the target named in the ``url`` query parameter.

    Transport errors from the forwarded call propagate to the application's
    exception handlers.
    """
    settings = get_settings()

    incoming = await to_incoming_request(request)
    result = await handle(incoming, settings.access_policy, HttpxTransport(http_client))

    return to_response(result, request.method)
