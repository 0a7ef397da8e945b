"""
Proxy Request Handler
=====================

Runs one proxied request from start to finish:

    resolve target -> check policy -> rewrite request headers -> forward
    -> rewrite response headers -> build final response

Outcomes:
    - no ``url`` parameter      : 200, usage page with connection info
    - several query parameters  : 400
    - undecodable/invalid URL   : 400
    - blacklisted/not whitelisted host : 403
    - otherwise the target's response, with CORS headers added

Preflight (OPTIONS) requests are still forwarded, but the caller always
receives 200 with an empty body and the negotiated CORS headers.

Transport failures are not caught here.
"""

import logging

import httpx
from fastapi import status

from ..models import AccessPolicyConfig, IncomingRequest, ProxyResponse
from .errors import ProxyError, TargetDeniedError
from .headers import (
    CUSTOM_HEADERS_HEADER,
    build_outbound_headers,
    build_response_headers,
    proxy_origin,
    request_origin,
)
from .policy import is_allowed
from .target import resolve_target
from .transport import Transport, build_forward_request, read_raw_body

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

TEXT_HEADERS = {"Content-Type": "text/plain; charset=utf-8"}


# ============================================================================
# Informational Responses
# ============================================================================

def usage_banner(request: IncomingRequest) -> str:
    """Service description shown on the usage page and in error bodies."""
    return (
        "Reverse CORS Proxy\n\n"
        "Usage:\n"
        f"{proxy_origin(request.url)}/?url={{uri}}\n"
        "* Header origin or x-requested-with must be set by the client.\n"
        "* Target URL must be URL-encoded fully "
        "(Example: 'url=https%253A%252F%252Fexample.com%252F%253Ftest').\n"
        f"* Forbidden headers such as Cookies should be set via \"{CUSTOM_HEADERS_HEADER}\" "
        "header as a JSON object string.\n\n"
        "----------------------------\n\n"
    )


def connection_info_page(request: IncomingRequest) -> ProxyResponse:
    connection = request.connection
    body = (
        usage_banner(request)
        + "Connecting Info:\n"
        f"* Origin: {request.headers.get('Origin') or UNKNOWN}\n"
        f"* IP: {connection.client_ip or UNKNOWN}\n"
        f"* Country: {connection.country or UNKNOWN}\n"
        f"* Data Centre: {connection.colo or UNKNOWN}\n"
        f"* {CUSTOM_HEADERS_HEADER}: {request.headers.get(CUSTOM_HEADERS_HEADER) or 'None'}"
    )

    return ProxyResponse(
        status_code=status.HTTP_200_OK,
        reason_phrase="OK",
        headers=httpx.Headers(TEXT_HEADERS),
        body=body.encode("utf-8"),
    )


def error_page(request: IncomingRequest, error: ProxyError) -> ProxyResponse:
    body = usage_banner(request) + f"** Error: {error.message}"

    return ProxyResponse(
        status_code=error.status_code,
        reason_phrase=error.reason_phrase,
        headers=httpx.Headers(TEXT_HEADERS),
        body=body.encode("utf-8"),
    )


# ============================================================================
# Request Handling
# ============================================================================

async def handle(
    request: IncomingRequest,
    config: AccessPolicyConfig,
    perform: Transport
) -> ProxyResponse:
    """
    Handle one proxy request.

    Args:
        request: The request the proxy received
        config: Destination access policy
        perform: Sends the forwarded request and returns the streamed response

    Returns:
        ProxyResponse to send back to the caller

    Raises:
        httpx.HTTPError: If the forwarded call fails; it is not translated here
    """
    try:
        target = resolve_target(request.url)
        if target is None:
            return connection_info_page(request)

        decision = is_allowed(target, config)
        if not decision.allowed:
            logger.info(
                f"Refused target host {target.hostname}",
                extra={"reason": decision.reason, "origin": request_origin(request)}
            )
            raise TargetDeniedError(target.hostname, decision.reason or "denied")

    except ProxyError as e:
        return error_page(request, e)

    outbound_headers = build_outbound_headers(
        request.headers,
        request.headers.get(CUSTOM_HEADERS_HEADER)
    )
    forward_request = build_forward_request(
        request.method,
        target.url,
        outbound_headers,
        request.body,
    )

    response = await perform(forward_request)

    logger.info(
        f"Proxied {request.method} to {target.hostname}",
        extra={"status_code": response.status_code, "preflight": request.is_preflight}
    )

    try:
        headers, _ = build_response_headers(response.headers, request)

        if request.is_preflight:
            return ProxyResponse(
                status_code=status.HTTP_200_OK,
                reason_phrase="OK",
                headers=headers,
            )

        body = await read_raw_body(response)
    finally:
        await response.aclose()

    return ProxyResponse(
        status_code=response.status_code,
        reason_phrase=response.reason_phrase,
        headers=headers,
        body=body,
    )
