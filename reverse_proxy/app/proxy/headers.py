"""
Header Rewriting
================

Builds the header set sent to the target and the header set returned to the
caller.

Outbound (to the target):
    - Headers identifying the caller or the hosting edge are dropped
    - ``X-Custom-Headers`` is consumed: its JSON object is applied on top of
      what is left, which is how a browser sets headers such as ``Cookie``
      that scripts may not set themselves

Inbound (back to the caller):
    - Every header the target sent is kept
    - ``Access-Control-Allow-Origin`` reflects the caller's origin
    - Preflights get ``Access-Control-Allow-Methods``/``-Headers``
    - ``x-received-headers`` carries a JSON copy of the target's headers and
      every header name is listed in ``Access-Control-Expose-Headers``
"""

import json
import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from ..models import IncomingRequest

logger = logging.getLogger(__name__)

CUSTOM_HEADERS_HEADER = "X-Custom-Headers"
RECEIVED_HEADERS_HEADER = "x-received-headers"
DEFAULT_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"

# RFC 9110 token
_HEADER_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_AUTHORITY_END = re.compile(r"[/?#]")


# ============================================================================
# Outbound Request Headers
# ============================================================================

def _starts_with(prefix: str) -> Callable[[str], bool]:
    return lambda name: name.startswith(prefix)


def _contains(fragment: str) -> Callable[[str], bool]:
    return lambda name: fragment in name


# Matched against the lower-cased header name.
# "eferer" is a substring rule so prefixed variants such as X-Referer are caught too.
FORBIDDEN_HEADER_RULES: Tuple[Callable[[str], bool], ...] = (
    _starts_with("origin"),
    _contains("eferer"),
    _starts_with("cf-"),
    _starts_with("x-forw"),
    _starts_with("x-custom-headers"),
)


def is_forwardable(name: str) -> bool:
    lowered = name.lower()
    return not any(rule(lowered) for rule in FORBIDDEN_HEADER_RULES)


def _header_value(value) -> str:
    # Stringify the way a JavaScript header bag would: 1 -> "1", true -> "true"
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


def parse_custom_headers(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse the ``X-Custom-Headers`` value into header overrides.

    Malformed input is not an error: anything that is not a JSON object
    yields no overrides, and keys that are not valid header names are
    skipped.

    Args:
        raw: Header value, or None when the header was not sent

    Returns:
        Mapping of header name to value, possibly empty
    """
    if raw is None:
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring malformed {CUSTOM_HEADERS_HEADER} value: {e}")
        return {}

    if not isinstance(parsed, dict):
        logger.warning(f"Ignoring {CUSTOM_HEADERS_HEADER} value that is not a JSON object")
        return {}

    overrides = {}
    for name, value in parsed.items():
        if not _HEADER_NAME.match(name):
            logger.warning(f"Ignoring invalid header name in {CUSTOM_HEADERS_HEADER}: {name!r}")
            continue
        overrides[name] = _header_value(value)

    return overrides


def build_outbound_headers(
    incoming: httpx.Headers,
    custom_header_raw: Optional[str]
) -> httpx.Headers:
    """
    Build the headers sent to the target.

    Args:
        incoming: Headers of the request the proxy received
        custom_header_raw: Value of ``X-Custom-Headers``, if sent

    Returns:
        Filtered headers with overrides applied; an override replaces any
        same-named header that survived filtering
    """
    outbound = httpx.Headers(
        [(name, value) for name, value in incoming.raw if is_forwardable(name.decode("latin-1"))]
    )

    for name, value in parse_custom_headers(custom_header_raw).items():
        outbound[name] = value

    return outbound


# ============================================================================
# Response Headers / CORS
# ============================================================================

def proxy_origin(request_url: str) -> str:
    """Scheme and authority of the URL the proxy was called with."""
    try:
        url = httpx.URL(request_url)
    except httpx.InvalidURL:
        # Malformed Host header: echo the authority as received
        scheme, _, rest = request_url.partition("://")
        return f"{scheme}://{_AUTHORITY_END.split(rest, maxsplit=1)[0]}"

    return f"{url.scheme}://{url.netloc.decode('ascii')}"


def request_origin(request: IncomingRequest) -> str:
    """The caller's ``Origin`` header, or the proxy's own origin."""
    return request.headers.get("Origin") or proxy_origin(request.url)


def apply_cors_headers(request: IncomingRequest, headers: httpx.Headers) -> httpx.Headers:
    """
    Layer the CORS response fields onto ``headers`` in place.

    The allowed origin is always a specific origin, never ``*``, so that
    credentialed requests keep working.
    """
    headers["Access-Control-Allow-Origin"] = request_origin(request)

    if request.is_preflight:
        headers["Access-Control-Allow-Methods"] = (
            request.headers.get("Access-Control-Request-Method") or DEFAULT_ALLOW_METHODS
        )

        requested_headers = request.headers.get("Access-Control-Request-Headers")
        if requested_headers:
            headers["Access-Control-Allow-Headers"] = requested_headers

        # nosniff from the target breaks some browsers' preflight handling
        headers.pop("X-Content-Type-Options", None)

    return headers


def build_response_headers(
    origin_headers: httpx.Headers,
    request: IncomingRequest
) -> Tuple[httpx.Headers, List[str]]:
    """
    Build the headers returned to the caller.

    Args:
        origin_headers: Headers of the target's response
        request: The request the proxy received

    Returns:
        Tuple of (response headers, exposed header names). The names are
        every header the target sent plus ``x-received-headers``.
    """
    # Snapshot before CORS layering; repeated headers are comma-joined
    received = dict(origin_headers.items())

    headers = apply_cors_headers(request, httpx.Headers(origin_headers.raw))

    exposed = list(received.keys())
    exposed.append(RECEIVED_HEADERS_HEADER)

    headers[RECEIVED_HEADERS_HEADER] = json.dumps(received, separators=(",", ":"))
    headers["Access-Control-Expose-Headers"] = ",".join(exposed)

    return headers, exposed
