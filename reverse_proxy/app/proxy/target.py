"""
Target URL resolution.

The destination is carried in a single ``url`` query parameter. The value is
expected to be fully percent-encoded so that any ``&`` inside the target's own
query string does not split it into several parameters of the proxy URL.
"""

import logging
import re
from typing import Optional
from urllib.parse import parse_qsl, unquote

import httpx

from ..models import TargetSpec
from .errors import AmbiguousQueryError, InvalidTargetURLError

logger = logging.getLogger(__name__)

TARGET_PARAM = "url"
SUPPORTED_SCHEMES = ("http", "https")

# A "%" that does not start a two-digit hex escape
_MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def strict_percent_decode(value: str) -> str:
    """
    Percent-decode a string, failing on malformed input.

    Args:
        value: Percent-encoded text

    Returns:
        Decoded text

    Raises:
        ValueError: If an escape is truncated or the bytes are not UTF-8
    """
    match = _MALFORMED_ESCAPE.search(value)
    if match:
        raise ValueError(f"Malformed percent escape at position {match.start()}")

    # UnicodeDecodeError is a ValueError
    return unquote(value, errors="strict")


def resolve_target(request_url: str) -> Optional[TargetSpec]:
    """
    Extract and validate the destination from the proxy request URL.

    Args:
        request_url: Full URL the proxy was called with

    Returns:
        TargetSpec for the destination, or None when no target was given

    Raises:
        AmbiguousQueryError: If the query string holds more than one parameter
        InvalidTargetURLError: If the request URL cannot be parsed, or the
            value cannot be decoded or is not an absolute http(s) URL
    """
    try:
        query = httpx.URL(request_url).query.decode("ascii", errors="replace")
    except httpx.InvalidURL as e:
        logger.info(f"Rejected unparseable proxy request URL: {e}")
        raise InvalidTargetURLError(str(e)) from e

    params = parse_qsl(query, keep_blank_values=True)

    raw_target = next((value for name, value in params if name == TARGET_PARAM), "")
    if not raw_target:
        return None

    if len(params) > 1:
        logger.info(
            "Rejected proxy request with multiple query parameters",
            extra={"parameter_count": len(params)}
        )
        raise AmbiguousQueryError(len(params))

    try:
        decoded = strict_percent_decode(raw_target).strip()
    except ValueError as e:
        logger.info(f"Rejected undecodable target URL: {e}")
        raise InvalidTargetURLError(str(e)) from e

    try:
        url = httpx.URL(decoded)
    except httpx.InvalidURL as e:
        logger.info(f"Rejected unparseable target URL: {e}")
        raise InvalidTargetURLError(str(e)) from e

    if url.scheme not in SUPPORTED_SCHEMES or not url.host:
        logger.info("Rejected target URL that is not an absolute http(s) URL")
        raise InvalidTargetURLError("Target URL must be an absolute http or https URL")

    return TargetSpec(url=url)
