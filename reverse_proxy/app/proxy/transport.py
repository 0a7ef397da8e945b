"""
Outbound HTTP transport.

Wraps the shared ``httpx.AsyncClient``. The handler only depends on the
``Transport`` callable, so tests can substitute any coroutine that takes an
``httpx.Request`` and returns an ``httpx.Response``.
"""

import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

Transport = Callable[[httpx.Request], Awaitable[httpx.Response]]

# Connection-level headers (RFC 9110 section 7.6.1) plus the ones httpx
# derives from the target URL and body itself
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)
CLIENT_MANAGED_HEADERS = frozenset({"host", "content-length"})


def build_forward_request(
    method: str,
    url: httpx.URL,
    headers: httpx.Headers,
    body: Optional[bytes]
) -> httpx.Request:
    """
    Build the request sent to the target.

    Args:
        method: HTTP method of the original request
        url: Target URL
        headers: Outbound headers already filtered for the target
        body: Original request body, if any

    Returns:
        httpx.Request ready for the transport
    """
    wire_headers = httpx.Headers(
        [
            (name, value)
            for name, value in headers.raw
            if name.lower().decode("latin-1") not in HOP_BY_HOP_HEADERS | CLIENT_MANAGED_HEADERS
        ]
    )

    return httpx.Request(method, url, headers=wire_headers, content=body)


async def read_raw_body(response: httpx.Response) -> bytes:
    """
    Read a streamed response body without content decoding, then close it.

    The bytes are exactly what the target sent, so they stay consistent with
    its ``Content-Encoding`` and ``Content-Length`` headers.
    """
    try:
        return b"".join([chunk async for chunk in response.aiter_raw()])
    finally:
        await response.aclose()


class HttpxTransport:
    """
    Send forwarded requests through a shared ``httpx.AsyncClient``.

    Redirects are followed hop by hop. httpx drops ``Cookie`` on every redirect
    and expects its jar to refill it, but the jar here stores nothing, so the
    cookie of the first request is put back on each hop. httpx still strips
    ``Authorization`` when a redirect leaves the origin.

    The final response is returned unread (streaming) so the caller decides
    whether to consume or discard the body.
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        cookies = request.headers.get_list("cookie")
        redirects = 0

        while True:
            logger.debug(f"Sending {request.method} to {request.url.host}")
            response = await self._client.send(request, stream=True, follow_redirects=False)

            next_request = response.next_request
            if next_request is None:
                return response

            await response.aclose()

            redirects += 1
            if redirects > self._client.max_redirects:
                raise httpx.TooManyRedirects(
                    "Exceeded maximum allowed redirects.", request=next_request
                )

            if cookies:
                next_request.headers["cookie"] = "; ".join(cookies)

            request = next_request


def create_http_client(timeout_seconds: float) -> httpx.AsyncClient:
    """
    Create the HTTP client used for every forwarded call.

    Args:
        timeout_seconds: Read/write/pool timeout; connect is capped at 10s

    Returns:
        httpx.AsyncClient that never stores cookies between calls
    """
    timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 10.0))
    # Empty allowed_domains: the jar accepts and returns no cookies
    cookies = CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))
    return httpx.AsyncClient(timeout=timeout, cookies=cookies, trust_env=False)
