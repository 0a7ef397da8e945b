"""
Proxy Package
=============

Forwards a request to the origin named in the ``url`` query parameter and
grants the caller CORS access to the answer.

Main Components:
----------------
- target.py    : extracts and validates the destination URL
- policy.py    : blacklist/whitelist check on the destination hostname
- headers.py   : outbound header filtering, X-Custom-Headers, CORS and exposure
- handler.py   : runs one request through the steps above
- transport.py : httpx-based forwarding
- routes.py    : FastAPI catch-all route

Usage:
------
    from reverse_proxy.app.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .handler import handle
from .routes import proxy_router

__all__ = ["handle", "proxy_router"]
