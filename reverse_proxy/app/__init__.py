"""
Reverse CORS Proxy
==================

Forwards a request to the origin named in the ``url`` query parameter and
returns the origin's answer with CORS headers that let a browser read it.

Packages:
    - proxy/   : target resolution, access policy, header rewriting, handler
    - config   : environment-driven settings
    - models   : request/response data carried through one proxied call
    - main     : FastAPI application factory
"""

__version__ = "1.0.0"
