"""
FastAPI Reverse Proxy Application Factory
=========================================

This is the main entry point for the reverse CORS proxy. It forwards a
browser's request to an arbitrary origin and returns the answer with CORS
headers that allow the browser to read it.

Architecture:
    Browser → Reverse Proxy (this service) → Target origin

Routers:
    - /health       : Health check endpoint
    - /{any path}   : Proxy endpoint, target given as ?url=<encoded URL>

Environment Variables:
    - BLACKLISTED_DOMAINS: Hostnames never proxied (JSON array or comma-separated)
    - WHITELISTED_DOMAINS: If set, the only hostnames proxied
    - UPSTREAM_TIMEOUT_SECONDS: Timeout for forwarded calls (default: 30)
    - PROXY_HOST / PROXY_PORT: Bind address (default: 0.0.0.0:8787)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn reverse_proxy.app.main:app --reload --port 8787

    Production:
        uvicorn reverse_proxy.app.main:app --host 0.0.0.0 --port 8787 --workers 4

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn reverse_proxy.app.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from . import __version__
from .config import get_settings
from .proxy import proxy_router
from .proxy.transport import create_http_client

SERVICE_NAME = "reverse-proxy"


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Load configuration and set up logging
        - Create the shared upstream HTTP client

    Shutdown:
        - Close the upstream HTTP client
    """
    settings = get_settings()

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("reverse_proxy.main")

    policy = settings.access_policy
    logger.info(
        "Starting reverse proxy",
        extra={
            "blacklisted_domains": sorted(policy.denied_hosts or []),
            "whitelisted_domains": sorted(policy.allowed_hosts or []),
            "upstream_timeout": settings.UPSTREAM_TIMEOUT_SECONDS,
        }
    )

    app.state.http_client = create_http_client(settings.UPSTREAM_TIMEOUT_SECONDS)

    yield

    logger.info("Shutting down reverse proxy")
    await app.state.http_client.aclose()
    app.state.http_client = None


def create_app() -> FastAPI:
    """
    Application factory function.

    Creates the FastAPI application with:
        - Lifespan management (upstream HTTP client)
        - Health check route
        - Catch-all proxy route
        - Exception handlers

    API docs are disabled so that every path other than /health reaches
    the proxy.

    Returns:
        FastAPI: Configured application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Reverse CORS Proxy",
        description="Forwards requests to a caller-chosen origin and grants CORS access to the response",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """Service status and basic metadata."""
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": __version__
        }

    # Registered after /health so the catch-all does not shadow it
    app.include_router(proxy_router, tags=["Proxy"])

    @app.exception_handler(httpx.HTTPError)
    async def upstream_exception_handler(request: Request, exc: httpx.HTTPError) -> PlainTextResponse:
        """
        Report a failed forwarded call.

        The proxy handler does not catch transport errors; they surface here.
        """
        logger = logging.getLogger("reverse_proxy.main")
        logger.error(
            f"Forwarded call failed: {exc}",
            extra={
                "method": request.method,
                "exception_type": type(exc).__name__
            }
        )

        return PlainTextResponse(
            f"Bad Gateway: {type(exc).__name__}",
            status_code=502
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger = logging.getLogger("reverse_proxy.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "reverse_proxy.app.main:app",
        host=settings.PROXY_HOST,
        port=settings.PROXY_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
