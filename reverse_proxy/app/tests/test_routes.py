"""
Integration Tests for the Proxy Routes
======================================

Tests for reverse_proxy/app/proxy/routes.py and reverse_proxy/app/main.py

The upstream client uses httpx.MockTransport as the target origin, so the
whole pipeline runs: FastAPI route, handler, httpx client, ASGI response.

Run tests:
----------
    pytest reverse_proxy/app/tests/test_routes.py -v
"""

import gzip
import json
from typing import List
from unittest.mock import patch
from urllib.parse import quote

import httpx
import pytest
from fastapi import status
from fastapi.testclient import TestClient

from reverse_proxy.app.config import Settings
from reverse_proxy.app.main import create_app

TARGET = "https://api.example.com/v1/items?q=1&page=2"


def proxied(target: str = TARGET) -> str:
    return f"/?url={quote(target, safe='')}"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def mock_settings():
    """Settings with a blacklist, independent of the host environment"""
    return Settings(_env_file=None, BLACKLISTED_DOMAINS="blocked.example.com")


@pytest.fixture(autouse=True)
def patch_get_settings(mock_settings):
    """Automatically patch get_settings in all tests"""
    with patch("reverse_proxy.app.proxy.routes.get_settings", return_value=mock_settings):
        yield


@pytest.fixture
def upstream_requests() -> List[httpx.Request]:
    return []


@pytest.fixture
def origin(upstream_requests):
    """Fake target origin"""
    def handler(request: httpx.Request) -> httpx.Response:
        upstream_requests.append(request)

        if request.url.path == "/old":
            return httpx.Response(
                302,
                headers={"Location": "https://api.example.com/new"},
                stream=httpx.ByteStream(b""),
            )

        if request.url.path == "/login":
            return httpx.Response(
                302,
                headers={"Location": "https://api.example.com/home"},
                stream=httpx.ByteStream(b""),
            )

        if request.url.path == "/loop":
            return httpx.Response(
                302,
                headers={"Location": "https://api.example.com/loop"},
                stream=httpx.ByteStream(b""),
            )

        if request.url.path == "/down":
            raise httpx.ConnectError("connection refused", request=request)

        if request.url.path == "/compressed":
            body = gzip.compress(b"hello world")
            return httpx.Response(
                200,
                headers=[
                    ("Content-Type", "text/plain"),
                    ("Content-Encoding", "gzip"),
                    ("Content-Length", str(len(body))),
                ],
                stream=httpx.ByteStream(body),
            )

        body = json.dumps({"path": request.url.path}).encode()
        return httpx.Response(
            200,
            headers=[
                ("Content-Type", "application/json"),
                ("Content-Length", str(len(body))),
                ("X-Foo", "bar"),
                ("X-Content-Type-Options", "nosniff"),
                ("Set-Cookie", "a=1; Path=/"),
                ("Set-Cookie", "b=2; Path=/"),
            ],
            stream=httpx.ByteStream(b"" if request.method == "HEAD" else body),
        )

    return handler


@pytest.fixture
def app(origin):
    """Create test FastAPI application with a mocked upstream client"""
    app = create_app()
    app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(origin))
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


# ============================================================================
# System Endpoints
# ============================================================================

def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "ok"


def test_missing_http_client_returns_503():
    app = create_app()
    client = TestClient(app)

    response = client.get(proxied())

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


# ============================================================================
# Usage Page and Rejections
# ============================================================================

def test_usage_page_without_target(client, upstream_requests):
    response = client.get("/")

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"].startswith("text/plain")
    assert "http://testserver/?url={uri}" in response.text
    assert "* Origin: Unknown" in response.text
    assert "* IP: testclient" in response.text
    assert "* Country: Unknown" in response.text
    assert "* Data Centre: Unknown" in response.text
    assert upstream_requests == []


def test_usage_page_reads_edge_headers(client):
    response = client.get("/", headers={
        "CF-Connecting-IP": "198.51.100.4",
        "CF-IPCountry": "DE",
        "CF-Ray": "8a1b2c3d4e5f6789-FRA",
    })

    assert "* IP: 198.51.100.4" in response.text
    assert "* Country: DE" in response.text
    assert "* Data Centre: FRA" in response.text


def test_unencoded_target_returns_400(client, upstream_requests):
    response = client.get(f"/?url={TARGET}")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "Multiple query parameters detected" in response.text
    assert upstream_requests == []


def test_invalid_target_returns_400(client):
    response = client.get("/?url=https%3A%2F%2Fexample.com%2F%25zz")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "Invalid target URL" in response.text


def test_blacklisted_target_returns_403(client, upstream_requests):
    response = client.get(proxied("https://blocked.example.com/"))

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert upstream_requests == []


# ============================================================================
# Proxying
# ============================================================================

def test_round_trip_exposes_target_headers(client, upstream_requests):
    response = client.get(proxied(), headers={"Origin": "https://app.example"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"path": "/v1/items"}
    assert response.headers["x-foo"] == "bar"
    assert response.headers["access-control-allow-origin"] == "https://app.example"

    received = json.loads(response.headers["x-received-headers"])
    assert received["x-foo"] == "bar"
    assert received["set-cookie"] == "a=1; Path=/, b=2; Path=/"

    exposed = response.headers["access-control-expose-headers"].split(",")
    assert "x-foo" in exposed
    assert "set-cookie" in exposed
    assert exposed[-1] == "x-received-headers"

    assert str(upstream_requests[0].url) == TARGET


def test_repeated_set_cookie_headers_are_kept(client):
    response = client.get(proxied())

    assert response.headers.get_list("set-cookie") == ["a=1; Path=/", "b=2; Path=/"]


def test_request_headers_are_filtered(client, upstream_requests):
    client.get(proxied(), headers={
        "CF-Connecting-IP": "198.51.100.4",
        "Referer": "https://app.example/page",
        "X-Forwarded-For": "198.51.100.4",
        "X-Custom-Headers": '{"cookie":"a=1"}',
        "X-Api-Key": "secret",
    })

    sent = upstream_requests[0]
    assert sent.headers["host"] == "api.example.com"
    assert sent.headers["cookie"] == "a=1"
    assert sent.headers["x-api-key"] == "secret"
    for dropped in ("cf-connecting-ip", "referer", "x-forwarded-for", "x-custom-headers"):
        assert dropped not in sent.headers


def test_request_body_is_forwarded(client, upstream_requests):
    response = client.post(proxied(), content=b"payload", headers={"Content-Type": "text/plain"})

    assert response.status_code == status.HTTP_200_OK
    sent = upstream_requests[0]
    assert sent.method == "POST"
    assert sent.content == b"payload"


def test_redirects_are_followed(client, upstream_requests):
    response = client.get(proxied("https://api.example.com/old"))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"path": "/new"}
    assert [r.url.path for r in upstream_requests] == ["/old", "/new"]


def test_redirect_keeps_custom_cookie(client, upstream_requests):
    """Test that a cookie set through X-Custom-Headers reaches every hop"""
    response = client.get(proxied("https://api.example.com/login"), headers={
        "X-Custom-Headers": '{"cookie":"session=abc"}',
        "X-Api-Key": "k",
    })

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"path": "/home"}
    assert [
        (r.url.path, r.headers.get("cookie"), r.headers.get("x-api-key"))
        for r in upstream_requests
    ] == [("/login", "session=abc", "k"), ("/home", "session=abc", "k")]


def test_redirect_without_cookie_adds_none(client, upstream_requests):
    client.get(proxied("https://api.example.com/login"))

    assert [r.url.path for r in upstream_requests] == ["/login", "/home"]
    assert "cookie" not in upstream_requests[1].headers


def test_redirect_loop_returns_502(app, client, upstream_requests):
    response = client.get(proxied("https://api.example.com/loop"))

    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert "TooManyRedirects" in response.text
    assert len(upstream_requests) == app.state.http_client.max_redirects + 1


def test_compressed_body_is_relayed_unchanged(client):
    response = client.get(proxied("https://api.example.com/compressed"))

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-encoding"] == "gzip"
    assert response.headers["content-length"] == str(len(gzip.compress(b"hello world")))
    # The test client decodes gzip like a browser would
    assert response.text == "hello world"


def test_head_keeps_target_content_length(client):
    response = client.head(proxied())

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-length"] == str(len(json.dumps({"path": "/v1/items"})))
    assert response.content == b""


def test_preflight(client, upstream_requests):
    response = client.options(proxied(), headers={
        "Origin": "https://app.example",
        "Access-Control-Request-Method": "PUT",
        "Access-Control-Request-Headers": "content-type",
    })

    assert response.status_code == status.HTTP_200_OK
    assert response.content == b""
    assert response.headers["content-length"] == "0"
    assert response.headers["access-control-allow-origin"] == "https://app.example"
    assert response.headers["access-control-allow-methods"] == "PUT"
    assert response.headers["access-control-allow-headers"] == "content-type"
    assert "x-content-type-options" not in response.headers
    assert upstream_requests[0].method == "OPTIONS"


def test_transport_failure_returns_502(client):
    response = client.get(proxied("https://api.example.com/down"))

    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert "ConnectError" in response.text


def test_any_path_can_carry_the_target(client, upstream_requests):
    response = client.get(f"/some/prefix{proxied()}")

    assert response.status_code == status.HTTP_200_OK
    assert str(upstream_requests[0].url) == TARGET
