"""
tests/conftest.py -- Shared test fixtures for Inbook client and server tests.

This module provides:
  - FakeBackend / fake_backend: an in-process backend for httpx.MockTransport
    that answers per (method, path) and records every request
  - make_context: builds a ClientContext wired to fake_backend, with a fresh
    in-memory durable store per call
  - web_client: TestClient (follow_redirects=False) over the full ASGI app
    with a patched lifespan whose upstream requests.Session is a MagicMock
  - upstream: the per-test view of that MagicMock, reset between tests

Environment must be set before any core/auth/api import: get_settings() is
cached on first use and api.main reads it at import time.
  DEBUG=true          -> SECRET_KEY is auto-generated instead of required
  ALLOWED_HOSTS=["*"] -> TrustedHostMiddleware accepts TestClient's "testserver"
  *_DELAY=0           -> no real sleeping in settle and re-fetch paths
"""

from __future__ import annotations

import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("BACKEND_URL", "http://backend.test")
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")
os.environ.setdefault("DURABLE_STORAGE_URL", "sqlite://")
os.environ.setdefault("OAUTH_RATE_LIMIT", "1000/minute")
os.environ.setdefault("LOGIN_SETTLE_DELAY", "0")
os.environ.setdefault("REFETCH_DELAY", "0")

from collections.abc import Callable, Generator  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from typing import Any, Optional  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import requests  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from asgi import app  # noqa: E402
from auth.storage import KeyValueStorage  # noqa: E402
from context import ClientContext  # noqa: E402
from core.config import get_settings  # noqa: E402

USER = {"_id": "u1", "username": "alice", "email": "alice@example.com", "profilePicture": None}

# ---------------------------------------------------------------------------
# Fake backend for the async client
# ---------------------------------------------------------------------------


class FakeBackend:
    """httpx.MockTransport handler answering from a (method, path) table.

    Unregistered routes answer 404 {"success": false}. A registered entry may
    be a callable taking the httpx.Request, for stateful or slow responses.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[httpx.Request] = []

    def on(
        self,
        method: str,
        path: str,
        json: Any = None,
        status: int = 200,
        exc: Optional[Exception] = None,
        handler: Optional[Callable] = None,
    ) -> None:
        self.routes[(method, path)] = handler or (status, json, exc)

    def paths(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.calls]

    def __call__(self, request: httpx.Request):
        self.calls.append(request)
        entry = self.routes.get((request.method, request.url.path))
        if entry is None:
            return httpx.Response(404, json={"success": False, "message": "Not found"})
        if callable(entry):
            return entry(request)
        status, body, exc = entry
        if exc is not None:
            raise exc
        return httpx.Response(status, json=body if body is not None else {"success": True})


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_context(fake_backend: FakeBackend) -> Callable[..., ClientContext]:
    """Return a factory: make_context(**settings_overrides) -> ClientContext.

    Call it inside the coroutine under test so the httpx client is created
    on the running loop.
    """

    def factory(**overrides: Any) -> ClientContext:
        settings = get_settings().model_copy(update=overrides) if overrides else get_settings()
        return ClientContext.create(
            settings,
            durable=KeyValueStorage("sqlite://"),
            transport=httpx.MockTransport(fake_backend),
        )

    return factory


# ---------------------------------------------------------------------------
# Frontend server
# ---------------------------------------------------------------------------


def upstream_response(
    status: int = 200,
    headers: Optional[dict[str, str]] = None,
    body: bytes = b"",
) -> requests.Response:
    """Build a real requests.Response as the mocked upstream would return it."""
    resp = requests.Response()
    resp.status_code = status
    resp.headers.update(headers or {})
    resp._content = body
    return resp


def _patch_lifespan(http: MagicMock):
    """Return a lifespan that installs the mocked upstream session on app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.http = http
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def web_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the full app.

    follow_redirects=False is essential: the guard and relay tests assert on
    redirect *locations*, which are invisible once the client follows them.
    """
    http = MagicMock(spec=requests.Session)
    app.router.lifespan_context = _patch_lifespan(http)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def upstream(web_client: TestClient) -> MagicMock:
    """The mocked upstream session, reset (and the client's cookies cleared) per test."""
    http = web_client.app.state.http
    http.reset_mock(return_value=True, side_effect=True)
    web_client.cookies.clear()
    return http
