from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from app.cache import TTLCache
from app.clients import get_document_cache, get_http_client
from app.main import app

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def mock_backend() -> Callable[[Handler], httpx.AsyncClient]:
    """Route the app's shared HTTP client through an ``httpx.MockTransport``.

    Call the fixture with a request handler; the returned client is what the
    endpoints receive from ``get_http_client``.
    """

    def _install(handler: Handler) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        app.dependency_overrides[get_http_client] = lambda: client
        return client

    return _install


@pytest.fixture
def document_cache() -> TTLCache:
    """Fresh document cache per test, installed into the app."""
    cache = TTLCache(name="documents-test", ttl_seconds=60, max_entries=10)
    app.dependency_overrides[get_document_cache] = lambda: cache
    return cache

