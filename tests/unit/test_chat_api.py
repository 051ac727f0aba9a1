from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import AsyncClient

from app.api.v1.chat import _relay
from app.clients import get_token_provider
from app.exceptions import TokenAcquisitionError
from app.main import app
from app.pipelines.streaming import StreamOptions


def _events(body: str) -> list[dict]:
    return [json.loads(line) for line in body.split("\n") if line.startswith('{"type"')]


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


@pytest.mark.anyio
async def test_chat_stream_forwards_body_and_appends_events(
    api_client: AsyncClient,
    mock_backend: Callable,
) -> None:
    """Backend bytes should be forwarded with citation events and a final done event."""
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(
            200,
            content=_chunks(
                b"data: The notice period is 30 days [lease.pdf#page=4]\n",
                b"data: as stated in [lease.pdf#page=4]\n",
            ),
        )

    mock_backend(handler)

    response = await api_client.post(
        "/api/v1/chat/stream",
        json={"message": "What is the notice period?", "sessionId": "s-1", "includeThoughtProcess": True},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache, no-transform"

    body = response.text
    assert "data: The notice period is 30 days [lease.pdf#page=4]\n" in body
    assert "data: as stated in [lease.pdf#page=4]\n" in body

    events = _events(body)
    assert [e["type"] for e in events] == ["citation", "supporting_content", "done"]
    assert events[0]["citation"]["fileName"] == "lease.pdf"
    assert events[0]["citation"]["page"] == 4

    sent = json.loads(captured[0].content)
    assert captured[0].url.path == "/chat/stream"
    assert sent["message"] == "What is the notice period?"
    assert sent["session_id"] == "s-1"
    assert sent["stream"] is True
    assert sent["include_thought_process"] is True
    assert "authorization" not in captured[0].headers


@pytest.mark.anyio
async def test_chat_stream_sends_bearer_token(api_client: AsyncClient, mock_backend: Callable) -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, content=b"ok")

    mock_backend(handler)
    tokens = MagicMock()
    tokens.get_token = AsyncMock(return_value="tok-1")
    app.dependency_overrides[get_token_provider] = lambda: tokens

    response = await api_client.post("/api/v1/chat/stream", json={"message": "hi"})

    assert response.status_code == 200
    assert captured[0].headers["authorization"] == "Bearer tok-1"


@pytest.mark.anyio
async def test_chat_stream_backend_forbidden(api_client: AsyncClient, mock_backend: Callable) -> None:
    mock_backend(lambda request: httpx.Response(403, text="forbidden"))

    response = await api_client.post("/api/v1/chat/stream", json={"message": "hi"})

    assert response.status_code == 403
    assert "Access denied" in response.json()["detail"]


@pytest.mark.anyio
async def test_chat_stream_backend_error_status_passed_through(
    api_client: AsyncClient,
    mock_backend: Callable,
) -> None:
    mock_backend(lambda request: httpx.Response(502, text="bad gateway"))

    response = await api_client.post("/api/v1/chat/stream", json={"message": "hi"})

    assert response.status_code == 502
    assert response.json()["detail"] == "Backend service error: 502"


@pytest.mark.anyio
async def test_chat_stream_empty_body_is_500(api_client: AsyncClient, mock_backend: Callable) -> None:
    mock_backend(lambda request: httpx.Response(200, content=b""))

    response = await api_client.post("/api/v1/chat/stream", json={"message": "hi"})

    assert response.status_code == 500
    assert response.json()["detail"] == "No response body from backend"


@pytest.mark.anyio
async def test_chat_stream_backend_unreachable_is_503(api_client: AsyncClient, mock_backend: Callable) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    mock_backend(handler)

    response = await api_client.post("/api/v1/chat/stream", json={"message": "hi"})

    assert response.status_code == 503


@pytest.mark.anyio
async def test_chat_stream_first_read_timeout_is_503(api_client: AsyncClient, mock_backend: Callable) -> None:
    """A backend that accepts the request but times out before any bytes arrive gets a JSON 503."""

    async def stalled() -> AsyncIterator[bytes]:
        raise httpx.ReadTimeout("timed out")
        yield b""

    mock_backend(lambda request: httpx.Response(200, content=stalled()))

    response = await api_client.post("/api/v1/chat/stream", json={"message": "hi"})

    assert response.status_code == 503
    assert response.headers["content-type"] == "application/json"
    assert response.json()["detail"] == "Backend service unavailable"


@pytest.mark.anyio
async def test_chat_stream_token_failure_is_401(api_client: AsyncClient, mock_backend: Callable) -> None:
    mock_backend(lambda request: httpx.Response(200, content=b"unused"))
    tokens = MagicMock()
    tokens.get_token = AsyncMock(side_effect=TokenAcquisitionError())
    app.dependency_overrides[get_token_provider] = lambda: tokens

    response = await api_client.post("/api/v1/chat/stream", json={"message": "hi"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication service error"


@pytest.mark.anyio
async def test_chat_stream_requires_message(api_client: AsyncClient) -> None:
    response = await api_client.post("/api/v1/chat/stream", json={"sessionId": "s-1"})
    assert response.status_code == 422


@pytest.mark.anyio
async def test_chat_stream_info(api_client: AsyncClient) -> None:
    response = await api_client.get("/api/v1/chat/stream")
    assert response.status_code == 200
    data = response.json()
    assert data["events"][-1] == "done"
    assert "includeThoughtProcess" in data["options"]


@pytest.mark.anyio
async def test_normalize_endpoint(api_client: AsyncClient) -> None:
    response = await api_client.post(
        "/api/v1/chat/normalize",
        json={"answer": "Thirty days.", "citations": [{"fileName": "lease.pdf", "page": 4}]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["content"] == "Thirty days."
    assert data["citations"][0]["fileName"] == "lease.pdf"
    assert data["sources"][0]["score"] == 0.8
    assert data["followupQuestions"] == []


@pytest.mark.anyio
async def test_relay_closes_upstream_after_done() -> None:
    upstream = MagicMock()
    upstream.aclose = AsyncMock()

    parts = [part async for part in _relay(upstream, b"Hello ", _chunks(b"[a.pdf]"), StreamOptions())]

    assert parts[:2] == [b"Hello ", b"[a.pdf]"]
    assert json.loads(parts[-1])["type"] == "done"
    upstream.aclose.assert_awaited_once()


@pytest.mark.anyio
async def test_relay_closes_upstream_when_backend_drops_mid_stream() -> None:
    upstream = MagicMock()
    upstream.aclose = AsyncMock()

    async def dropped() -> AsyncIterator[bytes]:
        yield b"partial answer "
        raise httpx.ReadError("connection reset")

    with pytest.raises(httpx.ReadError):
        async for _ in _relay(upstream, b"Hello ", dropped(), StreamOptions()):
            pass

    upstream.aclose.assert_awaited_once()


@pytest.mark.anyio
async def test_relay_closes_upstream_when_client_goes_away() -> None:
    upstream = MagicMock()
    upstream.aclose = AsyncMock()

    body = _relay(upstream, b"Hello ", _chunks(b"more", b"and more"), StreamOptions())
    assert await body.__anext__() == b"Hello "
    await body.aclose()

    upstream.aclose.assert_awaited_once()
