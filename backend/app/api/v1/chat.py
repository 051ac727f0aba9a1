from __future__ import annotations

import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import StreamingResponse

from app.auth import TokenProvider, auth_headers
from app.backend import backend_url, error_for_status
from app.clients import get_http_client, get_token_provider
from app.config import settings
from app.exceptions import ServiceUnavailableError, UpstreamError
from app.metrics import backend_request_duration, chat_stream_requests_total
from app.middleware.rate_limit import limiter
from app.pipelines.normalize import normalize_answer
from app.pipelines.streaming import StreamOptions, transform_stream
from app.schemas.chat import ChatStreamInfo, ChatStreamRequest, NormalizedAnswer

logger = structlog.get_logger()
router = APIRouter(tags=["chat"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


async def _open_backend_stream(
    client: httpx.AsyncClient,
    payload: dict[str, Any],
    token: str | None,
) -> httpx.Response:
    """Send the chat request to the backend and return the open streaming response.

    Raises:
        ServiceUnavailableError: If the backend cannot be reached or times out.
        AppError: For any non-2xx backend status (see ``error_for_status``).
    """
    request = client.build_request(
        "POST",
        backend_url(settings.CHAT_STREAM_PATH),
        json=payload,
        headers=auth_headers(token),
        timeout=settings.BACKEND_STREAM_TIMEOUT,
    )

    start_time = time.perf_counter()
    try:
        response = await client.send(request, stream=True)
    except httpx.TimeoutException as exc:
        logger.error("chat_backend_timeout", timeout=settings.BACKEND_STREAM_TIMEOUT)
        raise ServiceUnavailableError("Chat backend timed out") from exc
    except httpx.HTTPError as exc:
        logger.error("chat_backend_unreachable", error=str(exc))
        raise ServiceUnavailableError("Backend service unavailable") from exc
    finally:
        backend_request_duration.labels(endpoint="chat_stream").observe(time.perf_counter() - start_time)

    if not response.is_success:
        body = await response.aread()
        await response.aclose()
        raise error_for_status(response.status_code, body.decode(errors="replace"), endpoint="chat_stream")

    return response


async def _prepend(first: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    yield first
    async for chunk in rest:
        yield chunk


async def _relay(
    response: httpx.Response,
    first_chunk: bytes,
    chunks: AsyncIterator[bytes],
    options: StreamOptions,
) -> AsyncIterator[bytes]:
    """Stream the transformed body, releasing the upstream connection however it ends."""
    try:
        async for part in transform_stream(_prepend(first_chunk, chunks), options):
            yield part
    except httpx.HTTPError as exc:
        logger.error("chat_stream_interrupted", error=str(exc))
        raise
    finally:
        await response.aclose()


@router.post("/chat/stream")
@limiter.limit(settings.RATE_LIMIT_CHAT)
async def chat_stream(
    request: Request,
    request_body: ChatStreamRequest,
    client: httpx.AsyncClient = Depends(get_http_client),
    tokens: TokenProvider = Depends(get_token_provider),
) -> StreamingResponse:
    """Proxy a chat message to the backend and stream the annotated answer.

    The backend body is forwarded unchanged, interleaved with JSON-line
    ``citation``, ``supporting_content`` and ``thought_process`` events and
    closed by a single ``done`` event.

    Args:
        request: The raw request, required by the rate limiter.
        request_body: Message and stream options from the chat UI.
        client: Shared HTTP client, injected by FastAPI.
        tokens: Client-credentials token provider, injected by FastAPI.

    Returns:
        A ``text/event-stream`` response.
    """
    try:
        token = await tokens.get_token(client)
        payload = {
            "message": request_body.message,
            "session_id": request_body.session_id,
            "stream": True,
            "include_thought_process": request_body.include_thought_process,
            "styling": request_body.styling,
        }
        response = await _open_backend_stream(client, payload, token)

        chunks = response.aiter_bytes()
        try:
            first_chunk = await chunks.__anext__()
        except StopAsyncIteration:
            await response.aclose()
            raise UpstreamError("No response body from backend", status_code=500) from None
        except httpx.HTTPError as exc:
            await response.aclose()
            logger.error("chat_backend_read_failed", error=str(exc))
            raise ServiceUnavailableError("Backend service unavailable") from exc
    except Exception as exc:
        status_code = getattr(exc, "status_code", 500)
        chat_stream_requests_total.labels(outcome=f"error_{status_code}").inc()
        raise

    chat_stream_requests_total.labels(outcome="streamed").inc()
    logger.info(
        "chat_stream_started",
        session_id=request_body.session_id,
        message_length=len(request_body.message),
        include_thought_process=request_body.include_thought_process,
    )

    options = StreamOptions(
        include_thought_process=request_body.include_thought_process,
        styling=request_body.styling,
    )
    return StreamingResponse(
        _relay(response, first_chunk, chunks, options),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )


@router.get("/chat/stream", response_model=ChatStreamInfo)
async def chat_stream_info() -> ChatStreamInfo:
    """Describe the chat stream endpoint."""
    return ChatStreamInfo(
        message="Chat stream endpoint - POST only",
        version="2.0",
        events=["citation", "supporting_content", "thought_process", "done"],
        options=["includeThoughtProcess", "styling"],
    )


@router.post("/chat/normalize", response_model=NormalizedAnswer)
async def normalize(payload: dict[str, Any] = Body(...)) -> NormalizedAnswer:
    """Normalize an answer payload of any historical shape."""
    return normalize_answer(payload)
