from __future__ import annotations

from typing import Any

import httpx
import structlog
from fastapi import APIRouter, Depends, Response

from app.auth import TokenProvider, auth_headers
from app.backend import backend_url, error_for_status
from app.cache import TTLCache, make_document_cache_key
from app.clients import get_document_cache, get_http_client, get_token_provider
from app.exceptions import ServiceUnavailableError
from app.schemas.document import DocumentInfoResponse

logger = structlog.get_logger()
router = APIRouter(prefix="/documents", tags=["documents"])


async def _fetch_document_info(
    document_id: str,
    client: httpx.AsyncClient,
    tokens: TokenProvider,
) -> dict[str, Any]:
    token = await tokens.get_token(client)
    try:
        resp = await client.get(backend_url(f"/documents/{document_id}"), headers=auth_headers(token))
    except httpx.HTTPError as exc:
        logger.error("document_info_unreachable", document_id=document_id, error=str(exc))
        raise ServiceUnavailableError("Backend service unavailable") from exc

    if not resp.is_success:
        raise error_for_status(resp.status_code, resp.text, endpoint="document_info")

    data = resp.json()
    return data if isinstance(data, dict) else {"value": data}


@router.get("/{document_id}", response_model=DocumentInfoResponse)
async def get_document_info(
    document_id: str,
    response: Response,
    client: httpx.AsyncClient = Depends(get_http_client),
    tokens: TokenProvider = Depends(get_token_provider),
    cache: TTLCache = Depends(get_document_cache),
) -> DocumentInfoResponse:
    """Return backend metadata for one document, served from the document cache when fresh.

    Args:
        document_id: Backend document identifier.
        response: Outgoing response, used to set the ``X-Cache`` header.
        client: Shared HTTP client, injected by FastAPI.
        tokens: Client-credentials token provider, injected by FastAPI.
        cache: Process-wide document cache, injected by FastAPI.

    Returns:
        DocumentInfoResponse wrapping the backend payload.
    """
    data, cached = await cache.get_or_fetch(
        make_document_cache_key(document_id),
        lambda: _fetch_document_info(document_id, client, tokens),
    )
    response.headers["X-Cache"] = "HIT" if cached else "MISS"
    logger.info("document_info_served", document_id=document_id, cached=cached)
    return DocumentInfoResponse(document_id=document_id, cached=cached, data=data)
