from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Depends

from app.auth import TokenProvider
from app.backend import backend_url
from app.cache import TTLCache
from app.clients import get_document_cache, get_http_client, get_token_provider
from app.exceptions import AppError
from app.schemas.health import HealthResponse, ServiceStatus

logger = structlog.get_logger()
router = APIRouter()


async def _check_backend(client: httpx.AsyncClient) -> ServiceStatus:
    try:
        resp = await client.get(backend_url("/health"), timeout=5)
        if resp.is_success:
            return ServiceStatus(status="healthy")
        return ServiceStatus(status="unhealthy", detail=f"HTTP {resp.status_code}")
    except Exception as e:
        logger.error("health_check_backend_failed", error=str(e))
        return ServiceStatus(status="unhealthy", detail=str(e))


async def _check_auth(client: httpx.AsyncClient, tokens: TokenProvider) -> ServiceStatus:
    if not tokens.config.backend_auth_enabled:
        return ServiceStatus(status="disabled")
    try:
        await tokens.get_token(client)
        return ServiceStatus(status="healthy")
    except AppError as e:
        logger.error("health_check_auth_failed", error=e.detail)
        return ServiceStatus(status="unhealthy", detail=e.detail)


@router.get("/health", response_model=HealthResponse)
async def health_check(
    client: httpx.AsyncClient = Depends(get_http_client),
    tokens: TokenProvider = Depends(get_token_provider),
    cache: TTLCache = Depends(get_document_cache),
) -> HealthResponse:
    """Check the chat backend and the token configuration."""
    backend = await _check_backend(client)
    auth = await _check_auth(client, tokens)

    all_healthy = backend.status == "healthy" and auth.status in ("healthy", "disabled")

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        backend=backend,
        auth=auth,
        document_cache=cache.stats(),
    )
