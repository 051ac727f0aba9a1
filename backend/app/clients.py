from __future__ import annotations

import httpx
import structlog

from app.auth import TokenProvider
from app.cache import TTLCache
from app.config import settings

logger = structlog.get_logger()

_http_client: httpx.AsyncClient | None = None
_token_provider: TokenProvider | None = None
_document_cache: TTLCache | None = None


def get_http_client() -> httpx.AsyncClient:
    """Get or create the singleton async HTTP client.

    Returns:
        The shared httpx.AsyncClient instance. Created on first call and
        reused on subsequent calls (singleton pattern).
    """
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=settings.BACKEND_TIMEOUT)
        logger.info("http_client_created", backend_url=settings.CHAT_BACKEND_URL)
    return _http_client


def get_token_provider() -> TokenProvider:
    """Get or create the singleton client-credentials token provider."""
    global _token_provider
    if _token_provider is None:
        _token_provider = TokenProvider()
    return _token_provider


def get_document_cache() -> TTLCache:
    """Get or create the process-wide document-info cache."""
    global _document_cache
    if _document_cache is None:
        _document_cache = TTLCache(
            name="documents",
            ttl_seconds=settings.DOC_CACHE_TTL_SECONDS,
            max_entries=settings.MAX_CACHE_ENTRIES,
        )
    return _document_cache


async def close_clients() -> None:
    """Close all singleton clients. Called on app shutdown."""
    global _http_client, _token_provider, _document_cache
    if _http_client:
        await _http_client.aclose()
        _http_client = None
        logger.info("http_client_closed")
    if _document_cache:
        _document_cache.invalidate()
        _document_cache = None
    _token_provider = None
