from __future__ import annotations

import structlog
from fastapi import status

from app.config import settings
from app.exceptions import AppError, BackendAccessDeniedError, NotFoundError, UpstreamError

logger = structlog.get_logger()


def backend_url(path: str) -> str:
    """Join ``path`` onto the configured chat backend base URL."""
    return f"{settings.CHAT_BACKEND_URL.rstrip('/')}/{path.lstrip('/')}"


def error_for_status(status_code: int, body: str, endpoint: str) -> AppError:
    """Translate a non-OK backend status into the error returned to the caller.

    A 403 gets a message the chat UI can show as-is; 404 maps to
    ``NotFoundError``; every other status is passed through unchanged.

    Args:
        status_code: HTTP status returned by the backend.
        body: Response body text, logged truncated.
        endpoint: Short name of the backend call, for logs.

    Returns:
        The exception to raise.
    """
    logger.error("backend_error", endpoint=endpoint, status=status_code, body=body[:500])
    if status_code == status.HTTP_403_FORBIDDEN:
        return BackendAccessDeniedError()
    if status_code == status.HTTP_404_NOT_FOUND:
        return NotFoundError("Resource not found on the chat backend")
    return UpstreamError(f"Backend service error: {status_code}", status_code=status_code)
