from __future__ import annotations

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base application error."""

    def __init__(self, detail: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(status_code=status_code, detail=detail)


class NotFoundError(AppError):
    def __init__(self, detail: str = "Resource not found") -> None:
        super().__init__(detail=detail, status_code=status.HTTP_404_NOT_FOUND)


class AuthError(AppError):
    def __init__(self, detail: str = "Authentication required") -> None:
        super().__init__(detail=detail, status_code=status.HTTP_401_UNAUTHORIZED)


class ServiceUnavailableError(AppError):
    def __init__(self, detail: str = "Service temporarily unavailable") -> None:
        super().__init__(detail=detail, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class UpstreamError(AppError):
    """The chat backend answered with a non-OK status; the status is passed through."""

    def __init__(self, detail: str, status_code: int = status.HTTP_502_BAD_GATEWAY) -> None:
        super().__init__(detail=detail, status_code=status_code)


class BackendAccessDeniedError(UpstreamError):
    def __init__(
        self,
        detail: str = "Access denied by the chat backend. Your account may not have access to this service.",
    ) -> None:
        super().__init__(detail=detail, status_code=status.HTTP_403_FORBIDDEN)


class TokenAcquisitionError(AuthError):
    def __init__(self, detail: str = "Authentication service error") -> None:
        super().__init__(detail=detail)
