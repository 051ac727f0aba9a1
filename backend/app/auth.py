from __future__ import annotations

import time

import httpx
import structlog

from app.config import Settings, settings
from app.exceptions import TokenAcquisitionError

logger = structlog.get_logger()


class TokenProvider:
    """Client-credentials token source for calls to the chat backend.

    Requests an Azure AD application token scoped to ``{client_id}/.default``
    and caches it in-process until ``TOKEN_EXPIRY_SKEW`` seconds before it
    expires.  When no client id is configured the provider returns ``None``
    and callers send no ``Authorization`` header.
    """

    def __init__(self, config: Settings = settings) -> None:
        self.config = config
        self._token: str | None = None
        self._expires_at: float = 0.0

    @property
    def token_endpoint(self) -> str:
        host = self.config.AZURE_AUTHORITY_HOST.rstrip("/")
        return f"{host}/{self.config.AZURE_TENANT_ID}/oauth2/v2.0/token"

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get_token(self, client: httpx.AsyncClient) -> str | None:
        """Return a valid access token, requesting a new one when needed.

        Args:
            client: Shared HTTP client used for the token request.

        Returns:
            The bearer token, or ``None`` when backend auth is not configured.

        Raises:
            TokenAcquisitionError: If the token endpoint fails or returns no
                ``access_token``.
        """
        if not self.config.backend_auth_enabled:
            return None

        now = time.time()
        if self._token and now < self._expires_at:
            return self._token

        data = {
            "client_id": self.config.AZURE_CLIENT_ID,
            "client_secret": self.config.AZURE_CLIENT_SECRET.get_secret_value(),
            "scope": f"{self.config.AZURE_CLIENT_ID}/.default",
            "grant_type": "client_credentials",
        }
        try:
            resp = await client.post(self.token_endpoint, data=data, timeout=self.config.BACKEND_TIMEOUT)
        except httpx.HTTPError as exc:
            logger.error("token_request_failed", error=str(exc))
            raise TokenAcquisitionError() from exc

        if resp.status_code != 200:
            logger.error("token_request_rejected", status=resp.status_code, body=resp.text[:500])
            raise TokenAcquisitionError()

        try:
            payload = resp.json()
        except ValueError as exc:
            logger.error("token_response_not_json", body=resp.text[:500])
            raise TokenAcquisitionError() from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            logger.error("token_response_missing_access_token")
            raise TokenAcquisitionError()

        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError) as exc:
            logger.error("token_response_bad_expiry", expires_in=payload.get("expires_in"))
            raise TokenAcquisitionError() from exc

        self._token = token
        self._expires_at = now + max(expires_in - self.config.TOKEN_EXPIRY_SKEW, 0)
        logger.info("token_acquired", client_id=self.config.AZURE_CLIENT_ID, expires_in=expires_in)
        return token


def auth_headers(token: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}
