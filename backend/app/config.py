from __future__ import annotations

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from project root (parent of backend/)
_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=str(_ENV_FILE), env_file_encoding="utf-8", extra="ignore")

    # App
    ENVIRONMENT: str = "dev"
    LOG_LEVEL: str = "DEBUG"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Chat backend
    CHAT_BACKEND_URL: str = "http://localhost:8000"
    CHAT_STREAM_PATH: str = "/chat/stream"
    BACKEND_TIMEOUT: int = 30  # seconds
    BACKEND_STREAM_TIMEOUT: int = 120  # seconds

    # Azure AD client credentials
    AZURE_TENANT_ID: str = ""
    AZURE_CLIENT_ID: str = ""
    AZURE_CLIENT_SECRET: SecretStr = SecretStr("")
    AZURE_AUTHORITY_HOST: str = "https://login.microsoftonline.com"
    TOKEN_EXPIRY_SKEW: int = 60  # seconds

    # Cache
    CACHE_ENABLED: bool = True
    DOC_CACHE_TTL_SECONDS: int = 86400
    MAX_CACHE_ENTRIES: int = 100

    # Rate limiting
    RATE_LIMIT_DEFAULT: str = "120/minute"
    RATE_LIMIT_CHAT: str = "30/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    @property
    def backend_auth_enabled(self) -> bool:
        """Whether requests to the chat backend carry a client-credentials token."""
        return bool(self.AZURE_CLIENT_ID)


settings = Settings()
