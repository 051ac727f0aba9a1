from __future__ import annotations

from pydantic import BaseModel


class ServiceStatus(BaseModel):
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    status: str
    backend: ServiceStatus
    auth: ServiceStatus
    document_cache: dict[str, int]
