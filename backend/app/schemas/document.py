from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class DocumentInfoResponse(BaseModel):
    document_id: str
    cached: bool
    data: dict[str, Any] = Field(default_factory=dict)
