from app.schemas.chat import (
    ChatStreamInfo,
    ChatStreamRequest,
    Citation,
    DocumentExcerpt,
    NormalizedAnswer,
    Source,
    StreamAnswer,
)
from app.schemas.document import DocumentInfoResponse
from app.schemas.health import HealthResponse, ServiceStatus

__all__ = [
    "ChatStreamInfo",
    "ChatStreamRequest",
    "Citation",
    "DocumentExcerpt",
    "DocumentInfoResponse",
    "HealthResponse",
    "NormalizedAnswer",
    "ServiceStatus",
    "Source",
    "StreamAnswer",
]
