from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialised with the camelCase keys the chat UI reads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatStreamRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=8000)
    session_id: str | None = None
    include_thought_process: bool = False
    styling: str = "default"


class Citation(CamelModel):
    id: str
    file_name: str
    page: int | None = None
    text: str


class Source(CamelModel):
    id: str
    file_name: str
    page: int | None = None
    score: float
    excerpts: list[str]
    type: str


class DocumentExcerpt(CamelModel):
    file_name: str
    page: int | None = None
    excerpt: str


class StreamAnswer(CamelModel):
    """Summary carried by the final ``done`` event of a chat stream."""

    content: str
    thoughts: str
    sources: list[Source]
    document_excerpts: list[DocumentExcerpt]
    citations: list[Citation]


class NormalizedAnswer(CamelModel):
    content: str = ""
    thoughts: str = ""
    sources: list[Source] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)
    followup_questions: list[str] = Field(default_factory=list)


class ChatStreamInfo(BaseModel):
    message: str
    version: str
    events: list[Literal["citation", "supporting_content", "thought_process", "done"]]
    options: list[str]
