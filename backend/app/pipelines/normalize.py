from __future__ import annotations

from typing import Any

import structlog

from app.pipelines.citations import format_thought_process, get_source_type
from app.schemas.chat import Citation, NormalizedAnswer, Source

logger = structlog.get_logger()

CITATION_SOURCE_SCORE = 0.8


def _first(mapping: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first truthy value among ``keys``."""
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return default


def _extract_content(payload: dict[str, Any]) -> str:
    content = _first(payload, "content", "answer", "response")
    if content is None and isinstance(payload.get("message"), dict):
        content = payload["message"].get("content")
    return content if isinstance(content, str) else ""


def _extract_thoughts(payload: dict[str, Any]) -> str:
    thoughts = _first(payload, "thoughts", "thought_process", "thoughtProcess")
    if isinstance(thoughts, list):
        return format_thought_process(thoughts)
    return thoughts if isinstance(thoughts, str) else ""


def _score(raw: dict[str, Any]) -> float:
    value = _first(raw, "score", "relevanceScore", "confidenceScore", default=0)
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("source_score_not_numeric", score=value)
        return 0.0


def _normalize_source(raw: dict[str, Any], index: int) -> Source:
    file_name = raw.get("fileName")
    source_id = str(_first(raw, "id", "documentId", "fileId") or (f"file-{file_name}" if file_name else f"source-{index}"))
    file_name = _first(raw, "fileName", "name", "title", default=f"Document {source_id}")

    excerpts: list[str] = []
    for key in ("excerpts", "snippets"):
        if isinstance(raw.get(key), list):
            excerpts.extend(str(e) for e in raw[key] if e is not None)
    for key in ("text", "content"):
        if raw.get(key):
            excerpts.append(str(raw[key]))
    if not excerpts and raw.get("documentContext"):
        excerpts.append(str(raw["documentContext"]))

    page = raw.get("page")
    return Source(
        id=source_id,
        file_name=str(file_name),
        page=page if isinstance(page, int) else None,
        score=_score(raw),
        excerpts=list(dict.fromkeys(excerpts)),
        type=raw.get("type") or get_source_type(str(file_name)),
    )


def _citation_as_source(raw: dict[str, Any], index: int) -> Source:
    file_name = raw["fileName"]
    page = raw.get("page")
    return Source(
        id=str(raw.get("id") or f"citation-{index}"),
        file_name=file_name,
        page=page if isinstance(page, int) else None,
        score=CITATION_SOURCE_SCORE,
        excerpts=[raw.get("text") or f"Content from {file_name}"],
        type=get_source_type(file_name),
    )


def normalize_answer(payload: dict[str, Any]) -> NormalizedAnswer:
    """Map any historical answer shape onto one :class:`NormalizedAnswer`.

    Answers reach the chat UI from several generations of backends, each
    naming the same things differently (``content`` vs ``answer``,
    ``sources`` vs ``documentExcerpts`` vs ``supporting_content``, scores
    under three different keys).  All fallback chains live here so consumers
    only ever see the canonical record.

    Args:
        payload: Decoded answer object as received from a backend or a
            ``done`` stream event.

    Returns:
        The normalized answer. Sources are deduplicated by id, keeping the
        first occurrence.
    """
    sources: dict[str, Source] = {}
    for key in ("sources", "documentExcerpts", "supporting_content"):
        items = payload.get(key)
        if not isinstance(items, list):
            continue
        for index, raw in enumerate(items):
            if not isinstance(raw, dict):
                continue
            source = _normalize_source(raw, index)
            sources.setdefault(source.id, source)

    citations: list[Citation] = []
    raw_citations = payload.get("citations")
    if isinstance(raw_citations, list):
        for index, raw in enumerate(raw_citations):
            if not isinstance(raw, dict) or not raw.get("fileName"):
                continue
            page = raw.get("page")
            citation = Citation(
                id=str(raw.get("id") or f"citation-{index}"),
                file_name=raw["fileName"],
                page=page if isinstance(page, int) else None,
                text=raw.get("text") or f"[{raw['fileName']}{f'#page={page}' if page else ''}]",
            )
            citations.append(citation)
            source = _citation_as_source(raw, index)
            sources.setdefault(source.id, source)

    followups = _first(payload, "followupQuestions", "suggestedQuestions", default=[])

    answer = NormalizedAnswer(
        content=_extract_content(payload),
        thoughts=_extract_thoughts(payload),
        sources=list(sources.values()),
        citations=citations,
        followup_questions=[str(q) for q in followups] if isinstance(followups, list) else [],
    )
    logger.debug("answer_normalized", source_count=len(answer.sources), citation_count=len(citations))
    return answer
