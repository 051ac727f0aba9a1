from __future__ import annotations

import codecs
import json
import time
from collections.abc import AsyncGenerator, AsyncIterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from app.metrics import chat_stream_duration, citations_emitted_total, stream_fragment_errors_total
from app.pipelines.citations import (
    UNKNOWN_DOCUMENT,
    citation_key,
    find_citation_markers,
    find_data_points,
    find_thoughts,
    format_thought_process,
    get_source_type,
    parse_data_point,
)
from app.schemas.chat import Citation, DocumentExcerpt, Source, StreamAnswer

logger = structlog.get_logger()

MARKER_SOURCE_SCORE = 0.8
DATA_POINT_SOURCE_SCORE = 1.0


class StreamState(str, Enum):
    STREAMING = "streaming"
    DONE = "done"


@dataclass
class StreamOptions:
    include_thought_process: bool = False
    # Passed through to the backend; the transformer does not interpret it.
    styling: str = "default"


def encode_event(event: dict[str, Any]) -> bytes:
    """Serialise one synthesized event as a newline-terminated JSON line."""
    return (json.dumps(event, ensure_ascii=False) + "\n").encode("utf-8")


class StreamingAnswerTransformer:
    """Per-request transformer that annotates a backend answer stream.

    Every upstream chunk is forwarded byte-for-byte, followed by JSON-line
    events for citations and supporting content discovered in that chunk and,
    when requested, the backend's thought process.  ``flush`` closes the
    stream with a single ``done`` event summarising everything collected.

    A (file, page) pair found through bracket markers is surfaced at most once
    per stream.  Sources derived from ``data_points`` fragments are keyed by
    their own ``source-{n}`` ids; they also claim the (file, page) key so later
    markers for the same page are suppressed, but not the other way round.

    Instances are not shared between requests.
    """

    def __init__(self, options: StreamOptions | None = None) -> None:
        self.options = options or StreamOptions()
        self.state = StreamState.STREAMING
        self.accumulated_content = ""
        self.found_thoughts = ""
        self.citations: list[Citation] = []
        self.sources: list[Source] = []
        self._citation_counter = 0
        self._source_counter = 0
        self._sent_keys: set[str] = set()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def transform(self, chunk: bytes) -> list[bytes]:
        """Process one upstream chunk.

        Args:
            chunk: Raw bytes exactly as received from the backend.

        Returns:
            The original chunk followed by the encoded events it produced:
            ``citation`` events, then ``supporting_content`` events, then at
            most one ``thought_process`` event.

        Raises:
            RuntimeError: If called after :meth:`flush`.
        """
        if self.state is StreamState.DONE:
            raise RuntimeError("transform() called after the stream was flushed")

        text = self._decoder.decode(chunk)
        self.accumulated_content += text

        output = [chunk]
        new_citations, new_sources = self._register_markers(text)
        dp_citations, dp_sources = self._register_data_points(text)
        new_citations.extend(dp_citations)
        new_sources.extend(dp_sources)

        for citation in new_citations:
            output.append(encode_event({"type": "citation", "citation": citation.to_wire()}))
        for source in new_sources:
            output.append(encode_event({"type": "supporting_content", "source": source.to_wire()}))

        if self.options.include_thought_process and self._update_thoughts(text):
            output.append(encode_event({"type": "thought_process", "thoughts": self.found_thoughts}))

        return output

    def flush(self) -> list[bytes]:
        """Finish the stream and return the final ``done`` event.

        Runs one reconciliation pass over the full accumulated text so that a
        marker split across two chunks still ends up in the summary.  That pass
        emits no chunk-level events.

        Raises:
            RuntimeError: If the stream was already flushed.
        """
        if self.state is StreamState.DONE:
            raise RuntimeError("flush() called twice")
        self.state = StreamState.DONE

        self.accumulated_content += self._decoder.decode(b"", final=True)
        missed, _ = self._register_markers(self.accumulated_content, reconcile=True)
        if missed:
            logger.debug("stream_citations_reconciled", count=len(missed))

        answer = StreamAnswer(
            content=self.accumulated_content,
            thoughts=self.found_thoughts,
            sources=self.sources,
            document_excerpts=[
                DocumentExcerpt(file_name=s.file_name, page=s.page, excerpt=s.excerpts[0])
                for s in self.sources
                if s.excerpts
            ],
            citations=self.citations,
        )
        logger.info(
            "stream_completed",
            citation_count=len(self.citations),
            source_count=len(self.sources),
            content_length=len(self.accumulated_content),
            has_thoughts=bool(self.found_thoughts),
        )
        return [encode_event({"type": "done", "answer": answer.to_wire()})]

    def _register_markers(self, text: str, reconcile: bool = False) -> tuple[list[Citation], list[Source]]:
        new_citations: list[Citation] = []
        new_sources: list[Source] = []

        for marker in find_citation_markers(text):
            file_name = marker.file_name
            if file_name is None:
                # Page-only markers were resolved when their chunk arrived; the
                # document context is no longer reliable on the full text.
                if reconcile:
                    continue
                file_name = self.citations[-1].file_name if self.citations else UNKNOWN_DOCUMENT

            key = citation_key(file_name, marker.page)
            if key in self._sent_keys:
                continue
            self._sent_keys.add(key)

            self._citation_counter += 1
            citation_id = f"citation-{self._citation_counter}"
            citation = Citation(id=citation_id, file_name=file_name, page=marker.page, text=marker.text)
            excerpt = f"Content from {file_name}"
            if marker.page is not None:
                excerpt += f" page {marker.page}"
            source = Source(
                id=citation_id,
                file_name=file_name,
                page=marker.page,
                score=MARKER_SOURCE_SCORE,
                excerpts=[excerpt],
                type=get_source_type(file_name),
            )
            self.citations.append(citation)
            self.sources.append(source)
            new_citations.append(citation)
            new_sources.append(source)

        if not reconcile:
            citations_emitted_total.labels(origin="marker").inc(len(new_citations))
        return new_citations, new_sources

    def _register_data_points(self, text: str) -> tuple[list[Citation], list[Source]]:
        try:
            entries = find_data_points(text)
        except ValueError as exc:
            stream_fragment_errors_total.labels(fragment="data_points").inc()
            logger.warning("stream_data_points_parse_error", error=str(exc), chunk=text[:100])
            return [], []
        if not entries:
            return [], []

        new_citations: list[Citation] = []
        new_sources: list[Source] = []
        for entry in entries:
            parsed = parse_data_point(entry)
            if parsed is None:
                continue
            file_name, page, content = parsed

            self._source_counter += 1
            source_id = f"source-{self._source_counter}"
            if source_id in self._sent_keys:
                continue
            self._sent_keys.add(source_id)
            self._sent_keys.add(citation_key(file_name, page))

            source = Source(
                id=source_id,
                file_name=file_name,
                page=page,
                score=DATA_POINT_SOURCE_SCORE,
                excerpts=[content],
                type=get_source_type(file_name),
            )
            citation = Citation(id=source_id, file_name=file_name, page=page, text=content)
            self.sources.append(source)
            self.citations.append(citation)
            new_sources.append(source)
            new_citations.append(citation)

        citations_emitted_total.labels(origin="data_points").inc(len(new_citations))
        return new_citations, new_sources

    def _update_thoughts(self, text: str) -> bool:
        try:
            thoughts = find_thoughts(text)
        except ValueError as exc:
            stream_fragment_errors_total.labels(fragment="thoughts").inc()
            logger.warning("stream_thoughts_parse_error", error=str(exc), chunk=text[:100])
            return False
        if not thoughts:
            return False

        formatted = format_thought_process(thoughts)
        if not formatted:
            return False
        self.found_thoughts = formatted
        return True


async def transform_stream(
    source: AsyncIterable[bytes],
    options: StreamOptions | None = None,
) -> AsyncGenerator[bytes, None]:
    """Pipe an upstream byte stream through a fresh :class:`StreamingAnswerTransformer`.

    Closing the generator stops consumption of ``source``; the transformer
    holds nothing that needs releasing.

    Args:
        source: Async iterable of raw chunks from the chat backend.
        options: Stream options for this request.

    Yields:
        Original chunks interleaved with encoded JSON-line events, ending with
        the ``done`` event.
    """
    transformer = StreamingAnswerTransformer(options)
    start_time = time.perf_counter()

    async for chunk in source:
        for part in transformer.transform(chunk):
            yield part

    for part in transformer.flush():
        yield part
    chat_stream_duration.observe(time.perf_counter() - start_time)
