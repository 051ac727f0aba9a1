"""Citation, data-point and thought-process extraction from streamed answer text.

The chat backend does not publish a grammar for any of these fragments: inline
citations are bracketed file references, grounding chunks arrive as a JSON
``data_points`` object embedded in the stream, and the reasoning trace as a
``thoughts`` array.  Each helper here handles one of those shapes and is pure,
so the streaming transformer stays a thin state machine around them.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

UNKNOWN_DOCUMENT = "Unknown Document"

# [report.pdf#page=3], [report.docx], [page=5]
CITATION_MARKER_RE = re.compile(
    r"\[(?:(?P<file>[^\[\]#\n]+?\.(?:pdf|docx?|txt))(?:#page=(?P<page>\d{1,9}))?|page=(?P<page_only>\d{1,9}))\]",
    re.IGNORECASE,
)

# "contract.pdf#page=2: The term is 24 months."
DATA_POINT_ENTRY_RE = re.compile(
    r"^\s*(?P<file>[^:#\n]+?\.(?:pdf|docx?|txt|html|xlsx|xls))(?:#page=(?P<page>\d{1,9}))?\s*:\s*(?P<content>.*)$",
    re.IGNORECASE | re.DOTALL,
)

DATA_POINTS_KEY_RE = re.compile(r'"data_points"\s*:\s*')
THOUGHTS_KEY_RE = re.compile(r'"thoughts"\s*:\s*(?=\[)')

THOUGHT_SEPARATOR = "\n\n---\n\n"

_SOURCE_TYPES: dict[str, str] = {
    "pdf": "pdf",
    "doc": "word",
    "docx": "word",
    "xlsx": "spreadsheet",
    "xls": "spreadsheet",
    "csv": "spreadsheet",
    "txt": "text",
    "html": "web",
    "htm": "web",
    "json": "code",
    "js": "code",
    "py": "code",
    "jpg": "image",
    "jpeg": "image",
    "png": "image",
    "gif": "image",
    "bmp": "image",
    "svg": "image",
}

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class CitationMarker:
    """A bracketed citation found in answer text.

    ``file_name`` is ``None`` for page-only markers such as ``[page=5]``; the
    caller decides which document those refer to.
    """

    text: str
    file_name: str | None
    page: int | None


def get_source_type(file_name: str | None) -> str:
    """Map a file name to the source type the chat UI uses for its icons."""
    if not file_name or "." not in file_name:
        return "document"
    extension = file_name.rsplit(".", 1)[-1].lower()
    return _SOURCE_TYPES.get(extension, "document")


def citation_key(file_name: str, page: int | None) -> str:
    """Deduplication key for a (file, page) pair; a missing page counts as 0."""
    return f"{file_name}-{page or 0}"


def find_citation_markers(text: str) -> list[CitationMarker]:
    """Return every citation marker in ``text`` in order of appearance."""
    markers: list[CitationMarker] = []
    for match in CITATION_MARKER_RE.finditer(text):
        if match.group("page_only") is not None:
            markers.append(CitationMarker(text=match.group(0), file_name=None, page=int(match.group("page_only"))))
            continue
        page = match.group("page")
        markers.append(
            CitationMarker(
                text=match.group(0),
                file_name=match.group("file").strip(),
                page=int(page) if page is not None else None,
            )
        )
    return markers


def _decode_after(text: str, pattern: re.Pattern[str]) -> tuple[bool, Any]:
    match = pattern.search(text)
    if match is None:
        return False, None
    value, _ = _decoder.raw_decode(text, match.end())
    return True, value


def find_data_points(text: str) -> list[str] | None:
    """Extract the ``text`` array of an embedded ``"data_points"`` fragment.

    Older backends send ``data_points`` as a bare list of strings; that list is
    returned as-is.

    Args:
        text: A chunk of streamed answer text.

    Returns:
        The string entries of the fragment, or ``None`` when the chunk has no
        ``data_points`` fragment or the fragment carries no text array.

    Raises:
        ValueError: If the fragment is present but is not valid JSON.
    """
    found, value = _decode_after(text, DATA_POINTS_KEY_RE)
    if not found:
        return None
    if isinstance(value, dict):
        value = value.get("text")
    if not isinstance(value, list):
        return None
    return [entry for entry in value if isinstance(entry, str)]


def parse_data_point(entry: str) -> tuple[str, int | None, str] | None:
    """Split ``"name.ext[#page=N]: content"`` into ``(file_name, page, content)``."""
    match = DATA_POINT_ENTRY_RE.match(entry)
    if match is None:
        return None
    page = match.group("page")
    return (
        match.group("file").strip(),
        int(page) if page is not None else None,
        match.group("content").strip(),
    )


def find_thoughts(text: str) -> list[Any] | None:
    """Return the first ``"thoughts": [...]`` array in ``text``.

    Raises:
        ValueError: If the array is present but is not valid JSON.
    """
    found, value = _decode_after(text, THOUGHTS_KEY_RE)
    if not found or not isinstance(value, list):
        return None
    return value


def _format_description(description: Any) -> str:
    if isinstance(description, str):
        return description
    if isinstance(description, list) and all(isinstance(turn, dict) and "role" in turn for turn in description):
        lines = [
            f"**{str(turn['role']).capitalize()}**: {turn.get('content', '')}"
            for turn in description
            if turn["role"] != "system"
        ]
        return "\n\n".join(lines)
    return json.dumps(description, indent=2, ensure_ascii=False)


def format_thought_process(thoughts: list[Any]) -> str:
    """Render backend thought steps as markdown sections.

    Each step with a ``description`` becomes ``## {title}`` followed by the
    description: chat turns are rendered one ``**Role**: content`` line each
    (system prompts are left out), strings verbatim, anything else as JSON.
    """
    blocks: list[str] = []
    for index, thought in enumerate(thoughts, start=1):
        if not isinstance(thought, dict) or "description" not in thought:
            continue
        title = thought.get("title") or f"Step {index}"
        blocks.append(f"## {title}\n\n{_format_description(thought['description'])}")
    return THOUGHT_SEPARATOR.join(blocks)
