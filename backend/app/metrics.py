from __future__ import annotations

from prometheus_client import Counter, Histogram

# Chat stream metrics
chat_stream_requests_total = Counter(
    "chat_stream_requests_total",
    "Total chat stream proxy requests",
    ["outcome"],
)

chat_stream_duration = Histogram(
    "chat_stream_duration_seconds",
    "Time from first upstream byte to the final done event",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120),
)

citations_emitted_total = Counter(
    "chat_stream_citations_emitted_total",
    "Citations surfaced to the client",
    ["origin"],
)

stream_fragment_errors_total = Counter(
    "chat_stream_fragment_errors_total",
    "Malformed embedded JSON fragments skipped while streaming",
    ["fragment"],
)

# Backend metrics
backend_request_duration = Histogram(
    "chat_backend_request_duration_seconds",
    "Time until the chat backend returned response headers",
    ["endpoint"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30),
)

# Cache metrics
cache_lookups_total = Counter(
    "cache_lookups_total",
    "In-process cache lookups",
    ["cache", "result"],
)
