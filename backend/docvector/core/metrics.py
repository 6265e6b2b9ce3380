"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

INDEXED_FILES = Counter(
    "docvec_indexed_files_total",
    "Files chunked, embedded, and stored",
    registry=REGISTRY,
)

INDEX_ERRORS = Counter(
    "docvec_index_errors_total",
    "Per-item and batch failures while indexing",
    labelnames=("stage",),
    registry=REGISTRY,
)

INDEX_CHUNKS = Gauge(
    "docvec_index_chunks",
    "Chunks written during the current indexing run",
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "docvec_search_latency_seconds",
    "Latency of search engine queries",
    registry=REGISTRY,
)

SEARCH_COUNT = Counter(
    "docvec_searches_total",
    "Search engine queries served",
    labelnames=("hybrid", "rerank"),
    registry=REGISTRY,
)

INCOHERENCE_ISSUES = Counter(
    "docvec_incoherence_issues_total",
    "Incoherence issues detected",
    labelnames=("type",),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "INDEXED_FILES",
    "INDEX_ERRORS",
    "INDEX_CHUNKS",
    "SEARCH_LATENCY",
    "SEARCH_COUNT",
    "INCOHERENCE_ISSUES",
    "metrics_response",
]
