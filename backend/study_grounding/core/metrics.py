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

REQUEST_COUNT = Counter(
    "sgr_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

EMBEDDING_REQUESTS = Counter(
    "sgr_embedding_requests_total",
    "Embedding provider calls",
    labelnames=("backend", "outcome"),
    registry=REGISTRY,
)

EMBEDDING_TOKENS = Counter(
    "sgr_embedding_tokens_total",
    "Tokens reported by the embedding provider",
    labelnames=("backend",),
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "sgr_search_latency_seconds",
    "Latency of vector searches",
    labelnames=("scope",),
    registry=REGISTRY,
)

CITATIONS = Counter(
    "sgr_citations_total",
    "Citation markers seen in generated answers",
    labelnames=("outcome",),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "sgr_ingest_duration_seconds",
    "Per-document ingest duration",
    labelnames=("status",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "sgr_index_chunks",
    "Number of chunks stored with embeddings",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "EMBEDDING_REQUESTS",
    "EMBEDDING_TOKENS",
    "SEARCH_LATENCY",
    "CITATIONS",
    "INGEST_DURATION",
    "INDEX_SIZE",
    "metrics_response",
]
