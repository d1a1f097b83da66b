"""Cosine similarity and the in-process ranking scan."""

from __future__ import annotations

import logging
import math
from typing import Sequence

from study_grounding.core.errors import DimensionMismatchError
from study_grounding.ingest.embeddings import deserialize_embedding
from study_grounding.models.entities import ChunkCandidate
from study_grounding.retrieval.types import SearchOptions, SearchResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""
    if len(a) != len(b):
        raise DimensionMismatchError("Vectors must have the same length")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    magnitude = math.sqrt(norm_a) * math.sqrt(norm_b)
    if magnitude == 0:
        return 0.0
    return dot / magnitude


def rank_candidates(
    query_vector: Sequence[float],
    candidates: Sequence[ChunkCandidate],
    options: SearchOptions,
) -> list[SearchResult]:
    """Score every candidate, keep those at or above the threshold, best first.

    This is a full O(candidates x dim) scan. Candidates whose stored bytes do
    not decode are skipped; a decoded vector of the wrong length raises.
    """
    scored: list[SearchResult] = []
    for candidate in candidates:
        if candidate.embedding is None:
            continue
        try:
            vector = deserialize_embedding(candidate.embedding)
        except ValueError as exc:
            logger.warning("Skipping chunk %s with undecodable embedding: %s", candidate.chunk_id, exc)
            continue
        similarity = cosine_similarity(query_vector, vector)
        if similarity < options.min_similarity:
            continue
        scored.append(
            SearchResult(
                chunk_id=candidate.chunk_id,
                document_id=candidate.document_id,
                document_name=candidate.document_name,
                content=candidate.content,
                chunk_index=candidate.chunk_index,
                similarity=similarity,
            )
        )
    # list.sort is stable, so ties keep store order
    scored.sort(key=lambda item: item.similarity, reverse=True)
    return scored[: options.limit]


__all__ = ["cosine_similarity", "rank_candidates"]
