"""Vector search orchestration."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Sequence

from study_grounding.db.stores import ChunkStore
from study_grounding.core.metrics import SEARCH_LATENCY
from study_grounding.ingest.embeddings import EmbeddingClient, deserialize_embedding
from study_grounding.retrieval.similarity import rank_candidates
from study_grounding.retrieval.types import DEFAULT_SEARCH_OPTIONS, SearchOptions, SearchResult

logger = logging.getLogger(__name__)

NO_RESULTS_TEXT = "No relevant content found."


class VectorSearch:
    """Embeds queries and ranks the chunks in scope by cosine similarity."""

    def __init__(
        self,
        store: ChunkStore,
        embedding_client: EmbeddingClient,
        defaults: SearchOptions = DEFAULT_SEARCH_OPTIONS,
    ) -> None:
        self.store = store
        self.embedding_client = embedding_client
        self.defaults = defaults

    async def find_relevant_chunks(
        self,
        query: str,
        options: SearchOptions | None = None,
        **overrides: Any,
    ) -> list[SearchResult]:
        """Top ``limit`` chunks in scope with similarity >= ``min_similarity``.

        An empty scope yields ``[]``. Store failures surface as
        ``StoreUnavailable`` and provider failures as ``EmbeddingProviderError``.
        """
        if not query or not query.strip():
            raise ValueError("Search query cannot be empty")
        config = (options or self.defaults).merged(**overrides)
        started = time.perf_counter()

        query_vector = await self.embedding_client.generate_embedding(query)
        candidates = await self.store.fetch_candidates(
            study_id=config.study_id,
            document_ids=config.document_ids,
            exclude_chunk_id=config.exclude_chunk_id,
        )
        results = rank_candidates(query_vector, candidates, config) if candidates else []

        SEARCH_LATENCY.labels(scope=_scope_label(config)).observe(time.perf_counter() - started)
        logger.debug(
            "Search ranked %s candidates, returning %s",
            len(candidates),
            len(results),
            extra={"ctx_study_id": config.study_id},
        )
        return results

    async def find_similar_chunks(
        self,
        chunk_id: str,
        options: SearchOptions | None = None,
        **overrides: Any,
    ) -> list[SearchResult]:
        """Chunks in the same study that resemble an existing chunk."""
        source = await self.store.get_chunk(chunk_id)
        if source is None or source.embedding is None:
            raise LookupError("Source chunk not found or has no embedding")
        config = (options or self.defaults).merged(**overrides).merged(
            study_id=source.study_id,
            exclude_chunk_id=chunk_id,
        )
        candidates = await self.store.fetch_candidates(
            study_id=config.study_id,
            document_ids=config.document_ids,
            exclude_chunk_id=config.exclude_chunk_id,
        )
        return rank_candidates(deserialize_embedding(source.embedding), candidates, config)

    async def embedding_stats(self, study_id: str | None = None) -> dict[str, int]:
        """Chunk and embedding coverage for a study."""
        return await self.store.embedding_stats(study_id)


def format_search_results(results: Sequence[SearchResult]) -> str:
    """Numbered listing of results for injection into a prompt."""
    if not results:
        return NO_RESULTS_TEXT
    blocks = [
        f"[{index}] {result.document_name} ({percent(result.similarity)}% match)\n{result.content.strip()}\n"
        for index, result in enumerate(results, start=1)
    ]
    return "\n---\n\n".join(blocks)


def percent(similarity: float) -> int:
    """Similarity as a whole percentage, halves rounded up."""
    return math.floor(similarity * 100 + 0.5)


def _scope_label(options: SearchOptions) -> str:
    if options.document_ids:
        return "documents"
    if options.study_id:
        return "study"
    return "all"


__all__ = ["VectorSearch", "format_search_results", "percent", "NO_RESULTS_TEXT"]
