"""Bind citation markers in generated answers to the evidence retrieved for the turn.

A marker is only accepted when it resolves to a chunk that was actually part
of the search results the model saw. Everything else is logged, counted and
dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from rapidfuzz import fuzz

from study_grounding.citations.markers import Marker, find_markers
from study_grounding.citations.models import CitationMap, RetrievalCitation, SynthesisCitation
from study_grounding.core.errors import CitationCorrelationFailure, GroundingError
from study_grounding.core.metrics import CITATIONS
from study_grounding.retrieval.search import VectorSearch
from study_grounding.retrieval.tools import SEARCH_SPECIFIC_DOCUMENTS
from study_grounding.retrieval.types import SearchResult, ToolCallRecord

logger = logging.getLogger(__name__)

DEFAULT_EXCERPT_CHARS = 300
DEFAULT_MATCH_THRESHOLD = 80.0
CORRELATION_DEFAULT_LIMIT = 10
CORRELATION_DEFAULT_MIN_SIMILARITY = 0.1


def excerpt(content: str, limit: int = DEFAULT_EXCERPT_CHARS) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + "..."


def extract_citations_from_content(
    content: str,
    evidence: Sequence[SearchResult],
    excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
) -> CitationMap:
    """Resolve every marker in ``content`` against ``evidence``.

    ``[n]`` picks the n-th evidence entry (1-based), ``{{cite:x}}`` matches a
    chunk id or document id and ``^[name]`` matches a document name. Document
    level matches cite that document's best scoring chunk. Citations are
    numbered in order of first appearance.
    """
    if not content or not evidence:
        for marker in find_markers(content or ""):
            _reject(marker, "no evidence for this turn")
        return {}

    by_chunk = {item.chunk_id: item for item in evidence}
    best_by_document: dict[str, SearchResult] = {}
    best_by_name: dict[str, SearchResult] = {}
    for item in evidence:
        current = best_by_document.get(item.document_id)
        if current is None or item.similarity > current.similarity:
            best_by_document[item.document_id] = item
            best_by_name[item.document_name] = item

    citations: CitationMap = {}
    seen: set[tuple[str, str]] = set()
    # Appearance order for all kinds, ^[name] included; names are not sorted alphabetically.
    for marker in find_markers(content):
        resolved = _resolve(marker, evidence, by_chunk, best_by_document, best_by_name)
        if resolved is None:
            _reject(marker, "not present in retrieved evidence")
            continue
        key = (resolved.document_id, resolved.chunk_id)
        if key in seen:
            continue
        seen.add(key)
        citations[str(len(citations) + 1)] = RetrievalCitation(
            document_id=resolved.document_id,
            document_name=resolved.document_name,
            chunk_id=resolved.chunk_id,
            content=excerpt(resolved.content, excerpt_chars),
            similarity=resolved.similarity,
            chunk_index=resolved.chunk_index,
        )
        CITATIONS.labels(outcome="accepted").inc()
    return citations


def _resolve(
    marker: Marker,
    evidence: Sequence[SearchResult],
    by_chunk: Mapping[str, SearchResult],
    best_by_document: Mapping[str, SearchResult],
    best_by_name: Mapping[str, SearchResult],
) -> SearchResult | None:
    if marker.kind == "ordinal":
        position = int(marker.value)
        if 1 <= position <= len(evidence):
            return evidence[position - 1]
        return None
    if marker.kind == "cite":
        return by_chunk.get(marker.value) or best_by_document.get(marker.value)
    return best_by_name.get(marker.value)


def _reject(marker: Marker, reason: str) -> None:
    CITATIONS.labels(outcome="rejected").inc()
    logger.info(
        "Dropping citation marker %r: %s",
        marker.value,
        reason,
        extra={"ctx_marker_kind": marker.kind},
    )


def validate_synthesis_citations(
    citations: Sequence[SynthesisCitation],
    evidence: Sequence[SearchResult],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> list[SynthesisCitation]:
    """Keep synthesis citations whose document was retrieved and bind their quote to a chunk.

    The quote is matched against each retrieved chunk of the document with
    ``fuzz.partial_ratio``; the best chunk scoring at least ``threshold`` is
    recorded as ``chunk_id``. A citation whose quote matches no chunk keeps
    its document reference without a chunk.
    """
    chunks_by_document: dict[str, list[SearchResult]] = {}
    for item in evidence:
        chunks_by_document.setdefault(item.document_id, []).append(item)

    validated: list[SynthesisCitation] = []
    for citation in citations:
        chunks = chunks_by_document.get(citation.document_id)
        if not chunks:
            CITATIONS.labels(outcome="rejected").inc()
            logger.info(
                "Dropping synthesis citation %s: document %s was not retrieved",
                citation.id,
                citation.document_id,
            )
            continue
        best_chunk: SearchResult | None = None
        best_score = 0.0
        quote = citation.relevant_text.strip().lower()
        if quote:
            for chunk in chunks:
                score = fuzz.partial_ratio(quote, chunk.content.lower())
                if score > best_score:
                    best_chunk, best_score = chunk, score
        if best_chunk is not None and best_score >= threshold:
            citation = citation.model_copy(update={"chunk_id": best_chunk.chunk_id})
        else:
            logger.debug("Synthesis citation %s quote matched no chunk (best %.1f)", citation.id, best_score)
        CITATIONS.labels(outcome="accepted").inc()
        validated.append(citation)
    return validated


class CitationCorrelator:
    """Rebuilds the evidence a turn's tool calls returned to the model."""

    def __init__(self, search: VectorSearch) -> None:
        self.search = search

    async def collect_evidence(self, tool_calls: Sequence[ToolCallRecord], study_id: str) -> list[SearchResult]:
        """Flattened search results of every search tool call, deduplicated by chunk id.

        Retained structured results (set only by in-process tool execution)
        are used as-is. Calls without them are
        re-run concurrently against the same study; a failed re-run is logged
        and contributes nothing.
        """
        search_calls = [call for call in tool_calls if call.tool_name.startswith("search_")]
        batches = await asyncio.gather(*(self._results_for(call, study_id) for call in search_calls))

        evidence: list[SearchResult] = []
        seen: set[str] = set()
        for batch in batches:
            for item in batch:
                if item.chunk_id in seen:
                    continue
                seen.add(item.chunk_id)
                evidence.append(item)
        return evidence

    async def _results_for(self, call: ToolCallRecord, study_id: str) -> list[SearchResult]:
        if call.results is not None:
            return list(call.results)
        query = call.input.get("query")
        try:
            if not isinstance(query, str) or not query.strip():
                raise ValueError("tool call has no query")
            return await self.search.find_relevant_chunks(query, **_rerun_options(call, study_id))
        except (GroundingError, ValueError) as exc:
            failure = CitationCorrelationFailure(call.tool_name, query, exc)
            logger.warning(str(failure), extra={"ctx_study_id": study_id})
            return []


def _rerun_options(call: ToolCallRecord, study_id: str) -> dict[str, Any]:
    limit = call.input.get("limit")
    min_similarity = call.input.get("minSimilarity")
    options: dict[str, Any] = {
        "study_id": study_id,
        "limit": CORRELATION_DEFAULT_LIMIT if limit is None else int(limit),
        "min_similarity": CORRELATION_DEFAULT_MIN_SIMILARITY if min_similarity is None else float(min_similarity),
    }
    if call.tool_name == SEARCH_SPECIFIC_DOCUMENTS and call.input.get("documentIds"):
        options["document_ids"] = list(call.input["documentIds"])
    return options


def validate_citation_map(citations: Mapping[str, Any]) -> bool:
    """True when every key is a citation number and every entry names its document."""
    if not isinstance(citations, Mapping):
        return False
    for key, value in citations.items():
        if not isinstance(key, str) or not key.isdigit():
            return False
        if isinstance(value, (RetrievalCitation, SynthesisCitation)):
            value = value.model_dump()
        if not isinstance(value, Mapping):
            return False
        if not value.get("document_id") or not value.get("document_name"):
            return False
    return True


__all__ = [
    "extract_citations_from_content",
    "validate_synthesis_citations",
    "CitationCorrelator",
    "validate_citation_map",
    "excerpt",
]
