"""Grounding steps around one chat turn: context before generation, citations after."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from study_grounding.citations.extraction import (
    DEFAULT_EXCERPT_CHARS,
    DEFAULT_MATCH_THRESHOLD,
    CitationCorrelator,
    extract_citations_from_content,
    validate_citation_map,
    validate_synthesis_citations,
)
from study_grounding.citations.models import SynthesisCitation, normalize_citation_map
from study_grounding.core.config import Settings
from study_grounding.core.errors import EmbeddingProviderError, StoreUnavailable
from study_grounding.db.stores import MessageStore
from study_grounding.models.entities import Message
from study_grounding.retrieval.search import VectorSearch, format_search_results
from study_grounding.retrieval.types import SearchResult, ToolCallRecord

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Relevant excerpts from the study documents:"
CONTEXT_INSTRUCTIONS = (
    "Cite an excerpt with its bracketed number, for example [1], "
    "and only cite excerpts listed above."
)


class ChatGroundingService:
    """Supplies retrieved context to a chat turn and freezes its citations."""

    def __init__(
        self,
        search: VectorSearch,
        messages: MessageStore,
        retrieval_timeout: float = 10.0,
        excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        correlator: CitationCorrelator | None = None,
    ) -> None:
        self.search = search
        self.messages = messages
        self.retrieval_timeout = retrieval_timeout
        self.excerpt_chars = excerpt_chars
        self.match_threshold = match_threshold
        self.correlator = correlator or CitationCorrelator(search)

    @classmethod
    def from_settings(cls, settings: Settings, search: VectorSearch, messages: MessageStore) -> "ChatGroundingService":
        return cls(
            search=search,
            messages=messages,
            retrieval_timeout=settings.retrieval_timeout,
            excerpt_chars=settings.citation_excerpt_chars,
            match_threshold=settings.citation_match_threshold,
        )

    async def retrieve_context(self, query: str, study_id: str) -> list[SearchResult]:
        """Best-effort retrieval; any failure or timeout yields no context."""
        if not query or not query.strip():
            return []
        try:
            return await asyncio.wait_for(
                self.search.find_relevant_chunks(query, study_id=study_id),
                timeout=self.retrieval_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Retrieval timed out after %.1fs; answering without document context",
                self.retrieval_timeout,
                extra={"ctx_study_id": study_id},
            )
        except (StoreUnavailable, EmbeddingProviderError) as exc:
            logger.warning(
                "Retrieval failed; answering without document context: %s",
                exc,
                extra={"ctx_study_id": study_id},
            )
        return []

    async def finalize_turn(
        self,
        message_id: str | None,
        chat_id: str,
        study_id: str,
        answer: str,
        tool_calls: Sequence[ToolCallRecord | dict[str, Any]] = (),
        synthesis_citations: Sequence[SynthesisCitation] = (),
    ) -> Message:
        """Validate the answer's citations against the turn's evidence and persist the message.

        Markers in ``answer`` are numbered first; synthesis citations that
        survive validation follow them.
        """
        records = [call if isinstance(call, ToolCallRecord) else ToolCallRecord.from_dict(call) for call in tool_calls]
        evidence = await self.correlator.collect_evidence(records, study_id)
        citations = list(extract_citations_from_content(answer, evidence, self.excerpt_chars).values())
        if synthesis_citations:
            citations.extend(validate_synthesis_citations(synthesis_citations, evidence, self.match_threshold))
        citation_map = normalize_citation_map(citations) if citations else None
        if citation_map is not None and not validate_citation_map(citation_map):
            logger.error("Discarding malformed citation map", extra={"ctx_message_id": message_id})
            citation_map = None

        message = await self.messages.save_message(
            chat_id=chat_id,
            study_id=study_id,
            role="ASSISTANT",
            content=answer,
            citations=citation_map,
            tool_calls=[record.to_dict() for record in records] or None,
            message_id=message_id,
        )
        logger.info(
            "Assistant message stored with %s citations from %s evidence chunks",
            len(citation_map or {}),
            len(evidence),
            extra={"ctx_message_id": message.id, "ctx_chat_id": chat_id},
        )
        return message


def build_context_prompt(results: Sequence[SearchResult]) -> str:
    """System prompt section listing the retrieved chunks; empty when nothing was found."""
    if not results:
        return ""
    return f"{CONTEXT_HEADER}\n\n{format_search_results(results)}\n\n{CONTEXT_INSTRUCTIONS}"


__all__ = ["ChatGroundingService", "build_context_prompt"]
