"""Citation shapes and the wire-level citation map."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Sequence, Union

from pydantic import BaseModel, Field, TypeAdapter


class RetrievalCitation(BaseModel):
    """A citation that points at a chunk returned by search."""

    kind: Literal["retrieval"] = "retrieval"
    document_id: str
    document_name: str
    chunk_id: str
    content: str
    similarity: float
    chunk_index: int


class SynthesisCitation(BaseModel):
    """A citation emitted by a generation step that quotes a document."""

    kind: Literal["synthesis"] = "synthesis"
    id: str
    document_id: str
    document_name: str
    relevant_text: str
    page_number: int | None = None
    chunk_id: str | None = None


Citation = Annotated[Union[RetrievalCitation, SynthesisCitation], Field(discriminator="kind")]

CitationMap = dict[str, Citation]

_CITATION_MAP = TypeAdapter(CitationMap)


def normalize_citation_map(citations: Sequence[Citation] | Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Produce the wire CitationMap: 1-based string keys, plain dict values.

    A sequence is numbered in order. A mapping (for instance one read back from
    storage) is validated and its keys kept.
    """
    if isinstance(citations, Mapping):
        parsed = _CITATION_MAP.validate_python(dict(citations))
        return {key: value.model_dump() for key, value in parsed.items()}
    return {str(index): citation.model_dump() for index, citation in enumerate(citations, start=1)}


__all__ = [
    "RetrievalCitation",
    "SynthesisCitation",
    "Citation",
    "CitationMap",
    "normalize_citation_map",
]
