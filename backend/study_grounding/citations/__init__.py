"""Citation markers, extraction and validation."""

from .extraction import (
    CitationCorrelator,
    extract_citations_from_content,
    validate_citation_map,
    validate_synthesis_citations,
)
from .markers import render_plain, split_citation_markers
from .models import Citation, CitationMap, RetrievalCitation, SynthesisCitation, normalize_citation_map

__all__ = [
    "CitationCorrelator",
    "extract_citations_from_content",
    "validate_citation_map",
    "validate_synthesis_citations",
    "render_plain",
    "split_citation_markers",
    "Citation",
    "CitationMap",
    "RetrievalCitation",
    "SynthesisCitation",
    "normalize_citation_map",
]
