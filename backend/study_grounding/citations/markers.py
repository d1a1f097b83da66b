"""Inline citation markers.

Three marker forms show up in generated answers:

- ``{{cite:<id>}}`` emitted by synthesis responses, ``<id>`` naming a
  citation, chunk or document id;
- ``[<n>]`` ordinals referring to the numbered evidence listing;
- ``^[<document name>]`` naming a document shown by a search tool.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Union

from study_grounding.citations.models import SynthesisCitation

CITE_MARKER_RE = re.compile(r"\{\{cite:([^}]+)\}\}")
ORDINAL_MARKER_RE = re.compile(r"(?<!\^)\[(\d+)\]")
DOCUMENT_MARKER_RE = re.compile(r"\^\[([^\]]+)\]")

_ANY_MARKER_RE = re.compile(
    "|".join(f"(?:{pattern.pattern})" for pattern in (CITE_MARKER_RE, DOCUMENT_MARKER_RE, ORDINAL_MARKER_RE))
)


@dataclass(frozen=True, slots=True)
class TextSegment:
    text: str


@dataclass(frozen=True, slots=True)
class CitationSegment:
    """A resolved ``{{cite:id}}`` marker; clients render it as a badge."""

    citation_id: str
    citation: SynthesisCitation


@dataclass(frozen=True, slots=True)
class PlaceholderSegment:
    """A ``{{cite:id}}`` marker whose id is unknown."""

    citation_id: str

    @property
    def text(self) -> str:
        return f"[{self.citation_id}]"


Segment = Union[TextSegment, CitationSegment, PlaceholderSegment]


@dataclass(frozen=True, slots=True)
class Marker:
    """A marker occurrence found by :func:`find_markers`."""

    kind: str  # "cite", "ordinal" or "document"
    value: str
    start: int
    end: int


def find_markers(text: str) -> Iterator[Marker]:
    """Yield every marker in order of appearance."""
    for match in _ANY_MARKER_RE.finditer(text):
        cite, document, ordinal = match.groups()
        if cite is not None:
            yield Marker("cite", cite.strip(), match.start(), match.end())
        elif document is not None:
            yield Marker("document", document.strip(), match.start(), match.end())
        else:
            yield Marker("ordinal", ordinal, match.start(), match.end())


def split_citation_markers(
    text: str,
    citations: Iterable[SynthesisCitation] | Mapping[str, SynthesisCitation],
) -> list[Segment]:
    """Split ``text`` on ``{{cite:id}}`` markers, preserving order."""
    if isinstance(citations, Mapping):
        known = dict(citations)
    else:
        known = {citation.id: citation for citation in citations}

    segments: list[Segment] = []
    cursor = 0
    for match in CITE_MARKER_RE.finditer(text):
        if match.start() > cursor:
            segments.append(TextSegment(text[cursor : match.start()]))
        citation_id = match.group(1)
        citation = known.get(citation_id)
        if citation is not None:
            segments.append(CitationSegment(citation_id, citation))
        else:
            segments.append(PlaceholderSegment(citation_id))
        cursor = match.end()
    if cursor < len(text):
        segments.append(TextSegment(text[cursor:]))
    return segments


def render_plain(segments: Iterable[Segment]) -> str:
    parts: list[str] = []
    for segment in segments:
        if isinstance(segment, CitationSegment):
            parts.append(f"[{segment.citation.document_name}]")
        else:
            parts.append(segment.text)
    return "".join(parts)


__all__ = [
    "CITE_MARKER_RE",
    "ORDINAL_MARKER_RE",
    "DOCUMENT_MARKER_RE",
    "TextSegment",
    "CitationSegment",
    "PlaceholderSegment",
    "Segment",
    "Marker",
    "find_markers",
    "split_citation_markers",
    "render_plain",
]
