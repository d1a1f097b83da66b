"""Chunking utilities."""

from __future__ import annotations

from typing import Any, Sequence

from study_grounding.ingest.embeddings import serialize_embedding
from study_grounding.ingest.types import (
    DEFAULT_CHUNKING_OPTIONS,
    ChunkingOptions,
    ChunkRecord,
    DocumentChunk,
)
from study_grounding.utils.ids import new_id

# Highest priority first; the first kind found inside the search window wins.
_BOUNDARIES = ("\n\n", ". ", "! ", "? ", "\n", ", ", "; ", " ")
_MAX_SEARCH_WINDOW = 200


def chunk_text(
    text: str,
    options: ChunkingOptions | None = None,
    **overrides: Any,
) -> list[DocumentChunk]:
    """Split text into overlapping, boundary-aware chunks.

    ``overrides`` are merged over ``options`` (or the defaults), so callers can
    write ``chunk_text(text, chunk_size=200, overlap_size=50)``.
    """
    config = (options or DEFAULT_CHUNKING_OPTIONS).merged(**overrides)
    if not text or not text.strip():
        return []

    clean = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    length = len(clean)
    if length <= config.chunk_size:
        return [DocumentChunk(content=clean, chunk_index=0, start_position=0, end_position=length)]

    chunks: list[DocumentChunk] = []
    position = 0
    while position < length:
        chunk_end = min(position + config.chunk_size, length)
        if chunk_end < length and config.preserve_paragraphs:
            chunk_end = _find_boundary(clean, chunk_end, config.chunk_size)

        content = clean[position:chunk_end].strip()
        if len(content) >= config.min_chunk_size:
            chunks.append(
                DocumentChunk(
                    content=content,
                    chunk_index=len(chunks),
                    start_position=position,
                    end_position=chunk_end,
                )
            )

        if chunk_end >= length:
            break
        position = max(
            position + config.chunk_size - config.overlap_size,
            position + config.min_chunk_size,
        )
    return chunks


def _find_boundary(text: str, ideal_end: int, chunk_size: int) -> int:
    window = min(_MAX_SEARCH_WINDOW, int(chunk_size * 0.2))
    min_end = ideal_end - window
    for boundary in _BOUNDARIES:
        # match must start in [min_end, ideal_end) but may run past ideal_end
        found = text.rfind(boundary, max(min_end, 0), ideal_end - 1 + len(boundary))
        if found != -1:
            return found + len(boundary)
    return ideal_end


def validate_chunks(chunks: Sequence[DocumentChunk]) -> tuple[bool, list[str]]:
    """Check indices are sequential, content is non-empty and spans are sane."""
    errors: list[str] = []
    for expected, chunk in enumerate(chunks):
        if chunk.chunk_index != expected:
            errors.append(f"Chunk {expected} has incorrect index: expected {expected}, got {chunk.chunk_index}")
        if not chunk.content or not chunk.content.strip():
            errors.append(f"Chunk {expected} is empty")
        if chunk.start_position is not None and chunk.end_position is not None:
            if chunk.start_position >= chunk.end_position:
                errors.append(
                    f"Chunk {expected} has invalid positions: "
                    f"start {chunk.start_position} >= end {chunk.end_position}"
                )
    return not errors, errors


def merge_overlapping_chunks(
    chunks: Sequence[DocumentChunk],
    threshold: float = 0.8,
) -> list[DocumentChunk]:
    """Coalesce adjacent near-duplicate chunks and reindex the result."""
    if len(chunks) <= 1:
        return list(chunks)

    merged: list[DocumentChunk] = []
    current = chunks[0]
    for following in chunks[1:]:
        if word_jaccard(current.content, following.content) > threshold:
            current = DocumentChunk(
                content=f"{current.content}\n\n{following.content}",
                chunk_index=current.chunk_index,
                start_position=current.start_position,
                end_position=following.end_position,
            )
        else:
            merged.append(current)
            current = following
    merged.append(current)

    return [
        DocumentChunk(
            content=chunk.content,
            chunk_index=index,
            start_position=chunk.start_position,
            end_position=chunk.end_position,
        )
        for index, chunk in enumerate(merged)
    ]


def word_jaccard(a: str, b: str) -> float:
    """Jaccard similarity of the lowercased word sets of two texts."""
    set_a = set(a.lower().split())
    set_b = set(b.lower().split())
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def build_chunk_records(
    document_id: str,
    chunks: Sequence[DocumentChunk],
    embeddings: Sequence[Sequence[float]],
) -> list[ChunkRecord]:
    """Pair chunks with their embeddings and attach storage identifiers."""
    if len(chunks) != len(embeddings):
        raise ValueError(f"Got {len(embeddings)} embeddings for {len(chunks)} chunks")
    return [
        ChunkRecord(
            id=new_id("chk"),
            document_id=document_id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            embedding=serialize_embedding(vector),
        )
        for chunk, vector in zip(chunks, embeddings)
    ]


__all__ = [
    "chunk_text",
    "validate_chunks",
    "merge_overlapping_chunks",
    "word_jaccard",
    "build_chunk_records",
]
