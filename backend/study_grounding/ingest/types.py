"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class ChunkingOptions:
    """Knobs for :func:`study_grounding.ingest.chunker.chunk_text` (sizes in characters)."""

    chunk_size: int = 1000
    overlap_size: int = 200
    min_chunk_size: int = 100
    preserve_paragraphs: bool = True

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        if self.overlap_size < 0:
            raise ValueError("overlap_size cannot be negative")
        if self.min_chunk_size < 1:
            raise ValueError("min_chunk_size must be positive")

    def merged(self, **overrides: Any) -> "ChunkingOptions":
        """Return a copy with the non-``None`` overrides applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values) if values else self


DEFAULT_CHUNKING_OPTIONS = ChunkingOptions()


@dataclass(slots=True)
class DocumentChunk:
    """Chunk produced by the chunker prior to embedding and persistence."""

    content: str
    chunk_index: int
    start_position: int | None = None
    end_position: int | None = None


@dataclass(slots=True)
class ChunkRecord:
    """Chunk ready to be stored, embedding already serialized."""

    id: str
    document_id: str
    chunk_index: int
    content: str
    embedding: bytes


@dataclass(slots=True)
class ExtractedText:
    """Outcome of text extraction for one uploaded file."""

    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class UploadedFile:
    """A buffered upload waiting for ingestion."""

    file_name: str
    mime_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class IngestResult:
    """Outcome for a single processed file."""

    file_name: str
    status: str
    document_id: str | None = None
    chunks: int = 0
    total_tokens: int = 0
    error: str | None = None
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "status": self.status,
            "document_id": self.document_id,
            "chunks": self.chunks,
            "total_tokens": self.total_tokens,
            "error": self.error,
            "details": self.details,
        }


@dataclass(slots=True)
class BatchOutcome:
    """Aggregated result of a batch upload."""

    batch_id: str
    status: str
    results: list[IngestResult] = field(default_factory=list)
    processing_time_ms: int = 0

    @property
    def completed(self) -> int:
        return sum(1 for item in self.results if item.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for item in self.results if item.status == "failed")

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "summary": {
                "total": len(self.results),
                "completed": self.completed,
                "failed": self.failed,
            },
            "results": [item.to_dict() for item in self.results],
            "processing_time_ms": self.processing_time_ms,
        }


__all__ = [
    "ChunkingOptions",
    "DEFAULT_CHUNKING_OPTIONS",
    "DocumentChunk",
    "ChunkRecord",
    "ExtractedText",
    "UploadedFile",
    "IngestResult",
    "BatchOutcome",
]
