"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class Study:
    id: str
    user_id: str
    name: str | None
    created_at: int


@dataclass(slots=True)
class Document:
    id: str
    study_id: str
    batch_id: str | None
    file_name: str
    mime: str | None
    size_bytes: int | None
    status: str
    error: str | None
    created_at: int
    updated_at: int


@dataclass(slots=True)
class ChunkCandidate:
    """A stored chunk joined with its document, as read for similarity search."""

    chunk_id: str
    document_id: str
    document_name: str
    study_id: str
    chunk_index: int
    content: str
    embedding: bytes | None


@dataclass(slots=True)
class Message:
    id: str
    chat_id: str
    study_id: str
    role: str
    content: str
    citations: dict[str, Any] | None
    tool_calls: list[dict[str, Any]] | None
    created_at: int


@dataclass(slots=True)
class UploadBatch:
    id: str
    user_id: str
    study_id: str
    status: str
    total_files: int
    completed_files: int
    failed_files: int
    meta: dict[str, Any]
    created_at: int
    updated_at: int


__all__ = ["Study", "Document", "ChunkCandidate", "Message", "UploadBatch"]
