"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from study_grounding.citations.models import SynthesisCitation


class SearchRequest(BaseModel):
    study_id: str
    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=50)
    min_similarity: float = Field(default=0.1, ge=-1.0, le=1.0)
    document_ids: list[str] | None = None


class SearchResultItem(BaseModel):
    chunk_id: str
    document_id: str
    document_name: str
    content: str
    chunk_index: int
    similarity: float


class SearchResponse(BaseModel):
    results: list[SearchResultItem]
    formatted: str


class DocumentUploadResponse(BaseModel):
    document_id: str | None
    file_name: str
    status: str
    chunks: int
    total_tokens: int


class BatchSummary(BaseModel):
    total: int
    completed: int
    failed: int


class BatchUploadResponse(BaseModel):
    batch_id: str
    status: Literal["COMPLETED", "FAILED"]
    summary: BatchSummary
    results: list[dict[str, Any]]
    processing_time_ms: int


class BatchStatusResponse(BaseModel):
    batch_id: str
    study_id: str
    status: str
    total_files: int
    completed_files: int
    failed_files: int
    meta: dict[str, Any]


class ToolCallPayload(BaseModel):
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: str | None = None


class FinalizeTurnRequest(BaseModel):
    study_id: str
    message_id: str | None = None
    content: str
    tool_calls: list[ToolCallPayload] = Field(default_factory=list)
    synthesis_citations: list[SynthesisCitation] = Field(default_factory=list)


class FinalizeTurnResponse(BaseModel):
    message_id: str
    citations: dict[str, Any]


class DeleteResponse(BaseModel):
    deleted: bool


__all__ = [
    "SearchRequest",
    "SearchResultItem",
    "SearchResponse",
    "DocumentUploadResponse",
    "BatchSummary",
    "BatchUploadResponse",
    "BatchStatusResponse",
    "ToolCallPayload",
    "FinalizeTurnRequest",
    "FinalizeTurnResponse",
    "DeleteResponse",
]
