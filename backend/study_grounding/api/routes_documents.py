"""Document upload and management routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from study_grounding.api.dependencies import (
    get_batch_store,
    get_chunk_store,
    get_document_store,
    get_ingest_pipeline,
    get_user_id,
)
from study_grounding.core.errors import (
    BatchValidationError,
    ConcurrencyLimitExceeded,
    EmbeddingProviderError,
    ExtractionError,
)
from study_grounding.core.logging import get_logger
from study_grounding.core.metrics import INDEX_SIZE, REQUEST_COUNT
from study_grounding.db.stores import BatchStore, DocumentStore, SQLiteChunkStore
from study_grounding.ingest.pipeline import IngestPipeline
from study_grounding.ingest.types import UploadedFile
from study_grounding.models.dto import (
    BatchStatusResponse,
    BatchUploadResponse,
    DeleteResponse,
    DocumentUploadResponse,
)

logger = get_logger(__name__)

router = APIRouter()


async def _buffer(upload: UploadFile) -> UploadedFile:
    data = await upload.read()
    return UploadedFile(
        file_name=upload.filename or "upload",
        mime_type=upload.content_type or "application/octet-stream",
        data=data,
    )


@router.post("/documents", response_model=DocumentUploadResponse, summary="Upload and index one document")
async def upload_document(
    study_id: str = Form(...),
    file: UploadFile = File(...),
    user_id: str = Depends(get_user_id),
    documents: DocumentStore = Depends(get_document_store),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> DocumentUploadResponse:
    if await documents.ensure_study(study_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Study not found")
    upload = await _buffer(file)
    if not upload.data:
        raise HTTPException(status_code=400, detail={"error": "File is empty", "details": None})
    try:
        result = await pipeline.process_document(upload, study_id)
    except ExtractionError as exc:
        REQUEST_COUNT.labels(endpoint="documents", method="POST", status="400").inc()
        raise HTTPException(status_code=400, detail=exc.to_dict()) from exc
    except EmbeddingProviderError as exc:
        REQUEST_COUNT.labels(endpoint="documents", method="POST", status="502").inc()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    REQUEST_COUNT.labels(endpoint="documents", method="POST", status="200").inc()
    return DocumentUploadResponse(
        document_id=result.document_id,
        file_name=result.file_name,
        status=result.status,
        chunks=result.chunks,
        total_tokens=result.total_tokens,
    )


@router.post("/upload/batch", response_model=BatchUploadResponse, summary="Upload and index several documents")
async def upload_batch(
    study_id: str = Form(...),
    files: list[UploadFile] = File(...),
    user_id: str = Depends(get_user_id),
    documents: DocumentStore = Depends(get_document_store),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> BatchUploadResponse:
    if await documents.ensure_study(study_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Study not found")
    uploads = [await _buffer(upload) for upload in files]
    try:
        outcome = await pipeline.process_batch(uploads, study_id, user_id)
    except BatchValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConcurrencyLimitExceeded as exc:
        logger.warning("Concurrent file limit exceeded for user %s: %s", user_id, exc.requested)
        raise HTTPException(status_code=429, detail=str(exc)) from exc
    return BatchUploadResponse(**outcome.to_dict())


@router.get("/upload/batch/{batch_id}", response_model=BatchStatusResponse, summary="Batch upload status")
async def batch_status(
    batch_id: str,
    user_id: str = Depends(get_user_id),
    batches: BatchStore = Depends(get_batch_store),
) -> BatchStatusResponse:
    batch = await batches.get_batch(batch_id)
    if batch is None or batch.user_id != user_id:
        raise HTTPException(status_code=404, detail="Batch not found")
    return BatchStatusResponse(
        batch_id=batch.id,
        study_id=batch.study_id,
        status=batch.status,
        total_files=batch.total_files,
        completed_files=batch.completed_files,
        failed_files=batch.failed_files,
        meta=batch.meta,
    )


@router.delete("/documents/{document_id}", response_model=DeleteResponse, summary="Delete a document and its chunks")
async def delete_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    documents: DocumentStore = Depends(get_document_store),
    chunks: SQLiteChunkStore = Depends(get_chunk_store),
) -> DeleteResponse:
    document = await documents.get_document(document_id)
    study = await documents.get_study(document.study_id) if document else None
    if study is None or study.user_id != user_id:
        raise HTTPException(status_code=404, detail="Document not found")
    deleted = await documents.delete_document(document_id)
    INDEX_SIZE.set(await chunks.count_embedded())
    return DeleteResponse(deleted=deleted)
