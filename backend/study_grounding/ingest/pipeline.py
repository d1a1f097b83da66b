"""Ingest pipeline orchestration."""

from __future__ import annotations

import asyncio
import time
from typing import Sequence

from study_grounding.core.config import Settings
from study_grounding.core.errors import BatchValidationError, ExtractionError, GroundingError
from study_grounding.core.logging import get_logger
from study_grounding.core.metrics import INDEX_SIZE, INGEST_DURATION
from study_grounding.db.stores import BatchStore, DocumentStore, SQLiteChunkStore
from study_grounding.ingest.chunker import build_chunk_records, chunk_text, validate_chunks
from study_grounding.ingest.embeddings import EmbeddingClient
from study_grounding.ingest.extraction import extract_text, is_supported
from study_grounding.ingest.limiter import ConcurrencyCounter, InMemoryConcurrencyCounter
from study_grounding.ingest.types import BatchOutcome, ChunkingOptions, IngestResult, UploadedFile

logger = get_logger(__name__)

_MB = 1024 * 1024


class IngestPipeline:
    """Coordinate extraction, chunking, embeddings, and persistence."""

    def __init__(
        self,
        settings: Settings,
        documents: DocumentStore,
        chunks: SQLiteChunkStore,
        batches: BatchStore,
        embedding_client: EmbeddingClient,
        counter: ConcurrencyCounter | None = None,
    ) -> None:
        self.settings = settings
        self.documents = documents
        self.chunks = chunks
        self.batches = batches
        self.embedding_client = embedding_client
        self.counter = counter or InMemoryConcurrencyCounter(settings.max_concurrent_files_per_user)
        self.chunking_options = ChunkingOptions(
            chunk_size=settings.chunk_size,
            overlap_size=settings.overlap_size,
            min_chunk_size=settings.min_chunk_size,
            preserve_paragraphs=settings.preserve_paragraphs,
        )

    async def process_document(
        self,
        upload: UploadedFile,
        study_id: str,
        batch_id: str | None = None,
    ) -> IngestResult:
        """Extract, chunk, embed and store one file.

        ``ExtractionError`` is raised before anything is written. Any later
        failure marks the document FAILED and is re-raised; its chunks are
        never stored.
        """
        started = time.perf_counter()
        try:
            extracted = extract_text(upload.data, upload.mime_type, upload.file_name)
        except ExtractionError:
            INGEST_DURATION.labels(status="rejected").observe(time.perf_counter() - started)
            raise

        document_id = await self.documents.create_document(
            study_id=study_id,
            file_name=upload.file_name,
            mime=upload.mime_type,
            size_bytes=upload.size_bytes,
            extracted_text=extracted.text,
            batch_id=batch_id,
        )
        try:
            result = await self._index_document(document_id, upload.file_name, extracted.text)
        except Exception as exc:
            logger.exception(
                "Processing failed for %s: %s",
                upload.file_name,
                exc,
                extra={"ctx_document_id": document_id},
            )
            await self.documents.set_status(document_id, "FAILED", error=f"Processing failed: {exc}")
            INGEST_DURATION.labels(status="failed").observe(time.perf_counter() - started)
            raise

        INGEST_DURATION.labels(status="ready").observe(time.perf_counter() - started)
        INDEX_SIZE.set(await self.chunks.count_embedded())
        return result

    async def _index_document(self, document_id: str, file_name: str, text: str) -> IngestResult:
        chunks = chunk_text(text, self.chunking_options)
        valid, errors = validate_chunks(chunks)
        if not valid:
            raise ValueError("; ".join(errors))
        if not chunks:
            logger.warning("Document %s produced no chunks", file_name, extra={"ctx_document_id": document_id})
            await self.documents.set_status(document_id, "READY")
            return IngestResult(file_name=file_name, status="completed", document_id=document_id)

        embedded = await self.embedding_client.generate_batch_embeddings([chunk.content for chunk in chunks])
        records = build_chunk_records(document_id, chunks, embedded.embeddings)
        await self.chunks.save_chunks(records)
        await self.documents.set_status(document_id, "READY")
        logger.info(
            "Indexed %s chunks for %s",
            len(records),
            file_name,
            extra={"ctx_document_id": document_id, "ctx_tokens": embedded.usage.total_tokens},
        )
        return IngestResult(
            file_name=file_name,
            status="completed",
            document_id=document_id,
            chunks=len(records),
            total_tokens=embedded.usage.total_tokens,
        )

    def validate_batch(self, files: Sequence[UploadedFile]) -> None:
        if not files:
            raise BatchValidationError("No files provided")
        if len(files) > self.settings.max_files_per_batch:
            raise BatchValidationError(f"Maximum {self.settings.max_files_per_batch} files per batch")
        total_mb = sum(upload.size_bytes for upload in files) / _MB
        if total_mb > self.settings.max_batch_size_mb:
            raise BatchValidationError(
                f"Batch too large (max {self.settings.max_batch_size_mb:g}MB, current: {round(total_mb, 2)}MB)"
            )
        for upload in files:
            if upload.size_bytes == 0:
                raise BatchValidationError(f'File "{upload.file_name}": File is empty')
            if not is_supported(upload.mime_type, upload.file_name):
                raise BatchValidationError(f'File "{upload.file_name}": Unsupported file type')

    async def process_batch(self, files: Sequence[UploadedFile], study_id: str, user_id: str) -> BatchOutcome:
        """Validate the batch, then process its files through a fixed set of slots.

        Raises ``BatchValidationError`` or ``ConcurrencyLimitExceeded`` before
        any batch record is written.
        """
        self.validate_batch(files)
        self.counter.acquire(user_id, len(files))
        started = time.perf_counter()
        try:
            slot_count = self.settings.max_concurrent_files_per_user
            batch_id = await self.batches.create_batch(
                user_id=user_id,
                study_id=study_id,
                total_files=len(files),
                meta={
                    "file_names": [upload.file_name for upload in files],
                    "total_size": sum(upload.size_bytes for upload in files),
                    "concurrency": min(len(files), slot_count),
                },
            )
            await self.batches.update_batch(batch_id, "PROCESSING")
            logger.info("Starting batch %s with %s files", batch_id, len(files), extra={"ctx_study_id": study_id})

            slots: list[asyncio.Task[IngestResult] | None] = [None] * slot_count
            tasks: list[asyncio.Task[IngestResult]] = []
            for index, upload in enumerate(files):
                slot = index % slot_count
                previous = slots[slot]
                if previous is not None:
                    await asyncio.wait([previous])
                task = asyncio.create_task(self._process_in_batch(upload, study_id, batch_id))
                slots[slot] = task
                tasks.append(task)
            results = list(await asyncio.gather(*tasks))

            outcome = BatchOutcome(
                batch_id=batch_id,
                status="COMPLETED" if any(item.status == "completed" for item in results) else "FAILED",
                results=results,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
            )
            await self.batches.update_batch(
                batch_id,
                outcome.status,
                completed_files=outcome.completed,
                failed_files=outcome.failed,
                meta={
                    "processing_time_ms": outcome.processing_time_ms,
                    "file_results": [item.to_dict() for item in results],
                },
            )
            logger.info(
                "Batch %s finished: %s/%s files successful",
                batch_id,
                outcome.completed,
                len(files),
                extra={"ctx_study_id": study_id},
            )
            return outcome
        finally:
            self.counter.release(user_id, len(files))

    async def _process_in_batch(self, upload: UploadedFile, study_id: str, batch_id: str) -> IngestResult:
        try:
            return await self.process_document(upload, study_id, batch_id=batch_id)
        except ExtractionError as exc:
            return IngestResult(
                file_name=upload.file_name,
                status="failed",
                error=f"Text extraction failed: {exc.error}",
                details=exc.details,
            )
        except GroundingError as exc:
            return IngestResult(file_name=upload.file_name, status="failed", error=str(exc))
        except Exception as exc:  # pragma: no cover - database errors
            logger.exception("File processing failed for %s: %s", upload.file_name, exc)
            return IngestResult(file_name=upload.file_name, status="failed", error=str(exc))


__all__ = ["IngestPipeline"]
