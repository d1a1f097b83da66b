"""Tests for extraction and the ingest pipeline."""

from __future__ import annotations

import asyncio
import io

import fitz
import pytest
from docx import Document

from study_grounding.core.config import Settings
from study_grounding.core.errors import (
    BatchValidationError,
    ConcurrencyLimitExceeded,
    EmbeddingProviderError,
    ExtractionError,
)
from study_grounding.db.stores import BatchStore, DocumentStore, SQLiteChunkStore
from study_grounding.ingest.embeddings import EmbeddingClient, HashedEmbeddingProvider, ProviderResponse
from study_grounding.ingest.extraction import clean_text, extract_text, is_supported
from study_grounding.ingest.limiter import InMemoryConcurrencyCounter
from study_grounding.ingest.pipeline import IngestPipeline
from study_grounding.ingest.types import UploadedFile

DIM = 16
NOTES = ("Interview notes. Participants wanted faster onboarding and clearer navigation labels.\n\n" * 8).encode()


def _docx_bytes(*paragraphs: str) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _pdf_bytes(text: str | None) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    if text:
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


class FailingProvider:
    name = "failing"

    async def embed(self, texts):
        raise EmbeddingProviderError("provider down")


class TrackingProvider(HashedEmbeddingProvider):
    """Hashed vectors, recording how many embed calls overlap."""

    def __init__(self, dim: int) -> None:
        super().__init__(dim)
        self.in_flight = 0
        self.max_in_flight = 0

    async def embed(self, texts) -> ProviderResponse:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.02)
            return await super().embed(texts)
        finally:
            self.in_flight -= 1


@pytest.fixture
def make_pipeline(database, tmp_path):
    def _make(provider=None, counter=None, **overrides) -> IngestPipeline:
        values = {
            "db_path": tmp_path / "unused.db",
            "embedding_backend": "hashed",
            "embedding_dim": DIM,
            "chunk_size": 200,
            "overlap_size": 20,
            "min_chunk_size": 20,
        }
        values.update(overrides)
        settings = Settings(**values)
        client = EmbeddingClient(provider or HashedEmbeddingProvider(DIM), dim=DIM, max_retries=0, retry_delay=0)
        return IngestPipeline(
            settings,
            DocumentStore(database),
            SQLiteChunkStore(database),
            BatchStore(database),
            client,
            counter=counter,
        )

    return _make


@pytest.fixture
def study(database):
    with database.transaction() as conn:
        conn.execute(
            "INSERT INTO studies (id, user_id, name, created_at) VALUES (?, ?, ?, ?)",
            ["study-1", "user-1", "Study", 0],
        )
    return "study-1"


def test_clean_text() -> None:
    assert clean_text("a\r\nb\r\n\r\n\r\n\r\nc   d  ") == "a\nb\n\nc d"
    assert clean_text("keep   spaces", collapse_spaces=False) == "keep   spaces"


def test_plain_text_extraction() -> None:
    result = extract_text(b"  Hello\r\nworld  ", "text/plain", "notes.txt")
    assert result.text == "Hello\nworld"
    assert result.metadata["word_count"] == 2
    assert result.metadata["encoding"] == "utf-8"


def test_plain_text_falls_back_to_latin1() -> None:
    result = extract_text("Café résumé".encode("latin-1"), "text/plain", "notes.txt")
    assert result.text == "Café résumé"
    assert result.metadata["encoding"] == "latin-1"


def test_empty_text_file_is_rejected() -> None:
    with pytest.raises(ExtractionError) as excinfo:
        extract_text(b"   \n ", "text/plain", "empty.txt")
    assert excinfo.value.error == "Text file is empty or unreadable"


def test_unsupported_file_type() -> None:
    with pytest.raises(ExtractionError) as excinfo:
        extract_text(b"\x00\x01", "application/zip", "archive.zip")
    assert excinfo.value.to_dict() == {
        "error": "Unsupported file type",
        "details": "File type: application/zip, Extension: zip",
    }
    assert not is_supported("application/zip", "archive.zip")
    assert is_supported("application/octet-stream", "report.MD")


def test_docx_extraction() -> None:
    data = _docx_bytes("Key findings", "Users  wanted   dark mode.")
    result = extract_text(data, "application/vnd.openxmlformats-officedocument.wordprocessingml.document", "r.docx")
    assert result.text == "Key findings\nUsers wanted dark mode."


def test_corrupt_docx_is_rejected() -> None:
    with pytest.raises(ExtractionError, match="Failed to extract text from DOCX"):
        extract_text(b"not a zip", "", "broken.docx")


def test_pdf_extraction() -> None:
    result = extract_text(_pdf_bytes("Survey results summary"), "application/pdf", "survey.pdf")
    assert "Survey results summary" in result.text
    assert result.metadata["page_count"] == 1


def test_pdf_without_text_hints_at_scans() -> None:
    with pytest.raises(ExtractionError) as excinfo:
        extract_text(_pdf_bytes(None), "application/pdf", "scan.pdf")
    assert "scanned or image-based" in excinfo.value.details


def test_concurrency_counter() -> None:
    counter = InMemoryConcurrencyCounter(limit=3)
    counter.acquire("user-1", 2)
    with pytest.raises(ConcurrencyLimitExceeded):
        counter.acquire("user-1", 2)
    counter.acquire("user-2", 3)
    counter.release("user-1", 2)
    assert counter.current("user-1") == 0
    assert counter.current("user-2") == 3


@pytest.mark.asyncio
async def test_process_document_indexes_chunks(make_pipeline, study, database) -> None:
    pipeline = make_pipeline()
    result = await pipeline.process_document(UploadedFile("notes.txt", "text/plain", NOTES), study)

    assert result.status == "completed"
    assert result.chunks > 1
    document = await pipeline.documents.get_document(result.document_id)
    assert document.status == "READY"
    candidates = await SQLiteChunkStore(database).fetch_candidates(study_id=study)
    assert len(candidates) == result.chunks
    assert [item.chunk_index for item in candidates] == list(range(result.chunks))


@pytest.mark.asyncio
async def test_embedding_failure_marks_document_failed(make_pipeline, study, database) -> None:
    pipeline = make_pipeline(provider=FailingProvider())
    with pytest.raises(EmbeddingProviderError):
        await pipeline.process_document(UploadedFile("notes.txt", "text/plain", NOTES), study)

    row = database.execute("SELECT id, status, error FROM documents").fetchone()
    assert row["status"] == "FAILED"
    assert row["error"].startswith("Processing failed: Batch embedding generation failed")
    assert database.execute("SELECT COUNT(*) AS count FROM chunks").fetchone()["count"] == 0


@pytest.mark.asyncio
async def test_extraction_failure_writes_nothing(make_pipeline, study, database) -> None:
    pipeline = make_pipeline()
    with pytest.raises(ExtractionError):
        await pipeline.process_document(UploadedFile("empty.txt", "text/plain", b"   "), study)
    assert database.execute("SELECT COUNT(*) AS count FROM documents").fetchone()["count"] == 0


@pytest.mark.asyncio
async def test_batch_with_mixed_results_completes(make_pipeline, study) -> None:
    pipeline = make_pipeline()
    files = [
        UploadedFile("notes.txt", "text/plain", NOTES),
        UploadedFile("blank.txt", "text/plain", b"\n\n  "),
    ]
    outcome = await pipeline.process_batch(files, study, "user-1")

    assert outcome.status == "COMPLETED"
    assert (outcome.completed, outcome.failed) == (1, 1)
    assert outcome.results[1].error == "Text extraction failed: Text file is empty or unreadable"

    batch = await pipeline.batches.get_batch(outcome.batch_id)
    assert batch.status == "COMPLETED"
    assert (batch.completed_files, batch.failed_files) == (1, 1)
    assert batch.meta["file_names"] == ["notes.txt", "blank.txt"]
    assert len(batch.meta["file_results"]) == 2
    assert pipeline.counter.current("user-1") == 0


@pytest.mark.asyncio
async def test_batch_where_every_file_fails(make_pipeline, study) -> None:
    pipeline = make_pipeline(provider=FailingProvider())
    outcome = await pipeline.process_batch([UploadedFile("notes.txt", "text/plain", NOTES)], study, "user-1")
    assert outcome.status == "FAILED"
    assert outcome.results[0].error.startswith("Batch embedding generation failed")
    assert pipeline.counter.current("user-1") == 0


@pytest.mark.asyncio
async def test_batch_over_concurrency_limit_is_refused(make_pipeline, study, database) -> None:
    pipeline = make_pipeline()
    files = [UploadedFile(f"notes-{index}.txt", "text/plain", NOTES) for index in range(4)]
    with pytest.raises(ConcurrencyLimitExceeded):
        await pipeline.process_batch(files, study, "user-1")
    assert database.execute("SELECT COUNT(*) AS count FROM upload_batches").fetchone()["count"] == 0
    assert pipeline.counter.current("user-1") == 0


@pytest.mark.parametrize(
    "files, message",
    [
        ([], "No files provided"),
        ([UploadedFile(f"n{index}.txt", "text/plain", b"x") for index in range(6)], "Maximum 5 files per batch"),
        ([UploadedFile("empty.txt", "text/plain", b"")], 'File "empty.txt": File is empty'),
        ([UploadedFile("a.zip", "application/zip", b"PK")], 'File "a.zip": Unsupported file type'),
    ],
)
def test_validate_batch(make_pipeline, files, message) -> None:
    with pytest.raises(BatchValidationError) as excinfo:
        make_pipeline().validate_batch(files)
    assert str(excinfo.value) == message


def test_validate_batch_total_size(make_pipeline) -> None:
    pipeline = make_pipeline(max_batch_size_mb=1)
    files = [UploadedFile("big.txt", "text/plain", b"x" * (1024 * 1024 + 1))]
    with pytest.raises(BatchValidationError, match=r"Batch too large \(max 1MB, current: 1.0MB\)"):
        pipeline.validate_batch(files)


@pytest.mark.asyncio
async def test_batch_processes_files_through_bounded_slots(make_pipeline, study) -> None:
    provider = TrackingProvider(DIM)
    pipeline = make_pipeline(
        provider=provider,
        counter=InMemoryConcurrencyCounter(limit=10),
        max_concurrent_files_per_user=2,
    )
    files = [UploadedFile(f"notes-{index}.txt", "text/plain", NOTES) for index in range(5)]
    outcome = await pipeline.process_batch(files, study, "user-1")

    assert outcome.completed == 5
    assert 1 <= provider.max_in_flight <= 2
