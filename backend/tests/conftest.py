"""Test fixtures for Study Grounding."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Awaitable, Callable, Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from study_grounding.db.sqlite import SQLiteDatabase  # noqa: E402
from study_grounding.db.stores import DocumentStore, SQLiteChunkStore  # noqa: E402
from study_grounding.ingest.embeddings import (  # noqa: E402
    EmbeddingClient,
    ProviderResponse,
    serialize_embedding,
)
from study_grounding.ingest.types import ChunkRecord  # noqa: E402
from study_grounding.utils.ids import new_id  # noqa: E402


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("SGR_DB_PATH", str(tmp_path / "sg.db"))
    monkeypatch.setenv("SGR_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("SGR_EMBEDDING_BACKEND", "hashed")
    monkeypatch.setenv("SGR_EMBEDDING_DIM", "64")
    monkeypatch.delenv("SGR_EMBEDDING_API_KEY", raising=False)

    from study_grounding.api import dependencies as deps

    deps.reset_singletons()
    yield
    deps.reset_singletons()


class StaticEmbeddingProvider:
    """Returns the same vector for every input."""

    name = "static"

    def __init__(self, vector: Sequence[float]) -> None:
        self.vector = list(vector)
        self.calls: list[list[str]] = []

    async def embed(self, texts: Sequence[str]) -> ProviderResponse:
        self.calls.append(list(texts))
        return ProviderResponse(vectors=[list(self.vector) for _ in texts], total_tokens=len(texts))


@pytest.fixture
def static_client() -> Callable[[Sequence[float]], EmbeddingClient]:
    def _make(vector: Sequence[float]) -> EmbeddingClient:
        return EmbeddingClient(StaticEmbeddingProvider(vector), dim=len(vector), retry_delay=0)

    return _make


@pytest.fixture
def database(tmp_path: Path) -> SQLiteDatabase:
    db = SQLiteDatabase(tmp_path / "store.db")
    db.ensure_schema()
    yield db
    db.close()


SeedDocuments = dict[str, list[tuple[str, Sequence[float]]]]


@pytest.fixture
def seed_study(database: SQLiteDatabase) -> Callable[..., Awaitable[dict[str, tuple[str, list[str]]]]]:
    """Create a study with documents whose chunks carry the given embeddings.

    Returns ``{file_name: (document_id, [chunk_id, ...])}``.
    """

    async def _seed(
        documents: SeedDocuments,
        study_id: str = "study-1",
        user_id: str = "user-1",
    ) -> dict[str, tuple[str, list[str]]]:
        store = DocumentStore(database)
        chunk_store = SQLiteChunkStore(database)
        await store.ensure_study(study_id, user_id, name="Study")
        seeded: dict[str, tuple[str, list[str]]] = {}
        for file_name, chunks in documents.items():
            document_id = await store.create_document(
                study_id=study_id,
                file_name=file_name,
                mime="text/plain",
                size_bytes=0,
                extracted_text="\n\n".join(content for content, _ in chunks),
            )
            records = [
                ChunkRecord(
                    id=new_id("chk"),
                    document_id=document_id,
                    chunk_index=index,
                    content=content,
                    embedding=serialize_embedding(vector),
                )
                for index, (content, vector) in enumerate(chunks)
            ]
            await chunk_store.save_chunks(records)
            await store.set_status(document_id, "READY")
            seeded[file_name] = (document_id, [record.id for record in records])
        return seeded

    return _seed


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."
