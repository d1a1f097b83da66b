"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Header, HTTPException

from study_grounding.chat.service import ChatGroundingService
from study_grounding.core.config import Settings, get_settings
from study_grounding.db.sqlite import SQLiteDatabase
from study_grounding.db.stores import BatchStore, DocumentStore, MessageStore, SQLiteChunkStore
from study_grounding.ingest.embeddings import EmbeddingClient
from study_grounding.ingest.limiter import InMemoryConcurrencyCounter
from study_grounding.ingest.pipeline import IngestPipeline
from study_grounding.retrieval import SearchOptions, VectorSearch

_DB: SQLiteDatabase | None = None
_EMBEDDING_CLIENT: EmbeddingClient | None = None
_COUNTER: InMemoryConcurrencyCounter | None = None
_PIPELINE: IngestPipeline | None = None
_SEARCH: VectorSearch | None = None
_CHAT_SERVICE: ChatGroundingService | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_embedding_client() -> EmbeddingClient:
    global _EMBEDDING_CLIENT
    if _EMBEDDING_CLIENT is None:
        _EMBEDDING_CLIENT = EmbeddingClient.from_settings(get_app_settings())
    return _EMBEDDING_CLIENT


def get_chunk_store() -> SQLiteChunkStore:
    return SQLiteChunkStore(get_database())


def get_document_store() -> DocumentStore:
    return DocumentStore(get_database())


def get_message_store() -> MessageStore:
    return MessageStore(get_database())


def get_batch_store() -> BatchStore:
    return BatchStore(get_database())


def get_concurrency_counter() -> InMemoryConcurrencyCounter:
    global _COUNTER
    if _COUNTER is None:
        _COUNTER = InMemoryConcurrencyCounter(get_app_settings().max_concurrent_files_per_user)
    return _COUNTER


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(
            settings=get_app_settings(),
            documents=get_document_store(),
            chunks=get_chunk_store(),
            batches=get_batch_store(),
            embedding_client=get_embedding_client(),
            counter=get_concurrency_counter(),
        )
    return _PIPELINE


def get_vector_search() -> VectorSearch:
    global _SEARCH
    if _SEARCH is None:
        settings = get_app_settings()
        _SEARCH = VectorSearch(
            store=get_chunk_store(),
            embedding_client=get_embedding_client(),
            defaults=SearchOptions(limit=settings.search_limit, min_similarity=settings.min_similarity),
        )
    return _SEARCH


def get_chat_service() -> ChatGroundingService:
    global _CHAT_SERVICE
    if _CHAT_SERVICE is None:
        _CHAT_SERVICE = ChatGroundingService.from_settings(
            get_app_settings(),
            search=get_vector_search(),
            messages=get_message_store(),
        )
    return _CHAT_SERVICE


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity as resolved by the fronting auth layer."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def reset_singletons() -> None:
    global _DB, _EMBEDDING_CLIENT, _COUNTER, _PIPELINE, _SEARCH, _CHAT_SERVICE
    get_app_settings.cache_clear()
    get_settings.cache_clear()
    if _DB is not None:
        _DB.close()
    _DB = None
    _EMBEDDING_CLIENT = None
    _COUNTER = None
    _PIPELINE = None
    _SEARCH = None
    _CHAT_SERVICE = None


__all__ = [
    "get_app_settings",
    "get_database",
    "get_embedding_client",
    "get_chunk_store",
    "get_document_store",
    "get_message_store",
    "get_batch_store",
    "get_concurrency_counter",
    "get_ingest_pipeline",
    "get_vector_search",
    "get_chat_service",
    "get_user_id",
    "reset_singletons",
]
