"""Storage collaborators used by ingestion, search and the chat path.

The grounding core only depends on the :class:`ChunkStore` protocol; the
SQLite classes below are the default implementation. Their methods are
`async` to match that protocol but run sqlite3 calls inline on the event
loop; queries are small, local and indexed.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Protocol, Sequence

import orjson

from study_grounding.core.errors import MessageExistsError, StoreUnavailable
from study_grounding.db.sqlite import SQLiteDatabase, placeholders
from study_grounding.ingest.types import ChunkRecord
from study_grounding.models.entities import ChunkCandidate, Document, Message, Study, UploadBatch
from study_grounding.utils.ids import new_id, now_ms

logger = logging.getLogger(__name__)

_CANDIDATE_COLUMNS = """
  chunks.id AS chunk_id,
  chunks.document_id,
  chunks.chunk_index,
  chunks.content,
  chunks.embedding,
  documents.file_name AS document_name,
  documents.study_id
"""


class ChunkStore(Protocol):
    """Scoped reads and bulk writes of embedded chunks."""

    async def fetch_candidates(
        self,
        study_id: str | None = None,
        document_ids: Sequence[str] | None = None,
        exclude_chunk_id: str | None = None,
    ) -> list[ChunkCandidate]:  # pragma: no cover - interface
        ...

    async def get_chunk(self, chunk_id: str) -> ChunkCandidate | None:  # pragma: no cover - interface
        ...

    async def save_chunks(self, records: Sequence[ChunkRecord]) -> None:  # pragma: no cover - interface
        ...

    async def embedding_stats(self, study_id: str | None = None) -> dict[str, int]:  # pragma: no cover - interface
        ...


class SQLiteChunkStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    async def fetch_candidates(
        self,
        study_id: str | None = None,
        document_ids: Sequence[str] | None = None,
        exclude_chunk_id: str | None = None,
    ) -> list[ChunkCandidate]:
        clauses = ["chunks.embedding IS NOT NULL"]
        params: list[Any] = []
        if study_id:
            clauses.append("documents.study_id = ?")
            params.append(study_id)
        if document_ids:
            clauses.append(f"chunks.document_id IN ({placeholders(document_ids)})")
            params.extend(document_ids)
        if exclude_chunk_id:
            clauses.append("chunks.id != ?")
            params.append(exclude_chunk_id)
        sql = f"""
            SELECT {_CANDIDATE_COLUMNS}
            FROM chunks
            JOIN documents ON documents.id = chunks.document_id
            WHERE {" AND ".join(clauses)}
            ORDER BY documents.created_at, chunks.document_id, chunks.chunk_index
        """
        try:
            rows = self.db.query(sql, params)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Chunk store read failed: {exc}") from exc
        return [_row_to_candidate(row) for row in rows]

    async def get_chunk(self, chunk_id: str) -> ChunkCandidate | None:
        try:
            row = self.db.execute(
                f"""
                SELECT {_CANDIDATE_COLUMNS}
                FROM chunks
                JOIN documents ON documents.id = chunks.document_id
                WHERE chunks.id = ?
                """,
                [chunk_id],
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Chunk store read failed: {exc}") from exc
        return _row_to_candidate(row) if row else None

    async def save_chunks(self, records: Sequence[ChunkRecord]) -> None:
        now = now_ms()
        with self.db.transaction() as conn:
            conn.executemany(
                """
                INSERT INTO chunks (id, document_id, chunk_index, content, embedding, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (record.id, record.document_id, record.chunk_index, record.content, record.embedding, now)
                    for record in records
                ],
            )

    async def count_embedded(self) -> int:
        row = self.db.execute("SELECT COUNT(*) AS count FROM chunks WHERE embedding IS NOT NULL").fetchone()
        return int(row["count"]) if row else 0

    async def embedding_stats(self, study_id: str | None = None) -> dict[str, int]:
        """Chunk/embedding coverage for a study (or everything)."""
        where = "WHERE documents.study_id = ?" if study_id else ""
        params = [study_id] if study_id else []
        row = self.db.execute(
            f"""
            SELECT
              COUNT(chunks.id) AS total_chunks,
              COUNT(chunks.embedding) AS chunks_with_embeddings,
              COUNT(DISTINCT CASE WHEN chunks.embedding IS NOT NULL THEN chunks.document_id END)
                AS documents_with_embeddings,
              COALESCE(AVG(length(chunks.content)), 0) AS average_chunk_length
            FROM chunks
            JOIN documents ON documents.id = chunks.document_id
            {where}
            """,
            params,
        ).fetchone()
        return {
            "total_chunks": int(row["total_chunks"]),
            "chunks_with_embeddings": int(row["chunks_with_embeddings"]),
            "documents_with_embeddings": int(row["documents_with_embeddings"]),
            "average_chunk_length": round(float(row["average_chunk_length"])),
        }


class DocumentStore:
    """Studies and documents; ownership lookups for the HTTP layer."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    async def get_study(self, study_id: str) -> Study | None:
        row = self.db.execute(
            "SELECT id, user_id, name, created_at FROM studies WHERE id = ?", [study_id]
        ).fetchone()
        if not row:
            return None
        return Study(id=row["id"], user_id=row["user_id"], name=row["name"], created_at=row["created_at"])

    async def ensure_study(self, study_id: str, user_id: str, name: str | None = None) -> Study | None:
        """Return the study if ``user_id`` owns it, creating it when unknown.

        Returns ``None`` when the study exists but belongs to someone else.
        """
        study = await self.get_study(study_id)
        if study is None:
            now = now_ms()
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO studies (id, user_id, name, created_at) VALUES (?, ?, ?, ?)",
                    [study_id, user_id, name, now],
                )
            return Study(id=study_id, user_id=user_id, name=name, created_at=now)
        return study if study.user_id == user_id else None

    async def create_document(
        self,
        study_id: str,
        file_name: str,
        mime: str | None,
        size_bytes: int | None,
        extracted_text: str,
        batch_id: str | None = None,
    ) -> str:
        document_id = new_id("doc")
        now = now_ms()
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO documents (
                  id, study_id, batch_id, file_name, mime, size_bytes, status,
                  extracted_text, error, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 'PROCESSING', ?, NULL, ?, ?)
                """,
                [document_id, study_id, batch_id, file_name, mime, size_bytes, extracted_text, now, now],
            )
        return document_id

    async def set_status(self, document_id: str, status: str, error: str | None = None) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE documents SET status = ?, error = ?, updated_at = ? WHERE id = ?",
                [status, error, now_ms(), document_id],
            )

    async def get_document(self, document_id: str) -> Document | None:
        row = self.db.execute(
            """
            SELECT id, study_id, batch_id, file_name, mime, size_bytes, status, error, created_at, updated_at
            FROM documents WHERE id = ?
            """,
            [document_id],
        ).fetchone()
        if not row:
            return None
        return Document(**{key: row[key] for key in row.keys()})

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document; its chunks go with it through the FK cascade."""
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", [document_id])
        return cursor.rowcount > 0

    async def documents_in_study(self, document_ids: Sequence[str], study_id: str) -> bool:
        if not document_ids:
            return False
        unique_ids = list(dict.fromkeys(document_ids))
        row = self.db.execute(
            f"SELECT COUNT(*) AS count FROM documents WHERE study_id = ? AND id IN ({placeholders(unique_ids)})",
            [study_id, *unique_ids],
        ).fetchone()
        return int(row["count"]) == len(unique_ids)

    async def document_names(self, document_ids: Sequence[str]) -> dict[str, str]:
        if not document_ids:
            return {}
        rows = self.db.query(
            f"SELECT id, file_name FROM documents WHERE id IN ({placeholders(document_ids)})",
            list(document_ids),
        )
        return {row["id"]: row["file_name"] for row in rows}


class MessageStore:
    """Chat messages with their frozen citation maps."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    async def save_message(
        self,
        chat_id: str,
        study_id: str,
        role: str,
        content: str,
        citations: dict[str, Any] | None = None,
        tool_calls: list[dict[str, Any]] | None = None,
        message_id: str | None = None,
    ) -> Message:
        message = Message(
            id=message_id or new_id("msg"),
            chat_id=chat_id,
            study_id=study_id,
            role=role,
            content=content,
            citations=citations,
            tool_calls=tool_calls,
            created_at=now_ms(),
        )
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM messages WHERE id = ?", [message.id]).fetchone() is not None:
                raise MessageExistsError(message.id)
            conn.execute(
                """
                INSERT INTO messages (id, chat_id, study_id, role, content, citations_json, tool_calls_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    message.id,
                    message.chat_id,
                    message.study_id,
                    message.role,
                    message.content,
                    _dumps(citations),
                    _dumps(tool_calls),
                    message.created_at,
                ],
            )
        return message

    async def get_owned_message(self, message_id: str, user_id: str) -> Message | None:
        """Fetch a message only if its study belongs to ``user_id``."""
        row = self.db.execute(
            """
            SELECT messages.*
            FROM messages
            JOIN studies ON studies.id = messages.study_id
            WHERE messages.id = ? AND studies.user_id = ?
            """,
            [message_id, user_id],
        ).fetchone()
        if not row:
            return None
        return Message(
            id=row["id"],
            chat_id=row["chat_id"],
            study_id=row["study_id"],
            role=row["role"],
            content=row["content"],
            citations=orjson.loads(row["citations_json"]) if row["citations_json"] else None,
            tool_calls=orjson.loads(row["tool_calls_json"]) if row["tool_calls_json"] else None,
            created_at=row["created_at"],
        )


class BatchStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    async def create_batch(self, user_id: str, study_id: str, total_files: int, meta: dict[str, Any]) -> str:
        batch_id = new_id("bat")
        now = now_ms()
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO upload_batches (
                  id, user_id, study_id, status, total_files, completed_files, failed_files,
                  meta_json, created_at, updated_at
                ) VALUES (?, ?, ?, 'VALIDATING', ?, 0, 0, ?, ?, ?)
                """,
                [batch_id, user_id, study_id, total_files, _dumps(meta), now, now],
            )
        return batch_id

    async def update_batch(
        self,
        batch_id: str,
        status: str,
        completed_files: int | None = None,
        failed_files: int | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        updates = ["status = ?", "updated_at = ?"]
        params: list[Any] = [status, now_ms()]
        if completed_files is not None:
            updates.append("completed_files = ?")
            params.append(completed_files)
        if failed_files is not None:
            updates.append("failed_files = ?")
            params.append(failed_files)
        if meta is not None:
            existing = await self.get_batch(batch_id)
            merged = {**(existing.meta if existing else {}), **meta}
            updates.append("meta_json = ?")
            params.append(_dumps(merged))
        params.append(batch_id)
        with self.db.transaction() as conn:
            conn.execute(f"UPDATE upload_batches SET {', '.join(updates)} WHERE id = ?", params)

    async def get_batch(self, batch_id: str) -> UploadBatch | None:
        row = self.db.execute("SELECT * FROM upload_batches WHERE id = ?", [batch_id]).fetchone()
        if not row:
            return None
        return UploadBatch(
            id=row["id"],
            user_id=row["user_id"],
            study_id=row["study_id"],
            status=row["status"],
            total_files=row["total_files"],
            completed_files=row["completed_files"],
            failed_files=row["failed_files"],
            meta=orjson.loads(row["meta_json"]) if row["meta_json"] else {},
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _row_to_candidate(row: sqlite3.Row) -> ChunkCandidate:
    return ChunkCandidate(
        chunk_id=row["chunk_id"],
        document_id=row["document_id"],
        document_name=row["document_name"],
        study_id=row["study_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        embedding=row["embedding"],
    )


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return orjson.dumps(value).decode("utf-8")


__all__ = ["ChunkStore", "SQLiteChunkStore", "DocumentStore", "MessageStore", "BatchStore"]
