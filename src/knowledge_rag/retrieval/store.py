"""Document store interfaces and concrete adapters."""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from knowledge_rag.errors import DuplicateContentError
from knowledge_rag.types import (
    Chunk,
    ChunkDraft,
    ChunkMetadata,
    Document,
    DocumentSummary,
)


class DocumentStore(Protocol):
    """Durable document/chunk storage used by ingestion and search.

    `create_document` must be atomic: either the document and all of its
    chunks are stored, or nothing is. The content hash is unique; a second
    insert with the same hash raises `DuplicateContentError`.
    """

    def create_document(
        self,
        *,
        title: str,
        content: str,
        source: str,
        content_hash: str,
        metadata: dict[str, Any],
        chunks: list[ChunkDraft],
        entities: dict[str, list[str]] | None = None,
    ) -> Document:
        """Store a document together with its chunks."""

    def get_document(self, document_id: str) -> Document | None:
        """Fetch one document by id."""

    def get_document_by_hash(self, content_hash: str) -> Document | None:
        """Fetch one document by content hash."""

    def find_chunks(
        self,
        term: str,
        *,
        limit: int,
        document_ids: list[str] | None = None,
    ) -> list[Chunk]:
        """Chunks whose content contains `term` case-insensitively, newest first."""

    def list_documents(self) -> list[DocumentSummary]:
        """All documents, newest first."""

    def delete_document(self, document_id: str) -> bool:
        """Delete a document and its chunks. Returns False when it did not exist."""

    def count_chunks(self, document_id: str | None = None) -> int:
        """Number of stored chunks, optionally for one document."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class _StoredDocument:
    document: Document
    sequence: int
    chunk_ids: list[str] = field(default_factory=list)


class InMemoryDocumentStore:
    """Thread-safe store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, _StoredDocument] = {}
        self._by_hash: dict[str, str] = {}
        self._chunks: dict[str, tuple[int, Chunk]] = {}
        self._sequence = 0

    def create_document(
        self,
        *,
        title: str,
        content: str,
        source: str,
        content_hash: str,
        metadata: dict[str, Any],
        chunks: list[ChunkDraft],
        entities: dict[str, list[str]] | None = None,
    ) -> Document:
        with self._lock:
            existing = self._by_hash.get(content_hash)
            if existing is not None:
                raise DuplicateContentError(content_hash, existing)

            created_at = _now()
            document = Document(
                document_id=_new_id(),
                title=title,
                content=content,
                source=source,
                content_hash=content_hash,
                metadata=dict(metadata),
                entities=entities,
                created_at=created_at,
            )
            self._sequence += 1
            stored = _StoredDocument(document=document, sequence=self._sequence)
            for draft in chunks:
                self._sequence += 1
                chunk = Chunk(
                    chunk_id=_new_id(),
                    document_id=document.document_id,
                    content=draft.content,
                    metadata=draft.metadata,
                    created_at=created_at,
                )
                self._chunks[chunk.chunk_id] = (self._sequence, chunk)
                stored.chunk_ids.append(chunk.chunk_id)

            self._documents[document.document_id] = stored
            self._by_hash[content_hash] = document.document_id
            return document

    def get_document(self, document_id: str) -> Document | None:
        with self._lock:
            stored = self._documents.get(document_id)
            return stored.document if stored else None

    def get_document_by_hash(self, content_hash: str) -> Document | None:
        with self._lock:
            document_id = self._by_hash.get(content_hash)
            if document_id is None:
                return None
            return self._documents[document_id].document

    def find_chunks(
        self,
        term: str,
        *,
        limit: int,
        document_ids: list[str] | None = None,
    ) -> list[Chunk]:
        needle = term.lower()
        with self._lock:
            records = sorted(self._chunks.values(), key=lambda item: item[0], reverse=True)
        matches: list[Chunk] = []
        for _, chunk in records:
            if document_ids and chunk.document_id not in document_ids:
                continue
            if needle in chunk.content.lower():
                matches.append(chunk)
                if len(matches) >= limit:
                    break
        return matches

    def list_documents(self) -> list[DocumentSummary]:
        with self._lock:
            stored = sorted(self._documents.values(), key=lambda s: s.sequence, reverse=True)
            return [
                DocumentSummary(
                    document_id=s.document.document_id,
                    title=s.document.title,
                    source=s.document.source,
                    created_at=s.document.created_at,
                    chunk_count=len(s.chunk_ids),
                )
                for s in stored
            ]

    def delete_document(self, document_id: str) -> bool:
        with self._lock:
            stored = self._documents.pop(document_id, None)
            if stored is None:
                return False
            self._by_hash.pop(stored.document.content_hash, None)
            for chunk_id in stored.chunk_ids:
                self._chunks.pop(chunk_id, None)
            return True

    def count_chunks(self, document_id: str | None = None) -> int:
        with self._lock:
            if document_id is None:
                return len(self._chunks)
            stored = self._documents.get(document_id)
            return len(stored.chunk_ids) if stored else 0


_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    source TEXT NOT NULL,
    content_hash TEXT NOT NULL UNIQUE,
    metadata TEXT NOT NULL,
    entities TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS document_chunks (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_document_chunks_document_id
    ON document_chunks(document_id);
"""


class SqliteDocumentStore:
    """SQLite-backed store with a unique content-hash constraint.

    Documents and chunks are written in one transaction, and chunk rows are
    removed by `ON DELETE CASCADE` when their document is deleted.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        with closing(self._connect()) as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        conn.create_function("py_lower", 1, str.lower, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def create_document(
        self,
        *,
        title: str,
        content: str,
        source: str,
        content_hash: str,
        metadata: dict[str, Any],
        chunks: list[ChunkDraft],
        entities: dict[str, list[str]] | None = None,
    ) -> Document:
        created_at = _now()
        document = Document(
            document_id=_new_id(),
            title=title,
            content=content,
            source=source,
            content_hash=content_hash,
            metadata=dict(metadata),
            entities=entities,
            created_at=created_at,
        )
        with closing(self._connect()) as conn:
            try:
                with conn:
                    conn.execute(
                        "INSERT INTO documents(id, title, content, source, content_hash, metadata, entities, created_at) "
                        "VALUES(?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            document.document_id,
                            title,
                            content,
                            source,
                            content_hash,
                            json.dumps(document.metadata, default=str),
                            json.dumps(entities) if entities is not None else None,
                            created_at.isoformat(),
                        ),
                    )
                    conn.executemany(
                        "INSERT INTO document_chunks(id, document_id, content, metadata, created_at) "
                        "VALUES(?, ?, ?, ?, ?)",
                        [
                            (
                                _new_id(),
                                document.document_id,
                                draft.content,
                                json.dumps(draft.metadata.to_dict(), default=str),
                                created_at.isoformat(),
                            )
                            for draft in chunks
                        ],
                    )
            except sqlite3.IntegrityError as exc:
                if "content_hash" not in str(exc):
                    raise
                row = conn.execute(
                    "SELECT id FROM documents WHERE content_hash = ?", (content_hash,)
                ).fetchone()
                raise DuplicateContentError(content_hash, row["id"] if row else None) from exc
        return document

    def get_document(self, document_id: str) -> Document | None:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        return _row_to_document(row) if row else None

    def get_document_by_hash(self, content_hash: str) -> Document | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE content_hash = ?", (content_hash,)
            ).fetchone()
        return _row_to_document(row) if row else None

    def find_chunks(
        self,
        term: str,
        *,
        limit: int,
        document_ids: list[str] | None = None,
    ) -> list[Chunk]:
        sql = "SELECT * FROM document_chunks WHERE instr(py_lower(content), ?) > 0"
        params: list[Any] = [term.lower()]
        if document_ids:
            sql += f" AND document_id IN ({', '.join('?' for _ in document_ids)})"
            params.extend(document_ids)
        sql += " ORDER BY rowid DESC LIMIT ?"
        params.append(limit)
        with closing(self._connect()) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def list_documents(self) -> list[DocumentSummary]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT d.id, d.title, d.source, d.created_at, COUNT(c.id) AS chunk_count "
                "FROM documents d LEFT JOIN document_chunks c ON c.document_id = d.id "
                "GROUP BY d.id ORDER BY d.rowid DESC"
            ).fetchall()
        return [
            DocumentSummary(
                document_id=row["id"],
                title=row["title"],
                source=row["source"],
                created_at=datetime.fromisoformat(row["created_at"]),
                chunk_count=int(row["chunk_count"]),
            )
            for row in rows
        ]

    def delete_document(self, document_id: str) -> bool:
        with closing(self._connect()) as conn:
            with conn:
                cur = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cur.rowcount > 0

    def count_chunks(self, document_id: str | None = None) -> int:
        with closing(self._connect()) as conn:
            if document_id is None:
                row = conn.execute("SELECT COUNT(*) FROM document_chunks").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM document_chunks WHERE document_id = ?",
                    (document_id,),
                ).fetchone()
        return int(row[0])


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        document_id=row["id"],
        title=row["title"],
        content=row["content"],
        source=row["source"],
        content_hash=row["content_hash"],
        metadata=json.loads(row["metadata"]),
        entities=json.loads(row["entities"]) if row["entities"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        chunk_id=row["id"],
        document_id=row["document_id"],
        content=row["content"],
        metadata=ChunkMetadata.from_dict(json.loads(row["metadata"])),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
