"""Document ingestion: hash -> dedup -> chunk -> persist."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any

from knowledge_rag.errors import DocumentNotFound, DuplicateContentError, IngestionFailed
from knowledge_rag.ingest.chunker import DocumentChunker
from knowledge_rag.ingest.parser import ParserRegistry
from knowledge_rag.retrieval.store import DocumentStore
from knowledge_rag.types import ChunkDraft, Document, DocumentSummary

logger = logging.getLogger(__name__)

ENTITY_TYPES = (
    "people",
    "organizations",
    "locations",
    "dates",
    "numbers",
    "currencies",
    "percentages",
)


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class DocumentIndexer:
    """Coordinates chunking and storage for uploaded documents.

    Ingestion is idempotent on the SHA-256 of the full text. The existence
    check is only a shortcut: the store's unique constraint on the hash is the
    authoritative guard, so two concurrent uploads of the same text both end
    up with the id of whichever insert won.
    """

    def __init__(
        self,
        store: DocumentStore,
        chunker: DocumentChunker | None = None,
        parser_registry: ParserRegistry | None = None,
    ) -> None:
        self._store = store
        self._chunker = chunker or DocumentChunker()
        self._parser_registry = parser_registry or ParserRegistry()

    def add_document(
        self,
        title: str,
        content: str,
        source: str,
        metadata: dict[str, Any] | None = None,
        *,
        entities: dict[str, list[str]] | None = None,
    ) -> str:
        """Add a document and return its id.

        Raises:
            IngestionFailed: the store could not persist the document.
        """

        metadata = dict(metadata or {})
        digest = content_hash(content)
        try:
            existing = self._store.get_document_by_hash(digest)
            if existing is not None:
                logger.info("Document %r already indexed as %s", title, existing.document_id)
                return existing.document_id

            drafts = self._chunker.chunk(content, title, source, metadata)
            if entities:
                for draft in drafts:
                    draft.metadata.entities = project_entities(draft, entities)

            document = self._store.create_document(
                title=title,
                content=content,
                source=source,
                content_hash=digest,
                metadata=metadata,
                chunks=drafts,
                entities=entities,
            )
        except DuplicateContentError as exc:
            if exc.existing_id is None:
                raise IngestionFailed(f"Failed to add document {title!r}") from exc
            logger.info("Concurrent upload of %r resolved to %s", title, exc.existing_id)
            return exc.existing_id
        except Exception as exc:
            logger.exception("Error adding document %r", title)
            raise IngestionFailed(f"Failed to add document {title!r}") from exc

        logger.info(
            "Document added: %s (%d chunks, entities: %s)",
            title,
            len(drafts),
            bool(entities),
        )
        return document.document_id

    def upload_text_file(
        self,
        file_name: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return self.add_document(
            file_name,
            content,
            f"file://{file_name}",
            {"type": "text_file", "fileName": file_name, **(metadata or {})},
        )

    def ingest_path(
        self,
        path: str | Path,
        *,
        title: str | None = None,
        extra_metadata: dict[str, Any] | None = None,
    ) -> str:
        """Parse a file from disk and ingest it."""

        parsed = self._parser_registry.parse_path(path)
        if extra_metadata:
            parsed.metadata.update(extra_metadata)
        return self.add_document(
            title or parsed.title,
            parsed.text,
            parsed.source,
            parsed.metadata,
        )

    def get_document(self, document_id: str) -> Document:
        document = self._store.get_document(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    def list_documents(self) -> list[DocumentSummary]:
        return self._store.list_documents()

    def delete_document(self, document_id: str) -> bool:
        try:
            deleted = self._store.delete_document(document_id)
        except Exception:
            logger.exception("Error deleting document %s", document_id)
            return False
        if deleted:
            logger.info("Deleted document %s", document_id)
        return deleted


def project_entities(
    draft: ChunkDraft, entities: dict[str, list[str]]
) -> dict[str, list[str]]:
    """Keep only the document-level entities that occur in this chunk."""

    lowered = draft.content.lower()
    return {
        entity_type: [
            entity for entity in entities.get(entity_type, []) if entity.lower() in lowered
        ]
        for entity_type in ENTITY_TYPES
    }
