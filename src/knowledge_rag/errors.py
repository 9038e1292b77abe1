"""Exception taxonomy for ingestion and retrieval."""

from __future__ import annotations


class KnowledgeRagError(Exception):
    """Base class for knowledge-base errors."""


class IngestionFailed(KnowledgeRagError):
    """Storage write failed while adding a document."""


class DuplicateContentError(KnowledgeRagError):
    """Raised by a store when the content-hash unique constraint is violated."""

    def __init__(self, content_hash: str, existing_id: str | None = None) -> None:
        super().__init__(f"Document with content hash {content_hash} already exists")
        self.content_hash = content_hash
        self.existing_id = existing_id


class DocumentNotFound(KnowledgeRagError, KeyError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class GradingFailed(KnowledgeRagError):
    """The reasoning service could not grade a chunk."""


class ReRankFailed(KnowledgeRagError):
    """Scoring a single chunk failed during re-ranking."""


class FallbackFailed(KnowledgeRagError):
    """The fallback source could not produce content."""


class PipelineFailed(KnowledgeRagError):
    """An orchestration stage failed; the pipeline degrades to lexical search."""


class QueryCancelled(KnowledgeRagError):
    """The caller abandoned the query."""
