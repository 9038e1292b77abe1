"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

TEXT_CHUNK = "text_chunk"
PDF_CHUNK = "pdf_chunk"
PDF_CHUNK_LARGE = "pdf_chunk_large"


@dataclass(slots=True)
class ParsedDocument:
    """Normalized text + metadata produced by a document parser."""

    title: str
    text: str
    source: str
    metadata: dict[str, Any]


@dataclass(slots=True)
class ChunkMetadata:
    """Known chunk fields plus an open extension map for everything else."""

    title: str
    source: str
    chunk_index: int
    chunk_type: str
    word_count: int | None = None
    pages: int | None = None
    entities: dict[str, list[str]] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_pdf(self) -> bool:
        return "pdf_chunk" in self.chunk_type

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "title": self.title,
                "source": self.source,
                "chunkIndex": self.chunk_index,
                "type": self.chunk_type,
            }
        )
        if self.word_count is not None:
            payload["wordCount"] = self.word_count
        if self.pages is not None:
            payload["pages"] = self.pages
        if self.entities is not None:
            payload["entities"] = self.entities
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ChunkMetadata":
        known = {"title", "source", "chunkIndex", "type", "wordCount", "pages", "entities"}
        return cls(
            title=str(payload.get("title", "")),
            source=str(payload.get("source", "")),
            chunk_index=int(payload.get("chunkIndex", 0)),
            chunk_type=str(payload.get("type", TEXT_CHUNK)),
            word_count=payload.get("wordCount"),
            pages=payload.get("pages"),
            entities=payload.get("entities"),
            extra={k: v for k, v in payload.items() if k not in known},
        )


@dataclass(slots=True)
class ChunkDraft:
    """Chunker output before it is assigned an id and persisted."""

    content: str
    metadata: ChunkMetadata


@dataclass(slots=True)
class Document:
    """A stored source document."""

    document_id: str
    title: str
    content: str
    source: str
    content_hash: str
    metadata: dict[str, Any]
    entities: dict[str, list[str]] | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class Chunk:
    """A stored passage of a document, the unit of retrieval."""

    chunk_id: str
    document_id: str
    content: str
    metadata: ChunkMetadata
    created_at: datetime | None = None


@dataclass(slots=True)
class DocumentSummary:
    """Listing row for a stored document."""

    document_id: str
    title: str
    source: str
    created_at: datetime | None
    chunk_count: int


@dataclass(slots=True)
class SearchResult:
    """A retrieved chunk with its heuristic relevance score."""

    chunk: Chunk
    similarity: float
    relevance_score: float


@dataclass(slots=True)
class ScoringFactors:
    """Per-signal bonuses computed by the lexical re-ranker."""

    exact_match: float = 0.0
    phrase_match: float = 0.0
    term_frequency: float = 0.0
    term_proximity: float = 0.0
    position_boost: float = 0.0
    length_penalty: float = 0.0
    title_boost: float = 0.0
    bigram_match: float = 0.0

    def total(self) -> float:
        return (
            self.exact_match
            + self.phrase_match
            + self.term_frequency
            + self.term_proximity
            + self.position_boost
            + self.length_penalty
            + self.title_boost
            + self.bigram_match
        )


@dataclass(slots=True)
class RerankedResult:
    """A search result after the re-ranking pass."""

    result: SearchResult
    original_score: float
    final_score: float
    factors: ScoringFactors | None = None
    term_matches: int = 0
    total_terms: int = 0
    error: str | None = None

    @property
    def reranked(self) -> bool:
        return self.factors is not None


class Grade(str, Enum):
    RELEVANT = "relevant"
    PARTIALLY_RELEVANT = "partially_relevant"
    IRRELEVANT = "irrelevant"


@dataclass(slots=True)
class RelevanceGrade:
    """Relevance classification of a (query, chunk) pair."""

    grade: Grade
    confidence: float
    reasoning: str
    error: str | None = None

    @property
    def relevant(self) -> bool:
        return self.grade is not Grade.IRRELEVANT


@dataclass(slots=True)
class CorrectiveOutcome:
    """Decision of the corrective evaluator for one query."""

    use_retrieved_content: bool
    web_search_performed: bool
    final_content: str
    retrieved: list[SearchResult] = field(default_factory=list)
    web_content: str | None = None
    correction_reason: str | None = None
    grades: list[RelevanceGrade] = field(default_factory=list)


@dataclass(slots=True)
class ModelHints:
    """Caller preferences forwarded to the reasoning service."""

    model: str | None = None
    temperature: float | None = None


@dataclass(slots=True)
class EnhancedSearchResponse:
    """Results of `enhanced_search` plus the fallback side channel.

    Iterating or taking `len()` behaves like the structured result list, so
    callers that only need the chunks can treat it as a sequence.
    """

    results: list[SearchResult]
    fallback_content: str | None = None
    outcome: CorrectiveOutcome | None = None
    degraded: bool = False
    trace_id: str | None = None
    rerank_errors: list[str] = field(default_factory=list)

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    @property
    def used_fallback(self) -> bool:
        return self.fallback_content is not None


@dataclass(slots=True)
class SourceReference:
    title: str
    content: str
    source: str | None = None
    page: int | None = None
    relevance_score: float | None = None


@dataclass(slots=True)
class RAGResponse:
    """Context block, cited sources and a confidence estimate."""

    answer: str
    sources: list[SourceReference]
    confidence: float
