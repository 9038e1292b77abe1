"""Configuration models for the knowledge-base retrieval pipeline."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_STOP_WORDS: frozenset[str] = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "what", "which", "who", "where", "when", "why",
        "how", "is", "are", "was", "were", "be", "been", "being", "have",
        "has", "had", "do", "does", "did", "will", "would", "could", "should",
        "may", "might", "can", "this", "that", "these", "those",
    }
)

RERANK_STOP_WORDS: frozenset[str] = DEFAULT_STOP_WORDS | frozenset(
    {"i", "you", "he", "she", "it", "we", "they"}
)


class ChunkingConfig(BaseModel):
    """Configures character-bounded chunking with word overlap."""

    model_config = ConfigDict(frozen=True)

    chunk_size: int = Field(default=1000, ge=50)
    chunk_overlap: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        return self

    @property
    def overlap_words(self) -> int:
        """Word-count approximation of the character overlap."""
        return self.chunk_overlap // 10


class SearchConfig(BaseModel):
    """Configures keyword extraction and lexical relevance boosts."""

    model_config = ConfigDict(frozen=True)

    default_limit: int = Field(default=5, ge=1)
    candidate_multiplier: int = Field(default=3, ge=1)
    max_keywords: int = Field(default=15, ge=1)
    min_keyword_length: int = Field(default=3, ge=1)
    stop_words: frozenset[str] = DEFAULT_STOP_WORDS
    analysis_boost: float = Field(default=1.3, ge=1.0)
    analysis_min_length: int = Field(default=100, ge=0)
    pdf_boost: float = Field(default=1.1, ge=1.0)
    word_count_boost: float = Field(default=1.05, ge=1.0)
    word_count_threshold: int = Field(default=50, ge=0)
    keyword_boost: float = Field(default=0.1, ge=0.0)
    max_score: float = Field(default=100.0, gt=0.0)


class RerankConfig(BaseModel):
    """Weights for the multi-signal lexical re-ranker."""

    model_config = ConfigDict(frozen=True)

    max_terms: int = Field(default=20, ge=1)
    stop_words: frozenset[str] = RERANK_STOP_WORDS
    exact_match_bonus: float = 25.0
    phrase_match_total: float = 15.0
    min_phrase_length: int = Field(default=6, ge=1)
    term_frequency_weight: float = 3.0
    term_frequency_cap: float = 12.0
    proximity_window: int = Field(default=100, ge=1)
    proximity_weight: float = 8.0
    proximity_cap: float = 20.0
    position_weight: float = 5.0
    position_cap: float = 15.0
    short_penalty: float = -5.0
    long_penalty: float = -3.0
    optimal_bonus: float = 3.0
    min_chars: int = 50
    min_words: int = 10
    max_chars: int = 1500
    max_words: int = 300
    optimal_chars: tuple[int, int] = (100, 800)
    optimal_words: tuple[int, int] = (20, 150)
    title_weight: float = 10.0
    bigram_bonus: float = 8.0
    max_score: float = Field(default=100.0, gt=0.0)


class CorrectiveConfig(BaseModel):
    """Configures relevance grading and the accept/correct decision."""

    model_config = ConfigDict(frozen=True)

    relevance_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    high_quality_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    max_chunk_chars: int = Field(default=800, ge=1)
    max_concurrency: int = Field(default=5, ge=1)
    request_timeout_seconds: float = Field(default=20.0, gt=0.0)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=100, ge=1)


class FallbackConfig(BaseModel):
    """Configures the web fallback source."""

    model_config = ConfigDict(frozen=True)

    max_urls: int = Field(default=3, ge=0)
    fetch_timeout_seconds: float = Field(default=10.0, gt=0.0)
    max_content_chars: int = Field(default=10_000, ge=100)
    cache_ttl_seconds: float = Field(default=3600.0, ge=0.0)
    search_url_template: str | None = None
