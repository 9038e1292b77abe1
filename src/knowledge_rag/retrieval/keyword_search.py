"""Keyword and phrase retrieval with heuristic relevance scoring."""

from __future__ import annotations

import logging
import re

from knowledge_rag.config import SearchConfig
from knowledge_rag.retrieval.store import DocumentStore
from knowledge_rag.types import Chunk, SearchResult

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_ANALYSIS_QUERY = re.compile(
    r"\b(analy[sz]e|analysis|review|rate|rating|improve|evaluate|assess|check)",
    flags=re.IGNORECASE,
)


class KeywordSearcher:
    """Retrieves chunks by phrase and keyword containment.

    Each strategy (the whole query as a phrase, then every extracted keyword)
    is run against the store independently and the candidates are unioned in
    that order, so ties in the final sort keep phrase hits and newer chunks
    first.
    """

    def __init__(self, store: DocumentStore, config: SearchConfig | None = None) -> None:
        self.store = store
        self.config = config or SearchConfig()

    def extract_keywords(self, query: str) -> list[str]:
        words = _PUNCTUATION.sub(" ", query.lower()).split()
        keywords: list[str] = []
        for word in words:
            if len(word) < self.config.min_keyword_length or word in self.config.stop_words:
                continue
            if word not in keywords:
                keywords.append(word)
        return keywords[: self.config.max_keywords]

    def search(
        self,
        query: str,
        limit: int | None = None,
        document_ids: list[str] | None = None,
    ) -> list[SearchResult]:
        """Run the phrase and keyword strategies and return scored, deduplicated results.

        A blank query returns no results instead of falling back to a phrase
        match, which would match every stored chunk.
        """
        limit = limit or self.config.default_limit
        phrase = query.strip()
        if not phrase:
            return []

        keywords = self.extract_keywords(query)
        logger.debug("Search %r keywords=%s documents=%s", phrase, keywords, document_ids)

        per_strategy = limit * self.config.candidate_multiplier
        seen: set[str] = set()
        candidates: list[Chunk] = []
        for term in [phrase, *keywords]:
            for chunk in self.store.find_chunks(term, limit=per_strategy, document_ids=document_ids):
                if chunk.chunk_id not in seen:
                    seen.add(chunk.chunk_id)
                    candidates.append(chunk)

        logger.info("Search %r found %d candidate chunks", phrase, len(candidates))
        analysis_query = bool(_ANALYSIS_QUERY.search(query))
        results = [
            self._score(query, chunk, keywords, analysis_query) for chunk in candidates
        ]
        results.sort(key=lambda item: item.relevance_score, reverse=True)
        return results[:limit]

    def _score(
        self,
        query: str,
        chunk: Chunk,
        keywords: list[str],
        analysis_query: bool,
    ) -> SearchResult:
        similarity = jaccard_similarity(query, chunk.content)
        score = similarity * 100.0

        if analysis_query and len(chunk.content) > self.config.analysis_min_length:
            score *= self.config.analysis_boost
        if chunk.metadata.is_pdf:
            score *= self.config.pdf_boost
        word_count = chunk.metadata.word_count
        if word_count is not None and word_count > self.config.word_count_threshold:
            score *= self.config.word_count_boost

        lowered = chunk.content.lower()
        keyword_matches = sum(1 for keyword in keywords if keyword in lowered)
        if keyword_matches:
            score *= 1.0 + keyword_matches * self.config.keyword_boost

        return SearchResult(
            chunk=chunk,
            similarity=similarity,
            relevance_score=min(score, self.config.max_score),
        )


def jaccard_similarity(query: str, text: str) -> float:
    query_words = set(query.lower().split())
    text_words = set(text.lower().split())
    union = query_words | text_words
    if not union:
        return 0.0
    return len(query_words & text_words) / len(union)
