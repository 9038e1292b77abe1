"""Second-pass re-ranking of lexical search candidates."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from knowledge_rag.config import RerankConfig
from knowledge_rag.errors import ReRankFailed
from knowledge_rag.types import RerankedResult, ScoringFactors, SearchResult

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_QUOTED = re.compile(r'"([^"]+)"')


class Reranker(ABC):
    """Reranker interface applied after lexical retrieval."""

    @abstractmethod
    def rerank(self, query: str, candidates: list[SearchResult]) -> list[RerankedResult]:
        """Return candidates in the final ranking order."""

    def batch_rerank(
        self, queries: list[str], candidate_lists: list[list[SearchResult]]
    ) -> list[list[RerankedResult]]:
        if len(queries) != len(candidate_lists):
            raise ValueError("queries and candidate_lists must have the same length")
        return [
            self.rerank(query, candidates)
            for query, candidates in zip(queries, candidate_lists, strict=True)
        ]


@dataclass(slots=True)
class _QueryProfile:
    lowered: str
    terms: list[str]
    bigrams: list[str]
    phrases: list[str]


class LexicalSignalReranker(Reranker):
    """Deterministic multi-signal lexical scorer.

    This plays the role a cross-encoder would in a neural pipeline, but it is a
    rule-based function of the query and chunk text. Bonuses for exact match,
    phrase match, term frequency, term proximity, early position, chunk
    length, title overlap and query bigrams are summed onto the candidate's
    original score and the result is clamped to `[0, max_score]`.

    Scoring is chunk-local: if one chunk fails, it keeps its original score and
    the rest of the batch is still re-ranked.
    """

    def __init__(self, config: RerankConfig | None = None) -> None:
        self.config = config or RerankConfig()

    def rerank(self, query: str, candidates: list[SearchResult]) -> list[RerankedResult]:
        if not candidates:
            return []

        profile = self._profile(query)
        reranked: list[RerankedResult] = []
        for item in candidates:
            try:
                reranked.append(self.score(profile, item))
            except ReRankFailed as exc:
                logger.warning("%s; keeping original score", exc)
                reranked.append(
                    RerankedResult(
                        result=item,
                        original_score=item.relevance_score,
                        final_score=item.relevance_score,
                        total_terms=len(profile.terms),
                        error=str(exc),
                    )
                )

        reranked.sort(key=lambda entry: entry.final_score, reverse=True)
        return reranked

    def score(self, profile: _QueryProfile, item: SearchResult) -> RerankedResult:
        try:
            content = item.chunk.content.lower()
            factors = ScoringFactors()
            cfg = self.config

            if profile.lowered and profile.lowered in content:
                factors.exact_match = cfg.exact_match_bonus

            for phrase in profile.phrases:
                if phrase in content:
                    factors.phrase_match += cfg.phrase_match_total / len(profile.phrases)

            term_matches = 0
            for term in profile.terms:
                occurrences = len(re.findall(rf"\b{re.escape(term)}\b", content))
                if occurrences:
                    term_matches += 1
                    factors.term_frequency += min(
                        occurrences * cfg.term_frequency_weight, cfg.term_frequency_cap
                    )

            factors.term_proximity = self._proximity(content, profile.terms)
            factors.position_boost = self._position(content, profile.terms)
            factors.length_penalty = self._length_shaping(item.chunk.content)

            title = item.chunk.metadata.title
            if title and profile.terms:
                title_lower = title.lower()
                title_matches = sum(1 for term in profile.terms if term in title_lower)
                factors.title_boost = title_matches / len(profile.terms) * cfg.title_weight

            for bigram in profile.bigrams:
                if bigram in content:
                    factors.bigram_match += cfg.bigram_bonus

            final = item.relevance_score + factors.total()
            final = max(0.0, min(final, cfg.max_score))
        except Exception as exc:
            raise ReRankFailed(f"Failed to re-rank chunk {item.chunk.chunk_id}: {exc}") from exc

        logger.debug(
            "Re-ranked %s: %.1f -> %.1f", item.chunk.chunk_id, item.relevance_score, final
        )
        return RerankedResult(
            result=item,
            original_score=item.relevance_score,
            final_score=final,
            factors=factors,
            term_matches=term_matches,
            total_terms=len(profile.terms),
        )

    def extract_terms(self, text: str) -> list[str]:
        words = _PUNCTUATION.sub(" ", text.lower()).split()
        return [
            word for word in words if len(word) > 2 and word not in self.config.stop_words
        ][: self.config.max_terms]

    def extract_phrases(self, query: str) -> list[str]:
        phrases = [match.lower() for match in _QUOTED.findall(query)]
        words = query.lower().split()
        for i in range(len(words) - 2):
            phrases.append(" ".join(words[i : i + 3]))
        return [phrase for phrase in phrases if len(phrase) >= self.config.min_phrase_length]

    def _profile(self, query: str) -> _QueryProfile:
        terms = self.extract_terms(query)
        return _QueryProfile(
            lowered=query.strip().lower(),
            terms=terms,
            bigrams=[f"{a} {b}" for a, b in zip(terms, terms[1:])],
            phrases=self.extract_phrases(query),
        )

    def _proximity(self, content: str, terms: list[str]) -> float:
        window = self.config.proximity_window
        score = 0.0
        for first, second in zip(terms, terms[1:]):
            first_index = content.find(first)
            second_index = content.find(second)
            if first_index == -1 or second_index == -1:
                continue
            distance = abs(second_index - first_index)
            if distance < window:
                score += (window - distance) / window * self.config.proximity_weight
        return min(score, self.config.proximity_cap)

    def _position(self, content: str, terms: list[str]) -> float:
        if not content:
            return 0.0
        score = 0.0
        for term in terms:
            index = content.find(term)
            if index != -1:
                score += (1 - index / len(content)) * self.config.position_weight
        return min(score, self.config.position_cap)

    def _length_shaping(self, content: str) -> float:
        cfg = self.config
        length = len(content)
        words = len(content.split())
        if length < cfg.min_chars or words < cfg.min_words:
            return cfg.short_penalty
        if length > cfg.max_chars or words > cfg.max_words:
            return cfg.long_penalty
        low_chars, high_chars = cfg.optimal_chars
        low_words, high_words = cfg.optimal_words
        if low_chars <= length <= high_chars and low_words <= words <= high_words:
            return cfg.optimal_bonus
        return 0.0
