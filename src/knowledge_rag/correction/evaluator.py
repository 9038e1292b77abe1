"""Corrective relevance evaluation of retrieved chunks."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from enum import Enum

from knowledge_rag.config import CorrectiveConfig
from knowledge_rag.correction.fallback import FallbackSource, GuidanceFallback
from knowledge_rag.errors import QueryCancelled
from knowledge_rag.llm import ReasoningService
from knowledge_rag.types import (
    CorrectiveOutcome,
    Grade,
    ModelHints,
    RelevanceGrade,
    SearchResult,
)

logger = logging.getLogger(__name__)

RELEVANCE_SYSTEM_PROMPT = (
    "You are an expert document relevance evaluator. "
    "Be concise and precise in your evaluations."
)

RELEVANCE_PROMPT = """
You are an expert document relevance evaluator. Your task is to determine if the retrieved document chunk is relevant to answer the user's question.

IMPORTANT: When the user asks about analyzing, rating, or improving a document (like a CV, resume, or report), ANY content from that document type IS RELEVANT because the user wants you to analyze the actual content they provided.

Analyze the following:
- User Question: {query}
- Retrieved Document Chunk: {chunk}

Consider these scenarios:
- If the user asks to "rate", "analyze", "improve", or "review" content, and the chunk contains the actual content to be analyzed, it's RELEVANT
- If the user asks about a CV/resume and the chunk contains CV/resume content, it's RELEVANT
- If the user asks about a document and the chunk contains content from that document, it's RELEVANT
- Only mark as irrelevant if the chunk is completely unrelated to what the user is asking about

Respond with ONLY one of these three grades:
- "relevant" - if the chunk directly addresses the question or contains content the user wants analyzed
- "partially_relevant" - if the chunk contains some related information
- "irrelevant" - if the chunk is completely unrelated to the question

Grade:
""".strip()

NO_CONTENT_MESSAGE = "No relevant content found in knowledge base."


class CorrectionReason(str, Enum):
    ALL_IRRELEVANT = "all irrelevant"
    VERY_LOW_RELEVANCE = "very low relevance"
    NO_STRONG_MATCHES = "no strong matches"
    INSUFFICIENT = "insufficient"
    THRESHOLD_NOT_MET = "threshold not met"
    NO_CHUNKS = "no chunks retrieved"
    EVALUATION_ERROR = "error in evaluation"


def parse_grade(response: str) -> RelevanceGrade:
    """Classify a free-text grading reply by keyword presence."""

    lowered = response.lower().strip()
    if "irrelevant" in lowered:
        grade, confidence = Grade.IRRELEVANT, 0.8
    elif "partially_relevant" in lowered or "partially relevant" in lowered:
        grade, confidence = Grade.PARTIALLY_RELEVANT, 0.6
    elif "relevant" in lowered:
        grade, confidence = Grade.RELEVANT, 0.9
    else:
        grade, confidence = Grade.PARTIALLY_RELEVANT, 0.4
    return RelevanceGrade(grade=grade, confidence=confidence, reasoning=response.strip())


def _default_grade(reason: str) -> RelevanceGrade:
    return RelevanceGrade(
        grade=Grade.PARTIALLY_RELEVANT,
        confidence=0.5,
        reasoning=f"{reason}, defaulting to partially relevant",
        error=reason,
    )


def correction_reason(grades: list[RelevanceGrade], overall_relevance: float) -> CorrectionReason:
    if all(g.grade is Grade.IRRELEVANT for g in grades):
        return CorrectionReason.ALL_IRRELEVANT
    if overall_relevance < 0.3:
        return CorrectionReason.VERY_LOW_RELEVANCE
    if not any(g.grade is Grade.RELEVANT for g in grades):
        return CorrectionReason.NO_STRONG_MATCHES
    if overall_relevance < 0.6:
        return CorrectionReason.INSUFFICIENT
    return CorrectionReason.THRESHOLD_NOT_MET


def format_retrieved(results: list[SearchResult]) -> str:
    if not results:
        return NO_CONTENT_MESSAGE
    return "\n\n---\n\n".join(
        f"Source {i} ({result.chunk.metadata.title or 'Document'}):\n{result.chunk.content}"
        for i, result in enumerate(results, start=1)
    )


class CorrectiveEvaluator:
    """Grades retrieved chunks and decides whether to trust them.

    Flow per query:
    - no chunks: go straight to the fallback source (when enabled);
    - otherwise grade every chunk through the reasoning service, compute the
      share of relevant + partially relevant grades and whether any grade is a
      confident `relevant`;
    - accept when both clear their thresholds, else consult the fallback source
      or, with fallback disabled, keep the chunks and report why.

    Grading failures are chunk-local and produce a partially relevant grade.
    Any other failure during evaluation trusts the retrieved chunks.
    """

    def __init__(
        self,
        reasoning: ReasoningService,
        fallback: FallbackSource | None = None,
        config: CorrectiveConfig | None = None,
    ) -> None:
        self.reasoning = reasoning
        self.fallback = fallback or GuidanceFallback()
        self.config = config or CorrectiveConfig()

    def evaluate(
        self,
        query: str,
        retrieved: list[SearchResult],
        *,
        fallback_to_web: bool = True,
        model_hints: ModelHints | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CorrectiveOutcome:
        logger.info("Corrective evaluation of %d chunks for %r", len(retrieved), query[:100])
        if not retrieved:
            if not fallback_to_web:
                return CorrectiveOutcome(
                    use_retrieved_content=False,
                    web_search_performed=False,
                    final_content=NO_CONTENT_MESSAGE,
                    correction_reason=CorrectionReason.NO_CHUNKS.value,
                )
            content = self.fallback.fetch(query)
            return CorrectiveOutcome(
                use_retrieved_content=False,
                web_search_performed=True,
                final_content=content,
                web_content=content,
                correction_reason=CorrectionReason.NO_CHUNKS.value,
            )

        try:
            return self._evaluate(query, retrieved, fallback_to_web, model_hints, cancel_event)
        except QueryCancelled:
            raise
        except Exception:
            logger.exception("Error in corrective evaluation, using retrieved content")
            return CorrectiveOutcome(
                use_retrieved_content=True,
                web_search_performed=False,
                final_content=format_retrieved(retrieved),
                retrieved=list(retrieved),
                correction_reason=CorrectionReason.EVALUATION_ERROR.value,
            )

    def _evaluate(
        self,
        query: str,
        retrieved: list[SearchResult],
        fallback_to_web: bool,
        model_hints: ModelHints | None,
        cancel_event: threading.Event | None,
    ) -> CorrectiveOutcome:
        grades = self.grade_chunks(
            query, retrieved, model_hints=model_hints, cancel_event=cancel_event
        )
        relevant_count = sum(1 for g in grades if g.relevant)
        overall = relevant_count / len(grades)
        high_quality = any(
            g.grade is Grade.RELEVANT and g.confidence > self.config.high_quality_confidence
            for g in grades
        )
        logger.info(
            "Relevance: %d/%d relevant (%.1f%%), high quality: %s",
            relevant_count,
            len(grades),
            overall * 100,
            high_quality,
        )

        if overall >= self.config.relevance_threshold and high_quality:
            return CorrectiveOutcome(
                use_retrieved_content=True,
                web_search_performed=False,
                final_content=format_retrieved(retrieved),
                retrieved=list(retrieved),
                grades=grades,
            )

        reason = correction_reason(grades, overall).value
        logger.info("Retrieved content insufficient: %s", reason)
        if fallback_to_web:
            content = self.fallback.fetch(query)
            return CorrectiveOutcome(
                use_retrieved_content=False,
                web_search_performed=True,
                final_content=content,
                retrieved=list(retrieved),
                web_content=content,
                correction_reason=reason,
                grades=grades,
            )
        return CorrectiveOutcome(
            use_retrieved_content=True,
            web_search_performed=False,
            final_content=format_retrieved(retrieved),
            retrieved=list(retrieved),
            correction_reason=reason,
            grades=grades,
        )

    def grade_chunks(
        self,
        query: str,
        results: list[SearchResult],
        *,
        model_hints: ModelHints | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[RelevanceGrade]:
        """Grade chunks on a bounded pool; grades come back in input order.

        `request_timeout_seconds` bounds the whole batch, not each chunk.
        """

        if not results:
            return []
        workers = min(self.config.max_concurrency, len(results))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="relevance-grader")
        try:
            futures = [
                pool.submit(self.grade_chunk, query, result.chunk.content, model_hints)
                for result in results
            ]
            deadline = time.monotonic() + self.config.request_timeout_seconds
            grades: list[RelevanceGrade] = []
            for result, future in zip(results, futures, strict=True):
                if cancel_event is not None and cancel_event.is_set():
                    raise QueryCancelled("Query cancelled during relevance grading")
                try:
                    grades.append(future.result(timeout=max(0.0, deadline - time.monotonic())))
                except FutureTimeout:
                    logger.warning("Grading timed out for chunk %s", result.chunk.chunk_id)
                    grades.append(_default_grade("Grading timed out"))
            return grades
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def grade_chunk(
        self,
        query: str,
        content: str,
        model_hints: ModelHints | None = None,
    ) -> RelevanceGrade:
        if not content.strip():
            return _default_grade("No content available")

        hints = model_hints or ModelHints()
        prompt = RELEVANCE_PROMPT.format(query=query, chunk=content[: self.config.max_chunk_chars])
        try:
            response = self.reasoning.complete(
                RELEVANCE_SYSTEM_PROMPT,
                prompt,
                temperature=hints.temperature
                if hints.temperature is not None
                else self.config.temperature,
                max_tokens=self.config.max_tokens,
                model=hints.model,
            )
        except Exception as exc:
            logger.warning("Error grading chunk relevance: %s", exc)
            return _default_grade("Error in evaluation")

        grade = parse_grade(response)
        logger.debug("Chunk relevance: %s (confidence: %.2f)", grade.grade.value, grade.confidence)
        return grade
