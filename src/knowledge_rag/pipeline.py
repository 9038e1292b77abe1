"""Retrieval pipeline: lexical search -> re-rank -> corrective evaluation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from knowledge_rag.config import SearchConfig
from knowledge_rag.correction.evaluator import CorrectiveEvaluator
from knowledge_rag.errors import PipelineFailed, QueryCancelled
from knowledge_rag.ingest.indexer import DocumentIndexer
from knowledge_rag.obs.tracing import Timer, TraceStore
from knowledge_rag.retrieval.keyword_search import KeywordSearcher
from knowledge_rag.retrieval.rerank import LexicalSignalReranker, Reranker
from knowledge_rag.types import (
    CorrectiveOutcome,
    EnhancedSearchResponse,
    ModelHints,
    RAGResponse,
    SearchResult,
    SourceReference,
)

logger = logging.getLogger(__name__)

NO_MATCH_ANSWER = (
    "I don't have specific information about that topic in my knowledge base. "
    "I can still help with general questions using my training data."
)
SEARCH_ERROR_ANSWER = (
    "I encountered an error while searching my knowledge base. "
    "Please try rephrasing your question."
)
LOW_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95
SOURCE_PREVIEW_CHARS = 500

RAG_PROMPT_TEMPLATE = """Based on the following knowledge base content, please answer the user's question. If the information is not sufficient, indicate that clearly.

Knowledge Base Context:
{context}

User Question: {query}

Please provide a comprehensive answer based on the provided context, and cite the sources when relevant."""


class RAGPipeline:
    """Composes ingestion, search, re-ranking and corrective evaluation.

    Only `add_document` raises. Every other entry point degrades: a failing
    enhanced stage falls back to plain lexical search, and a failing lexical
    search yields no results.
    """

    def __init__(
        self,
        indexer: DocumentIndexer,
        searcher: KeywordSearcher,
        reranker: Reranker | None = None,
        evaluator: CorrectiveEvaluator | None = None,
        *,
        trace_store: TraceStore | None = None,
        config: SearchConfig | None = None,
    ) -> None:
        self.indexer = indexer
        self.searcher = searcher
        self.reranker = reranker or LexicalSignalReranker()
        self.evaluator = evaluator
        self.trace_store = trace_store
        self.config = config or searcher.config

    def add_document(
        self,
        title: str,
        content: str,
        source: str,
        metadata: dict[str, Any] | None = None,
        *,
        entities: dict[str, list[str]] | None = None,
    ) -> str:
        return self.indexer.add_document(title, content, source, metadata, entities=entities)

    def search(
        self,
        query: str,
        limit: int | None = None,
        document_ids: list[str] | None = None,
    ) -> list[SearchResult]:
        try:
            return self.searcher.search(query, limit, document_ids)
        except Exception:
            logger.exception("Error searching knowledge base for %r", query)
            return []

    def enhanced_search(
        self,
        query: str,
        limit: int | None = None,
        document_ids: list[str] | None = None,
        *,
        use_corrective_rag: bool = True,
        fallback_to_web: bool = False,
        model_hints: ModelHints | None = None,
        cancel_event: threading.Event | None = None,
    ) -> EnhancedSearchResponse:
        """Search, re-rank and verify; fallback text rides on `fallback_content`.

        When the evaluator decides to replace the retrieved chunks with
        fallback content, `results` is empty and the replacement text is
        returned alongside. Setting `cancel_event` abandons the query and
        returns no results.
        """

        limit = limit or self.config.default_limit
        stages: dict[str, float] = {}
        failures: list[str] = []
        candidate_count = 0

        with Timer() as total:
            try:
                response, candidate_count = self._run_stages(
                    query,
                    limit,
                    document_ids,
                    use_corrective_rag=use_corrective_rag,
                    fallback_to_web=fallback_to_web,
                    model_hints=model_hints,
                    cancel_event=cancel_event,
                    stages=stages,
                )
            except QueryCancelled as exc:
                logger.info("%s", exc)
                response = EnhancedSearchResponse(results=[])
            except PipelineFailed as exc:
                logger.warning("%s; falling back to lexical search", exc)
                failures.append(str(exc))
                response = EnhancedSearchResponse(
                    results=self.search(query, limit, document_ids), degraded=True
                )

        if response.outcome is not None:
            failures.extend(
                f"grading: {grade.error}" for grade in response.outcome.grades if grade.error
            )
        failures.extend(f"rerank: {error}" for error in response.rerank_errors)
        self._record_trace(query, candidate_count, response, stages, total.elapsed_ms, failures)
        return response

    def _run_stages(
        self,
        query: str,
        limit: int,
        document_ids: list[str] | None,
        *,
        use_corrective_rag: bool,
        fallback_to_web: bool,
        model_hints: ModelHints | None,
        cancel_event: threading.Event | None,
        stages: dict[str, float],
    ) -> tuple[EnhancedSearchResponse, int]:
        corrective = use_corrective_rag and self.evaluator is not None

        with _stage("search", stages):
            candidates = self.searcher.search(
                query, limit * self.config.candidate_multiplier, document_ids
            )
        _check_cancelled(cancel_event)

        if not candidates:
            logger.info("Enhanced search %r: no initial results", query)
            if corrective and fallback_to_web:
                outcome = self._evaluate(
                    query, [], fallback_to_web, model_hints, cancel_event, stages
                )
                return (
                    EnhancedSearchResponse(
                        results=[], fallback_content=outcome.final_content, outcome=outcome
                    ),
                    0,
                )
            return EnhancedSearchResponse(results=[]), 0

        with _stage("rerank", stages):
            reranked = self.reranker.rerank(query, candidates)
        top = [
            replace(entry.result, relevance_score=entry.final_score)
            for entry in reranked[:limit]
        ]
        rerank_errors = [entry.error for entry in reranked if entry.error]
        _check_cancelled(cancel_event)

        if not corrective:
            logger.info("Enhanced search %r: returning %d re-ranked results", query, len(top))
            return (
                EnhancedSearchResponse(results=top, rerank_errors=rerank_errors),
                len(candidates),
            )

        outcome = self._evaluate(query, top, fallback_to_web, model_hints, cancel_event, stages)
        if outcome.web_search_performed and not outcome.use_retrieved_content:
            logger.info("Enhanced search %r: using fallback content instead of chunks", query)
            return (
                EnhancedSearchResponse(
                    results=[],
                    fallback_content=outcome.final_content,
                    outcome=outcome,
                    rerank_errors=rerank_errors,
                ),
                len(candidates),
            )

        logger.info("Enhanced search %r: returning %d verified results", query, len(top))
        return (
            EnhancedSearchResponse(results=top, outcome=outcome, rerank_errors=rerank_errors),
            len(candidates),
        )

    def _evaluate(
        self,
        query: str,
        results: list[SearchResult],
        fallback_to_web: bool,
        model_hints: ModelHints | None,
        cancel_event: threading.Event | None,
        stages: dict[str, float],
    ) -> CorrectiveOutcome:
        assert self.evaluator is not None
        with _stage("corrective", stages):
            return self.evaluator.evaluate(
                query,
                results,
                fallback_to_web=fallback_to_web,
                model_hints=model_hints,
                cancel_event=cancel_event,
            )

    def _record_trace(
        self,
        query: str,
        candidate_count: int,
        response: EnhancedSearchResponse,
        stages: dict[str, float],
        latency_ms: float,
        failures: list[str],
    ) -> None:
        if self.trace_store is None:
            return
        outcome = response.outcome
        record = self.trace_store.create_record(
            query=query,
            candidate_count=candidate_count,
            result_count=len(response.results),
            stage_latency_ms=stages,
            latency_ms=latency_ms,
            corrected=outcome is not None and outcome.correction_reason is not None,
            fallback_used=response.used_fallback,
            degraded=response.degraded,
            correction_reason=outcome.correction_reason if outcome else None,
            recovered_failures=failures,
        )
        response.trace_id = record.trace_id

    def generate_response(
        self,
        query: str,
        history: list[dict[str, str]] | None = None,
    ) -> RAGResponse:
        """Build the grounded prompt, cited sources and a confidence estimate."""

        del history  # context is built from the knowledge base only.
        try:
            results = self.searcher.search(query)
            if not results:
                return RAGResponse(answer=NO_MATCH_ANSWER, sources=[], confidence=LOW_CONFIDENCE)

            sources = [
                SourceReference(
                    title=result.chunk.metadata.title or "Document",
                    content=result.chunk.content[:SOURCE_PREVIEW_CHARS] + "...",
                    source=result.chunk.metadata.source,
                    page=result.chunk.metadata.pages,
                    relevance_score=result.relevance_score,
                )
                for result in results
            ]
            context = "\n\n---\n\n".join(
                f"Source: {result.chunk.metadata.title}\nContent: {result.chunk.content}"
                for result in results
            )
            mean_score = sum(result.relevance_score for result in results) / len(results)
            return RAGResponse(
                answer=RAG_PROMPT_TEMPLATE.format(context=context, query=query),
                sources=sources,
                confidence=min(mean_score / 100, MAX_CONFIDENCE),
            )
        except Exception:
            logger.exception("Error generating RAG response for %r", query)
            return RAGResponse(answer=SEARCH_ERROR_ANSWER, sources=[], confidence=LOW_CONFIDENCE)

    @staticmethod
    def format_context(results: list[SearchResult]) -> str:
        return "\n\n---\n\n".join(
            f'Knowledge Base Content from "{result.chunk.metadata.title}":\n{result.chunk.content}'
            for result in results
        )


@contextmanager
def _stage(name: str, stages: dict[str, float]) -> Iterator[None]:
    """Time a pipeline stage and convert its failure into `PipelineFailed`."""

    timer = Timer()
    try:
        with timer:
            yield
    except QueryCancelled:
        raise
    except Exception as exc:
        raise PipelineFailed(f"{name} stage failed: {exc}") from exc
    finally:
        stages[name] = timer.elapsed_ms


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise QueryCancelled("Query cancelled")
