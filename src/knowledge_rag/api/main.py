"""FastAPI entrypoint for document, search and trace endpoints."""

from __future__ import annotations

import os
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from knowledge_rag.config import CorrectiveConfig, FallbackConfig
from knowledge_rag.correction.evaluator import CorrectiveEvaluator
from knowledge_rag.correction.fallback import WebFallbackSource
from knowledge_rag.correction.scraper import WebScraper
from knowledge_rag.errors import DocumentNotFound, IngestionFailed
from knowledge_rag.ingest.indexer import DocumentIndexer
from knowledge_rag.llm import LangChainReasoningService, create_chat_model
from knowledge_rag.obs.tracing import TraceStore
from knowledge_rag.pipeline import RAGPipeline
from knowledge_rag.retrieval.keyword_search import KeywordSearcher
from knowledge_rag.retrieval.rerank import LexicalSignalReranker
from knowledge_rag.retrieval.store import DocumentStore, InMemoryDocumentStore, SqliteDocumentStore
from knowledge_rag.types import ModelHints, SearchResult


def _create_store() -> DocumentStore:
    db_path = os.getenv("KNOWLEDGE_RAG_DB")
    if not db_path:
        return InMemoryDocumentStore()
    return SqliteDocumentStore(db_path)


class DocumentRequest(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    source: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    entities: dict[str, list[str]] | None = None


class IngestRequest(BaseModel):
    path: str
    title: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class EnhancedSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=20)
    document_ids: list[str] | None = None
    use_corrective_rag: bool = True
    fallback_to_web: bool = False
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)


class RagRequest(BaseModel):
    query: str = Field(min_length=1)
    history: list[dict[str, str]] = Field(default_factory=list)


app = FastAPI(title="Knowledge RAG", version="0.1.0")

_corrective_config = CorrectiveConfig()
_store = _create_store()
_indexer = DocumentIndexer(_store)
_searcher = KeywordSearcher(_store)
_trace_store = TraceStore()
_llm = create_chat_model(timeout_seconds=_corrective_config.request_timeout_seconds)
_evaluator = (
    CorrectiveEvaluator(
        LangChainReasoningService(_llm),
        fallback=WebFallbackSource(WebScraper(FallbackConfig())),
        config=_corrective_config,
    )
    if _llm is not None
    else None
)
_pipeline = RAGPipeline(
    _indexer,
    _searcher,
    LexicalSignalReranker(),
    _evaluator,
    trace_store=_trace_store,
)


def _result_payload(result: SearchResult) -> dict[str, Any]:
    return {
        "chunk_id": result.chunk.chunk_id,
        "document_id": result.chunk.document_id,
        "content": result.chunk.content,
        "metadata": result.chunk.metadata.to_dict(),
        "similarity": result.similarity,
        "relevance_score": result.relevance_score,
    }


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "corrective_mode": "langchain" if _evaluator is not None else "disabled",
        "document_count": len(_indexer.list_documents()),
        "trace_count": len(_trace_store.list_recent(limit=1000)),
    }


@app.post("/documents")
def add_document(request: DocumentRequest) -> dict[str, Any]:
    try:
        document_id = _pipeline.add_document(
            request.title,
            request.content,
            request.source or f"file://{request.title}",
            request.metadata,
            entities=request.entities,
        )
    except IngestionFailed as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"document_id": document_id}


@app.post("/ingest")
def ingest(request: IngestRequest) -> dict[str, Any]:
    try:
        document_id = _indexer.ingest_path(
            request.path,
            title=request.title,
            extra_metadata=request.metadata,
        )
    except IngestionFailed as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except (OSError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"document_id": document_id}


@app.get("/documents")
def list_documents() -> dict[str, Any]:
    return {"items": [asdict(summary) for summary in _indexer.list_documents()]}


@app.get("/documents/{document_id}")
def get_document(document_id: str) -> dict[str, Any]:
    try:
        document = _indexer.get_document(document_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=f"Document not found: {document_id}") from exc
    return asdict(document)


@app.delete("/documents/{document_id}")
def delete_document(document_id: str) -> dict[str, Any]:
    if not _indexer.delete_document(document_id):
        raise HTTPException(status_code=404, detail=f"Document not found: {document_id}")
    return {"deleted": document_id}


@app.get("/search")
def search(q: str, limit: int = 5) -> dict[str, Any]:
    return {"items": [_result_payload(result) for result in _pipeline.search(q, limit)]}


@app.post("/search/enhanced")
def enhanced_search(request: EnhancedSearchRequest) -> dict[str, Any]:
    response = _pipeline.enhanced_search(
        request.query,
        request.limit,
        request.document_ids,
        use_corrective_rag=request.use_corrective_rag,
        fallback_to_web=request.fallback_to_web,
        model_hints=ModelHints(model=request.model, temperature=request.temperature),
    )
    outcome = response.outcome
    return {
        "items": [_result_payload(result) for result in response.results],
        "fallback_content": response.fallback_content,
        "degraded": response.degraded,
        "correction_reason": outcome.correction_reason if outcome else None,
        "trace_id": response.trace_id,
    }


@app.post("/rag")
def rag(request: RagRequest) -> dict[str, Any]:
    return asdict(_pipeline.generate_response(request.query, request.history))


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
