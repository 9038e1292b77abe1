import pytest

from knowledge_rag.config import RerankConfig
from knowledge_rag.retrieval.rerank import LexicalSignalReranker
from knowledge_rag.types import Chunk, ChunkMetadata, SearchResult


def _result(content: str, score: float = 5.0, title: object = "Doc", chunk_id: str = "c") -> SearchResult:
    metadata = ChunkMetadata(title=title, source="s", chunk_index=0, chunk_type="text_chunk")  # type: ignore[arg-type]
    chunk = Chunk(chunk_id=chunk_id, document_id="d", content=content, metadata=metadata)
    return SearchResult(chunk=chunk, similarity=0.0, relevance_score=score)


def test_machine_learning_chunk_outranks_unrelated_chunk() -> None:
    relevant = _result(
        "Support vector machines and random forests are popular machine learning algorithms.",
        chunk_id="ml",
    )
    unrelated = _result("The weather is sunny today.", chunk_id="weather")

    ranked = LexicalSignalReranker().rerank("machine learning algorithms", [unrelated, relevant])

    assert [entry.result.chunk.chunk_id for entry in ranked] == ["ml", "weather"]
    assert ranked[0].final_score > ranked[1].final_score
    assert ranked[0].factors is not None
    assert ranked[0].factors.exact_match == 25.0
    assert ranked[0].term_matches == ranked[0].total_terms == 3
    assert ranked[1].term_matches == 0


def test_scores_are_clamped_to_bounds() -> None:
    reranker = LexicalSignalReranker()
    high = _result("machine learning algorithms " * 20, score=99.0, chunk_id="high")
    low = _result("tiny", score=0.0, chunk_id="low")

    ranked = {entry.result.chunk.chunk_id: entry for entry in reranker.rerank("machine learning algorithms", [high, low])}

    assert ranked["high"].final_score == 100.0
    assert ranked["low"].final_score == 0.0
    assert ranked["low"].factors is not None
    assert ranked["low"].factors.length_penalty == -5.0


def test_higher_original_score_never_ranks_lower_for_same_text() -> None:
    reranker = LexicalSignalReranker()
    text = "Gradient boosting is a machine learning technique for regression and classification problems."
    weak = _result(text, score=10.0, chunk_id="weak")
    strong = _result(text, score=40.0, chunk_id="strong")

    ranked = reranker.rerank("machine learning", [weak, strong])

    assert ranked[0].result.chunk.chunk_id == "strong"
    assert ranked[0].final_score - ranked[1].final_score == pytest.approx(30.0)


def test_failing_chunk_keeps_original_score() -> None:
    broken = _result("machine learning notes", score=42.0, title=123, chunk_id="broken")
    healthy = _result("machine learning notes", score=10.0, chunk_id="healthy")

    ranked = LexicalSignalReranker().rerank("machine learning", [broken, healthy])

    by_id = {entry.result.chunk.chunk_id: entry for entry in ranked}
    assert by_id["broken"].final_score == 42.0
    assert by_id["broken"].error is not None
    assert not by_id["broken"].reranked
    assert by_id["healthy"].reranked


def test_title_overlap_adds_bonus() -> None:
    reranker = LexicalSignalReranker(RerankConfig(title_weight=10.0))
    content = "An overview of several approaches and their trade-offs in practice today."
    titled = _result(content, title="Neural networks", chunk_id="titled")
    untitled = _result(content, title="", chunk_id="untitled")

    ranked = {e.result.chunk.chunk_id: e for e in reranker.rerank("neural networks", [titled, untitled])}

    assert ranked["titled"].factors.title_boost == pytest.approx(10.0)
    assert ranked["untitled"].factors.title_boost == 0.0


def test_phrase_extraction_keeps_quoted_and_trigram_windows() -> None:
    reranker = LexicalSignalReranker()

    phrases = reranker.extract_phrases('find "deep learning" papers on vision')

    assert "deep learning" in phrases
    assert "papers on vision" in phrases


def test_batch_rerank_requires_matching_lengths() -> None:
    reranker = LexicalSignalReranker()

    assert reranker.batch_rerank(["a query", "b query"], [[], []]) == [[], []]
    with pytest.raises(ValueError):
        reranker.batch_rerank(["only one"], [[], []])
