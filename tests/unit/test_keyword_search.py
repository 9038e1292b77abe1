import pytest

from knowledge_rag.config import SearchConfig
from knowledge_rag.ingest.indexer import DocumentIndexer
from knowledge_rag.retrieval.keyword_search import KeywordSearcher, jaccard_similarity
from knowledge_rag.retrieval.store import InMemoryDocumentStore


def _searcher(documents: dict[str, str], config: SearchConfig | None = None) -> KeywordSearcher:
    store = InMemoryDocumentStore()
    indexer = DocumentIndexer(store)
    for title, content in documents.items():
        indexer.add_document(title, content, f"file://{title}")
    return KeywordSearcher(store, config)


def test_extract_keywords_drops_stop_words_short_words_and_duplicates() -> None:
    searcher = KeywordSearcher(InMemoryDocumentStore())

    keywords = searcher.extract_keywords("What are the best machine-learning algorithms for ML? Best!")

    assert keywords == ["best", "machine", "learning", "algorithms"]


def test_score_combines_jaccard_and_keyword_boost() -> None:
    searcher = _searcher({"tips": "python tips for beginners"})

    results = searcher.search("python tips")

    assert len(results) == 1
    assert results[0].similarity == pytest.approx(0.5)
    assert results[0].relevance_score == pytest.approx(60.0)


def test_scores_are_capped() -> None:
    searcher = _searcher({"one": "python"})

    results = searcher.search("python")

    assert results[0].relevance_score == pytest.approx(100.0)


def test_analysis_queries_boost_long_chunks() -> None:
    body = "Experience: ten years of backend engineering in payments and logistics. " * 3
    documents = {"cv": body}
    plain = _searcher(documents, SearchConfig(analysis_boost=1.0)).search("review my engineering")
    boosted = _searcher(documents).search("review my engineering")

    assert boosted[0].relevance_score == pytest.approx(plain[0].relevance_score * 1.3)


def test_generate_is_not_an_analysis_query() -> None:
    body = "We generate reports on engineering metrics every quarter for leadership review. " * 2
    documents = {"metrics": body}
    plain = _searcher(documents, SearchConfig(analysis_boost=1.0)).search("generate engineering")
    default = _searcher(documents).search("generate engineering")

    assert default[0].relevance_score == pytest.approx(plain[0].relevance_score)


def test_results_are_unique_sorted_and_limited() -> None:
    searcher = _searcher(
        {
            "a": "machine learning algorithms for ranking",
            "b": "learning to cook",
            "c": "machine shop safety",
            "d": "algorithms and data structures",
        }
    )

    results = searcher.search("machine learning algorithms", limit=3)

    ids = [result.chunk.chunk_id for result in results]
    assert len(ids) == len(set(ids)) == 3
    scores = [result.relevance_score for result in results]
    assert scores == sorted(scores, reverse=True)
    assert results[0].chunk.metadata.title == "a"
    assert all(0.0 <= score <= 100.0 for score in scores)


def test_document_filter_restricts_candidates() -> None:
    store = InMemoryDocumentStore()
    indexer = DocumentIndexer(store)
    wanted = indexer.add_document("wanted", "vector databases explained", "s1")
    indexer.add_document("other", "vector graphics explained", "s2")

    results = KeywordSearcher(store).search("vector explained", document_ids=[wanted])

    assert [r.chunk.document_id for r in results] == [wanted]


def test_blank_query_returns_nothing() -> None:
    assert _searcher({"a": "anything"}).search("   ") == []


def test_jaccard_similarity_bounds() -> None:
    assert jaccard_similarity("", "") == 0.0
    assert jaccard_similarity("a b", "a b") == 1.0
    assert jaccard_similarity("a b", "c d") == 0.0
