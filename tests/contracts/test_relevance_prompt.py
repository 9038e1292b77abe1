from knowledge_rag.correction.evaluator import RELEVANCE_PROMPT, RELEVANCE_SYSTEM_PROMPT
from knowledge_rag.pipeline import RAG_PROMPT_TEMPLATE


def test_relevance_prompt_treats_analysis_requests_as_relevant() -> None:
    assert "ANY content from that document type IS RELEVANT" in RELEVANCE_PROMPT
    assert "Only mark as irrelevant if the chunk is completely unrelated" in RELEVANCE_PROMPT
    assert "relevance evaluator" in RELEVANCE_SYSTEM_PROMPT


def test_relevance_prompt_lists_exactly_three_grades() -> None:
    for grade in ('"relevant"', '"partially_relevant"', '"irrelevant"'):
        assert grade in RELEVANCE_PROMPT
    rendered = RELEVANCE_PROMPT.format(query="rate my CV", chunk="Senior engineer, 8 years")
    assert "User Question: rate my CV" in rendered
    assert rendered.rstrip().endswith("Grade:")


def test_rag_prompt_asks_for_citations_and_insufficiency() -> None:
    assert "cite the sources" in RAG_PROMPT_TEMPLATE
    assert "indicate that clearly" in RAG_PROMPT_TEMPLATE
