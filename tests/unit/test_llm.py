from dataclasses import dataclass

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from knowledge_rag.errors import GradingFailed
from knowledge_rag.llm import LangChainReasoningService, create_chat_model


@dataclass(slots=True)
class _Reply:
    content: object


class MockChatModel:
    def __init__(self, content: object = "relevant", error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.calls: list[tuple[list[object], dict[str, object]]] = []

    def invoke(self, messages, **kwargs):
        self.calls.append((messages, kwargs))
        if self.error is not None:
            raise self.error
        return _Reply(self.content)


def test_complete_sends_system_and_user_messages() -> None:
    llm = MockChatModel()
    service = LangChainReasoningService(llm)

    reply = service.complete("system", "user", temperature=0.1, max_tokens=100, model="gpt-4o")

    messages, kwargs = llm.calls[0]
    assert reply == "relevant"
    assert isinstance(messages[0], SystemMessage) and messages[0].content == "system"
    assert isinstance(messages[1], HumanMessage) and messages[1].content == "user"
    assert kwargs == {"temperature": 0.1, "max_tokens": 100, "model": "gpt-4o"}


def test_complete_joins_content_blocks() -> None:
    llm = MockChatModel(content=[{"type": "text", "text": "partially"}, {"type": "text", "text": "relevant"}])

    assert LangChainReasoningService(llm).complete("s", "u", temperature=0.0, max_tokens=5) == (
        "partially relevant"
    )


def test_provider_errors_become_grading_failed() -> None:
    service = LangChainReasoningService(MockChatModel(error=TimeoutError("slow provider")))

    with pytest.raises(GradingFailed):
        service.complete("s", "u", temperature=0.0, max_tokens=5)


def test_no_api_key_means_no_model(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert create_chat_model() is None
