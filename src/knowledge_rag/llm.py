"""Reasoning-service contract and its LangChain chat-model adapter."""

from __future__ import annotations

import os
from typing import Any, Protocol

from langchain_core.messages import HumanMessage, SystemMessage

from knowledge_rag.errors import GradingFailed


class ReasoningService(Protocol):
    """Single-turn chat completion used for relevance grading."""

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        model: str | None = None,
    ) -> str:
        """Return the model's text reply."""


class LangChainReasoningService:
    """Adapts any LangChain chat model to `ReasoningService`.

    Provider errors (rate limits, auth, transport) are re-raised as
    `GradingFailed` so callers only handle one failure type.
    """

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        model: str | None = None,
    ) -> str:
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        params: dict[str, Any] = {"temperature": temperature, "max_tokens": max_tokens}
        if model:
            params["model"] = model
        try:
            response = self.llm.invoke(messages, **params)
        except Exception as exc:
            raise GradingFailed(f"Reasoning service call failed: {exc}") from exc
        content = getattr(response, "content", response)
        if isinstance(content, list):
            return " ".join(
                str(item["text"]) if isinstance(item, dict) and "text" in item else str(item)
                for item in content
            ).strip()
        return str(content)


def create_chat_model(timeout_seconds: float = 20.0) -> Any:
    """Build a ChatOpenAI model from the environment, or None without a key."""

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        temperature=0,
        timeout=timeout_seconds,
        max_retries=1,
    )
