"""Alternate content sources used when retrieval is judged insufficient."""

from __future__ import annotations

import logging
import re
from typing import Protocol
from urllib.parse import quote_plus

from knowledge_rag.config import FallbackConfig
from knowledge_rag.correction.scraper import ScrapedPage, WebScraper, extract_urls, is_valid_url
from knowledge_rag.errors import FallbackFailed

logger = logging.getLogger(__name__)

_LEADING_QUESTION = re.compile(
    r"^(?:(?:what|how|when|where|who|why|which|can|could|should|would|is|are|was|were)\s+)+",
    flags=re.IGNORECASE,
)

APOLOGY_MESSAGE = (
    "I apologize, but I could not find sufficient information in my knowledge base to "
    "answer your question accurately. Please try rephrasing your question or providing "
    "more specific details."
)


class FallbackSource(Protocol):
    def fetch(self, query: str) -> str:
        """Return alternative content for the query. Never raises."""


def optimize_query(query: str) -> str:
    """Strip leading interrogatives and trailing question marks."""

    optimized = _LEADING_QUESTION.sub("", query.strip())
    optimized = re.sub(r"\?+$", "", optimized).strip()
    return optimized or query.strip()


def guidance_message(query: str) -> str:
    return (
        "I apologize, but the documents in my knowledge base don't contain sufficient "
        f'information to answer your question about "{query}".\n\n'
        "To get the most current and comprehensive information, I recommend:\n\n"
        f'1. Searching for "{optimize_query(query)}" on reliable websites like Wikipedia, '
        "official documentation, or reputable news sources\n"
        "2. Checking the latest research papers or academic sources if it's a technical topic\n"
        "3. Looking for official government or institutional websites for authoritative "
        "information\n\n"
        "If you can provide me with specific documents or URLs related to your question, "
        "I can analyze that content for you instead."
    )


class GuidanceFallback:
    """Fallback used when no live fetcher is wired."""

    def fetch(self, query: str) -> str:
        return guidance_message(query)


class WebFallbackSource:
    """Scrapes pages related to the query, or returns guidance when none load.

    Pages come from URLs mentioned in the query itself and, when
    `search_url_template` is configured, from a search page built from the
    optimized query.
    """

    def __init__(
        self,
        scraper: WebScraper | None = None,
        config: FallbackConfig | None = None,
    ) -> None:
        self.config = config or (scraper.config if scraper else FallbackConfig())
        self.scraper = scraper or WebScraper(self.config)

    def fetch(self, query: str) -> str:
        try:
            return self._fetch(query)
        except FallbackFailed as exc:
            logger.warning("%s", exc)
            return APOLOGY_MESSAGE

    def candidate_urls(self, query: str) -> list[str]:
        urls = [url for url in extract_urls(query) if is_valid_url(url)]
        template = self.config.search_url_template
        if template:
            urls.append(template.format(query=quote_plus(optimize_query(query))))
        return urls[: self.config.max_urls]

    def _fetch(self, query: str) -> str:
        try:
            urls = self.candidate_urls(query)
            pages = self.scraper.scrape_many(urls) if urls else []
            pages = [page for page in pages if page.content]
            if not pages:
                logger.info("No web content for %r, returning guidance", query)
                return guidance_message(query)
            logger.info("Fallback scraped %d pages for %r", len(pages), query)
            return format_pages(pages)
        except Exception as exc:
            raise FallbackFailed(f"Web fallback failed for {query!r}: {exc}") from exc


def format_pages(pages: list[ScrapedPage]) -> str:
    return "\n\n---\n\n".join(
        f"Content from {page.url}:\nTitle: {page.title}\n{page.content}" for page in pages
    )
