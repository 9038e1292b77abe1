"""Fetch web pages and extract their readable text."""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from knowledge_rag.config import FallbackConfig

logger = logging.getLogger(__name__)

_URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b[-a-zA-Z0-9()@:%_+.~#?&/=]*"
)
_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}
_NOISE_SELECTORS = "script, style, nav, header, footer, aside, .advertisement, .ads, .social-share"
_CONTENT_SELECTORS = (
    "main",
    "article",
    ".content",
    ".post-content",
    ".entry-content",
    ".article-content",
    "#content",
    ".main-content",
)


@dataclass(slots=True)
class ScrapedPage:
    url: str
    title: str
    content: str
    metadata: dict[str, str | list[str] | None] = field(default_factory=dict)


class WebScraper:
    """Downloads pages with httpx and extracts main content with BeautifulSoup.

    Successful results are cached in memory for `cache_ttl_seconds`.
    """

    def __init__(
        self,
        config: FallbackConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config or FallbackConfig()
        self._client = client or httpx.Client(
            headers=_BROWSER_HEADERS,
            timeout=self.config.fetch_timeout_seconds,
            follow_redirects=True,
        )
        self._cache: dict[str, tuple[float, ScrapedPage]] = {}
        self._lock = threading.Lock()

    def scrape(self, url: str, *, use_cache: bool = True) -> ScrapedPage:
        if use_cache:
            cached = self._cached(url)
            if cached is not None:
                return cached

        response = self._client.get(url, headers=_BROWSER_HEADERS)
        response.raise_for_status()
        page = self.extract(response.text, url)

        now = time.monotonic()
        with self._lock:
            expired = [
                key
                for key, (fetched_at, _) in self._cache.items()
                if now - fetched_at >= self.config.cache_ttl_seconds
            ]
            for key in expired:
                del self._cache[key]
            self._cache[url] = (now, page)
        return page

    def scrape_many(self, urls: list[str], *, use_cache: bool = True) -> list[ScrapedPage]:
        """Scrape each URL; failures are logged and skipped."""

        pages: list[ScrapedPage] = []
        for url in urls:
            try:
                pages.append(self.scrape(url, use_cache=use_cache))
            except httpx.HTTPError as exc:
                logger.warning("Failed to fetch %s: %s", url, exc)
        return pages

    def extract(self, html: str, url: str) -> ScrapedPage:
        soup = BeautifulSoup(html, "html.parser")
        for node in soup.select(_NOISE_SELECTORS):
            node.decompose()

        title = _first_text(soup, "title") or _first_text(soup, "h1") or _meta(
            soup, property_="og:title"
        ) or "Untitled"

        content = ""
        for selector in _CONTENT_SELECTORS:
            for element in soup.select(selector):
                text = element.get_text(" ", strip=True)
                if len(text) > len(content):
                    content = text
        if len(content) < 100 and soup.body is not None:
            content = soup.body.get_text(" ", strip=True)

        content = re.sub(r"\s+", " ", content).strip()
        keywords = _meta(soup, name="keywords")
        return ScrapedPage(
            url=url,
            title=title,
            content=content[: self.config.max_content_chars],
            metadata={
                "description": _meta(soup, name="description")
                or _meta(soup, property_="og:description"),
                "keywords": [k.strip() for k in keywords.split(",")] if keywords else None,
                "author": _meta(soup, name="author") or _meta(soup, property_="article:author"),
                "publishedDate": _meta(soup, property_="article:published_time")
                or _meta(soup, name="date"),
            },
        )

    def close(self) -> None:
        self._client.close()

    def _cached(self, url: str) -> ScrapedPage | None:
        with self._lock:
            entry = self._cache.get(url)
        if entry is None:
            return None
        fetched_at, page = entry
        if time.monotonic() - fetched_at >= self.config.cache_ttl_seconds:
            return None
        return page


def extract_urls(text: str) -> list[str]:
    """Unique http(s) URLs in order of appearance."""

    urls: list[str] = []
    for match in _URL_PATTERN.findall(text):
        url = match.rstrip(".,;:!?")
        if url not in urls:
            urls.append(url)
    return urls


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _first_text(soup: BeautifulSoup, tag: str) -> str:
    element = soup.find(tag)
    return element.get_text(strip=True) if element is not None else ""


def _meta(soup: BeautifulSoup, *, name: str | None = None, property_: str | None = None) -> str | None:
    attrs = {"name": name} if name else {"property": property_}
    element = soup.find("meta", attrs=attrs)
    if element is None:
        return None
    content = element.get("content")
    return str(content) if content else None
