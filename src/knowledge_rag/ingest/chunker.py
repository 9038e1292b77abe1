"""Format-aware chunking with word overlap."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from knowledge_rag.config import ChunkingConfig
from knowledge_rag.types import (
    PDF_CHUNK,
    PDF_CHUNK_LARGE,
    TEXT_CHUNK,
    ChunkDraft,
    ChunkMetadata,
)

logger = logging.getLogger(__name__)

_PARAGRAPH_SPLIT = re.compile(r"\n[ \t]*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？])\s+")
_RESERVED_KEYS = {"title", "source", "chunkIndex", "type", "wordCount"}


@dataclass(slots=True)
class _ChunkState:
    title: str
    source: str
    metadata: dict[str, Any]
    drafts: list[ChunkDraft] = field(default_factory=list)

    def emit(self, text: str, chunk_type: str, *, with_word_count: bool) -> None:
        content = text.strip()
        if not content:
            return
        pages = self.metadata.get("pages")
        self.drafts.append(
            ChunkDraft(
                content=content,
                metadata=ChunkMetadata(
                    title=self.title,
                    source=self.source,
                    chunk_index=len(self.drafts),
                    chunk_type=chunk_type,
                    word_count=len(content.split()) if with_word_count else None,
                    pages=pages if isinstance(pages, int) else None,
                    extra={
                        k: v for k, v in self.metadata.items() if k not in _RESERVED_KEYS
                    },
                ),
            )
        )


class DocumentChunker:
    """Splits document text into overlapping, size-bounded passages.

    Two strategies are used depending on where the text came from:

    1. Line-based (plain text, markdown, spreadsheets rendered as text).
       Lines are accumulated until the next one would push the chunk past
       `chunk_size`. The flushed chunk's trailing `chunk_overlap // 10` words
       seed the next chunk so context carries across the boundary. The seed is
       shortened when seed + line would not fit.

    2. Prose-aware (PDF extractions). Text is split on blank-line paragraphs,
       or on sentence boundaries when there are no paragraph breaks, and the
       sections are packed up to `chunk_size`. A section that is larger than
       `chunk_size` on its own is cut on word boundaries into
       `pdf_chunk_large` pieces.

    A chunk only exceeds `chunk_size` when it is a single word that cannot be
    split any further.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(
        self,
        content: str,
        title: str,
        source: str,
        metadata: dict[str, Any] | None = None,
    ) -> list[ChunkDraft]:
        """Chunk one document.

        Args:
            content: Full document text.
            title: Document title, copied to every chunk for display.
            source: Source locator, copied to every chunk.
            metadata: Ingestion metadata (`fileType`, `fileName`, `pages`, ...).

        Returns:
            Ordered drafts with zero-based `chunk_index` values. Empty when the
            content is blank.
        """

        metadata = dict(metadata or {})
        state = _ChunkState(title=title, source=source, metadata=metadata)
        if not content.strip():
            return []

        prose = self.is_pdf_like(source, metadata)
        if prose:
            self._chunk_prose(content, state)
        else:
            self._chunk_lines(content, state)

        logger.debug(
            "Chunked %r into %d chunks (%s)",
            title,
            len(state.drafts),
            "prose" if prose else "lines",
        )
        return state.drafts

    @staticmethod
    def is_pdf_like(source: str, metadata: dict[str, Any]) -> bool:
        file_type = str(metadata.get("fileType", "")).lower()
        file_name = str(metadata.get("fileName", "")).lower()
        return (
            file_type == "pdf"
            or ".pdf" in source.lower()
            or file_name.endswith(".pdf")
        )

    def _chunk_lines(self, content: str, state: _ChunkState) -> None:
        size = self.config.chunk_size
        current = ""

        for line in content.split("\n"):
            for piece in self._fit_line(line):
                if not current.strip():
                    current = piece
                    continue
                if len(current) + 1 + len(piece) <= size:
                    current = f"{current}\n{piece}"
                    continue

                flushed = current.strip()
                state.emit(flushed, TEXT_CHUNK, with_word_count=False)
                seed = self._overlap_seed(flushed, len(piece))
                current = f"{seed} {piece}" if seed else piece

        state.emit(current, TEXT_CHUNK, with_word_count=False)

    def _chunk_prose(self, content: str, state: _ChunkState) -> None:
        size = self.config.chunk_size
        sections = self._split_paragraphs(content)
        separator = "\n\n"
        if len(sections) == 1:
            sections = self._split_sentences(content)
            separator = " "

        current = ""
        for section in sections:
            if len(section) > size:
                state.emit(current, PDF_CHUNK, with_word_count=True)
                pieces = self._split_words(section)
                for piece in pieces[:-1]:
                    state.emit(piece, PDF_CHUNK_LARGE, with_word_count=True)
                current = pieces[-1] if pieces else ""
                continue

            if current and len(current) + len(separator) + len(section) > size:
                state.emit(current, PDF_CHUNK, with_word_count=True)
                current = section
            else:
                current = f"{current}{separator}{section}" if current else section

        state.emit(current, PDF_CHUNK, with_word_count=True)

    def _fit_line(self, line: str) -> list[str]:
        if len(line) <= self.config.chunk_size:
            return [line]
        return self._split_words(line)

    def _split_words(self, text: str) -> list[str]:
        size = self.config.chunk_size
        pieces: list[str] = []
        current = ""
        for word in text.split():
            if current and len(current) + 1 + len(word) > size:
                pieces.append(current)
                current = word
            else:
                current = f"{current} {word}" if current else word
        if current:
            pieces.append(current)
        return pieces

    def _overlap_seed(self, flushed: str, next_length: int) -> str:
        count = self.config.overlap_words
        if count <= 0:
            return ""
        words = flushed.split()[-count:]
        budget = self.config.chunk_size - next_length - 1
        while words and len(" ".join(words)) > budget:
            words = words[1:]
        return " ".join(words)

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        return [part.strip() for part in _PARAGRAPH_SPLIT.split(text) if part.strip()]

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        return [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]
