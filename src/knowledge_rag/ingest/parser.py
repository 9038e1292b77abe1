"""File parsers that feed plain text into the indexer.

Binary formats (PDF, DOCX, XLSX) are extracted upstream; their text arrives
through `DocumentIndexer.add_document` with `fileType` set in the metadata.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from knowledge_rag.types import ParsedDocument


class Parser(ABC):
    """Base parser interface used by the indexer."""

    extensions: tuple[str, ...] = ()
    file_type: str = "text"

    @abstractmethod
    def extract_text(self, path: Path) -> tuple[str, dict[str, Any]]:
        """Return the text of the file and any format-specific metadata."""

    def parse(self, path: Path) -> ParsedDocument:
        text, extra = self.extract_text(path)
        metadata: dict[str, Any] = {
            "fileType": self.file_type,
            "fileName": path.name,
            "size": path.stat().st_size,
            **extra,
        }
        return ParsedDocument(
            title=path.name,
            text=text,
            source=f"file://{path.name}",
            metadata=metadata,
        )


class TextParser(Parser):
    """Parser for plain text and log files."""

    extensions = (".txt", ".log", ".csv")
    file_type = "text"

    def extract_text(self, path: Path) -> tuple[str, dict[str, Any]]:
        text = path.read_text(encoding="utf-8")
        return text, {"lineCount": text.count("\n") + 1}


class MarkdownParser(Parser):
    """Parser for markdown documents."""

    extensions = (".md", ".markdown")
    file_type = "markdown"

    def extract_text(self, path: Path) -> tuple[str, dict[str, Any]]:
        text = path.read_text(encoding="utf-8")
        headings = [line.lstrip("#").strip() for line in text.splitlines() if line.startswith("#")]
        return text, {"headings": headings[:20]}


class JsonParser(Parser):
    """Parser for JSON documents; the payload is pretty-printed line by line."""

    extensions = (".json",)
    file_type = "json"

    def extract_text(self, path: Path) -> tuple[str, dict[str, Any]]:
        payload: Any = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            return (
                json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2),
                {"keys": sorted(payload.keys())},
            )
        if isinstance(payload, list):
            return json.dumps(payload, ensure_ascii=False, indent=2), {"length": len(payload)}
        return str(payload), {}


class ParserRegistry:
    """Maps file extension to parser implementation."""

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._parsers: dict[str, Parser] = {}
        for parser in parsers or [TextParser(), MarkdownParser(), JsonParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._parsers[extension.lower()] = parser

    def parse_path(self, path: str | Path) -> ParsedDocument:
        file_path = Path(path)
        parser = self._parsers.get(file_path.suffix.lower())
        if parser is None:
            raise ValueError(f"No parser registered for extension: {file_path.suffix}")
        return parser.parse(file_path)
