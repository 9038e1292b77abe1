import json
from pathlib import Path

import pytest

from knowledge_rag.ingest.parser import ParserRegistry


def test_text_parser_reports_file_metadata(tmp_path: Path) -> None:
    path = tmp_path / "log.txt"
    path.write_text("one\ntwo\nthree", encoding="utf-8")

    parsed = ParserRegistry().parse_path(path)

    assert parsed.title == "log.txt"
    assert parsed.source == "file://log.txt"
    assert parsed.metadata["fileType"] == "text"
    assert parsed.metadata["lineCount"] == 3
    assert parsed.metadata["size"] == path.stat().st_size


def test_json_parser_pretty_prints_objects(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"b": 1, "a": {"c": 2}}), encoding="utf-8")

    parsed = ParserRegistry().parse_path(path)

    assert parsed.metadata["keys"] == ["a", "b"]
    assert '"c": 2' in parsed.text
    assert len(parsed.text.splitlines()) > 1


def test_unknown_extension_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "archive.zip"
    path.write_bytes(b"PK")

    with pytest.raises(ValueError, match="No parser registered"):
        ParserRegistry().parse_path(path)
