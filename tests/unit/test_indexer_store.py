from pathlib import Path

import pytest

from knowledge_rag.errors import DocumentNotFound, DuplicateContentError, IngestionFailed
from knowledge_rag.ingest.indexer import DocumentIndexer, content_hash
from knowledge_rag.retrieval.store import InMemoryDocumentStore, SqliteDocumentStore
from knowledge_rag.types import Document


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path):
    if request.param == "memory":
        return InMemoryDocumentStore()
    return SqliteDocumentStore(tmp_path / "knowledge.db")


class _RacingStore(InMemoryDocumentStore):
    """Hides existing documents from the pre-check, like a concurrent writer would."""

    def get_document_by_hash(self, content_hash: str) -> Document | None:
        return None


class _BrokenStore(InMemoryDocumentStore):
    def create_document(self, **kwargs):  # type: ignore[override]
        raise RuntimeError("disk full")


def test_same_text_returns_same_document_id(store) -> None:
    indexer = DocumentIndexer(store)

    first = indexer.add_document("T", "same text", "s1", {})
    second = indexer.add_document("T2", "same text", "s2", {})

    assert first == second
    assert len(indexer.list_documents()) == 1


def test_unique_constraint_resolves_concurrent_duplicate() -> None:
    indexer = DocumentIndexer(_RacingStore())

    first = indexer.add_document("A", "identical body", "s1")
    second = indexer.add_document("B", "identical body", "s2")

    assert first == second


def test_store_rejects_duplicate_hash(store) -> None:
    kwargs = dict(
        title="T",
        content="body",
        source="s",
        content_hash=content_hash("body"),
        metadata={},
        chunks=[],
    )
    created = store.create_document(**kwargs)

    with pytest.raises(DuplicateContentError) as excinfo:
        store.create_document(**kwargs)
    assert excinfo.value.existing_id == created.document_id


def test_storage_failure_raises_ingestion_failed() -> None:
    indexer = DocumentIndexer(_BrokenStore())

    with pytest.raises(IngestionFailed) as excinfo:
        indexer.add_document("T", "text", "s")
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_delete_cascades_to_chunks(store) -> None:
    indexer = DocumentIndexer(store)
    keep = indexer.add_document("Keep", "alpha beta gamma", "s1")
    drop = indexer.add_document("Drop", "delta epsilon zeta", "s2")
    assert store.count_chunks(drop) == 1

    assert indexer.delete_document(drop) is True
    assert store.count_chunks(drop) == 0
    assert store.count_chunks() == 1
    assert store.find_chunks("delta", limit=5) == []
    assert indexer.delete_document(drop) is False
    assert [summary.document_id for summary in indexer.list_documents()] == [keep]


def test_list_documents_newest_first_with_chunk_counts(store) -> None:
    indexer = DocumentIndexer(store)
    older = indexer.add_document("Older", "first document", "s1")
    newer = indexer.add_document("Newer", "second document", "s2")

    summaries = indexer.list_documents()

    assert [s.document_id for s in summaries] == [newer, older]
    assert all(s.chunk_count == 1 for s in summaries)


def test_find_chunks_is_case_insensitive_and_filtered(store) -> None:
    indexer = DocumentIndexer(store)
    first = indexer.add_document("One", "Machine Learning basics", "s1")
    indexer.add_document("Two", "machine learning advanced", "s2")

    assert len(store.find_chunks("MACHINE learning", limit=10)) == 2
    filtered = store.find_chunks("machine", limit=10, document_ids=[first])
    assert [chunk.document_id for chunk in filtered] == [first]

    accented = indexer.add_document("Drei", "ÜBERSICHT der ÄRZTE", "s3")
    umlaut_hits = store.find_chunks("übersicht der ärzte", limit=10)
    assert [chunk.document_id for chunk in umlaut_hits] == [accented]


def test_chunk_metadata_survives_storage(store) -> None:
    indexer = DocumentIndexer(store)
    indexer.add_document(
        "Report",
        "Quarterly numbers for the board.",
        "file://report.pdf",
        {"fileType": "pdf", "pages": 3, "department": "finance"},
    )

    chunk = store.find_chunks("quarterly", limit=1)[0]
    assert chunk.metadata.chunk_type == "pdf_chunk"
    assert chunk.metadata.pages == 3
    assert chunk.metadata.word_count == 5
    assert chunk.metadata.extra["department"] == "finance"


def test_entities_are_projected_per_chunk(store) -> None:
    indexer = DocumentIndexer(store)
    indexer.add_document(
        "Bio",
        "Ada Lovelace worked in London.",
        "s",
        entities={"people": ["Ada Lovelace", "Charles Babbage"], "locations": ["London"]},
    )

    chunk = store.find_chunks("lovelace", limit=1)[0]
    assert chunk.metadata.entities is not None
    assert chunk.metadata.entities["people"] == ["Ada Lovelace"]
    assert chunk.metadata.entities["locations"] == ["London"]
    assert chunk.metadata.entities["dates"] == []


def test_upload_text_file_sets_file_metadata() -> None:
    store = InMemoryDocumentStore()
    indexer = DocumentIndexer(store)

    document_id = indexer.upload_text_file("notes.txt", "meeting notes", {"owner": "ops"})

    document = store.get_document(document_id)
    assert document is not None
    assert document.source == "file://notes.txt"
    assert document.metadata == {"type": "text_file", "fileName": "notes.txt", "owner": "ops"}


def test_ingest_path_uses_parser_registry(tmp_path: Path) -> None:
    doc = tmp_path / "policy.md"
    doc.write_text("# Policy\nEncrypt customer data at rest.\n", encoding="utf-8")
    store = InMemoryDocumentStore()
    indexer = DocumentIndexer(store)

    document_id = indexer.ingest_path(doc, extra_metadata={"team": "security"})

    document = store.get_document(document_id)
    assert document is not None
    assert document.title == "policy.md"
    assert document.metadata["fileType"] == "markdown"
    assert document.metadata["headings"] == ["Policy"]
    assert document.metadata["team"] == "security"


def test_get_document_raises_for_unknown_id(store) -> None:
    indexer = DocumentIndexer(store)
    document_id = indexer.add_document("Notes", "Standup notes for Monday", "s1")

    assert indexer.get_document(document_id).title == "Notes"
    with pytest.raises(DocumentNotFound) as excinfo:
        indexer.get_document("missing-id")
    assert excinfo.value.document_id == "missing-id"
