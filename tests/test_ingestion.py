# =============================================================================
# Unit Tests — Ingestion Pipeline
# =============================================================================
#
# Uses the in-memory fakes from conftest with failure injection to check
# batch ordering and partial-progress reporting. The Docling parser is
# replaced with a function returning a hand-built ParsedDocument. One test
# runs against an in-process ChromaDB collection.
# =============================================================================

from unittest.mock import patch
from uuid import uuid4

import pytest
from chromadb.errors import ChromaError
from overrides import overrides

from conftest import FakeEmbedder, InMemoryChunkStore, run
from lumenfin.config import Settings
from lumenfin.exceptions import (
    EmbeddingError,
    PartialIngestionError,
    RateLimitError,
    StoreError,
    UnsupportedFileTypeError,
)
from lumenfin.services.chunk_store import ChromaChunkStore
from lumenfin.services.ingestion import IngestionPipeline
from lumenfin.services.parser import ParsedDocument, ParsedElement, validate_upload
from lumenfin.services.segmenter import Segment, TextSegmenter


class _ServerUnavailable(ChromaError):
    @classmethod
    @overrides
    def name(cls) -> str:
        return "ServerUnavailable"


def _segments(count: int) -> list[Segment]:
    return [
        Segment(
            content=f"Segment {i} of the annual report.",
            page_number=i // 10 + 1,
            chunk_index=i,
            token_count=8,
        )
        for i in range(count)
    ]


def _pipeline(embedder, store, batch_size=50, parser=None) -> IngestionPipeline:
    kwargs = {"parser": parser} if parser else {}
    return IngestionPipeline(
        embedder=embedder,
        store=store,
        segmenter=TextSegmenter(chunk_size=500, chunk_overlap=100),
        batch_size=batch_size,
        **kwargs,
    )


class TestIndexSegments:
    """Tests for batching and partial progress."""

    def test_all_batches_persisted(self, embedder, store):
        result = run(_pipeline(embedder, store).index_segments(_segments(120), "10k.pdf", "user-a"))

        assert result.status == "completed"
        assert result.total_chunks == 120
        assert result.indexed_chunks == 120
        assert result.batches == 3
        assert len(store.rows) == 120
        assert [len(call) for call in embedder.calls] == [50, 50, 20]

    def test_every_record_tagged_with_tenant_and_model(self, embedder, store):
        run(_pipeline(embedder, store).index_segments(_segments(5), "10k.pdf", "user-a"))

        for _, record in store.rows:
            assert record.user_id == "user-a"
            assert record.file_name == "10k.pdf"
            assert record.embedding_model == "fake-embedding-3"
            assert len(record.embedding) == 3

    def test_batch_shares_upload_timestamp(self, embedder, store):
        run(_pipeline(embedder, store, batch_size=2).index_segments(_segments(5), "a.pdf", "u"))
        assert len({record.uploaded_at for _, record in store.rows}) == 1

    def test_batches_strictly_sequential(self):
        events: list[str] = []
        embedder = FakeEmbedder(events=events)
        store = InMemoryChunkStore(events=events)

        run(_pipeline(embedder, store).index_segments(_segments(150), "a.pdf", "u"))

        assert events == ["embed:1", "insert:1", "embed:2", "insert:2", "embed:3", "insert:3"]

    def test_no_segments_reports_empty(self, embedder, store):
        result = run(_pipeline(embedder, store).index_segments([], "blank.pdf", "user-a"))

        assert result.status == "empty"
        assert result.indexed_chunks == 0
        assert embedder.calls == []
        assert store.insert_calls == 0

    def test_store_failure_in_third_batch_is_partial(self, embedder):
        store = InMemoryChunkStore(fail_on_insert=3)

        with pytest.raises(PartialIngestionError) as exc_info:
            run(_pipeline(embedder, store).index_segments(_segments(250), "10k.pdf", "user-a"))

        error = exc_info.value
        assert error.committed == 100
        assert error.total == 250
        assert isinstance(error.cause, StoreError)
        assert error.__cause__ is error.cause
        assert error.retryable is True
        # Batches 1 and 2 stay persisted and nothing after the failure runs
        assert len(store.rows) == 100
        assert len(embedder.calls) == 3

    def test_embedding_failure_in_third_batch_is_partial(self, store):
        embedder = FakeEmbedder(fail_on_call=3)

        with pytest.raises(PartialIngestionError) as exc_info:
            run(_pipeline(embedder, store).index_segments(_segments(250), "10k.pdf", "user-a"))

        assert exc_info.value.committed == 100
        assert isinstance(exc_info.value.cause, EmbeddingError)
        assert store.insert_calls == 2

    def test_chroma_failure_in_third_batch_is_partial(self, embedder):
        store = ChromaChunkStore(
            config=Settings(_env_file=None, embedding_model="fake-embedding-3"),
            collection_name=f"ingest_{uuid4().hex[:8]}",
        )
        collection_type = type(store._collection)
        original_add = collection_type.add
        add_calls = []

        def flaky_add(collection, *args, **kwargs):
            add_calls.append(1)
            if len(add_calls) == 3:
                raise _ServerUnavailable("server unavailable")
            return original_add(collection, *args, **kwargs)

        with patch.object(collection_type, "add", flaky_add):
            with pytest.raises(PartialIngestionError) as exc_info:
                run(_pipeline(embedder, store).index_segments(_segments(250), "10k.pdf", "user-a"))

        assert exc_info.value.committed == 100
        assert isinstance(exc_info.value.cause, StoreError)
        assert run(store.count_documents("user-a")) == 100

    def test_first_batch_failure_propagates_original_error(self, store):
        embedder = FakeEmbedder(
            fail_on_call=1,
            error=RateLimitError("embedding", "slow down", retry_after=12),
        )

        with pytest.raises(RateLimitError) as exc_info:
            run(_pipeline(embedder, store).index_segments(_segments(60), "10k.pdf", "user-a"))

        assert exc_info.value.retry_after == 12
        assert store.rows == []

    def test_invalid_batch_size(self, embedder, store):
        with pytest.raises(ValueError):
            _pipeline(embedder, store, batch_size=-1)


class TestSegmentParsedDocument:
    """Tests for turning a ParsedDocument into segments."""

    def test_page_metadata_attached(self, embedder, store):
        parsed = ParsedDocument(
            elements=[
                ParsedElement("Item 7. MD&A", 1, "heading", section_title="Item 7. MD&A"),
                ParsedElement("Revenue grew 2%.", 1, "text", section_title="Item 7. MD&A"),
                ParsedElement("| Year | Revenue |\n|---|---|\n| 2024 | 391 |", 2, "table",
                              section_title="Item 7. MD&A"),
            ],
            page_count=2,
            filename="10k.pdf",
        )

        segments = _pipeline(embedder, store).segment(parsed)

        assert [s.page_number for s in segments] == [1, 2]
        assert segments[0].metadata == {"section_title": "Item 7. MD&A", "contains_table": False}
        assert segments[1].metadata["contains_table"] is True

    def test_no_page_attribution_falls_back_to_segment_index(self, embedder, store):
        text = " ".join(f"token{i:04d}" for i in range(200))
        parsed = ParsedDocument(elements=[ParsedElement(text, 0, "text")], page_count=0)

        segments = _pipeline(embedder, store).segment(parsed)

        assert len(segments) > 1
        assert [s.page_number for s in segments] == list(range(1, len(segments) + 1))

    def test_three_page_document(self, embedder, store):
        pages = {
            1: " ".join(f"alpha{i:03d}" for i in range(133)),   # 1196 chars
            2: " ".join(f"beta{i:03d}" for i in range(50)),     # 399 chars
            3: " ".join(f"gamma{i:03d}" for i in range(180)),   # 1799 chars
        }
        parsed = ParsedDocument(
            elements=[ParsedElement(text, page, "text") for page, text in pages.items()],
            page_count=3,
        )
        pipeline = IngestionPipeline(embedder=embedder, store=store, segmenter=TextSegmenter())

        segments = pipeline.segment(parsed)

        assert [s.page_number for s in segments] == [1, 1, 2, 3, 3]
        assert [s.chunk_index for s in segments] == [0, 1, 2, 3, 4]
        assert all(len(s.content) <= 1000 for s in segments)
        assert segments[2].content == pages[2]


class TestIngest:
    """End-to-end ingest() with an injected parser."""

    def test_ingest_parsed_document(self, embedder, store):
        def parser(data, file_name, mime_type):
            validate_upload(data, mime_type)
            return ParsedDocument(
                elements=[
                    ParsedElement("Net income was $94 billion.", 1, "text"),
                    ParsedElement("Liquidity remained strong.", 2, "text"),
                ],
                page_count=2,
                filename=file_name,
            )

        result = run(_pipeline(embedder, store, parser=parser).ingest(
            b"%PDF-1.7 ...", "10k.pdf", "user-a", "application/pdf",
        ))

        assert result.status == "completed"
        assert result.indexed_chunks == 2
        assert result.to_dict()["file_name"] == "10k.pdf"
        assert [r.page_number for _, r in store.rows] == [1, 2]

    def test_unsupported_type_persists_nothing(self, embedder, store):
        def parser(data, file_name, mime_type):
            validate_upload(data, mime_type)
            raise AssertionError("parser body should not run")

        with pytest.raises(UnsupportedFileTypeError):
            run(_pipeline(embedder, store, parser=parser).ingest(
                b"plain text", "notes.txt", "user-a", "text/plain",
            ))

        assert embedder.calls == []
        assert store.rows == []
