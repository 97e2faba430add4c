# =============================================================================
# Unit Tests — Chunk Store Backends
# =============================================================================
#
# ChromaChunkStore runs against an in-process ChromaDB client, one fresh
# collection per test. PgVectorChunkStore is exercised through a fake
# database handle for index verification and error classification; its
# queries need a live PostgreSQL and are not run here.
# =============================================================================

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import httpx
import pytest
from chromadb.errors import ChromaError
from overrides import overrides
from sqlalchemy.exc import OperationalError, ProgrammingError

from conftest import run
from lumenfin.config import Settings
from lumenfin.exceptions import IndexConfigurationError, StoreError
from lumenfin.services.chunk_store import (
    ChromaChunkStore,
    ChunkRecord,
    PgVectorChunkStore,
    get_chunk_store,
)

UPLOADED = datetime(2024, 11, 1, 9, 30, tzinfo=timezone.utc)


def _config(**overrides) -> Settings:
    values = {"embedding_model": "fake-embedding-3", "embedding_dimensions": 3}
    values.update(overrides)
    return Settings(**values)


def _record(user_id="user-a", file_name="10k.pdf", content="chunk", vector=None,
            page=1, model="fake-embedding-3", uploaded_at=UPLOADED, metadata=None) -> ChunkRecord:
    return ChunkRecord(
        user_id=user_id,
        file_name=file_name,
        page_number=page,
        chunk_index=page - 1,
        content=content,
        embedding=vector or [1.0, 0.0, 0.0],
        embedding_model=model,
        uploaded_at=uploaded_at,
        token_count=3,
        metadata=metadata or {},
    )


@pytest.fixture
def chroma_store() -> ChromaChunkStore:
    return ChromaChunkStore(config=_config(), collection_name=f"test_{uuid4().hex[:8]}")


# ---------------------------------------------------------------------------
# ChromaDB
# ---------------------------------------------------------------------------


class TestChromaInsertAndSearch:
    """Tests for writes and similarity search."""

    def test_insert_returns_count(self, chroma_store):
        assert run(chroma_store.insert_many([_record(), _record(page=2)])) == 2
        assert run(chroma_store.insert_many([])) == 0

    def test_search_ranked_by_cosine(self, chroma_store):
        run(chroma_store.insert_many([
            _record(content="far", vector=[0.0, 1.0, 0.0], page=1),
            _record(content="near", vector=[1.0, 0.1, 0.0], page=2),
            _record(content="middle", vector=[1.0, 1.0, 0.0], page=3),
        ]))

        results = run(chroma_store.search([1.0, 0.0, 0.0], "user-a", top_k=3, num_candidates=50))

        assert [r.content for r in results] == ["near", "middle", "far"]
        assert results[0].score == pytest.approx(0.995, abs=1e-3)
        assert results[0].page_number == 2
        assert results[0].uploaded_at == UPLOADED

    def test_search_never_returns_other_tenants(self, chroma_store):
        run(chroma_store.insert_many([
            _record(user_id="user-a", content="mine", vector=[0.0, 1.0, 0.0]),
            _record(user_id="user-b", content="theirs", vector=[1.0, 0.0, 0.0]),
        ]))

        results = run(chroma_store.search([1.0, 0.0, 0.0], "user-a", top_k=5, num_candidates=50))

        assert [r.content for r in results] == ["mine"]

    def test_search_respects_top_k(self, chroma_store):
        run(chroma_store.insert_many([
            _record(content=f"c{i}", vector=[1.0, float(i), 0.0], page=i + 1) for i in range(6)
        ]))

        results = run(chroma_store.search([1.0, 0.0, 0.0], "user-a", top_k=2, num_candidates=50))

        assert [r.content for r in results] == ["c0", "c1"]

    def test_search_empty_tenant(self, chroma_store):
        run(chroma_store.insert_many([_record(user_id="user-b")]))
        assert run(chroma_store.search([1.0, 0.0, 0.0], "user-a", top_k=4, num_candidates=50)) == []

    def test_search_ignores_other_embedding_models(self, chroma_store):
        run(chroma_store.insert_many([
            _record(content="old model", model="legacy-768"),
            _record(content="current", vector=[0.0, 1.0, 0.0]),
        ]))

        results = run(chroma_store.search([1.0, 0.0, 0.0], "user-a", top_k=4, num_candidates=50))

        assert [r.content for r in results] == ["current"]

    def test_custom_metadata_round_trips(self, chroma_store):
        run(chroma_store.insert_many([
            _record(metadata={"section_title": "Item 7", "contains_table": True, "missing": None}),
        ]))

        [result] = run(chroma_store.search([1.0, 0.0, 0.0], "user-a", top_k=1, num_candidates=10))

        assert result.metadata == {"section_title": "Item 7", "contains_table": True, "missing": ""}


class TestChromaLoadAndCount:
    """Tests for exact-mode loading and counting."""

    def test_load_in_insertion_order(self, chroma_store):
        run(chroma_store.insert_many([_record(content="first"), _record(content="second")]))
        run(chroma_store.insert_many([_record(content="third")]))
        run(chroma_store.insert_many([_record(user_id="user-b", content="other")]))

        chunks = run(chroma_store.load_tenant_chunks("user-a"))

        assert [c.content for c in chunks] == ["first", "second", "third"]
        assert chunks[0].embedding == pytest.approx([1.0, 0.0, 0.0])

    def test_count_per_tenant_and_total(self, chroma_store):
        run(chroma_store.insert_many([_record(), _record(), _record(user_id="user-b")]))

        assert run(chroma_store.count_documents("user-a")) == 2
        assert run(chroma_store.count_documents("user-c")) == 0
        assert run(chroma_store.count_documents()) == 3

    def test_list_files_newest_first(self, chroma_store):
        later = UPLOADED + timedelta(days=3)
        run(chroma_store.insert_many([
            _record(file_name="q1.pdf"), _record(file_name="q1.pdf"),
            _record(file_name="q2.pdf", uploaded_at=later),
            _record(user_id="user-b", file_name="private.pdf"),
        ]))

        files = run(chroma_store.list_files("user-a"))

        assert [(f.file_name, f.chunk_count) for f in files] == [("q2.pdf", 1), ("q1.pdf", 2)]
        assert files[0].uploaded_at == later


class TestChromaDelete:
    """Tests for tenant-scoped deletes."""

    def test_delete_file_only_touches_that_tenant(self, chroma_store):
        run(chroma_store.insert_many([
            _record(file_name="shared-name.pdf"),
            _record(file_name="shared-name.pdf"),
            _record(file_name="keep.pdf"),
            _record(user_id="user-b", file_name="shared-name.pdf"),
        ]))

        deleted = run(chroma_store.delete_by_tenant_and_file("user-a", "shared-name.pdf"))

        assert deleted == 2
        assert run(chroma_store.count_documents("user-a")) == 1
        assert run(chroma_store.count_documents("user-b")) == 1

    def test_delete_is_idempotent(self, chroma_store):
        run(chroma_store.insert_many([_record()]))

        assert run(chroma_store.delete_by_tenant_and_file("user-a", "10k.pdf")) == 1
        assert run(chroma_store.delete_by_tenant_and_file("user-a", "10k.pdf")) == 0

    def test_delete_tenant(self, chroma_store):
        run(chroma_store.insert_many([
            _record(file_name="a.pdf"), _record(file_name="b.pdf"),
            _record(user_id="user-b"),
        ]))

        assert run(chroma_store.delete_by_tenant("user-a")) == 2
        assert run(chroma_store.count_documents("user-a")) == 0
        assert run(chroma_store.count_documents("user-b")) == 1


class TestChromaConfiguration:
    """Tests for collection validation."""

    def test_wrong_distance_space_rejected(self):
        client = MagicMock()
        client.get_or_create_collection.return_value.metadata = {"hnsw:space": "l2"}

        with pytest.raises(IndexConfigurationError):
            ChromaChunkStore(config=_config(), client=client, collection_name="legacy")

    def test_collection_created_with_cosine_space(self):
        client = MagicMock()
        client.get_or_create_collection.return_value.metadata = {"hnsw:space": "cosine"}

        ChromaChunkStore(config=_config(num_candidates=300), client=client, collection_name="c")

        metadata = client.get_or_create_collection.call_args.kwargs["metadata"]
        assert metadata == {"hnsw:space": "cosine", "hnsw:search_ef": 300}

    def test_factory_selects_chroma(self):
        store = get_chunk_store(config=_config(vectorstore_type="chroma",
                                               chroma_collection=f"test_{uuid4().hex[:8]}"))
        assert isinstance(store, ChromaChunkStore)


class _ServerUnavailable(ChromaError):
    @classmethod
    @overrides
    def name(cls) -> str:
        return "ServerUnavailable"

    @overrides
    def code(self) -> int:
        return 503


def _failing_chroma_store(**collection_errors) -> ChromaChunkStore:
    client = MagicMock()
    collection = client.get_or_create_collection.return_value
    collection.metadata = {"hnsw:space": "cosine"}
    for method, error in collection_errors.items():
        getattr(collection, method).side_effect = error
    return ChromaChunkStore(config=_config(), client=client, collection_name="c")


class TestChromaErrorClassification:
    """Client failures surface as retryable StoreError."""

    def test_insert_failure(self):
        store = _failing_chroma_store(add=_ServerUnavailable("server unavailable"))

        with pytest.raises(StoreError) as exc_info:
            run(store.insert_many([_record()]))

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, ChromaError)

    def test_search_transport_failure(self):
        store = _failing_chroma_store(get=httpx.ConnectError("connection refused"))

        with pytest.raises(StoreError):
            run(store.search([1.0, 0.0, 0.0], "user-a", top_k=4, num_candidates=100))

    def test_read_and_delete_failures(self):
        store = _failing_chroma_store(get=_ServerUnavailable("server unavailable"))

        for call in (
            store.load_tenant_chunks("user-a"),
            store.count_documents("user-a"),
            store.list_files("user-a"),
            store.delete_by_tenant("user-a"),
        ):
            with pytest.raises(StoreError):
                run(call)


# ---------------------------------------------------------------------------
# pgvector
# ---------------------------------------------------------------------------


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar_one_or_none(self):
        return self._value


class _FakeDatabase:
    """Stands in for ChunkDatabase; every execute() returns `value` or raises `error`."""

    def __init__(self, value=None, error=None):
        self.value = value
        self.error = error
        self.statements = []

    @asynccontextmanager
    async def session(self):
        session = MagicMock()

        async def execute(stmt, params=None):
            self.statements.append(stmt)
            if self.error is not None:
                raise self.error
            return _FakeResult(self.value)

        session.execute = execute
        yield session


class TestPgVectorIndexCheck:
    """Tests for the HNSW index verification before searching."""

    def test_missing_index(self):
        store = PgVectorChunkStore(_FakeDatabase(value=None), config=_config())

        with pytest.raises(IndexConfigurationError) as exc_info:
            run(store._ensure_index())

        assert exc_info.value.kind == "configuration"
        assert exc_info.value.index_name == "idx_financial_chunks_embedding_hnsw"

    def test_wrong_metric(self):
        indexdef = (
            "CREATE INDEX idx_financial_chunks_embedding_hnsw ON financial_chunks "
            "USING hnsw (embedding vector_l2_ops)"
        )
        store = PgVectorChunkStore(_FakeDatabase(value=indexdef), config=_config())

        with pytest.raises(IndexConfigurationError):
            run(store._ensure_index())

    def test_valid_index_checked_once(self):
        indexdef = (
            "CREATE INDEX idx_financial_chunks_embedding_hnsw ON financial_chunks "
            "USING hnsw (((embedding)::halfvec(3072)) halfvec_cosine_ops)"
        )
        database = _FakeDatabase(value=indexdef)
        store = PgVectorChunkStore(database, config=_config())

        run(store._ensure_index())
        run(store._ensure_index())

        assert len(database.statements) == 1

    def test_missing_index_fails_search_before_querying(self):
        database = _FakeDatabase(value=None)
        store = PgVectorChunkStore(database, config=_config())

        with pytest.raises(IndexConfigurationError):
            run(store.search([1.0, 0.0, 0.0], "user-a", top_k=4, num_candidates=100))

        assert len(database.statements) == 1


class TestPgVectorErrorClassification:
    """Tests for mapping driver errors onto the error taxonomy."""

    def test_connection_failure_is_store_error(self):
        store = PgVectorChunkStore(
            _FakeDatabase(error=OperationalError("SELECT 1", {}, Exception("connection reset"))),
            config=_config(),
        )

        with pytest.raises(StoreError) as exc_info:
            run(store.count_documents("user-a"))

        assert exc_info.value.retryable is True

    @pytest.mark.parametrize(
        "error",
        [ConnectionRefusedError(111, "Connection refused"), TimeoutError()],
    )
    def test_unwrapped_driver_failure_is_store_error(self, error):
        store = PgVectorChunkStore(_FakeDatabase(error=error), config=_config())

        with pytest.raises(StoreError) as exc_info:
            run(store.list_files("user-a"))

        assert exc_info.value.__cause__ is error

    def test_index_failure_is_configuration_error(self):
        error = ProgrammingError(
            "SELECT ...", {}, Exception("access method \"hnsw\" does not exist"),
        )
        store = PgVectorChunkStore(_FakeDatabase(error=error), config=_config())

        with pytest.raises(IndexConfigurationError):
            run(store._ensure_index())
