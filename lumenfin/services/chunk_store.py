# =============================================================================
# Chunk Store — Tenant-Scoped Persistence Behind a Protocol
# =============================================================================
#
# The only component that reads or writes chunk records. Every operation
# takes the tenant id explicitly and filters on it inside the datastore
# query itself; no method returns, counts or ranks another tenant's rows.
#
# ARCHITECTURE:
#   ChunkStore (Protocol)
#   ├── PgVectorChunkStore — PostgreSQL + pgvector (HNSW cosine index)
#   │   └── search()       — tenant predicate in the same WHERE clause as
#   │                        the distance ordering; ef_search = candidates
#   └── ChromaChunkStore   — ChromaDB collection in cosine space
#       └── search()       — tenant predicate as the query `where` clause
#
# Both backends stamp rows with the embedding model that produced them.
# Similarity operations only consider rows of the configured model, so two
# dimensionalities never meet in one computation. Deletes ignore the model:
# removing a file removes every copy of it.
#
# DESIGN DECISION: All methods are async. The pgvector store awaits the
# async engine; ChromaDB's client is synchronous, so its calls run in
# asyncio.to_thread() to keep the event loop free.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

import chromadb
import httpx
from chromadb.errors import ChromaError
from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError

from lumenfin.config import Settings, settings as default_settings
from lumenfin.db.engine import ChunkDatabase
from lumenfin.db.models import Chunk, indexed_embedding
from lumenfin.exceptions import IndexConfigurationError, StoreError

logger = logging.getLogger(__name__)

# Driver-level failures (refused connections, pool and connect timeouts) can
# surface without SQLAlchemy wrapping them.
_DATABASE_ERRORS = (SQLAlchemyError, OSError, TimeoutError)

_CHROMA_ERRORS = (ChromaError, httpx.HTTPError, OSError)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ChunkRecord:
    """A chunk as written by the ingestion pipeline."""

    user_id: str
    file_name: str
    page_number: int
    chunk_index: int
    content: str
    embedding: list[float]
    embedding_model: str
    uploaded_at: datetime
    token_count: int = 0
    metadata: dict = field(default_factory=dict)


@dataclass
class StoredChunk:
    """A persisted chunk with its vector, as loaded for exact ranking."""

    chunk_id: str
    user_id: str
    file_name: str
    page_number: int
    content: str
    embedding: list[float]
    uploaded_at: datetime | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class SearchResult:
    """
    One ranked hit. `score` is cosine similarity (higher = more relevant).
    """

    chunk_id: str
    user_id: str
    file_name: str
    page_number: int
    content: str
    score: float
    uploaded_at: datetime | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class FileSummary:
    """One row of a tenant's document vault listing."""

    file_name: str
    chunk_count: int
    uploaded_at: datetime | None


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class ChunkStore(Protocol):
    """Persistence interface shared by the pgvector and ChromaDB stores."""

    async def insert_many(self, chunks: Sequence[ChunkRecord]) -> int:
        """
        Persist one batch atomically. Returns the number of rows written.
        """
        ...

    async def search(
        self,
        query_vector: list[float],
        user_id: str,
        top_k: int,
        num_candidates: int,
    ) -> list[SearchResult]:
        """
        Managed-index similarity search, tenant-filtered before ranking.

        Returns at most `top_k` results, best first.
        """
        ...

    async def load_tenant_chunks(self, user_id: str) -> list[StoredChunk]:
        """All of a tenant's searchable chunks, in insertion order."""
        ...

    async def delete_by_tenant_and_file(self, user_id: str, file_name: str) -> int:
        ...

    async def delete_by_tenant(self, user_id: str) -> int:
        ...

    async def count_documents(self, user_id: str | None = None) -> int:
        """Searchable chunks for one tenant, or across all tenants."""
        ...

    async def list_files(self, user_id: str) -> list[FileSummary]:
        """Per-file chunk counts and latest upload time, newest first."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: pgvector (PostgreSQL)
# ---------------------------------------------------------------------------


class PgVectorChunkStore:
    """
    pgvector-backed chunk store.

    Every call opens one session from the injected ChunkDatabase and
    releases it before returning.

    DESIGN DECISION: pgvector applies WHERE predicates while walking the
    HNSW graph only when iterative index scans are enabled (pgvector 0.8+).
    We enable them per transaction so a small tenant inside a large table
    still receives its own nearest neighbours rather than whatever survives
    filtering of the global candidate list.
    """

    def __init__(self, database: ChunkDatabase, config: Settings | None = None) -> None:
        self._db = database
        self._config = config or default_settings
        self._model = self._config.embedding_model
        self._index_name = self._config.vector_index_name
        self._index_verified = False

    async def insert_many(self, chunks: Sequence[ChunkRecord]) -> int:
        if not chunks:
            return 0

        try:
            async with self._db.session() as session:
                session.add_all([
                    Chunk(
                        user_id=c.user_id,
                        file_name=c.file_name,
                        page_number=c.page_number,
                        chunk_index=c.chunk_index,
                        token_count=c.token_count,
                        content=c.content,
                        embedding=c.embedding,
                        embedding_model=c.embedding_model,
                        uploaded_at=c.uploaded_at,
                        metadata_=c.metadata,
                    )
                    for c in chunks
                ])
        except _DATABASE_ERRORS as exc:
            raise self._classify(exc) from exc

        logger.info(
            "Stored %d chunks for user=%s file='%s' in pgvector",
            len(chunks), chunks[0].user_id, chunks[0].file_name,
        )
        return len(chunks)

    async def search(
        self,
        query_vector: list[float],
        user_id: str,
        top_k: int,
        num_candidates: int,
    ) -> list[SearchResult]:
        """
        Cosine search through the HNSW index.

        pgvector's cosine_distance() is in [0, 2]; 1 - distance is the
        cosine similarity.
        """
        await self._ensure_index()

        distance = indexed_embedding().cosine_distance(query_vector).label("distance")
        stmt = (
            select(Chunk, distance)
            .where(Chunk.user_id == user_id, Chunk.embedding_model == self._model)
            .order_by(distance)
            .limit(top_k)
        )

        try:
            async with self._db.session() as session:
                await session.execute(
                    text("SELECT set_config('hnsw.ef_search', :ef, true)"),
                    {"ef": str(max(num_candidates, top_k))},
                )
                await session.execute(
                    text("SELECT set_config('hnsw.iterative_scan', 'strict_order', true)")
                )
                rows = (await session.execute(stmt)).all()
        except _DATABASE_ERRORS as exc:
            raise self._classify(exc) from exc

        # Equal distances fall back to insertion order
        rows = sorted(rows, key=lambda row: (row.distance, row[0].id))

        logger.debug(
            "pgvector search returned %d rows (user=%s, top_k=%d, candidates=%d)",
            len(rows), user_id, top_k, num_candidates,
        )
        return [
            SearchResult(
                chunk_id=str(chunk.id),
                user_id=chunk.user_id,
                file_name=chunk.file_name,
                page_number=chunk.page_number,
                content=chunk.content,
                score=1.0 - dist,
                uploaded_at=chunk.uploaded_at,
                metadata=chunk.metadata_ or {},
            )
            for chunk, dist in rows
        ]

    async def load_tenant_chunks(self, user_id: str) -> list[StoredChunk]:
        stmt = (
            select(Chunk)
            .where(Chunk.user_id == user_id, Chunk.embedding_model == self._model)
            .order_by(Chunk.id)
        )
        try:
            async with self._db.session() as session:
                chunks = (await session.execute(stmt)).scalars().all()
        except _DATABASE_ERRORS as exc:
            raise self._classify(exc) from exc

        return [
            StoredChunk(
                chunk_id=str(c.id),
                user_id=c.user_id,
                file_name=c.file_name,
                page_number=c.page_number,
                content=c.content,
                embedding=[float(x) for x in c.embedding],
                uploaded_at=c.uploaded_at,
                metadata=c.metadata_ or {},
            )
            for c in chunks
        ]

    async def delete_by_tenant_and_file(self, user_id: str, file_name: str) -> int:
        return await self._delete(
            delete(Chunk).where(Chunk.user_id == user_id, Chunk.file_name == file_name)
        )

    async def delete_by_tenant(self, user_id: str) -> int:
        return await self._delete(delete(Chunk).where(Chunk.user_id == user_id))

    async def count_documents(self, user_id: str | None = None) -> int:
        stmt = (
            select(func.count())
            .select_from(Chunk)
            .where(Chunk.embedding_model == self._model)
        )
        if user_id is not None:
            stmt = stmt.where(Chunk.user_id == user_id)

        try:
            async with self._db.session() as session:
                return int((await session.execute(stmt)).scalar_one())
        except _DATABASE_ERRORS as exc:
            raise self._classify(exc) from exc

    async def list_files(self, user_id: str) -> list[FileSummary]:
        latest = func.max(Chunk.uploaded_at).label("uploaded_at")
        stmt = (
            select(Chunk.file_name, func.count(Chunk.id).label("chunk_count"), latest)
            .where(Chunk.user_id == user_id)
            .group_by(Chunk.file_name)
            .order_by(latest.desc())
        )
        try:
            async with self._db.session() as session:
                rows = (await session.execute(stmt)).all()
        except _DATABASE_ERRORS as exc:
            raise self._classify(exc) from exc

        return [
            FileSummary(file_name=name, chunk_count=count, uploaded_at=uploaded_at)
            for name, count, uploaded_at in rows
        ]

    # -- internals ----------------------------------------------------------

    async def _delete(self, stmt) -> int:
        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
        except _DATABASE_ERRORS as exc:
            raise self._classify(exc) from exc
        return result.rowcount or 0

    async def _ensure_index(self) -> None:
        """Fail with IndexConfigurationError if the HNSW index is missing."""
        if self._index_verified:
            return

        try:
            async with self._db.session() as session:
                found = (await session.execute(
                    text(
                        "SELECT indexdef FROM pg_indexes "
                        "WHERE tablename = :table AND indexname = :name"
                    ),
                    {"table": Chunk.__tablename__, "name": self._index_name},
                )).scalar_one_or_none()
        except _DATABASE_ERRORS as exc:
            raise self._classify(exc) from exc

        if found is None:
            raise IndexConfigurationError(self._index_name)
        if "hnsw" not in found.lower() or "cosine" not in found.lower():
            raise IndexConfigurationError(
                self._index_name,
                f"Vector index '{self._index_name}' exists but is not a cosine "
                f"HNSW index: {found}",
            )
        self._index_verified = True

    def _classify(self, exc: Exception) -> IndexConfigurationError | StoreError:
        # Driver message only; the SQL text itself mentions hnsw settings
        message = str(getattr(exc, "orig", None) or exc)
        if self._index_name in message or "hnsw" in message.lower():
            return IndexConfigurationError(self._index_name, f"Vector index error: {message}")
        return StoreError(f"Chunk store operation failed: {message}")


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaChunkStore:
    """
    ChromaDB-backed chunk store.

    One collection holds every tenant; tenant and model filters go into the
    `where` clause of each call, so Chroma applies them before ranking.

    Chroma ids carry no order, so each chunk gets an increasing `seq`
    metadata value at insertion time and ties are broken on it.
    """

    def __init__(
        self,
        config: Settings | None = None,
        client: chromadb.ClientAPI | None = None,
        collection_name: str | None = None,
    ) -> None:
        self._config = config or default_settings
        self._model = self._config.embedding_model
        self._last_seq = 0

        if client is None:
            if self._config.chroma_url:
                # Client/server mode (Docker deployment)
                client = chromadb.HttpClient(host=self._config.chroma_url)
            else:
                # In-process mode (local development, tests)
                client = chromadb.Client()
        self._client = client

        name = collection_name or self._config.chroma_collection
        self._collection = client.get_or_create_collection(
            name=name,
            metadata={
                "hnsw:space": "cosine",
                "hnsw:search_ef": self._config.num_candidates,
            },
        )
        space = (self._collection.metadata or {}).get("hnsw:space")
        if space is not None and space != "cosine":
            raise IndexConfigurationError(
                name,
                f"Chroma collection '{name}' uses '{space}' distance; cosine is required.",
            )

    async def insert_many(self, chunks: Sequence[ChunkRecord]) -> int:
        if not chunks:
            return 0

        base = self._next_seq(len(chunks))
        ids = [
            f"{c.user_id}:{c.file_name}:{base + i}"
            for i, c in enumerate(chunks)
        ]
        metadatas = [
            _sanitise_chroma_metadata({
                **c.metadata,
                "user_id": c.user_id,
                "file_name": c.file_name,
                "page_number": c.page_number,
                "chunk_index": c.chunk_index,
                "token_count": c.token_count,
                "embedding_model": c.embedding_model,
                "uploaded_at": c.uploaded_at.isoformat(),
                "seq": base + i,
            })
            for i, c in enumerate(chunks)
        ]

        # A single add() call either lands entirely or raises
        await self._run(
            "insert",
            self._collection.add,
            ids=ids,
            documents=[c.content for c in chunks],
            embeddings=[c.embedding for c in chunks],
            metadatas=metadatas,
        )
        logger.info(
            "Stored %d chunks for user=%s file='%s' in ChromaDB",
            len(chunks), chunks[0].user_id, chunks[0].file_name,
        )
        return len(chunks)

    async def search(
        self,
        query_vector: list[float],
        user_id: str,
        top_k: int,
        num_candidates: int,
    ) -> list[SearchResult]:
        where = self._tenant_filter(user_id)

        def _sync_search() -> list[SearchResult]:
            in_scope = len(self._collection.get(where=where, include=["metadatas"])["ids"])
            if in_scope == 0 or top_k <= 0:
                return []

            results = self._collection.query(
                query_embeddings=[query_vector],
                n_results=min(top_k, in_scope),
                where=where,
                include=["documents", "metadatas", "distances"],
            )

            hits: list[tuple[float, int, SearchResult]] = []
            if results and results["ids"] and results["ids"][0]:
                for i, chroma_id in enumerate(results["ids"][0]):
                    distance = results["distances"][0][i]
                    metadata = dict(results["metadatas"][0][i] or {})
                    hits.append((
                        distance,
                        int(metadata.get("seq", 0)),
                        _to_result(chroma_id, results["documents"][0][i], metadata,
                                   score=1.0 - distance),
                    ))

            # Equal distances fall back to insertion order
            hits.sort(key=lambda hit: (hit[0], hit[1]))
            return [hit[2] for hit in hits]

        results = await self._run("search", _sync_search)
        logger.debug(
            "Chroma search returned %d rows (user=%s, top_k=%d)",
            len(results), user_id, top_k,
        )
        return results

    async def load_tenant_chunks(self, user_id: str) -> list[StoredChunk]:
        where = self._tenant_filter(user_id)

        def _sync_load() -> list[StoredChunk]:
            got = self._collection.get(
                where=where, include=["documents", "metadatas", "embeddings"],
            )
            rows = sorted(
                zip(got["ids"], got["documents"], got["metadatas"], got["embeddings"]),
                key=lambda row: int((row[2] or {}).get("seq", 0)),
            )
            loaded: list[StoredChunk] = []
            for chroma_id, document, metadata, embedding in rows:
                result = _to_result(chroma_id, document, dict(metadata or {}), score=0.0)
                loaded.append(StoredChunk(
                    chunk_id=result.chunk_id,
                    user_id=result.user_id,
                    file_name=result.file_name,
                    page_number=result.page_number,
                    content=result.content,
                    embedding=[float(x) for x in embedding],
                    uploaded_at=result.uploaded_at,
                    metadata=result.metadata,
                ))
            return loaded

        return await self._run("load", _sync_load)

    async def delete_by_tenant_and_file(self, user_id: str, file_name: str) -> int:
        return await self._delete_where(
            {"$and": [{"user_id": user_id}, {"file_name": file_name}]}
        )

    async def delete_by_tenant(self, user_id: str) -> int:
        return await self._delete_where({"user_id": user_id})

    async def count_documents(self, user_id: str | None = None) -> int:
        where = (
            self._tenant_filter(user_id)
            if user_id is not None
            else {"embedding_model": self._model}
        )

        def _sync_count() -> int:
            return len(self._collection.get(where=where, include=["metadatas"])["ids"])

        return await self._run("count", _sync_count)

    async def list_files(self, user_id: str) -> list[FileSummary]:
        def _sync_list() -> list[FileSummary]:
            got = self._collection.get(where={"user_id": user_id}, include=["metadatas"])
            summaries: dict[str, FileSummary] = {}
            for metadata in got["metadatas"]:
                name = metadata["file_name"]
                uploaded_at = _parse_timestamp(metadata.get("uploaded_at"))
                summary = summaries.setdefault(name, FileSummary(name, 0, uploaded_at))
                summary.chunk_count += 1
                if uploaded_at and (summary.uploaded_at is None or uploaded_at > summary.uploaded_at):
                    summary.uploaded_at = uploaded_at
            return sorted(
                summaries.values(),
                key=lambda s: s.uploaded_at.timestamp() if s.uploaded_at else 0.0,
                reverse=True,
            )

        return await self._run("list", _sync_list)

    # -- internals ----------------------------------------------------------

    def _tenant_filter(self, user_id: str) -> dict:
        return {"$and": [{"user_id": user_id}, {"embedding_model": self._model}]}

    async def _run(self, operation: str, func, *args, **kwargs):
        """Run a blocking Chroma call in a worker thread; client failures become StoreError."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except _CHROMA_ERRORS as exc:
            raise StoreError(f"ChromaDB {operation} failed: {exc}") from exc

    def _next_seq(self, count: int) -> int:
        base = max(time.time_ns(), self._last_seq + 1)
        self._last_seq = base + count - 1
        return base

    async def _delete_where(self, where: dict) -> int:
        def _sync_delete() -> int:
            ids = self._collection.get(where=where, include=["metadatas"])["ids"]
            if ids:
                self._collection.delete(ids=ids)
            return len(ids)

        deleted = await self._run("delete", _sync_delete)
        logger.info("Deleted %d chunks from ChromaDB (where=%s)", deleted, where)
        return deleted


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def get_chunk_store(
    database: ChunkDatabase | None = None,
    config: Settings | None = None,
) -> PgVectorChunkStore | ChromaChunkStore:
    """
    Return the configured chunk store backend.

    - "pgvector" → PgVectorChunkStore (requires a ChunkDatabase)
    - "chroma"   → ChromaChunkStore
    """
    config = config or default_settings

    if config.vectorstore_type == "chroma":
        logger.info("Using ChromaDB chunk store")
        return ChromaChunkStore(config=config)

    logger.info("Using pgvector chunk store")
    return PgVectorChunkStore(database or ChunkDatabase(config=config), config=config)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------

_RESERVED_KEYS = {
    "user_id", "file_name", "page_number", "chunk_index",
    "token_count", "embedding_model", "uploaded_at", "seq",
}


def _to_result(chroma_id: str, document: str, metadata: dict, score: float) -> SearchResult:
    return SearchResult(
        chunk_id=chroma_id,
        user_id=metadata.get("user_id", ""),
        file_name=metadata.get("file_name", ""),
        page_number=int(metadata.get("page_number", 1)),
        content=document or "",
        score=score,
        uploaded_at=_parse_timestamp(metadata.get("uploaded_at")),
        metadata={k: v for k, v in metadata.items() if k not in _RESERVED_KEYS},
    )


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    Sanitise metadata for ChromaDB compatibility.

    ChromaDB requires all metadata values to be str, int, float, or bool.
    We convert:
    - list → comma-separated string
    - None → empty string
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            sanitised[key] = ""
        elif isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
