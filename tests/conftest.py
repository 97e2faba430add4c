# =============================================================================
# Shared Test Fixtures — In-Memory Fakes for the Ingestion/Retrieval Core
# =============================================================================
#
# FakeEmbedder and InMemoryChunkStore satisfy the same interfaces as the
# real EmbeddingClient and ChunkStore, with failure injection by call
# number. No network, database, or API keys are needed.
# =============================================================================

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import pytest

from lumenfin.exceptions import EmbeddingError, LumenFinError, StoreError
from lumenfin.services.chunk_store import (
    ChunkRecord,
    FileSummary,
    SearchResult,
    StoredChunk,
)
from lumenfin.services.similarity import rank_exact


def run(coro):
    """Run a coroutine to completion in a fresh event loop."""
    return asyncio.run(coro)


class FakeEmbedder:
    """
    Deterministic 3-d embedder.

    Texts listed in `vectors` get that vector; anything else gets a vector
    derived from its length and letter counts.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        fail_on_call: int | None = None,
        error: LumenFinError | None = None,
        events: list[str] | None = None,
    ) -> None:
        self.model = "fake-embedding-3"
        self.dimensions = 3
        self.vectors = vectors or {}
        self.fail_on_call = fail_on_call
        self.error = error or EmbeddingError("embedding service unavailable")
        self.events = events if events is not None else []
        self.calls: list[list[str]] = []

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        self.events.append(f"embed:{len(self.calls)}")
        if self.fail_on_call == len(self.calls):
            raise self.error
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        return [float(len(text) % 7 + 1), float(text.count("e") + 1), 1.0]


class InMemoryChunkStore:
    """
    ChunkStore kept in a list. `search` ranks the tenant's rows exactly, the
    way a managed index with a tenant pre-filter would.
    """

    def __init__(
        self,
        fail_on_insert: int | None = None,
        error: LumenFinError | None = None,
        events: list[str] | None = None,
    ) -> None:
        self.rows: list[tuple[int, ChunkRecord]] = []
        self.fail_on_insert = fail_on_insert
        self.error = error or StoreError("connection reset")
        self.events = events if events is not None else []
        self.insert_calls = 0
        self.search_calls: list[dict] = []
        self.touched = False
        self._next_id = 0

    async def insert_many(self, chunks: Sequence[ChunkRecord]) -> int:
        self.insert_calls += 1
        self.events.append(f"insert:{self.insert_calls}")
        if self.fail_on_insert == self.insert_calls:
            raise self.error
        for chunk in chunks:
            self._next_id += 1
            self.rows.append((self._next_id, chunk))
        return len(chunks)

    async def search(self, query_vector, user_id, top_k, num_candidates):
        self.touched = True
        self.search_calls.append(
            {"user_id": user_id, "top_k": top_k, "num_candidates": num_candidates}
        )
        ranked = rank_exact(
            query_vector,
            ((row, row[1].embedding) for row in self._tenant_rows(user_id)),
        )
        return [
            SearchResult(
                chunk_id=str(row_id),
                user_id=c.user_id,
                file_name=c.file_name,
                page_number=c.page_number,
                content=c.content,
                score=score,
                uploaded_at=c.uploaded_at,
                metadata=c.metadata,
            )
            for (row_id, c), score in ranked[:top_k]
        ]

    async def load_tenant_chunks(self, user_id):
        self.touched = True
        return [
            StoredChunk(
                chunk_id=str(row_id),
                user_id=c.user_id,
                file_name=c.file_name,
                page_number=c.page_number,
                content=c.content,
                embedding=c.embedding,
                uploaded_at=c.uploaded_at,
                metadata=c.metadata,
            )
            for row_id, c in self._tenant_rows(user_id)
        ]

    async def delete_by_tenant_and_file(self, user_id, file_name):
        before = len(self.rows)
        self.rows = [
            (i, c) for i, c in self.rows
            if not (c.user_id == user_id and c.file_name == file_name)
        ]
        return before - len(self.rows)

    async def delete_by_tenant(self, user_id):
        before = len(self.rows)
        self.rows = [(i, c) for i, c in self.rows if c.user_id != user_id]
        return before - len(self.rows)

    async def count_documents(self, user_id=None):
        self.touched = True
        if user_id is None:
            return len(self.rows)
        return len(self._tenant_rows(user_id))

    async def list_files(self, user_id):
        summaries: dict[str, FileSummary] = {}
        for _, c in self._tenant_rows(user_id):
            summary = summaries.setdefault(c.file_name, FileSummary(c.file_name, 0, c.uploaded_at))
            summary.chunk_count += 1
            if c.uploaded_at > summary.uploaded_at:
                summary.uploaded_at = c.uploaded_at
        return sorted(summaries.values(), key=lambda s: s.uploaded_at, reverse=True)

    def _tenant_rows(self, user_id):
        return [(i, c) for i, c in self.rows if c.user_id == user_id]


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


class WhitespaceEncoder:
    """Offline stand-in for the cl100k_base encoding: one token per word."""

    def encode(self, text: str, disallowed_special=()) -> list[str]:
        return text.split()


@pytest.fixture(autouse=True)
def offline_token_counter(monkeypatch):
    """Keep tiktoken from downloading its encoding file during tests."""
    monkeypatch.setattr(
        "lumenfin.services.segmenter._get_encoder", lambda: WhitespaceEncoder(),
    )
