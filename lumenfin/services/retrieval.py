# =============================================================================
# Retrieval Engine — Query → Tenant-Scoped Top-K Chunks
# =============================================================================
#
# Stateless per query:
#
#   1. Trim the query; empty → [] with no network call
#   2. Embed the query (one call; failures propagate, no partial results)
#   3. Tenant corpus empty → []
#   4. Similarity search, in one of two modes:
#        "index" — the store's managed vector index, over-fetching
#                  `num_candidates` with the tenant filter applied inside
#                  the index query
#        "exact" — load the tenant's chunks, score every one with cosine
#                  similarity, stable sort descending
#   5. Truncate to the caller's top_k
#
# top_k is always supplied by the caller: 4 for citation-tight answers,
# 25 for broad chat context.
# =============================================================================

from __future__ import annotations

import logging
from typing import Literal

from lumenfin.config import Settings, settings as default_settings
from lumenfin.services.chunk_store import ChunkStore, SearchResult
from lumenfin.services.embedder import EmbeddingClient
from lumenfin.services.similarity import rank_exact

logger = logging.getLogger(__name__)

SearchMode = Literal["index", "exact"]


class RetrievalEngine:
    """
    Finds the most relevant chunks for one tenant.

    Args:
        embedder: Embedding client used for the query vector.
        store: Chunk store to search.
        mode: "index" (managed vector index) or "exact" (full scan).
        num_candidates: Over-fetch size for index mode.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: ChunkStore,
        mode: SearchMode | None = None,
        num_candidates: int | None = None,
        config: Settings | None = None,
    ) -> None:
        config = config or default_settings
        self._embedder = embedder
        self._store = store
        self.mode: SearchMode = mode or config.search_mode
        self._num_candidates = num_candidates or config.num_candidates

    async def retrieve(self, query: str, user_id: str, top_k: int) -> list[SearchResult]:
        """
        Return up to `top_k` of the tenant's chunks, best first.

        Raises:
            RateLimitError / AuthError / EmbeddingError: Query embedding failed.
            IndexConfigurationError: Index mode without a usable vector index.
        """
        query = query.strip()
        if not query or top_k <= 0:
            return []

        logger.info(
            "Retrieving for user=%s (mode=%s, top_k=%d): '%s'",
            user_id, self.mode, top_k, query[:80],
        )

        query_vector = await self._embedder.embed(query)

        if await self._store.count_documents(user_id) == 0:
            logger.info("No indexed chunks for user=%s; returning no results", user_id)
            return []

        if self.mode == "exact":
            results = await self._exact_search(query_vector, user_id)
        else:
            results = await self._store.search(
                query_vector,
                user_id=user_id,
                top_k=top_k,
                num_candidates=max(self._num_candidates, top_k),
            )

        results = results[:top_k]
        logger.info(
            "Retrieved %d chunks for user=%s (top score=%s)",
            len(results), user_id,
            f"{results[0].score:.4f}" if results else "n/a",
        )
        return results

    async def _exact_search(
        self, query_vector: list[float], user_id: str,
    ) -> list[SearchResult]:
        chunks = await self._store.load_tenant_chunks(user_id)
        ranked = rank_exact(query_vector, ((c, c.embedding) for c in chunks))
        return [
            SearchResult(
                chunk_id=chunk.chunk_id,
                user_id=chunk.user_id,
                file_name=chunk.file_name,
                page_number=chunk.page_number,
                content=chunk.content,
                score=score,
                uploaded_at=chunk.uploaded_at,
                metadata=chunk.metadata,
            )
            for chunk, score in ranked
        ]
