# =============================================================================
# API Dependencies — Tenant Identity and Service Accessors
# =============================================================================
#
# TENANT IDENTITY:
# The identity provider in front of this service validates the session and
# forwards the user id in a trusted header (X-User-Id by default). This
# service never validates credentials itself; it only refuses requests that
# arrive without an id while auth is enabled.
#
# SERVICE ACCESSORS:
# The lifespan in lumenfin.main builds the database handle, embedding
# client and chunk store once and parks them on `app.state`. Route handlers
# receive them through these dependencies, and tests swap them with
# `app.dependency_overrides`.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request

from lumenfin.config import Settings, get_settings
from lumenfin.services.chunk_store import ChunkStore
from lumenfin.services.embedder import EmbeddingClient
from lumenfin.services.llm import LLMProvider, get_llm_provider
from lumenfin.services.retrieval import RetrievalEngine

logger = logging.getLogger(__name__)


def get_tenant_id(
    request: Request,
    config: Settings = Depends(get_settings),
) -> str:
    """
    Resolve the caller's tenant id from the trusted identity header.

    With auth disabled, a missing header falls back to the anonymous
    development tenant.

    Raises:
        HTTPException 401: No tenant id and auth is enabled.
    """
    user_id = (request.headers.get(config.tenant_header) or "").strip()
    if user_id:
        return user_id

    if not config.auth_enabled:
        return config.anonymous_tenant

    raise HTTPException(
        status_code=401,
        detail=f"Not authenticated. Missing '{config.tenant_header}' header.",
    )


def get_chunk_store(request: Request) -> ChunkStore:
    return request.app.state.chunk_store


def get_embedder(request: Request) -> EmbeddingClient:
    return request.app.state.embedder


def get_retrieval_engine(
    embedder: EmbeddingClient = Depends(get_embedder),
    store: ChunkStore = Depends(get_chunk_store),
    config: Settings = Depends(get_settings),
) -> RetrievalEngine:
    return RetrievalEngine(embedder, store, config=config)


def get_llm(request: Request) -> LLMProvider:
    """
    The application's LLM provider, built on first use.

    Built lazily so the service starts (and /search works) without an LLM key;
    /chat then fails with a classified AuthError instead.
    """
    provider = getattr(request.app.state, "llm", None)
    if provider is None:
        provider = get_llm_provider()
        request.app.state.llm = provider
    return provider
