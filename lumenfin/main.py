# =============================================================================
# FastAPI Application — Composition Root
# =============================================================================
#
# The lifespan builds every long-lived collaborator exactly once and owns
# its shutdown:
#
#   ChunkDatabase   — async engine + pool, connected lazily on first use
#   EmbeddingClient — hosted embedding model
#   ChunkStore      — pgvector or ChromaDB, per VECTORSTORE_TYPE
#   LLM provider    — built on first /chat request (see api.deps.get_llm)
#
# Route handlers reach them through the dependencies in lumenfin.api.deps.
#
# RUN:
#   uvicorn lumenfin.main:app --reload
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from lumenfin.api import documents, health, ingest, search
from lumenfin.api.errors import register_exception_handlers
from lumenfin.config import get_settings
from lumenfin.db.engine import ChunkDatabase
from lumenfin.logging_config import setup_logging
from lumenfin.services.chunk_store import get_chunk_store
from lumenfin.services.embedder import EmbeddingClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build shared services on startup, release them on shutdown."""
    config = get_settings()
    setup_logging(config)

    Path(config.upload_dir).mkdir(parents=True, exist_ok=True)

    database = ChunkDatabase(config=config)
    if config.vectorstore_type == "pgvector":
        await database.create_schema()

    app.state.database = database
    app.state.embedder = EmbeddingClient(config)
    app.state.chunk_store = get_chunk_store(database, config)
    app.state.llm = None

    logger.info(
        "%s v%s started (vectorstore=%s, search_mode=%s, embedding=%s/%d)",
        config.app_name, config.app_version, config.vectorstore_type,
        config.search_mode, config.embedding_model, config.embedding_dimensions,
    )

    yield

    await database.dispose()
    logger.info("%s stopped", config.app_name)


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    config = get_settings()

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        description=(
            "Upload financial PDFs and ask questions answered from your own "
            "documents, with page-level citations."
        ),
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(ingest.router)
    app.include_router(documents.router)
    app.include_router(search.router)

    return app


app = create_app()
