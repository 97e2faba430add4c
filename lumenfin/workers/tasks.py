# =============================================================================
# Celery Task Definitions — Document Ingestion
# =============================================================================
#
# `ingest_document` runs the async IngestionPipeline for one saved upload.
#
# EXECUTION MODEL:
# Celery workers are synchronous. The task runs the async pipeline under
# asyncio.run() with a task-scoped ChunkDatabase: the pool is created on
# first use inside that event loop and disposed before the loop closes.
# An engine is never shared across event loops.
#
# RETRY POLICY (lives here, not in the pipeline):
#   retryable error, nothing stored yet  → retry with exponential backoff
#                                          (60s, 120s, 240s; max_retries=3)
#   PartialIngestionError                → never retried (would duplicate the
#                                          stored batches); returned as a
#                                          "partial" summary
#   fatal / user input / configuration   → fail immediately
#
# The saved upload is deleted once the task stops retrying.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from lumenfin.config import settings
from lumenfin.db.engine import ChunkDatabase
from lumenfin.exceptions import LumenFinError, PartialIngestionError, RateLimitError
from lumenfin.services.chunk_store import get_chunk_store
from lumenfin.services.embedder import EmbeddingClient
from lumenfin.services.ingestion import IngestionPipeline, IngestionResult
from lumenfin.services.parser import PDF_MIME_TYPE
from lumenfin.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

BASE_RETRY_DELAY_SECONDS = 60


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _run_ingestion(
    file_path: str,
    file_name: str,
    user_id: str,
    mime_type: str | None,
) -> IngestionResult:
    """Run the pipeline with collaborators scoped to this event loop."""
    database = ChunkDatabase(config=settings)
    try:
        pipeline = IngestionPipeline(
            embedder=EmbeddingClient(settings),
            store=get_chunk_store(database, settings),
            config=settings,
        )
        data = Path(file_path).read_bytes()
        return await pipeline.ingest(data, file_name, user_id, mime_type)
    finally:
        await database.dispose()


def _retry_delay(exc: LumenFinError, retries: int) -> float:
    """Exponential backoff, or the upstream's Retry-After when it is longer."""
    delay = BASE_RETRY_DELAY_SECONDS * (2 ** retries)
    if isinstance(exc, RateLimitError) and exc.retry_after:
        delay = max(delay, exc.retry_after)
    return delay


def _remove_upload(file_path: str) -> None:
    Path(file_path).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Ingestion Task
# ---------------------------------------------------------------------------


@celery_app.task(
    bind=True,
    name="ingest_document",
    max_retries=3,
)
def ingest_document(
    self,
    file_path: str,
    file_name: str,
    user_id: str,
    mime_type: str | None = PDF_MIME_TYPE,
) -> dict:
    """
    Ingest one saved upload into the tenant's vault.

    Args:
        self: Celery task instance (bound task, provides self.request).
        file_path: Path of the saved upload on the shared upload volume.
        file_name: Original file name, stored on every chunk.
        user_id: Tenant that uploaded the file.
        mime_type: Declared MIME type of the upload.

    Returns:
        Summary dict: file_name, user_id, total_chunks, indexed_chunks,
        batches, status ("completed", "empty" or "partial"), error.
    """
    task_id = self.request.id
    logger.info(
        "[%s] Starting ingestion: user=%s file='%s' (attempt %d, vectorstore=%s)",
        task_id, user_id, file_name, self.request.retries + 1, settings.vectorstore_type,
    )

    retrying = False
    try:
        result = asyncio.run(_run_ingestion(file_path, file_name, user_id, mime_type))
        summary = {**result.to_dict(), "error": None}
        logger.info("[%s] Ingestion finished: %s", task_id, summary)
        return summary

    except PartialIngestionError as exc:
        logger.error(
            "[%s] Partial ingestion of '%s': %d of %d chunks stored",
            task_id, file_name, exc.committed, exc.total,
        )
        return {
            "file_name": file_name,
            "user_id": user_id,
            "total_chunks": exc.total,
            "indexed_chunks": exc.committed,
            "batches": (exc.committed + settings.ingest_batch_size - 1)
            // settings.ingest_batch_size,
            "status": "partial",
            "error": exc.message,
        }

    except LumenFinError as exc:
        if exc.retryable and self.request.retries < self.max_retries:
            retrying = True
            countdown = _retry_delay(exc, self.request.retries)
            logger.warning(
                "[%s] %s before any batch was stored; retrying in %.0fs: %s",
                task_id, type(exc).__name__, countdown, exc.message,
            )
            raise self.retry(exc=exc, countdown=countdown)

        logger.error(
            "[%s] Ingestion of '%s' failed (%s): %s",
            task_id, file_name, exc.kind, exc.message,
        )
        raise

    finally:
        if not retrying:
            _remove_upload(file_path)
