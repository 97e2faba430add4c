# =============================================================================
# Ingestion API — Document Upload and Status Tracking
# =============================================================================
#
# ENDPOINTS:
#   POST /ingest           — Upload PDF, dispatch Celery task, return task_id
#   GET  /ingest/{task_id} — Poll ingestion status and the final summary
#
# DESIGN DECISION: Async processing via Celery (not synchronous).
# Docling parsing takes seconds to minutes and embedding a large filing is
# dozens of upstream calls. The API validates the upload, saves it, and
# returns 202 Accepted with a task id the client polls.
#
# Type and size are checked here, before anything is queued: an upload the
# worker would reject never reaches the worker.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from lumenfin.api.deps import get_tenant_id
from lumenfin.config import Settings, get_settings
from lumenfin.models.responses import IngestionSummary, IngestResponse, IngestStatusResponse
from lumenfin.services.parser import validate_upload
from lumenfin.workers.tasks import ingest_document

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ingestion"])


# ---------------------------------------------------------------------------
# POST /ingest — Upload a financial document
# ---------------------------------------------------------------------------


@router.post(
    "/ingest",
    response_model=IngestResponse,
    status_code=202,
    summary="Upload a financial document for processing",
    description=(
        "Upload a PDF to be parsed, chunked, embedded, and stored in the "
        "caller's vault. Returns immediately with a task_id for polling."
    ),
)
async def ingest_document_endpoint(
    file: UploadFile = File(
        ...,
        description="PDF file to ingest (annual report, 10-K, earnings release, etc.)",
    ),
    user_id: str = Depends(get_tenant_id),
    config: Settings = Depends(get_settings),
) -> IngestResponse:
    """Validate, save, and queue one uploaded PDF."""
    file_content = await file.read()

    if len(file_content) > config.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=(
                f"File is {len(file_content)} bytes; the limit is "
                f"{config.max_upload_bytes} bytes."
            ),
        )
    validate_upload(file_content, file.content_type)

    # Only the base name survives; the uuid prefix avoids collisions
    file_name = Path(file.filename or "document.pdf").name
    upload_dir = Path(config.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    file_path = upload_dir / f"{uuid.uuid4().hex}_{file_name}"
    file_path.write_bytes(file_content)

    logger.info(
        "Saved upload for user=%s: %s (%d bytes) → %s",
        user_id, file_name, len(file_content), file_path,
    )

    task = ingest_document.delay(
        file_path=str(file_path),
        file_name=file_name,
        user_id=user_id,
        mime_type=file.content_type,
    )
    logger.info("Dispatched ingestion task %s for user=%s", task.id, user_id)

    return IngestResponse(
        task_id=task.id,
        file_name=file_name,
        message=f"Document '{file_name}' uploaded. Ingestion in progress.",
    )


# ---------------------------------------------------------------------------
# GET /ingest/{task_id} — Poll ingestion status
# ---------------------------------------------------------------------------


@router.get(
    "/ingest/{task_id}",
    response_model=IngestStatusResponse,
    summary="Check document ingestion status",
)
async def get_ingest_status(
    task_id: str,
    user_id: str = Depends(get_tenant_id),
) -> IngestStatusResponse:
    """
    Celery task states:
    - PENDING: Task not yet picked up by a worker (or unknown id)
    - STARTED: Worker has begun processing
    - RETRY:   A transient failure before any batch was stored; retrying
    - SUCCESS: Finished; `result.status` is completed, partial, or empty
    - FAILURE: Nothing usable was stored; `error` is a generic message
    """
    result = AsyncResult(task_id, app=ingest_document.app)
    status = result.status

    summary: IngestionSummary | None = None
    error: str | None = None

    if status == "SUCCESS":
        task_result = result.result or {}
        # Summaries belong to the tenant that uploaded the file
        if task_result.get("user_id") != user_id:
            raise HTTPException(status_code=404, detail="Unknown ingestion task.")
        summary = IngestionSummary.model_validate(task_result)
        error = summary.error
    elif status == "FAILURE":
        # Failure payloads carry no tenant, so their text (file name included)
        # is logged, never returned
        logger.warning("Ingestion task %s failed: %s", task_id, result.result)
        error = "Ingestion failed."

    return IngestStatusResponse(
        task_id=task_id,
        status=status,
        result=summary,
        error=error,
    )
