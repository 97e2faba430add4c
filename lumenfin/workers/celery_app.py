# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery runs the document ingestion pipeline in the background:
#   PDF Upload → Parse → Segment → Embed (batched) → Store
#
# ARCHITECTURE:
# ┌──────────┐     ┌────────┐     ┌──────────────┐     ┌────────┐
# │ FastAPI  │────▶│ Redis  │────▶│ Celery Worker│────▶│ Redis  │
# │(producer)│     │(broker)│     │  (consumer)  │     │(result)│
# └──────────┘     └────────┘     └──────────────┘     └────────┘
#                     db 0                                db 1
#
# The broker (Redis db 0) queues tasks. Results (ingestion summaries) are
# stored in Redis db 1 for GET /ingest/{task_id} to poll.
# =============================================================================

from celery import Celery
from celery.signals import after_setup_logger

from lumenfin.config import settings
from lumenfin.logging_config import setup_logging

celery_app = Celery(
    "lumenfin.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON (not pickle) for task arguments and results.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Acknowledge only after completion so a crashed worker's task is re-queued.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # One long-running PDF at a time per worker process.
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # Soft limit raises inside the task; hard limit kills the process.
    task_soft_time_limit=600,
    task_time_limit=900,

    # --- Results ---
    # Report STARTED so clients can tell "queued" from "running".
    task_track_started=True,
    result_expires=3600,

    include=["lumenfin.workers.tasks"],
)


@after_setup_logger.connect
def _configure_worker_logging(**kwargs) -> None:
    setup_logging()
