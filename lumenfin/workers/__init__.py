# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: The ingest_document task and its retry policy
#
# Ingestion runs here rather than in the request: Docling parsing is
# CPU-bound and a long filing needs dozens of embedding calls.
# =============================================================================
