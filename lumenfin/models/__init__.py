# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, separate from the ORM model in
# lumenfin/db/models.py. Stored embeddings never leave the service.
# =============================================================================
