# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - ingest.py: Document upload and ingestion status
#   - documents.py: Vault listing, per-file delete and vault reset
#   - search.py: Ranked search and retrieval-augmented chat
#   - health.py: Liveness check
#
# Shared pieces:
#   - deps.py: Tenant identity and service accessors
#   - errors.py: Error kind → HTTP status mapping
# =============================================================================
