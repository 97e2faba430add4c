# =============================================================================
# LumenFin — Financial Document Vault
# =============================================================================
# Upload financial PDFs, then ask questions answered from your own documents
# with page-level citations (retrieval-augmented generation).
#
# Package structure:
#   lumenfin/
#   ├── api/          → FastAPI route handlers (ingest, documents, search, chat)
#   ├── db/           → Async engine ownership and the financial_chunks model
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Parsing, segmenting, embedding, chunk stores,
#   │                    ingestion, retrieval, context assembly, LLM
#   ├── workers/      → Celery app and the ingestion task
#   ├── config.py     → pydantic-settings configuration
#   ├── exceptions.py → Classified error taxonomy
#   └── main.py       → FastAPI app and composition root
# =============================================================================
