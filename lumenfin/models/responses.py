# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# 1. Ensure consistent response structure across all endpoints
# 2. Generate OpenAPI response schemas (visible at /docs)
# 3. Prevent accidental exposure of internal fields (e.g., raw embeddings)
#
# The document vault endpoints keep the camelCase field names the web
# client already reads (fileName, chunkCount, uploadedAt, deletedCount).
# =============================================================================

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from lumenfin.services.chunk_store import SearchResult


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str
    vectorstore: str
    search_mode: str


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class IngestResponse(BaseModel):
    """
    Response for POST /ingest — upload accepted, ingestion running.

    Poll GET /ingest/{task_id} until the task finishes.
    """

    task_id: str = Field(description="Celery task ID for tracking ingestion progress")
    file_name: str
    status: str = Field(
        default="processing",
        description="'processing' means ingestion is in progress",
    )
    message: str = Field(
        default="Document uploaded. Ingestion in progress.",
        description="Human-readable status message",
    )


class IngestionSummary(BaseModel):
    """Outcome of a finished ingestion task."""

    file_name: str
    status: str = Field(description="completed, partial, empty, or failed")
    total_chunks: int = 0
    indexed_chunks: int = 0
    batches: int = 0
    error: str | None = None


class IngestStatusResponse(BaseModel):
    """Response for GET /ingest/{task_id} — ingestion task status."""

    task_id: str
    status: str = Field(description="Task status: PENDING, STARTED, RETRY, SUCCESS, FAILURE")
    result: IngestionSummary | None = Field(
        default=None,
        description="Ingestion outcome (available when the task has finished)",
    )
    error: str | None = Field(
        default=None,
        description="Error message (available when status is FAILURE)",
    )


# ---------------------------------------------------------------------------
# Document vault
# ---------------------------------------------------------------------------


class DocumentSummary(BaseModel):
    """One uploaded file in the caller's vault."""

    file_name: str = Field(serialization_alias="fileName")
    chunk_count: int = Field(serialization_alias="chunkCount")
    uploaded_at: datetime | None = Field(serialization_alias="uploadedAt")


class DocumentListResponse(BaseModel):
    """Response for GET /documents, newest upload first."""

    documents: list[DocumentSummary]
    total: int


class DeleteResponse(BaseModel):
    """Response for DELETE /documents."""

    deleted_count: int = Field(serialization_alias="deletedCount")
    file_name: str | None = Field(default=None, serialization_alias="fileName")
    reset: bool = False


# ---------------------------------------------------------------------------
# Search & chat
# ---------------------------------------------------------------------------


class SourceChunk(BaseModel):
    """
    A retrieved chunk with its citation.

    Provides provenance for the answer; users verify figures against the
    cited page of the original document.
    """

    source: int = Field(description="1-indexed citation number, matching [Source n]")
    file_name: str
    page_number: int
    content: str
    score: float = Field(description="Cosine similarity (higher = more relevant)")
    metadata: dict | None = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_results(cls, results: list[SearchResult]) -> list[SourceChunk]:
        return [
            cls(
                source=i,
                file_name=r.file_name,
                page_number=r.page_number,
                content=r.content,
                score=r.score,
                metadata=r.metadata or None,
            )
            for i, r in enumerate(results, start=1)
        ]


class SearchResponse(BaseModel):
    """Response for POST /search."""

    query: str
    results: list[SourceChunk]
    context: str = Field(description="Citation-annotated context block")
    retrieval_count: int


class ChatResponse(BaseModel):
    """Response for POST /chat — the answer plus the sources it was grounded on."""

    answer: str
    sources: list[SourceChunk]
    query: str = Field(description="The resolved query (latest user message)")
    model: str | None = Field(description="LLM model used for generation")
    retrieval_count: int
