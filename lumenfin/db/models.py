# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# One table holds every retrievable chunk for every tenant.
#
# ┌──────────────────────────────────────────┐
# │  financial_chunks                        │
# ├──────────────────────────────────────────┤
# │ id (PK, insertion order)                 │
# │ user_id (tenant, indexed)                │
# │ file_name                                │
# │ page_number (int, 1-indexed)             │
# │ chunk_index (int, 0-indexed in document) │
# │ token_count (int)                        │
# │ content (text)                           │
# │ embedding (vector(D))                    │
# │ embedding_model (str)                    │
# │ uploaded_at (timestamptz)                │
# │ metadata_ (jsonb)                        │
# └──────────────────────────────────────────┘
#
# Rows are written once per ingestion batch and never updated. They are
# removed in bulk per (user_id, file_name) or per user_id (vault reset).
#
# `embedding_model` is stored on every row. Searches only consider rows
# produced by the configured model, so vectors of an older model (and
# possibly an older dimensionality) never enter a similarity computation.
# =============================================================================

from datetime import datetime

from pgvector.sqlalchemy import HALFVEC, Vector
from sqlalchemy import DateTime, Index, Integer, String, Text, cast, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from lumenfin.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class Chunk(Base):
    """
    A chunk of text extracted from an uploaded PDF, with its embedding.

    The tenant id (`user_id`) is attached at ingestion time. Every read and
    delete in the chunk store filters on it.
    """

    __tablename__ = "financial_chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Opaque identifier from the identity provider
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Original filename as uploaded (e.g., "AAPL_10K_2024.pdf")
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)

    # Source page (1-indexed). Falls back to the segment position when the
    # extractor could not attribute text to pages.
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Running position of this chunk within its document (0-indexed)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # tiktoken cl100k_base count, kept for monitoring chunk size distribution
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=False,
    )

    embedding_model: Mapped[str] = mapped_column(String(200), nullable=False)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    # section_title, contains_table, element_types, ...
    # Named `metadata_` to avoid SQLAlchemy's reserved `.metadata` attribute.
    metadata_: Mapped[dict | None] = mapped_column(
        JSONB,
        nullable=True,
        default=dict,
    )

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, user={self.user_id}, file='{self.file_name}', "
            f"page={self.page_number}, index={self.chunk_index})>"
        )


# =============================================================================
# Database Indexes
# =============================================================================
#
# HNSW on the embedding backs "index" search mode with cosine distance, so
# 1 - distance is the cosine similarity reported to callers.
#
# pgvector's HNSW index accepts `vector` columns of at most 2000 dimensions.
# Wider embeddings (gemini-embedding-001 is 3072) are indexed through a
# half-precision cast, and searches must order by the same cast expression
# for the planner to use the index.
#
# The B-tree indexes keep the tenant predicate cheap for exact-mode scans,
# counts, per-file deletes and the vault listing.
# =============================================================================

HNSW_MAX_VECTOR_DIMENSIONS = 2000

_HALF_PRECISION_INDEX = settings.embedding_dimensions > HNSW_MAX_VECTOR_DIMENSIONS


def indexed_embedding():
    """The embedding expression the HNSW index is built on."""
    if _HALF_PRECISION_INDEX:
        return cast(Chunk.embedding, HALFVEC(settings.embedding_dimensions))
    return Chunk.embedding


if _HALF_PRECISION_INDEX:
    chunk_embedding_idx = Index(
        settings.vector_index_name,
        indexed_embedding().label("embedding"),
        postgresql_using="hnsw",
        postgresql_with={"m": 16, "ef_construction": 64},
        postgresql_ops={"embedding": "halfvec_cosine_ops"},
    )
else:
    chunk_embedding_idx = Index(
        settings.vector_index_name,
        Chunk.embedding,
        postgresql_using="hnsw",
        postgresql_with={"m": 16, "ef_construction": 64},
        postgresql_ops={"embedding": "vector_cosine_ops"},
    )

chunk_user_idx = Index(
    "idx_financial_chunks_user_id",
    Chunk.user_id,
)

chunk_user_file_idx = Index(
    "idx_financial_chunks_user_file",
    Chunk.user_id,
    Chunk.file_name,
)
