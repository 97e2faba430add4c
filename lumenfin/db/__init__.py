# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine ownership and ORM models.
#
# Key exports:
#   - ChunkDatabase: lazily-connected engine + session factory
#   - Base, Chunk: ORM declarative base and the financial_chunks model
# =============================================================================

from lumenfin.db.engine import ChunkDatabase
from lumenfin.db.models import Base, Chunk

__all__ = ["Base", "Chunk", "ChunkDatabase"]
