# =============================================================================
# Error Taxonomy — Classified at the Point of Origin
# =============================================================================
#
# Every error raised by the ingestion and retrieval core is one of the
# classes below. Each carries a `kind` so the HTTP layer and the Celery
# worker can pick a status code or retry policy without string matching:
#
#   user_input     — bad upload (wrong type, empty file, unparseable PDF)
#   configuration  — missing keys, missing vector index (operator fixes it)
#   fatal          — upstream rejected our credentials
#   retryable      — throttling, timeouts, transient upstream faults
#   partial        — ingestion committed some batches, then failed
#
# Kinds are never upgraded or downgraded on the way up: wrappers keep the
# original error as `__cause__` and mirror its `retryable` flag.
# =============================================================================

from __future__ import annotations


class LumenFinError(Exception):
    """Base class for all classified errors."""

    kind: str = "fatal"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# User input
# ---------------------------------------------------------------------------


class UnsupportedFileTypeError(LumenFinError):
    """Upload is not a PDF (or is empty)."""

    kind = "user_input"

    def __init__(self, mime_type: str | None, message: str | None = None) -> None:
        self.mime_type = mime_type
        super().__init__(
            message or f"Unsupported file type '{mime_type}'. Only PDF uploads are accepted."
        )


class ExtractionError(LumenFinError):
    """The document could not be parsed. Nothing was persisted."""

    kind = "user_input"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(LumenFinError):
    """Required configuration is missing or inconsistent."""

    kind = "configuration"


class IndexConfigurationError(ConfigurationError):
    """The managed vector index is missing or built with the wrong metric."""

    def __init__(self, index_name: str, message: str | None = None) -> None:
        self.index_name = index_name
        super().__init__(
            message
            or f"Vector search index '{index_name}' is not configured. "
            "Create a cosine HNSW index on the embedding column."
        )


class DimensionMismatchError(ConfigurationError):
    """Two vectors of different dimensionality met in one computation."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


# ---------------------------------------------------------------------------
# Upstream services
# ---------------------------------------------------------------------------


class AuthError(LumenFinError):
    """Upstream service rejected (or never received) our credentials."""

    kind = "fatal"

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(f"[{service}] {message}")


class RateLimitError(LumenFinError):
    """Upstream service is throttling us."""

    kind = "retryable"
    retryable = True

    def __init__(
        self, service: str, message: str, retry_after: float | None = None,
    ) -> None:
        self.service = service
        self.retry_after = retry_after
        super().__init__(f"[{service}] {message}")


class EmbeddingError(LumenFinError):
    """Any other embedding failure (service unavailable, timeout, bad input)."""

    kind = "retryable"
    retryable = True


class InferenceError(LumenFinError):
    """The downstream LLM failed for a reason other than auth or throttling."""

    kind = "retryable"
    retryable = True


class StoreError(LumenFinError):
    """Transient datastore failure (connection drop, timeout)."""

    kind = "retryable"
    retryable = True


# ---------------------------------------------------------------------------
# Partial success
# ---------------------------------------------------------------------------


class PartialIngestionError(LumenFinError):
    """
    Ingestion committed `committed` of `total` chunks, then a batch failed.

    Committed batches stay persisted and searchable. The original error is
    available as `cause` (and `__cause__`); `retryable` mirrors it.
    """

    kind = "partial"

    def __init__(
        self,
        file_name: str,
        committed: int,
        total: int,
        cause: LumenFinError,
    ) -> None:
        self.file_name = file_name
        self.committed = committed
        self.total = total
        self.cause = cause
        self.retryable = cause.retryable
        super().__init__(
            f"Indexed {committed} of {total} chunks from '{file_name}', "
            f"then failed: {cause.message}"
        )
