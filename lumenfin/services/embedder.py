# =============================================================================
# Embedding Client — Hosted Vector Generation (Provider-Agnostic)
# =============================================================================
#
# Converts text into fixed-length vectors using any OpenAI-compatible
# embeddings endpoint. The default deployment points the OpenAI SDK at
# Google's OpenAI-compatible Gemini endpoint with gemini-embedding-001
# (3072 dimensions); text-embedding-004 (768) works with a config change.
#
# DESIGN DECISION: OpenAI SDK with configurable base_url.
# Gemini, OpenAI, DashScope and most other providers speak the same
# embeddings API, so switching providers is a settings change.
#
# DESIGN DECISION: No retries here (max_retries=0 on the SDK client).
# Errors are classified and raised; the Celery task decides whether to
# retry. SDK-level retries would hide throttling from that decision.
#
# ERROR CLASSIFICATION (at the point of origin):
#   openai.RateLimitError                    → RateLimitError   (retryable)
#   openai.AuthenticationError / Permission  → AuthError        (fatal)
#   openai.APITimeoutError / APIConnection   → EmbeddingError   (retryable)
#   any other openai.APIError                → EmbeddingError   (retryable)
#   vector of the wrong length               → DimensionMismatchError
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

import openai
from openai import AsyncOpenAI

from lumenfin.config import Settings, settings as default_settings
from lumenfin.exceptions import (
    AuthError,
    DimensionMismatchError,
    EmbeddingError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "embedding"


class EmbeddingClient:
    """
    Async client for a hosted embedding model.

    The SDK client is created on first use so that constructing an
    EmbeddingClient never fails on a missing key; the first call does.

    Args:
        config: Settings providing key, base URL, model, dimensions, timeout.
        client: Pre-built AsyncOpenAI client (tests inject a mock here).
    """

    def __init__(
        self,
        config: Settings | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._config = config or default_settings
        self._client = client
        self.model = self._config.embedding_model
        self.dimensions = self._config.embedding_dimensions

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._config.embedding_api_key:
                raise AuthError(
                    SERVICE_NAME,
                    "No API key configured for embeddings. Set EMBEDDING_API_KEY in .env",
                )

            client_kwargs: dict = {
                "api_key": self._config.embedding_api_key,
                "timeout": self._config.embedding_timeout_seconds,
                "max_retries": 0,
            }
            if self._config.embedding_base_url:
                client_kwargs["base_url"] = self._config.embedding_base_url

            self._client = AsyncOpenAI(**client_kwargs)
            logger.info(
                "Initialized embedding client (model=%s, dimensions=%d, base_url=%s)",
                self.model,
                self.dimensions,
                self._config.embedding_base_url or "https://api.openai.com/v1",
            )
        return self._client

    async def embed(self, text: str) -> list[float]:
        """Embed a single text (used for queries)."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed many texts in one upstream call.

        Returns vectors in the same order as `texts`; result[i] is the
        embedding of texts[i].

        Raises:
            RateLimitError: Upstream throttling.
            AuthError: Missing or rejected credentials.
            EmbeddingError: Timeouts, connection faults, other upstream errors.
            DimensionMismatchError: A vector does not have `dimensions` entries.
        """
        if not texts:
            return []

        client = self._get_client()
        create_kwargs: dict = {"model": self.model, "input": list(texts)}
        if self.dimensions:
            create_kwargs["dimensions"] = self.dimensions

        try:
            response = await client.embeddings.create(**create_kwargs)
        except openai.APIError as exc:
            raise _classify(exc) from exc

        if len(response.data) != len(texts):
            raise EmbeddingError(
                f"Embedding service returned {len(response.data)} vectors "
                f"for {len(texts)} inputs"
            )

        # Sort by index so the output order matches the input order
        vectors = [
            item.embedding
            for item in sorted(response.data, key=lambda x: x.index)
        ]
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise DimensionMismatchError(self.dimensions, len(vector))

        logger.debug(
            "Embedded %d texts (model=%s, prompt_tokens=%d)",
            len(texts),
            self.model,
            response.usage.prompt_tokens if response.usage else 0,
        )
        return vectors


def _classify(exc: openai.APIError) -> AuthError | RateLimitError | EmbeddingError:
    """Map an OpenAI SDK error onto the project's error taxonomy."""
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(
            SERVICE_NAME,
            "Embedding rate limit exceeded. Please wait a moment and try again.",
            retry_after=_retry_after(exc),
        )
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthError(SERVICE_NAME, "Embedding API key was rejected.")
    if isinstance(exc, openai.APITimeoutError):
        return EmbeddingError("Embedding request timed out.")
    if isinstance(exc, openai.APIConnectionError):
        return EmbeddingError(f"Could not reach the embedding service: {exc}")
    return EmbeddingError(f"Embedding request failed: {exc}")


def _retry_after(exc: openai.APIStatusError) -> float | None:
    """Read the Retry-After header (seconds) from a throttled response."""
    value = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None
