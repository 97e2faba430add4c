# =============================================================================
# Multi-Provider LLM Abstraction — Downstream Inference Consumer
# =============================================================================
#
# The chat endpoint hands the assembled context block and the user's
# question to an LLM. Two implementations cover the deployments we run:
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude via the native Anthropic SDK
#   │   └── complete()           — system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider — Cerebras (llama-3.3-70b), OpenAI, ...
#   │   └── complete()           — system prompt as message role
#   └── get_llm_provider()       — factory, reads from config
#
# DESIGN DECISION: Native SDKs over LangChain wrappers.
# Direct control over request parameters and provider-specific features,
# with fewer moving parts.
#
# ERRORS are classified before leaving this module:
#   throttling        → RateLimitError (retryable)
#   bad credentials   → AuthError      (fatal)
#   anything else     → InferenceError (retryable)
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import anthropic
import openai

from lumenfin.config import Settings, settings as default_settings
from lumenfin.exceptions import AuthError, InferenceError, RateLimitError

logger = logging.getLogger(__name__)

SERVICE_NAME = "inference"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the Anthropic and OpenAI response formats into a single
    structure that the chat endpoint can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier (e.g., "llama-3.3-70b")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Interface shared by the Anthropic and OpenAI-compatible providers."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
                Roles: "user", "assistant" (no "system"; use the system param).
            system: System prompt. Anthropic takes it as a top-level kwarg,
                OpenAI-compatible APIs as a leading {"role": "system"} message.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native async SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    def __init__(self, config: Settings | None = None) -> None:
        config = config or default_settings
        if not config.llm_api_key:
            raise AuthError(
                SERVICE_NAME, "No LLM API key configured. Set LLM_API_KEY in .env",
            )

        self._client = anthropic.AsyncAnthropic(
            api_key=config.llm_api_key,
            timeout=config.llm_timeout_seconds,
            max_retries=0,
        )
        self._model = config.llm_model
        self._temperature = config.llm_temperature
        self._max_tokens = config.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.RateLimitError as exc:
            raise RateLimitError(SERVICE_NAME, "LLM rate limit exceeded.") from exc
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise AuthError(SERVICE_NAME, "LLM API key was rejected.") from exc
        except anthropic.APIError as exc:
            raise InferenceError(f"LLM request failed: {exc}") from exc

        # Text from the first text block
        content = next(
            (block.text for block in response.content if block.type == "text"), "",
        )
        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (Cerebras, OpenAI, DeepSeek, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat completions spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.cerebras.ai/v1
        LLM_API_KEY=your-key
        LLM_MODEL=llama-3.3-70b
    """

    def __init__(self, config: Settings | None = None) -> None:
        config = config or default_settings
        if not config.llm_api_key:
            raise AuthError(
                SERVICE_NAME, "No LLM API key configured. Set LLM_API_KEY in .env",
            )

        client_kwargs: dict = {
            "api_key": config.llm_api_key,
            "timeout": config.llm_timeout_seconds,
            "max_retries": 0,
        }
        if config.llm_base_url:
            client_kwargs["base_url"] = config.llm_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = config.llm_model
        self._temperature = config.llm_temperature
        self._max_tokens = config.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            config.llm_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=all_messages,
                max_tokens=max_tokens or self._max_tokens,
                temperature=self._temperature if temperature is None else temperature,
            )
        except openai.RateLimitError as exc:
            raise RateLimitError(SERVICE_NAME, "LLM rate limit exceeded.") from exc
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise AuthError(SERVICE_NAME, "LLM API key was rejected.") from exc
        except openai.APIError as exc:
            raise InferenceError(f"LLM request failed: {exc}") from exc

        content = response.choices[0].message.content or ""
        usage = response.usage
        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def get_llm_provider(
    config: Settings | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Return the configured LLM provider.

    - "anthropic"         → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider (Cerebras, OpenAI, ...)

    The application builds one provider on first use and reuses it; the
    SDK clients manage their own connection pools.
    """
    config = config or default_settings
    if config.llm_provider == "anthropic":
        return AnthropicProvider(config)
    return OpenAICompatibleProvider(config)
