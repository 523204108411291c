"""Anthropic SDK engine.

Wraps ``anthropic.AsyncAnthropic`` behind the :class:`LLMEngine` interface.
Rate-limit errors are retried with exponential backoff; connection and
status errors are mapped onto the LLM exception hierarchy.

Requires the ``anthropic`` package (``pip install debug-assistant[anthropic]``).
If the package is not installed, a clear error is raised at instantiation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from debug_assistant.domain.values import LLMContext
from debug_assistant.infrastructure.llm import (
    LLMConfig,
    LLMConnectionError,
    LLMEngine,
    LLMError,
    LLMRateLimitError,
    LLMResponse,
    LLMResponseError,
    StreamChunk,
    build_messages,
    wrap_error,
)

logger = logging.getLogger(__name__)

# Attempt import at module level for type checking; actual use is guarded
try:
    import anthropic as _anthropic_module

    _HAS_ANTHROPIC = True
except ImportError:
    _anthropic_module = None  # type: ignore[assignment]
    _HAS_ANTHROPIC = False


def _check_anthropic_available() -> None:
    """Raise a clear error if the anthropic package is not installed."""
    if not _HAS_ANTHROPIC:
        raise ImportError(
            "The 'anthropic' package is required for AnthropicEngine. "
            "Install it with: pip install anthropic"
        )


class AnthropicEngine(LLMEngine):
    """Engine backed by the official Anthropic SDK.

    Parameters
    ----------
    config:
        Credentials, model and timeout.  ``base_url`` is ignored; the SDK
        picks its own endpoint.  An empty ``api_key`` lets the SDK fall
        back to ``ANTHROPIC_API_KEY``.
    max_retries:
        Retries on rate-limit errors.
    base_retry_delay:
        Base delay in seconds for exponential backoff.
    client:
        Pre-built async client.

    Raises
    ------
    ImportError
        If the ``anthropic`` package is not installed.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        max_retries: int = 3,
        base_retry_delay: float = 1.0,
        client: Any = None,
    ) -> None:
        _check_anthropic_available()

        self._config = config or LLMConfig()
        self._max_retries = max_retries
        self._base_retry_delay = base_retry_delay

        if client is None:
            client_kwargs: dict[str, Any] = {"timeout": self._config.timeout}
            if self._config.api_key:
                client_kwargs["api_key"] = self._config.api_key
            # Retries are handled here so the backoff is logged.
            client_kwargs["max_retries"] = 0
            client = _anthropic_module.AsyncAnthropic(**client_kwargs)
        self._client = client

    @property
    def engine_name(self) -> str:
        return "anthropic"

    def _request_kwargs(self, context: LLMContext) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "max_tokens": context.max_tokens or self._config.max_tokens,
            "temperature": context.temperature,
            "messages": build_messages(context.conversation_history, context.images),
        }
        if context.system_prompt:
            kwargs["system"] = context.system_prompt
        return kwargs

    async def chat(self, context: LLMContext) -> LLMResponse:
        kwargs = self._request_kwargs(context)
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.messages.create(**kwargs)
                return self._parse_response(response)

            except _anthropic_module.RateLimitError as exc:
                last_error = exc
                delay = self._base_retry_delay * (2 ** attempt)
                logger.warning(
                    "AnthropicEngine: rate limited (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    self._max_retries + 1,
                    delay,
                    exc,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(delay)
                continue

            except _anthropic_module.APIConnectionError as exc:
                raise wrap_error(
                    LLMConnectionError(f"Anthropic API connection failed: {exc}")
                ) from exc

            except _anthropic_module.APIStatusError as exc:
                raise wrap_error(
                    LLMResponseError(
                        f"Anthropic API error (status {exc.status_code}): {exc.message}"
                    )
                ) from exc

            except LLMError as exc:
                raise wrap_error(exc) from exc

            except Exception as exc:
                raise wrap_error(
                    LLMError(f"Unexpected error calling Anthropic API: {exc}")
                ) from exc

        raise wrap_error(
            LLMRateLimitError(
                f"Anthropic API rate limit exceeded after {self._max_retries + 1} "
                f"attempts: {last_error}"
            )
        )

    async def chat_stream(self, context: LLMContext) -> AsyncIterator[StreamChunk]:
        kwargs = self._request_kwargs(context)
        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield StreamChunk(text=text)
        except _anthropic_module.APIConnectionError as exc:
            raise wrap_error(
                LLMConnectionError(f"Anthropic API connection failed: {exc}")
            ) from exc
        except _anthropic_module.APIStatusError as exc:
            raise wrap_error(
                LLMResponseError(f"Anthropic API error (status {exc.status_code}): {exc.message}")
            ) from exc
        yield StreamChunk(text="", done=True)

    async def aclose(self) -> None:
        await self._client.close()

    @staticmethod
    def _parse_response(response: Any) -> LLMResponse:
        try:
            text_parts = [
                block.text for block in response.content if getattr(block, "type", "") == "text"
            ]
            usage: dict[str, int] = {}
            if getattr(response, "usage", None) is not None:
                prompt = int(response.usage.input_tokens)
                completion = int(response.usage.output_tokens)
                usage = {
                    "prompt_tokens": prompt,
                    "completion_tokens": completion,
                    "total_tokens": prompt + completion,
                }
            return LLMResponse(
                text=text_parts[0] if text_parts else "",
                model=response.model,
                usage=usage,
                finish_reason=response.stop_reason or "",
            )
        except Exception as exc:
            raise LLMResponseError(f"Failed to parse Anthropic response: {exc}") from exc

    def __repr__(self) -> str:
        return f"AnthropicEngine(model={self._config.model!r})"
