"""Raw Anthropic Messages API engine over ``httpx``.

Posts ``{model, max_tokens, temperature, system, messages}`` to the
configured endpoint.  Rate-limited requests (HTTP 429) are retried with
exponential backoff; every other failure is raised immediately.  Streaming
reads server-sent ``data:`` lines until ``data: [DONE]`` and yields the
text of each ``content_block_delta`` event.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import Any

import httpx

from debug_assistant.domain.values import LLMContext
from debug_assistant.infrastructure.llm import (
    ANTHROPIC_VERSION,
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


class HTTPLLMEngine(LLMEngine):
    """Engine that speaks the Messages API wire format directly.

    Parameters
    ----------
    config:
        Endpoint, credentials and defaults.
    max_retries:
        Retries on HTTP 429 before giving up.
    base_retry_delay:
        Base delay in seconds for exponential backoff.
    client:
        Pre-built ``httpx.AsyncClient`` (tests pass one with a
        ``MockTransport``).  Created from *config* when omitted.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        max_retries: int = 3,
        base_retry_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or LLMConfig()
        self._max_retries = max_retries
        self._base_retry_delay = base_retry_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout))

    @property
    def engine_name(self) -> str:
        return "http"

    @property
    def config(self) -> LLMConfig:
        return self._config

    def update_config(self, **changes: Any) -> None:
        """Replace individual settings, e.g. ``update_config(api_key="...")``."""
        self._config = replace(self._config, **changes)

    # -- requests -------------------------------------------------------------

    async def chat(self, context: LLMContext) -> LLMResponse:
        payload = self._build_payload(context)
        last_error: Exception | None = None

        try:
            for attempt in range(self._max_retries + 1):
                response = await self._post(payload)

                if response.status_code == 429:
                    last_error = LLMRateLimitError(f"HTTP 429: {response.text}")
                    delay = self._base_retry_delay * (2 ** attempt)
                    logger.warning(
                        "HTTPLLMEngine: rate limited (attempt %d/%d), retrying in %.1fs",
                        attempt + 1,
                        self._max_retries + 1,
                        delay,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(delay)
                    continue

                self._raise_for_status(response)
                return self._parse_response(response.json())

            raise LLMRateLimitError(
                f"Rate limit exceeded after {self._max_retries + 1} attempts: {last_error}"
            )
        except json.JSONDecodeError as exc:
            raise wrap_error(LLMResponseError(f"Invalid JSON response: {exc}")) from exc
        except LLMError as exc:
            raise wrap_error(exc) from exc

    async def chat_stream(self, context: LLMContext) -> AsyncIterator[StreamChunk]:
        payload = self._build_payload(context)
        payload["stream"] = True

        try:
            async with self._client.stream(
                "POST", self._config.base_url, json=payload, headers=self._headers()
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response)

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data = line[len("data: "):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug("HTTPLLMEngine: skipping malformed SSE line %r", data)
                        continue
                    if event.get("type") == "content_block_delta":
                        text = (event.get("delta") or {}).get("text", "")
                        if text:
                            yield StreamChunk(text=text)
        except httpx.ConnectError as exc:
            raise wrap_error(LLMConnectionError(f"Failed to connect: {exc}")) from exc
        except httpx.TimeoutException as exc:
            raise wrap_error(LLMConnectionError(f"Request timed out: {exc}")) from exc
        except LLMError as exc:
            raise wrap_error(exc) from exc

        yield StreamChunk(text="", done=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- internal helpers -----------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if self._config.api_key:
            headers["x-api-key"] = self._config.api_key
        return headers

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(
                self._config.base_url, json=payload, headers=self._headers()
            )
        except httpx.ConnectError as exc:
            raise LLMConnectionError(
                f"Failed to connect to {self._config.base_url}: {exc}"
            ) from exc
        except httpx.TimeoutException as exc:
            raise LLMConnectionError(
                f"Request to {self._config.base_url} timed out: {exc}"
            ) from exc
        except httpx.HTTPError as exc:
            raise LLMConnectionError(str(exc)) from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code >= 500:
            raise LLMConnectionError(f"HTTP {response.status_code}: {response.text}")
        if response.status_code >= 400:
            raise LLMResponseError(f"HTTP {response.status_code}: {response.text}")

    def _build_payload(self, context: LLMContext) -> dict[str, Any]:
        return {
            "model": self._config.model,
            "max_tokens": context.max_tokens or self._config.max_tokens,
            "temperature": context.temperature,
            "system": context.system_prompt,
            "messages": build_messages(context.conversation_history, context.images),
        }

    @staticmethod
    def _parse_response(data: dict[str, Any]) -> LLMResponse:
        """Extract the first text block and the usage counters."""
        try:
            blocks = data.get("content") or []
            text = ""
            if blocks:
                text = blocks[0].get("text", "") or ""

            usage: dict[str, int] = {}
            raw_usage = data.get("usage") or {}
            if raw_usage:
                prompt = int(raw_usage.get("input_tokens", 0))
                completion = int(raw_usage.get("output_tokens", 0))
                usage = {
                    "prompt_tokens": prompt,
                    "completion_tokens": completion,
                    "total_tokens": prompt + completion,
                }

            return LLMResponse(
                text=text,
                model=data.get("model", ""),
                usage=usage,
                finish_reason=data.get("stop_reason", "") or "",
            )
        except Exception as exc:
            raise LLMResponseError(f"Failed to parse response: {exc}") from exc

    def __repr__(self) -> str:
        return f"HTTPLLMEngine(base_url={self._config.base_url!r}, model={self._config.model!r})"
