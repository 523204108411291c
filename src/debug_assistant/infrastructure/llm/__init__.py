"""LLM integration layer for the debug assistant.

The assistant talks to a language model through one narrow interface,
:class:`LLMEngine`: a single request/response call and a streaming call
that yields text deltas.  Concrete engines:

HTTPLLMEngine
    Raw Anthropic Messages API over ``httpx`` (including SSE streaming).
AnthropicEngine
    The official ``anthropic`` SDK (optional dependency).
ChatModelEngine
    Bridge to any ``langchain_core`` chat model.

Every engine wraps failures so that ``str(exc)`` starts with
``"LLM request failed: "``; callers pattern-match on that prefix.
"""

from __future__ import annotations

import logging
import math
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from debug_assistant.domain.enums import MessageRole
from debug_assistant.domain.values import LLMContext, Message

logger = logging.getLogger(__name__)

ERROR_PREFIX = "LLM request failed: "

DEFAULT_BASE_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_VERSION = "2023-06-01"

# Default Claude input window; truncation keeps a 10% margin below it.
DEFAULT_CONTEXT_LIMIT = 200_000
IMAGE_TOKEN_ESTIMATE = 1000


# =========================================================================== #
#  Exceptions                                                                  #
# =========================================================================== #

class LLMError(Exception):
    """Base exception for LLM engine errors."""


class LLMConnectionError(LLMError):
    """Raised when the model endpoint cannot be reached."""


class LLMRateLimitError(LLMError):
    """Raised when the endpoint keeps answering with a rate-limit error."""


class LLMResponseError(LLMError):
    """Raised on a non-2xx status or an unparseable response body."""


def wrap_error(exc: BaseException) -> LLMError:
    """Re-wrap *exc* so its message carries the uniform prefix.

    The concrete subclass is preserved for ``LLMError`` inputs.
    """
    message = str(exc)
    if message.startswith(ERROR_PREFIX):
        return exc if isinstance(exc, LLMError) else LLMError(message)
    cls = type(exc) if isinstance(exc, LLMError) else LLMError
    return cls(f"{ERROR_PREFIX}{message}")


# =========================================================================== #
#  Data structures                                                             #
# =========================================================================== #

@dataclass(frozen=True)
class LLMConfig:
    """Connection settings shared by every engine.

    Attributes
    ----------
    api_key:
        Credential sent with each request.  Empty means "not configured".
    base_url:
        Messages endpoint (HTTP engine only).
    model:
        Model identifier.
    max_tokens:
        Upper bound on generated tokens when the context does not set one.
    temperature:
        Sampling temperature used when the context does not set one.
    timeout:
        Request timeout in seconds.
    """

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout: float = 30.0

    def validate(self) -> None:
        if not self.api_key:
            raise ValueError("API key is required")
        if not self.base_url:
            raise ValueError("Base URL is required")
        if not re.match(r"^https?://[^/\s]+", self.base_url):
            raise ValueError(f"Invalid base URL: {self.base_url!r}")
        if not self.model:
            raise ValueError("LLMConfig.model must not be empty")
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {self.max_tokens}")
        if not (0.0 <= self.temperature <= 2.0):
            raise ValueError(f"temperature must be in [0, 2], got {self.temperature}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")


@dataclass(frozen=True)
class LLMResponse:
    """Structured response from an engine.

    Attributes
    ----------
    text:
        The generated text.
    model:
        Model that actually answered.
    usage:
        ``prompt_tokens`` / ``completion_tokens`` / ``total_tokens`` when
        the backend reports them.
    finish_reason:
        Why generation stopped.
    """

    text: str
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = ""


@dataclass(frozen=True)
class StreamChunk:
    """One streamed delta.  The final chunk has ``done=True`` and no text."""

    text: str
    done: bool = False


# =========================================================================== #
#  Token accounting                                                            #
# =========================================================================== #

_CJK = re.compile(r"[一-龥]")
_WS = re.compile(r"\s")


def estimate_tokens(text: str) -> int:
    """Rough token count: two CJK characters or four other characters each.

    Whitespace is not counted.
    """
    if not text:
        return 0
    cjk = len(_CJK.findall(text))
    other = len(_WS.sub("", _CJK.sub("", text)))
    return math.ceil(cjk / 2 + other / 4)


def estimate_request_tokens(context: LLMContext) -> int:
    tokens = estimate_tokens(context.system_prompt)
    tokens += sum(estimate_tokens(m.content) for m in context.conversation_history)
    tokens += estimate_tokens(context.additional_context)
    tokens += len(context.images) * IMAGE_TOKEN_ESTIMATE
    return tokens


def would_exceed_limit(context: LLMContext, limit: int | None = None) -> bool:
    return estimate_request_tokens(context) > (limit or DEFAULT_CONTEXT_LIMIT) * 0.9


def truncate_context(context: LLMContext, limit: int | None = None) -> LLMContext:
    """Drop the oldest history until the estimate fits within *limit*.

    The system prompt is kept as-is; the most recent messages survive.
    """
    budget = (limit or DEFAULT_CONTEXT_LIMIT) * 0.9 - estimate_tokens(context.system_prompt)
    kept: list[Message] = []
    used = 0
    for message in reversed(context.conversation_history):
        cost = estimate_tokens(message.content)
        if used + cost > budget:
            break
        kept.append(message)
        used += cost
    kept.reverse()
    if len(kept) < len(context.conversation_history):
        logger.debug(
            "truncate_context: dropped %d oldest messages",
            len(context.conversation_history) - len(kept),
        )
    return replace(context, conversation_history=tuple(kept))


# =========================================================================== #
#  Shared request shaping                                                      #
# =========================================================================== #

_DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,", re.IGNORECASE)


def split_image(image: str) -> tuple[str, str]:
    """Return ``(media_type, base64_data)`` for a raw payload or data URL."""
    match = _DATA_URL.match(image)
    if match:
        return match.group(1).lower(), image[match.end():]
    return "image/png", image


def build_messages(history: Sequence[Message], images: Sequence[str] = ()) -> list[dict[str, Any]]:
    """Messages API ``messages`` array for *history* and *images*.

    System messages are dropped (the system prompt travels separately);
    each image becomes an extra user message with a base64 source block.
    """
    messages: list[dict[str, Any]] = []
    for msg in history:
        if msg.role in (MessageRole.USER, MessageRole.ASSISTANT):
            messages.append({"role": msg.role.value, "content": msg.content})
    for image in images:
        media_type, data = split_image(image)
        messages.append({
            "role": "user",
            "content": [{
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": data},
            }],
        })
    return messages


# =========================================================================== #
#  Abstract engine                                                             #
# =========================================================================== #

class LLMEngine(ABC):
    """Abstract base class for model backends.

    Usage::

        engine = HTTPLLMEngine(LLMConfig(api_key="..."))
        reply = await engine.complete(context)
        async for delta in engine.stream(context):
            ...
    """

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Human-readable backend identifier."""
        ...

    @abstractmethod
    async def chat(self, context: LLMContext) -> LLMResponse:
        """Send one request and return the full structured response.

        Raises
        ------
        LLMError
            On any failure; the message starts with ``"LLM request failed: "``.
        """
        ...

    @abstractmethod
    def chat_stream(self, context: LLMContext) -> AsyncIterator[StreamChunk]:
        """Yield :class:`StreamChunk` deltas until a ``done`` chunk."""
        ...

    async def complete(self, context: LLMContext) -> str:
        """Convenience wrapper returning only the reply text."""
        return (await self.chat(context)).text

    async def stream(self, context: LLMContext) -> AsyncIterator[str]:
        """Yield non-empty text deltas only."""
        async for chunk in self.chat_stream(context):
            if chunk.done:
                break
            if chunk.text:
                yield chunk.text

    async def aclose(self) -> None:
        """Release network resources.  No-op by default."""


# =========================================================================== #
#  Public API                                                                  #
# =========================================================================== #

__all__ = [
    # Exceptions
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMResponseError",
    "wrap_error",
    # Data
    "LLMConfig",
    "LLMResponse",
    "StreamChunk",
    # Tokens
    "estimate_tokens",
    "estimate_request_tokens",
    "would_exceed_limit",
    "truncate_context",
    # Request shaping
    "build_messages",
    "split_image",
    # Abstract engine
    "LLMEngine",
]


# ---------------------------------------------------------------------------
# Lazy imports for concrete engines (avoids hard dependencies)
# ---------------------------------------------------------------------------

def __getattr__(name: str):  # noqa: N807
    """Lazy-load concrete engines on attribute access.

    ``from debug_assistant.infrastructure.llm import AnthropicEngine`` works
    without forcing the optional ``anthropic`` package to be installed.
    """
    _lazy_map = {
        "HTTPLLMEngine": "debug_assistant.infrastructure.llm.http_engine",
        "AnthropicEngine": "debug_assistant.infrastructure.llm.anthropic",
        "ChatModelEngine": "debug_assistant.infrastructure.llm.langchain_bridge",
    }

    if name in _lazy_map:
        import importlib
        module = importlib.import_module(_lazy_map[name])
        return getattr(module, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
