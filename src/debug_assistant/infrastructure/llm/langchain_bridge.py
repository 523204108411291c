"""Bridge from LangChain chat models to :class:`LLMEngine`.

Lets any ``langchain_core`` ``BaseChatModel`` (``ChatAnthropic``,
``ChatOpenAI``, a local model, or the test double in
:mod:`debug_assistant.testing.mock_llm`) drive the assistant.

Example
-------
::

    from langchain_anthropic import ChatAnthropic
    from debug_assistant.infrastructure.llm.langchain_bridge import ChatModelEngine

    engine = ChatModelEngine(ChatAnthropic(model="claude-sonnet-4-20250514"))
    reply = await engine.complete(context)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from debug_assistant.domain.enums import MessageRole
from debug_assistant.domain.values import LLMContext
from debug_assistant.infrastructure.llm import (
    LLMEngine,
    LLMError,
    LLMResponse,
    StreamChunk,
    split_image,
    wrap_error,
)

logger = logging.getLogger(__name__)


def to_langchain_messages(context: LLMContext) -> list[BaseMessage]:
    """Convert *context* into LangChain messages.

    Images become ``image_url`` content blocks carrying a ``data:`` URL.
    """
    messages: list[BaseMessage] = []
    if context.system_prompt:
        messages.append(SystemMessage(content=context.system_prompt))
    for msg in context.conversation_history:
        if msg.role == MessageRole.USER:
            messages.append(HumanMessage(content=msg.content))
        elif msg.role == MessageRole.ASSISTANT:
            messages.append(AIMessage(content=msg.content))
    for image in context.images:
        media_type, data = split_image(image)
        messages.append(HumanMessage(content=[{
            "type": "image_url",
            "image_url": {"url": f"data:{media_type};base64,{data}"},
        }]))
    return messages


def _content_text(content: Any) -> str:
    """Flatten string or block-list message content into text."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ChatModelEngine(LLMEngine):
    """Adapts a ``BaseChatModel`` to the engine interface.

    Parameters
    ----------
    model:
        Any LangChain chat model.  Temperature and token limits are
        whatever the model was configured with.
    """

    def __init__(self, model: BaseChatModel) -> None:
        self._model = model

    @property
    def engine_name(self) -> str:
        return f"langchain:{self._model._llm_type}"

    @property
    def model(self) -> BaseChatModel:
        return self._model

    async def chat(self, context: LLMContext) -> LLMResponse:
        try:
            result = await self._model.ainvoke(to_langchain_messages(context))
        except LLMError as exc:
            raise wrap_error(exc) from exc
        except Exception as exc:
            raise wrap_error(LLMError(str(exc))) from exc

        usage: dict[str, int] = {}
        meta = getattr(result, "usage_metadata", None) or {}
        if meta:
            usage = {
                "prompt_tokens": int(meta.get("input_tokens", 0)),
                "completion_tokens": int(meta.get("output_tokens", 0)),
                "total_tokens": int(meta.get("total_tokens", 0)),
            }
        response_meta = getattr(result, "response_metadata", None) or {}
        return LLMResponse(
            text=_content_text(result.content),
            model=str(response_meta.get("model_name") or response_meta.get("model") or ""),
            usage=usage,
            finish_reason=str(response_meta.get("stop_reason") or response_meta.get("finish_reason") or ""),
        )

    async def chat_stream(self, context: LLMContext) -> AsyncIterator[StreamChunk]:
        try:
            async for chunk in self._model.astream(to_langchain_messages(context)):
                text = _content_text(chunk.content)
                if text:
                    yield StreamChunk(text=text)
        except LLMError as exc:
            raise wrap_error(exc) from exc
        except Exception as exc:
            raise wrap_error(LLMError(str(exc))) from exc
        yield StreamChunk(text="", done=True)

    def __repr__(self) -> str:
        return f"ChatModelEngine(model={self._model._llm_type!r})"
