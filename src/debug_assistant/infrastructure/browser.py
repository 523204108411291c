"""Narrow capability interfaces for the browser-automation backend.

The executor and page services are polymorphic over anything that
implements these protocols.  The ``Page`` surface mirrors the subset of
Playwright's async API the assistant needs (``page.url`` is a property,
``goto``/``reload`` take ``wait_until`` and a millisecond ``timeout``,
``screenshot`` returns PNG bytes), so a Playwright page can be passed in
directly.

An ``Agent`` wraps a page with AI-driven primitives.  Every AI capability is
optional: :func:`supports` tells the executor whether to take the AI path
or fall back to locating the element and driving mouse and keyboard.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from debug_assistant.domain.values import ElementInfo


@runtime_checkable
class Mouse(Protocol):
    async def click(
        self,
        x: float,
        y: float,
        *,
        button: str = "left",
        click_count: int = 1,
    ) -> None: ...

    async def move(self, x: float, y: float) -> None: ...


@runtime_checkable
class Keyboard(Protocol):
    async def type(self, text: str, *, delay: float = 0) -> None: ...

    async def down(self, key: str) -> None: ...

    async def up(self, key: str) -> None: ...

    async def press(self, key: str) -> None: ...


@runtime_checkable
class Page(Protocol):
    mouse: Mouse
    keyboard: Keyboard

    @property
    def url(self) -> str: ...

    async def title(self) -> str: ...

    async def content(self) -> str: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    async def screenshot(self, **kwargs: Any) -> bytes: ...

    async def reload(self, *, wait_until: str = "load") -> Any: ...

    async def goto(self, url: str, *, wait_until: str = "load", timeout: float | None = None) -> Any: ...

    async def go_back(self) -> Any: ...

    async def go_forward(self) -> Any: ...


@runtime_checkable
class Agent(Protocol):
    """AI-driven automation agent bound to a page.

    Implementations may omit any of ``act``, ``locate`` and ``query``;
    callers check with :func:`supports` first.
    """

    page: Page | None

    async def act(self, instruction: str) -> Any: ...

    async def locate(self, description: str) -> list[ElementInfo] | None: ...

    async def query(self, prompt: str) -> Any: ...


AgentGetter = Callable[[], "Agent | None"]


def supports(agent: Any, capability: str) -> bool:
    """Whether *agent* implements the optional *capability* method."""
    return agent is not None and callable(getattr(agent, capability, None))


def query_text(result: Any) -> str:
    """Pull the text out of whatever an agent's ``query`` returned."""
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        return str(result.get("text") or result.get("content") or "")
    return str(getattr(result, "text", "") or getattr(result, "content", "") or "")
