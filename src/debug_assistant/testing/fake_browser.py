"""In-memory doubles of the browser capability protocols.

``FakeManualAgent`` only exposes ``page`` and ``locate``, which forces the
executor onto its manual path.  ``FakeAgent`` adds the AI capabilities
``act`` and ``query``.  Every double records the calls it received.
"""

from __future__ import annotations

import io
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from PIL import Image

from debug_assistant.domain.values import ElementInfo


def solid_png(width: int = 8, height: int = 8, color: tuple[int, int, int] = (255, 255, 255)) -> bytes:
    """PNG bytes of a single-colour image."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeMouse:
    def __init__(self) -> None:
        self.clicks: list[dict[str, Any]] = []
        self.moves: list[tuple[float, float]] = []

    async def click(self, x: float, y: float, *, button: str = "left", click_count: int = 1) -> None:
        self.clicks.append({"x": x, "y": y, "button": button, "click_count": click_count})

    async def move(self, x: float, y: float) -> None:
        self.moves.append((x, y))


class FakeKeyboard:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []
        self.typed: list[str] = []

    async def type(self, text: str, *, delay: float = 0) -> None:
        self.typed.append(text)
        self.events.append(("type", text))

    async def down(self, key: str) -> None:
        self.events.append(("down", key))

    async def up(self, key: str) -> None:
        self.events.append(("up", key))

    async def press(self, key: str) -> None:
        self.events.append(("press", key))


class FakePage:
    """Records page calls.

    ``evaluate_handler`` computes ``evaluate`` results; by default every
    script returns ``None``.  ``screenshots`` are returned in order, the
    last one repeating.
    """

    def __init__(
        self,
        url: str = "https://example.com/login",
        title: str = "Example",
        content: str = "<html><body></body></html>",
        screenshots: Sequence[bytes] | None = None,
        evaluate_handler: Callable[[str, Any], Any] | None = None,
    ) -> None:
        self.mouse = FakeMouse()
        self.keyboard = FakeKeyboard()
        self._url = url
        self._title = title
        self._content = content
        self._screenshots = list(screenshots or [solid_png()])
        self._evaluate_handler = evaluate_handler
        self.evaluated: list[tuple[str, Any]] = []
        self.navigations: list[tuple[str, Any]] = []

    @property
    def url(self) -> str:
        return self._url

    async def title(self) -> str:
        return self._title

    async def content(self) -> str:
        return self._content

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        self.evaluated.append((expression, arg))
        if self._evaluate_handler is not None:
            return self._evaluate_handler(expression, arg)
        return None

    async def screenshot(self, **kwargs: Any) -> bytes:
        if len(self._screenshots) > 1:
            return self._screenshots.pop(0)
        return self._screenshots[0]

    async def reload(self, *, wait_until: str = "load") -> None:
        self.navigations.append(("reload", wait_until))

    async def goto(self, url: str, *, wait_until: str = "load", timeout: float | None = None) -> None:
        self.navigations.append(("goto", url))
        self._url = url

    async def go_back(self) -> None:
        self.navigations.append(("back", None))

    async def go_forward(self) -> None:
        self.navigations.append(("forward", None))


class FakeManualAgent:
    """Agent without AI capabilities beyond ``locate``.

    Parameters
    ----------
    elements:
        Maps a substring of a target description to the elements it
        resolves to.
    """

    def __init__(
        self,
        page: FakePage | None = None,
        elements: Mapping[str, Sequence[ElementInfo]] | None = None,
    ) -> None:
        self.page = page if page is not None else FakePage()
        self.elements = dict(elements or {})
        self.located: list[str] = []

    async def locate(self, description: str) -> list[ElementInfo] | None:
        self.located.append(description)
        for key, found in self.elements.items():
            if key in description:
                return list(found)
        return None


class FakeAgent(FakeManualAgent):
    """Agent with ``act`` and ``query``.

    ``act`` raises ``act_error`` when set; ``query`` returns
    ``{"text": query_reply}``.
    """

    def __init__(
        self,
        page: FakePage | None = None,
        elements: Mapping[str, Sequence[ElementInfo]] | None = None,
        act_error: Exception | None = None,
        query_reply: str = "一个蓝色的提交按钮",
    ) -> None:
        super().__init__(page, elements)
        self.act_error = act_error
        self.query_reply = query_reply
        self.instructions: list[str] = []
        self.queries: list[str] = []

    async def act(self, instruction: str) -> None:
        self.instructions.append(instruction)
        if self.act_error is not None:
            raise self.act_error

    async def query(self, prompt: str) -> dict[str, str]:
        self.queries.append(prompt)
        return {"text": self.query_reply}
