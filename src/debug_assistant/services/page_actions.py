"""Page actions: the manual fallback path of the action executor.

Each operation first tries a single natural-language instruction through
the agent's ``act`` capability.  When the agent has no ``act`` (or it
fails), the target is located with ``locate`` and the low-level mouse and
keyboard primitives of the page are driven directly.

Failures raise :mod:`debug_assistant.domain.exceptions` errors; the action
executor converts them into failed results.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

from debug_assistant.domain.exceptions import (
    ActionTimeoutError,
    AgentUnavailableError,
    ElementNotFoundError,
)
from debug_assistant.domain.values import ElementInfo, Rect
from debug_assistant.infrastructure.browser import (
    Agent,
    AgentGetter,
    Page,
    query_text,
    supports,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1

_SCROLL_BY_JS = "([dx, dy]) => window.scrollBy({left: dx, top: dy, behavior: 'smooth'})"
_SCROLL_TO_RECT_JS = (
    "(r) => window.scrollTo({top: r.y + window.scrollY - 100, "
    "left: r.x + window.scrollX - 100, behavior: 'smooth'})"
)
_OPTIONS_JS = """(label) => {
  const select = document.activeElement;
  if (!select || select.tagName !== 'SELECT') return null;
  const opt = Array.from(select.options).find(
    (o) => o.text.includes(label) || o.value === label);
  if (!opt) return null;
  select.value = opt.value;
  select.dispatchEvent(new Event('change', {bubbles: true}));
  return opt.text;
}"""
_VISIBLE_TEXT_JS = "() => document.body ? document.body.innerText : ''"


def to_element_info(raw: Any) -> ElementInfo:
    """Coerce whatever an agent's ``locate`` returned into :class:`ElementInfo`.

    Accepts an ``ElementInfo`` as-is, or a mapping with a ``rect`` and/or a
    ``center`` pair.  A bare center becomes a zero-sized rect.
    """
    if isinstance(raw, ElementInfo):
        return raw
    if not isinstance(raw, Mapping):
        return ElementInfo(text=str(raw))
    rect: Rect | None = None
    if isinstance(raw.get("rect"), Mapping):
        rect = Rect.from_mapping(raw["rect"])
    elif raw.get("center"):
        cx, cy = raw["center"]
        rect = Rect(float(cx), float(cy), 0.0, 0.0)
    return ElementInfo(
        tag=str(raw.get("tag") or raw.get("tagName") or ""),
        text=str(raw.get("text") or raw.get("content") or ""),
        selector=str(raw.get("selector") or ""),
        rect=rect,
        visible=bool(raw.get("visible", True)),
        attributes=dict(raw.get("attributes") or {}),
    )


class PageActions:
    """Direct page manipulation with AI-first, manual-second strategy.

    Parameters
    ----------
    get_agent:
        Zero-argument callable returning the current agent (or ``None``).
    default_timeout:
        Seconds used for navigation and element waits.
    """

    def __init__(self, get_agent: AgentGetter, default_timeout: float = 10.0) -> None:
        self._get_agent = get_agent
        self._default_timeout = default_timeout

    # -- access ------------------------------------------------------------

    def _ensure_agent(self) -> Agent:
        agent = self._get_agent()
        if agent is None:
            raise AgentUnavailableError("无法获取 agent 实例")
        return agent

    def _page(self) -> Page:
        page = getattr(self._ensure_agent(), "page", None)
        if page is None:
            raise AgentUnavailableError("无法获取页面实例")
        return page

    async def _try_act(self, instruction: str) -> bool:
        """Run *instruction* through ``agent.act``; False when unavailable or failed."""
        agent = self._ensure_agent()
        if not supports(agent, "act"):
            return False
        try:
            await agent.act(instruction)
        except Exception:
            logger.debug("AI action failed, using manual path: %s", instruction, exc_info=True)
            return False
        return True

    async def _first_center(self, target: str) -> tuple[float, float]:
        elements = await self.locate(target)
        if elements:
            center = elements[0].center
            if center is not None:
                return center
        raise ElementNotFoundError(f"未找到元素: {target}", target=target)

    # -- pointer -----------------------------------------------------------

    async def click(
        self,
        target: str,
        button: str = "left",
        click_count: int = 1,
        position: tuple[float, float] | None = None,
    ) -> None:
        """Click *target*; ``position`` overrides the located center."""
        if position is None and button == "left" and click_count == 1:
            if await self._try_act(f"点击{target}"):
                return
        page = self._page()
        if position is not None:
            x, y = position
        else:
            x, y = await self._first_center(target)
        await page.mouse.click(x, y, button=button, click_count=click_count)

    async def hover(self, target: str) -> None:
        if await self._try_act(f"鼠标悬停在{target}上"):
            return
        page = self._page()
        x, y = await self._first_center(target)
        await page.mouse.move(x, y)

    # -- keyboard ----------------------------------------------------------

    async def input(
        self,
        target: str,
        text: str,
        clear_first: bool = False,
        delay: float = 10,
        submit: bool = False,
        position: tuple[float, float] | None = None,
    ) -> None:
        """Type *text* into *target*.

        ``delay`` is the per-keystroke delay in milliseconds.  With
        ``clear_first`` the field is emptied with select-all + Backspace.
        ``position`` skips the lookup and focuses the field there.
        """
        verb = "清空并输入" if clear_first else "输入"
        if position is None and not submit and await self._try_act(f"在{target}{verb}{text}"):
            return
        page = self._page()
        x, y = position if position is not None else await self._first_center(target)
        await page.mouse.click(x, y)
        if clear_first:
            await page.keyboard.down("Control")
            await page.keyboard.press("a")
            await page.keyboard.up("Control")
            await page.keyboard.press("Backspace")
        await page.keyboard.type(text, delay=delay)
        if submit:
            await page.keyboard.press("Enter")

    async def select_option(self, target: str, option: str) -> None:
        if await self._try_act(f"在{target}中选择{option}"):
            return
        page = self._page()
        x, y = await self._first_center(target)
        await page.mouse.click(x, y)
        await asyncio.sleep(0.3)
        selected = await page.evaluate(_OPTIONS_JS, option)
        if not selected:
            raise ElementNotFoundError(f"未找到选项: {option}", target=option)

    # -- scrolling ---------------------------------------------------------

    async def scroll(
        self,
        direction: str = "down",
        amount: int = 500,
        target: str | None = None,
    ) -> None:
        """Scroll the window, or bring *target* into view when given."""
        page = self._page()
        if target:
            elements = await self.locate(target)
            if elements and elements[0].rect is not None:
                await page.evaluate(_SCROLL_TO_RECT_JS, elements[0].rect.to_dict())
                return
        dx, dy = {
            "up": (0, -amount),
            "down": (0, amount),
            "left": (-amount, 0),
            "right": (amount, 0),
        }.get(direction, (0, amount))
        await page.evaluate(_SCROLL_BY_JS, [dx, dy])

    async def scroll_to_top(self) -> None:
        await self._page().evaluate("() => window.scrollTo({top: 0, behavior: 'smooth'})")

    async def scroll_to_bottom(self) -> None:
        await self._page().evaluate(
            "() => window.scrollTo({top: document.body.scrollHeight, behavior: 'smooth'})"
        )

    # -- navigation --------------------------------------------------------

    async def refresh(self, wait_until: str = "networkidle") -> None:
        await self._page().reload(wait_until=wait_until)

    async def navigate(self, url: str) -> None:
        await self._page().goto(
            url, wait_until="networkidle", timeout=self._default_timeout * 1000
        )

    async def go_back(self) -> None:
        await self._page().go_back()

    async def go_forward(self) -> None:
        await self._page().go_forward()

    # -- waiting -----------------------------------------------------------

    async def wait(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def wait_for_element(
        self,
        target: str,
        timeout: float | None = None,
        state: str = "visible",
    ) -> ElementInfo | None:
        """Poll ``locate`` until *target* reaches *state*.

        ``state`` is ``"visible"`` (an element is found) or ``"hidden"``
        (none is).  Returns the element for ``visible``.
        """
        limit = self._default_timeout if timeout is None else timeout
        deadline = time.monotonic() + limit
        while True:
            elements = await self.locate(target)
            if state == "hidden":
                if not elements:
                    return None
            elif elements:
                return elements[0]
            if time.monotonic() >= deadline:
                raise ActionTimeoutError(
                    f"Waiting for {target} to be {state} timed out after {limit}s",
                    timeout=limit,
                )
            await asyncio.sleep(POLL_INTERVAL)

    # -- reading -----------------------------------------------------------

    async def screenshot(self, full_page: bool = False) -> str:
        """Base64-encoded PNG of the current page."""
        raw = await self._page().screenshot(type="png", full_page=full_page)
        return base64.b64encode(raw).decode("ascii")

    async def get_url(self) -> str:
        return self._page().url

    async def get_title(self) -> str:
        return await self._page().title()

    async def get_content(self) -> str:
        return await self._page().content()

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self._page().evaluate(expression, arg)

    async def get_visible_text(self) -> str:
        return str(await self._page().evaluate(_VISIBLE_TEXT_JS) or "")

    async def locate(self, description: str) -> list[ElementInfo] | None:
        """Resolve *description* to page elements.

        Uses ``agent.locate`` and falls back to ``agent.query``.  Lookup
        failures are logged and reported as ``None``.
        """
        agent = self._ensure_agent()
        try:
            if supports(agent, "locate"):
                found = await agent.locate(description)
                return [to_element_info(e) for e in found] if found else None
            if supports(agent, "query"):
                result = await agent.query(f"定位元素: {description}")
                items = result.get("elements") if isinstance(result, Mapping) else None
                if isinstance(items, Sequence) and items:
                    return [to_element_info(e) for e in items]
                text = query_text(result)
                return [ElementInfo(text=text)] if text else None
        except Exception:
            logger.debug("Locate failed for %r", description, exc_info=True)
        return None
