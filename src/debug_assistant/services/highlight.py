"""DOM overlay highlights for pointing at page elements.

Each highlight is a fixed-position ``div`` injected into the page at the
located element's rect.  The service tracks highlight id -> DOM ids so
overlays can be removed individually or all at once.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from debug_assistant.domain.values import ElementInfo, Rect
from debug_assistant.services.page_actions import PageActions

logger = logging.getLogger(__name__)

_DRAW_JS = """({items, color, background, border, label, tooltip}) => {
  for (const it of items) {
    const div = document.createElement('div');
    div.id = it.id;
    div.style.cssText = `position: fixed; left: ${it.rect.x}px; top: ${it.rect.y}px;
      width: ${it.rect.width}px; height: ${it.rect.height}px;
      border: ${border}px solid ${color}; background: ${background};
      pointer-events: none; z-index: 999999; border-radius: 4px;
      box-shadow: 0 0 10px ${color}40;`;
    if (label) {
      const tag = document.createElement('div');
      tag.style.cssText = `position: absolute; top: -24px; left: 0; background: ${color};
        color: white; padding: 2px 6px; font: 12px sans-serif; border-radius: 3px;
        white-space: nowrap;`;
      tag.textContent = label;
      div.appendChild(tag);
    }
    if (tooltip) {
      const tip = document.createElement('div');
      tip.className = 'debug-highlight-tooltip';
      tip.style.cssText = `position: absolute; top: -60px; left: 50%;
        transform: translateX(-50%); background: rgba(0, 0, 0, 0.8); color: white;
        padding: 6px 10px; font: 12px sans-serif; border-radius: 4px; white-space: nowrap;`;
      tip.textContent = it.text;
      div.appendChild(tip);
    }
    document.body.appendChild(div);
  }
  return items.length;
}"""

_REMOVE_JS = """(ids) => {
  for (const id of ids) {
    const el = document.getElementById(id);
    if (el) el.remove();
  }
}"""


@dataclass(frozen=True)
class HighlightOptions:
    color: str = "#ff6b6b"
    background_color: str = "rgba(255, 107, 107, 0.2)"
    border_width: int = 3
    label: str = ""
    show_tooltip: bool = False
    # Seconds until the overlay removes itself; None keeps it.
    duration: float | None = None


FLASH_OPTIONS = HighlightOptions(color="#00ff00", background_color="rgba(0, 255, 0, 0.3)")


@dataclass(frozen=True)
class HighlightResult:
    """Overlays drawn for one target.

    ``highlights`` pairs each DOM id with the rect it covers.
    """

    id: str
    target: str
    count: int
    highlights: tuple[tuple[str, Rect], ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target": self.target,
            "count": self.count,
            "highlights": [{"id": i, "rect": r.to_dict()} for i, r in self.highlights],
        }


class HighlightAction:
    """Draws and removes highlight overlays.

    Parameters
    ----------
    page_actions:
        Supplies the page and element lookup.
    """

    def __init__(self, page_actions: PageActions) -> None:
        self._actions = page_actions
        self._active: dict[str, list[str]] = {}
        self._counter = itertools.count()
        self._timers: set[asyncio.Task[Any]] = set()

    def _next_id(self) -> str:
        return f"debug-highlight-{int(time.time() * 1000)}-{next(self._counter)}"

    async def highlight(
        self,
        target: str,
        elements: Sequence[ElementInfo] | None = None,
        options: HighlightOptions | None = None,
    ) -> HighlightResult:
        """Highlight *elements*, locating *target* when none are given.

        An unresolvable target yields a result with ``count == 0`` and
        nothing tracked.  With ``options.duration`` set the overlay is
        removed after that many seconds.
        """
        opts = options or HighlightOptions()
        page = self._actions._page()
        if elements is None:
            elements = await self._actions.locate(target) or []
        boxed = [el for el in elements if el.rect is not None]
        if not boxed:
            return HighlightResult(id=self._next_id(), target=target, count=0)

        items = []
        for el in boxed:
            rect = el.rect
            assert rect is not None
            items.append({
                "id": self._next_id(),
                "rect": rect.to_dict(),
                "text": el.text or f"Element at ({round(rect.x)}, {round(rect.y)})",
            })
        await page.evaluate(_DRAW_JS, {
            "items": items,
            "color": opts.color,
            "background": opts.background_color,
            "border": opts.border_width,
            "label": opts.label,
            "tooltip": opts.show_tooltip,
        })

        dom_ids = [it["id"] for it in items]
        self._active[dom_ids[0]] = dom_ids
        if opts.duration is not None:
            self._schedule_removal(dom_ids[0], opts.duration)
        return HighlightResult(
            id=dom_ids[0],
            target=target,
            count=len(items),
            highlights=tuple((it["id"], el.rect) for it, el in zip(items, boxed)),  # type: ignore[misc]
        )

    async def highlight_by_coordinates(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        options: HighlightOptions | None = None,
    ) -> str:
        result = await self.highlight(
            f"({x}, {y})",
            [ElementInfo(rect=Rect(x, y, width, height))],
            options,
        )
        return result.id

    async def highlight_multiple(
        self,
        targets: Sequence[tuple[str, HighlightOptions | None]],
    ) -> list[HighlightResult]:
        return [await self.highlight(target, None, opts) for target, opts in targets]

    async def remove_highlight(self, highlight_id: str) -> bool:
        ids = self._active.get(highlight_id)
        if ids is None:
            return False
        await self._actions._page().evaluate(_REMOVE_JS, ids)
        del self._active[highlight_id]
        return True

    async def remove_all_highlights(self) -> int:
        """Remove every tracked overlay; returns the number of DOM nodes removed."""
        page = self._actions._page()
        count = 0
        for ids in self._active.values():
            await page.evaluate(_REMOVE_JS, ids)
            count += len(ids)
        self._active.clear()
        return count

    async def flash(
        self,
        target: str,
        duration: float = 1.0,
        elements: Sequence[ElementInfo] | None = None,
    ) -> HighlightResult:
        """Highlight in green and remove after *duration* seconds."""
        return await self.highlight(target, elements, replace(FLASH_OPTIONS, duration=duration))

    def _schedule_removal(self, highlight_id: str, delay: float) -> None:
        task = asyncio.create_task(self._remove_later(highlight_id, delay))
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def _remove_later(self, highlight_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.remove_highlight(highlight_id)
        except Exception:
            logger.debug("Delayed highlight removal failed", exc_info=True)

    def get_active_highlights(self) -> list[str]:
        return list(self._active)

    def clear_tracking(self) -> None:
        """Forget tracked overlays without touching the page."""
        for task in self._timers:
            task.cancel()
        self._timers.clear()
        self._active.clear()
