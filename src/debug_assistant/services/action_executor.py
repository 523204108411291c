"""Action executor: runs parsed :class:`DebugAction` values against a page.

Every action type first tries the agent's AI path (one natural-language
instruction) and falls back to the manual path in
:class:`~debug_assistant.services.page_actions.PageActions` (locate the
element, then drive mouse and keyboard).  Nothing escapes :meth:`execute`:
errors become failed :class:`ActionResult` values timed in milliseconds.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from debug_assistant.domain.enums import ActionType
from debug_assistant.domain.exceptions import AgentUnavailableError, ElementNotFoundError
from debug_assistant.domain.values import ActionResult, DebugAction, ElementInfo
from debug_assistant.infrastructure.browser import Agent, AgentGetter, query_text, supports
from debug_assistant.infrastructure.cache import CacheManager
from debug_assistant.infrastructure.config import ExecutorConfig
from debug_assistant.services.compare import CompareAction
from debug_assistant.services.highlight import HighlightAction, HighlightOptions
from debug_assistant.services.page_actions import PageActions
from debug_assistant.services.response_parser import (
    parse_duration_ms,
    scroll_direction_of,
    scroll_edge_of,
)

logger = logging.getLogger(__name__)

BeforeHook = Callable[[DebugAction], None]
AfterHook = Callable[[DebugAction, ActionResult], None]
ErrorHook = Callable[[DebugAction, BaseException], None]

# Options that only make sense on the manual path.
_MANUAL_CLICK_OPTIONS = ("button", "click_count", "position", "index")
_MANUAL_INPUT_OPTIONS = ("clear_first", "submit", "delay", "index")

_DIRECTION_LABELS = {"up": "上", "down": "下", "left": "左", "right": "右"}
_EDGE_LABELS = {"top": "顶部", "bottom": "底部"}


class ActionExecutor:
    """Executes debug actions with AI-first, manual-fallback strategy.

    Parameters
    ----------
    get_agent:
        Zero-argument callable returning the current agent, or ``None``.
    config:
        Timing defaults (seconds) and scroll step.
    cache:
        Optional cache manager; located elements are memoised in its
        element tier and invalidated by page-mutating actions.
    """

    def __init__(
        self,
        get_agent: AgentGetter,
        config: ExecutorConfig | None = None,
        cache: CacheManager | None = None,
        page_actions: PageActions | None = None,
        highlight: HighlightAction | None = None,
        compare: CompareAction | None = None,
    ) -> None:
        self._get_agent = get_agent
        self._config = config or ExecutorConfig()
        self._config.validate()
        self._cache = cache
        self._page_actions = page_actions or PageActions(get_agent, self._config.default_timeout)
        self._highlight = highlight or HighlightAction(self._page_actions)
        self._compare = compare or CompareAction(self._page_actions)

        self._before_hooks: list[BeforeHook] = []
        self._after_hooks: list[AfterHook] = []
        self._error_hooks: list[ErrorHook] = []

        self._handlers: dict[ActionType, Callable[[DebugAction], Awaitable[ActionResult]]] = {
            ActionType.CLICK: self._click,
            ActionType.INPUT: self._input,
            ActionType.SCROLL: self._scroll,
            ActionType.REFRESH: self._refresh,
            ActionType.HIGHLIGHT: self._highlight_action,
            ActionType.HOVER: self._hover,
            ActionType.SCREENSHOT: self._screenshot,
            ActionType.WAIT: self._wait,
            ActionType.COMPARE: self._compare_action,
            ActionType.DESCRIBE: self._describe,
            ActionType.LOCATE: self._locate,
        }

    @property
    def page_actions(self) -> PageActions:
        return self._page_actions

    @property
    def highlighter(self) -> HighlightAction:
        return self._highlight

    @property
    def comparer(self) -> CompareAction:
        return self._compare

    # -- callbacks ---------------------------------------------------------

    def set_callbacks(
        self,
        on_before_execute: BeforeHook | None = None,
        on_after_execute: AfterHook | None = None,
        on_execution_error: ErrorHook | None = None,
    ) -> None:
        if on_before_execute is not None:
            self._before_hooks.append(on_before_execute)
        if on_after_execute is not None:
            self._after_hooks.append(on_after_execute)
        if on_execution_error is not None:
            self._error_hooks.append(on_execution_error)

    def _notify(self, hooks: Sequence[Callable[..., None]], *args: Any) -> None:
        for hook in hooks:
            try:
                hook(*args)
            except Exception:
                logger.exception("Executor callback %r raised", hook)

    # -- public API --------------------------------------------------------

    async def execute(self, action: DebugAction) -> ActionResult:
        """Run one action; never raises."""
        start = time.perf_counter()
        self._notify(self._before_hooks, action)
        try:
            handler = self._handlers.get(action.type)
            if handler is None:
                result = ActionResult.failure(f"不支持的操作类型: {action.type}")
            else:
                result = await handler(action)
        except (AgentUnavailableError, ElementNotFoundError) as exc:
            result = ActionResult.failure(str(exc))
            self._notify(self._error_hooks, action, exc)
        except Exception as exc:
            logger.exception("Action %s failed", action.type.value)
            result = ActionResult.failure("操作执行失败", str(exc) or type(exc).__name__)
            self._notify(self._error_hooks, action, exc)

        result = result.with_duration((time.perf_counter() - start) * 1000)
        self._notify(self._after_hooks, action, result)
        return result

    async def execute_multiple(self, actions: Sequence[DebugAction]) -> list[ActionResult]:
        """Run *actions* in order, stopping after a failed critical action."""
        results: list[ActionResult] = []
        for action in actions:
            result = await self.execute(action)
            results.append(result)
            if not result.success and action.type.is_critical:
                logger.debug("Stopping sequence after failed %s", action.type.value)
                break
        return results

    # -- helpers -----------------------------------------------------------

    def _agent(self) -> Agent:
        agent = self._get_agent()
        if agent is None:
            raise AgentUnavailableError("无法获取 agent 实例")
        return agent

    def _require_page(self) -> None:
        if getattr(self._agent(), "page", None) is None:
            raise AgentUnavailableError("无法获取页面实例")

    async def _find(self, target: str) -> list[ElementInfo] | None:
        if self._cache is not None:
            cached = self._cache.get_element_location(target)
            if cached is not None:
                return cached
        elements = await self._page_actions.locate(target)
        if elements and self._cache is not None:
            self._cache.cache_element_location(target, elements)
        return elements

    def _page_changed(self) -> None:
        if self._cache is not None:
            self._cache.invalidate_element_locations()

    async def _pick(self, target: str, action: DebugAction) -> ElementInfo | None:
        """The located element selected by the 1-based ``index`` option."""
        elements = await self._find(target)
        if not elements:
            return None
        index = int(action.options.get("index") or 1) - 1
        return elements[index] if 0 <= index < len(elements) else None

    # -- handlers ----------------------------------------------------------

    async def _click(self, action: DebugAction) -> ActionResult:
        agent = self._agent()
        target = action.target or "指定位置"
        opts = action.options
        element: ElementInfo | None = None
        position = opts.get("position")
        manual = not supports(agent, "act") or any(k in opts for k in _MANUAL_CLICK_OPTIONS)
        if manual and position is None:
            self._require_page()
            element = await self._pick(target, action)
            if element is None or element.center is None:
                return ActionResult.failure(f"无法找到元素: {target}")
            position = element.center
        await self._page_actions.click(
            target,
            button=opts.get("button", "left"),
            click_count=int(opts.get("click_count", 1)),
            position=position,
        )
        self._page_changed()
        data = {"element": element} if element is not None else None
        return ActionResult(success=True, message=f"已点击: {target}", data=data)

    async def _input(self, action: DebugAction) -> ActionResult:
        agent = self._agent()
        target = action.target or "输入框"
        value = "" if action.value is None else str(action.value)
        opts = action.options
        element: ElementInfo | None = None
        if not supports(agent, "act") or any(k in opts for k in _MANUAL_INPUT_OPTIONS):
            self._require_page()
            element = await self._pick(target, action)
            if element is None or element.center is None:
                return ActionResult.failure(f"无法找到输入框: {target}")
        await self._page_actions.input(
            target,
            value,
            clear_first=bool(opts.get("clear_first")),
            delay=float(opts.get("delay", 10)),
            submit=bool(opts.get("submit")),
            position=element.center if element is not None else None,
        )
        if opts.get("submit"):
            self._page_changed()
        if element is None:
            return ActionResult(success=True, message=f"已输入: {value}")
        return ActionResult(
            success=True,
            message=f"已在{target}输入: {value}",
            data={"element": element, "value": value},
        )

    async def _hover(self, action: DebugAction) -> ActionResult:
        target = action.target or "元素"
        await self._page_actions.hover(target)
        return ActionResult(success=True, message=f"已悬停: {target}")

    async def _scroll(self, action: DebugAction) -> ActionResult:
        self._require_page()
        edge = scroll_edge_of(action.target)
        if edge == "top":
            await self._page_actions.scroll_to_top()
        elif edge == "bottom":
            await self._page_actions.scroll_to_bottom()
        if edge is not None:
            self._page_changed()
            return ActionResult(success=True, message=f"已滚动到{_EDGE_LABELS[edge]}")

        direction = str(action.options.get("scroll_direction") or "down")
        amount = int(action.options.get("scroll_amount") or self._config.scroll_amount)
        # A target that is only a direction word is not an element.
        target = action.target if scroll_direction_of(action.target) is None else None
        await self._page_actions.scroll(direction, amount, target)
        self._page_changed()
        if target:
            return ActionResult(success=True, message=f"已滚动到: {target}")
        return ActionResult(success=True, message=f"已向{_DIRECTION_LABELS.get(direction, direction)}滚动")

    async def _refresh(self, action: DebugAction) -> ActionResult:
        self._require_page()
        await self._page_actions.refresh()
        self._page_changed()
        return ActionResult(success=True, message="页面已刷新")

    async def _highlight_action(self, action: DebugAction) -> ActionResult:
        self._require_page()
        target = action.target or "元素"
        elements = await self._find(target)
        if not elements:
            return ActionResult.failure(f"无法找到元素: {target}")
        if "index" in action.options:
            picked = await self._pick(target, action)
            elements = [picked] if picked is not None else []
        result = await self._highlight.highlight(
            target, elements, HighlightOptions(duration=self._config.highlight_duration)
        )
        if not result.count:
            return ActionResult.failure(f"无法找到元素: {target}")
        return ActionResult(
            success=True,
            message=f"已高亮 {result.count} 个元素",
            data=result.to_dict(),
        )

    async def _screenshot(self, action: DebugAction) -> ActionResult:
        self._require_page()
        shot = await self._page_actions.screenshot()
        if self._cache is not None:
            self._cache.cache_screenshot(action.target or "latest", shot)
        return ActionResult(
            success=True,
            message="已截取当前页面",
            data={"screenshot": shot},
            screenshot=shot,
        )

    def wait_duration_ms(self, action: DebugAction) -> float:
        """Milliseconds a ``wait`` action sleeps.

        A numeric ``options["timeout"]`` wins, then a duration parsed from
        the value or target (bare number = ms, ``s`` suffix = seconds), then
        the configured default.
        """
        timeout = action.options.get("timeout")
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool):
            return float(timeout)
        for text in (timeout, action.value, action.target):
            if text is not None:
                ms = parse_duration_ms(str(text))
                if ms is not None:
                    return float(ms)
        return self._config.default_wait * 1000

    async def _wait(self, action: DebugAction) -> ActionResult:
        ms = self.wait_duration_ms(action)
        await asyncio.sleep(ms / 1000)
        return ActionResult(success=True, message=f"已等待 {ms:g}ms")

    async def _compare_action(self, action: DebugAction) -> ActionResult:
        self._require_page()
        return await self._compare.compare(action.value or action.target)

    async def _describe(self, action: DebugAction) -> ActionResult:
        agent = self._agent()
        self._require_page()
        target = action.target or "页面"
        if supports(agent, "query"):
            result = await agent.query(f"请描述{target}的特征")
            return ActionResult(
                success=True,
                message=query_text(result) or "描述完成",
                data={"description": result},
            )
        if target != "页面":
            elements = await self._find(target)
            if elements:
                return ActionResult(
                    success=True,
                    message=f"找到 {len(elements)} 个{target}",
                    data={"elements": elements},
                )
        url = await self._page_actions.get_url()
        return ActionResult(success=True, message=f"当前页面: {url}", data={"url": url})

    async def _locate(self, action: DebugAction) -> ActionResult:
        self._require_page()
        target = action.target or "元素"
        elements = await self._find(target)
        if not elements:
            return ActionResult.failure(f"无法找到: {target}")
        if "index" in action.options:
            picked = await self._pick(target, action)
            elements = [picked] if picked is not None else elements
        return ActionResult(
            success=True,
            message=f"找到 {len(elements)} 个匹配的{target}",
            data={"elements": elements, "count": len(elements)},
        )
