"""Context builder: assembles the prompt for one model call.

The system prompt carries the failure snapshot (URL, current step, error,
execution summary) followed by the reply protocol.  Diagnostic sections
(console, network, visible elements, execution history) are appended only
when the operator's question mentions them, or when the model asked for
them with a ``[CONTEXT:...]`` tag on the previous turn.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence

from debug_assistant.domain.enums import ContextType, MessageRole
from debug_assistant.domain.values import (
    ConsoleEntry,
    DebugContext,
    ElementInfo,
    LLMContext,
    Message,
    NetworkError,
    StepResult,
)
from debug_assistant.infrastructure.config import ContextConfig
from debug_assistant.infrastructure.llm import truncate_context
from debug_assistant.services.prompts import build_system_prompt, format_error_type

# Ordered keyword table; a section is included when any keyword occurs in
# the lowercased query.
SECTION_KEYWORDS: tuple[tuple[ContextType, tuple[str, ...]], ...] = (
    (ContextType.CONSOLE, ("控制台", "日志", "console", "log", "错误", "warning", "error", "报错")),
    (ContextType.NETWORK, ("网络", "请求", "request", "network", "接口", "api")),
    (
        ContextType.ELEMENTS,
        (
            "元素", "按钮", "输入框", "element", "elements", "button", "input",
            "找到", "locate", "visible", "可见", "find", "查找",
        ),
    ),
    (
        ContextType.HISTORY,
        ("之前", "历史", "上一步", "previous", "history", "execution", "执行", "steps", "步骤"),
    ),
)

# Model-issued ``[CONTEXT:<type>]`` names and the sections they force.
CONTEXT_REQUEST_ALIASES: dict[str, ContextType] = {
    "console": ContextType.CONSOLE,
    "console_errors": ContextType.CONSOLE,
    "network": ContextType.NETWORK,
    "network_errors": ContextType.NETWORK,
    "elements": ContextType.ELEMENTS,
    "visible_elements": ContextType.ELEMENTS,
    "history": ContextType.HISTORY,
    "execution_history": ContextType.HISTORY,
}

_MAX_CONSOLE_LINES = 10
_MAX_ELEMENT_LINES = 20
_LEVEL_MARKERS = {"error": "❌", "warning": "⚠️"}


def sections_for_query(query: str) -> set[ContextType]:
    lowered = query.lower()
    return {
        section
        for section, keywords in SECTION_KEYWORDS
        if any(k in lowered for k in keywords)
    }


# ---------------------------------------------------------------------------
# Section formatters
# ---------------------------------------------------------------------------

def format_console_errors(entries: Sequence[ConsoleEntry]) -> str:
    if not entries:
        return ""
    lines = []
    for entry in entries[-_MAX_CONSOLE_LINES:]:
        marker = _LEVEL_MARKERS.get(entry.level, "ℹ️")
        source = f" ({entry.source})" if entry.source else ""
        lines.append(f"{marker} {entry.message}{source}")
    return "\n## 控制台错误/警告 consoleErrors\n" + "\n".join(lines) + "\n"


def format_network_errors(errors: Sequence[NetworkError]) -> str:
    if not errors:
        return ""
    lines = [
        f"- {e.url} {f'[{e.status}]' if e.status else ''}: {e.error}"
        for e in errors
    ]
    return "\n## 网络请求错误 networkErrors\n" + "\n".join(lines) + "\n"


def format_visible_elements(elements: Sequence[ElementInfo]) -> str:
    if not elements:
        return ""
    lines = []
    for el in elements[:_MAX_ELEMENT_LINES]:
        mark = "✓" if el.visible else "✗"
        tag = f"<{el.tag}>" if el.tag else ""
        pos = f"({round(el.rect.x)}, {round(el.rect.y)})" if el.rect is not None else ""
        lines.append(" ".join(part for part in (f"- {mark}", tag, el.text, pos) if part))
    return "\n## 页面可见元素 visibleElements\n" + "\n".join(lines) + "\n"


def format_execution_history(history: Sequence[StepResult]) -> str:
    if not history:
        return ""
    lines = []
    for i, step in enumerate(history, start=1):
        status = "✅" if step.success else "❌"
        error = f" - {step.error}" if step.error else ""
        lines.append(f"{i}. {status} {step.description or step.step_id}{error}")
    return "\n## 执行历史 executionHistory\n" + "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class ContextBuilder:
    """Builds :class:`LLMContext` values from failure snapshots.

    Parameters
    ----------
    config:
        History/image bounds and which diagnostic sections may be included.
    language:
        Language of the protocol section of the system prompt.
    """

    def __init__(self, config: ContextConfig | None = None, language: str = "zh") -> None:
        self._config = config or ContextConfig()
        self._config.validate()
        self._language = language

    @property
    def config(self) -> ContextConfig:
        return self._config

    def build(
        self,
        context: DebugContext,
        messages: Sequence[Message] = (),
        user_query: str = "",
        requested: Collection[ContextType] = (),
    ) -> LLMContext:
        system_prompt = self.build_system_prompt(context)
        additional = self.build_additional_context(context, messages, user_query, requested)
        llm_context = LLMContext(
            system_prompt=f"{system_prompt}\n{additional}" if additional else system_prompt,
            conversation_history=tuple(self.build_conversation_history(messages)),
            images=tuple(self.collect_images(context)),
            additional_context=additional,
            temperature=0.7,
        )
        return truncate_context(llm_context, self._config.max_context_tokens)

    def build_system_prompt(self, context: DebugContext) -> str:
        lines = [
            "你是测试调试助手，专门帮助用户调试 UI 自动化测试。",
            "",
            "## 当前调试上下文",
            f"- 页面 URL: {context.url or '未知'}",
        ]
        step = context.current_step
        if step is not None and step.description:
            lines.append(f"- 当前步骤: {step.description} (步骤 {step.index + 1})")

        error = context.last_error
        if error is not None:
            lines.append(f"- 错误类型: {format_error_type(error.type.value)}")
            lines.append(f"- 错误信息: {error.message}")
            if error.details or error.stack:
                lines.append(f"- 详细信息: {error.details or error.stack}")
        else:
            lines.append("- 状态: 正常运行")

        history = context.execution_history
        if history:
            passed = sum(1 for r in history if r.success)
            lines += [
                "",
                "## 执行历史",
                f"- 总步骤数: {len(history)}",
                f"- 成功: {passed}",
                f"- 失败: {len(history) - passed}",
            ]

        return "\n".join(lines) + "\n\n" + build_system_prompt(self._language, verbose=False)

    def build_conversation_history(self, messages: Sequence[Message]) -> list[Message]:
        """Non-system messages, newest ``max_history_size`` only."""
        visible = [m for m in messages if m.role != MessageRole.SYSTEM]
        size = self._config.max_history_size
        return visible[-size:] if size else []

    def collect_images(self, context: DebugContext) -> list[str]:
        """Current screenshot first, then the most recent earlier ones."""
        images: list[str] = []
        if self._config.max_images < 1:
            return images
        if context.screenshot:
            images.append(context.screenshot)
        count = min(
            self._config.max_images - 1,
            self._config.max_previous_screenshots,
            len(context.previous_screenshots),
        )
        if count > 0:
            for shot in reversed(context.previous_screenshots[-count:]):
                if shot.data_url:
                    images.append(shot.data_url)
        return images

    def build_additional_context(
        self,
        context: DebugContext,
        messages: Sequence[Message] = (),
        user_query: str = "",
        requested: Collection[ContextType] = (),
    ) -> str:
        query = user_query or next(
            (m.content for m in reversed(messages) if m.role == MessageRole.USER), ""
        )
        wanted = sections_for_query(query) | set(requested)
        cfg = self._config

        parts: list[str] = []
        if cfg.include_console and ContextType.CONSOLE in wanted:
            parts.append(format_console_errors(context.console_errors))
        if cfg.include_network and ContextType.NETWORK in wanted:
            parts.append(format_network_errors(context.network_errors))
        if cfg.include_visible_elements and ContextType.ELEMENTS in wanted:
            parts.append(format_visible_elements(context.visible_elements))
        if ContextType.HISTORY in wanted:
            parts.append(format_execution_history(context.execution_history))
        return "".join(parts)
