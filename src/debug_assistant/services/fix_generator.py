"""Rule-based fix suggestion generator.

Classifies a failure message into :class:`ErrorCategory` with an ordered
table of bilingual keyword lists, emits the canned fixes for that
category, adds fixes implied by the page state (unloaded page, HTTP 401,
iframes), and merges in knowledge-base matches at a discount so a novel
knowledge hit never outranks a proven rule.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from debug_assistant.domain.enums import ErrorCategory, FixType
from debug_assistant.domain.values import DebugContext, FixSuggestion
from debug_assistant.infrastructure.config import FixGeneratorConfig
from debug_assistant.infrastructure.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

KB_CONFIDENCE_FACTOR = 0.9

# Evaluated in order; the first category with a matching keyword wins.
ERROR_PATTERNS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (
        ErrorCategory.ELEMENT_NOT_FOUND,
        (
            "找不到元素", "element not found", "无法定位", "cannot find element",
            "no element located", "timeout waiting for element",
        ),
    ),
    (ErrorCategory.TIMEOUT, ("超时", "timeout", "timed out", "等待超时")),
    (
        ErrorCategory.ASSERTION_FAILED,
        ("断言失败", "assertion failed", "期望", "expected", "实际", "actual"),
    ),
    (
        ErrorCategory.NETWORK_ERROR,
        ("网络错误", "network error", "连接失败", "connection failed", "fetch failed"),
    ),
    (
        ErrorCategory.STALE_ELEMENT,
        ("stale element", "元素已过期", "element reference", "detached from dom"),
    ),
    (
        ErrorCategory.CLICK_INTERCEPTED,
        ("click intercepted", "element click intercepted", "other element would receive", "遮罩"),
    ),
)


@dataclass(frozen=True)
class FailureAnalysis:
    """Outcome of classifying one failure."""

    category: ErrorCategory
    severity: str
    description: str
    likely_causes: tuple[str, ...] = ()
    suggested_fixes: tuple[FixSuggestion, ...] = field(default_factory=tuple)


def _fix(fix_type: FixType, description: str, code: str, confidence: float) -> FixSuggestion:
    return FixSuggestion(type=fix_type, description=description, code=code, confidence=confidence)


# -- per-category rules -----------------------------------------------------

def _rules() -> dict[ErrorCategory, FailureAnalysis]:
    return {
        ErrorCategory.ELEMENT_NOT_FOUND: FailureAnalysis(
            category=ErrorCategory.ELEMENT_NOT_FOUND,
            severity="high",
            description="无法找到目标元素",
            likely_causes=("元素选择器不正确", "元素尚未加载完成", "元素被动态生成", "页面结构与预期不符"),
            suggested_fixes=(
                _fix(FixType.WAIT, "添加等待条件，等待元素出现",
                     "await waitFor(element, { state: 'visible' });", 0.85),
                _fix(FixType.LOCATOR, "使用更可靠的选择器（如 test-id）",
                     '// 使用 data-testid 属性\nconst button = await locate("test-id=submit-btn");', 0.8),
                _fix(FixType.RETRY, "添加重试机制",
                     "await retry(async () => {\n  await click(element);\n}, { times: 3 });", 0.7),
            ),
        ),
        ErrorCategory.TIMEOUT: FailureAnalysis(
            category=ErrorCategory.TIMEOUT,
            severity="high",
            description="操作超时",
            likely_causes=("页面加载缓慢", "网络延迟", "元素动画未完成", "等待时间设置过短"),
            suggested_fixes=(
                _fix(FixType.TIMEOUT, "增加超时时间",
                     "await click(element, { timeout: 30000 });", 0.75),
                _fix(FixType.WAIT, "等待特定状态而非固定时间",
                     "await waitFor(() => element.isVisible());", 0.8),
            ),
        ),
        ErrorCategory.ASSERTION_FAILED: FailureAnalysis(
            category=ErrorCategory.ASSERTION_FAILED,
            severity="medium",
            description="断言失败",
            likely_causes=("实际值与预期不符", "业务逻辑错误", "数据状态异常"),
            suggested_fixes=(
                _fix(FixType.ASSERTION, "检查断言条件是否正确",
                     "// 确认期望值是否符合实际业务逻辑\nassert.equal(actual, expected);", 0.6),
                _fix(FixType.DEBUG, "添加调试输出查看实际值",
                     "console.log('实际值:', actualValue);\nconsole.log('期望值:', expectedValue);", 0.7),
            ),
        ),
        ErrorCategory.NETWORK_ERROR: FailureAnalysis(
            category=ErrorCategory.NETWORK_ERROR,
            severity="high",
            description="网络请求失败",
            likely_causes=("网络连接问题", "API 服务异常", "请求被阻止", "CORS 问题"),
            suggested_fixes=(
                _fix(FixType.RETRY, "添加网络重试逻辑",
                     "await retry(async () => {\n  await fetchData();\n}, { times: 3, delay: 1000 });", 0.75),
                _fix(FixType.WAIT, "等待网络稳定", "await waitForNetworkIdle();", 0.65),
            ),
        ),
        ErrorCategory.STALE_ELEMENT: FailureAnalysis(
            category=ErrorCategory.STALE_ELEMENT,
            severity="medium",
            description="元素引用已过期",
            likely_causes=("页面已更新", "元素被重新渲染", "DOM 结构发生变化"),
            suggested_fixes=(
                _fix(FixType.LOCATOR, "每次使用前重新定位元素",
                     "// 不要缓存元素引用\nconst button = await locate('提交按钮');\nawait click(button);", 0.85),
            ),
        ),
        ErrorCategory.CLICK_INTERCEPTED: FailureAnalysis(
            category=ErrorCategory.CLICK_INTERCEPTED,
            severity="medium",
            description="点击被其他元素拦截",
            likely_causes=("弹窗或遮罩层", "加载动画", "浮动元素"),
            suggested_fixes=(
                _fix(FixType.ACTION, "先关闭遮罩层再点击",
                     "await click('关闭弹窗');\nawait click('提交按钮');", 0.8),
                _fix(FixType.WAIT, "等待动画完成",
                     "await waitForAnimation();\nawait click(element);", 0.7),
            ),
        ),
    }


_COMMON_FIXES: dict[ErrorCategory, tuple[tuple[FixType, str, str, float], ...]] = {
    ErrorCategory.ELEMENT_NOT_FOUND: (
        (FixType.WAIT, "添加显式等待", 'await waitFor(element, { state: "visible" });', 0.9),
        (FixType.LOCATOR, "使用更稳定的选择器",
         '// 使用 data-testid\nconst btn = await locate("test-id=submit");', 0.85),
    ),
    ErrorCategory.TIMEOUT: (
        (FixType.TIMEOUT, "增加超时时间", "await action(element, { timeout: 30000 });", 0.8),
        (FixType.WAIT, "等待加载完成", 'await waitForLoadState("networkidle");', 0.75),
    ),
    ErrorCategory.CLICK_INTERCEPTED: (
        (FixType.ACTION, "强制点击", "await element.click({ force: true });", 0.7),
    ),
}

_UUID = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.IGNORECASE)
_QUOTED = re.compile(r"""['"][^'"]+['"]""")
_DIGITS = re.compile(r"\d+")


def classify_error(message: str) -> ErrorCategory:
    lowered = message.lower()
    for category, keywords in ERROR_PATTERNS:
        if any(k in lowered for k in keywords):
            return category
    return ErrorCategory.UNKNOWN


def extract_pattern(message: str, failed_step: str = "") -> str:
    """Normalise an error message into a knowledge-base pattern.

    The message is lowercased, then UUIDs become ``ID``, quoted strings
    ``VALUE`` and digit runs ``N``.
    """
    pattern = _UUID.sub("ID", message.lower())
    pattern = _QUOTED.sub("VALUE", pattern)
    pattern = _DIGITS.sub("N", pattern)
    if failed_step:
        pattern += f' 在步骤 "{failed_step}"'
    return pattern


class FixSuggestionGenerator:
    """Ranks fix suggestions for a failure.

    Parameters
    ----------
    knowledge_base:
        Optional store of previously learned fixes.
    config:
        ``max_suggestions`` and ``min_confidence``.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase | None = None,
        config: FixGeneratorConfig | None = None,
    ) -> None:
        self._kb = knowledge_base
        self._config = config or FixGeneratorConfig()
        self._config.validate()
        self._rules = _rules()

    @property
    def knowledge_base(self) -> KnowledgeBase | None:
        return self._kb

    def set_knowledge_base(self, kb: KnowledgeBase | None) -> None:
        self._kb = kb

    # -- generation -----------------------------------------------------------

    def generate(self, context: DebugContext, error_message: str = "") -> list[FixSuggestion]:
        """Ranked, de-duplicated suggestions above ``min_confidence``."""
        cfg = self._config
        suggestions: list[FixSuggestion] = []
        seen: set[str] = set()

        def add(fix: FixSuggestion) -> None:
            if fix.description not in seen:
                seen.add(fix.description)
                suggestions.append(fix)

        if self._kb is not None:
            query = self._search_query(context, error_message)
            for entry in self._kb.find_matching_patterns(query, cfg.max_suggestions):
                for fix in entry.fixes:
                    if fix.confidence >= cfg.min_confidence:
                        add(fix.with_confidence(fix.confidence * KB_CONFIDENCE_FACTOR))

        for fix in self.analyze_failure(context, error_message).suggested_fixes:
            add(fix)
        for fix in self._contextual_suggestions(context, error_message):
            add(fix)

        ranked = sorted(
            (s for s in suggestions if s.confidence >= cfg.min_confidence),
            key=lambda s: s.confidence,
            reverse=True,
        )
        return ranked[: cfg.max_suggestions]

    def analyze_failure(self, context: DebugContext, error_message: str = "") -> FailureAnalysis:
        message = context.error_message or error_message
        category = classify_error(message)
        if category in self._rules:
            return self._rules[category]
        return FailureAnalysis(category=category, severity="medium", description="未知错误类型")

    def _contextual_suggestions(self, context: DebugContext, error_message: str) -> list[FixSuggestion]:
        found: list[FixSuggestion] = []
        message = (error_message or context.error_message).lower()

        if not context.url or context.url == "about:blank":
            found.append(_fix(FixType.NAVIGATION, "页面未加载，需要先导航到目标页面",
                              "await navigate('https://example.com');", 0.9))

        if any(
            "401" in e.message or "403" in e.message or "unauthorized" in e.message.lower()
            for e in context.console_errors
        ):
            found.append(_fix(
                FixType.AUTH,
                "可能需要重新登录",
                "await login();\n// 或检查登录状态\nif (!await isLoggedIn()) {\n  await performLogin();\n}",
                0.85,
            ))

        if "timeout" in message:
            found.append(_fix(FixType.WAIT, "等待加载动画消失",
                              "await waitFor(() => !loadingIndicator.isVisible());", 0.7))

        if "frame" in message:
            found.append(_fix(FixType.ACTION, "可能需要切换到 iframe",
                              "const frame = page.frame('iframe-name');\nawait frame.click(element);", 0.75))
        return found

    @staticmethod
    def _search_query(context: DebugContext, error_message: str) -> str:
        parts = [error_message, context.error_message, context.failed_step]
        if context.console_errors:
            parts.append(" ".join(e.message for e in context.console_errors[:2]))
        return " ".join(p for p in parts if p)

    # -- learning -------------------------------------------------------------

    def learn_from_success(
        self, context: DebugContext, fix: FixSuggestion, original_error: str = ""
    ) -> str | None:
        """Record *fix* as a proven remedy.  Returns the entry id."""
        if self._kb is None:
            return None
        pattern = extract_pattern(original_error or context.error_message, context.failed_step)
        entry_id = self._kb.add_entry(
            pattern,
            [fix],
            frequency=1,
            success_rate=1.0,
            tags=self.generate_tags(context, fix),
        )
        logger.info("FixSuggestionGenerator: learned %s fix for %r", fix.type.value, pattern)
        return entry_id

    @staticmethod
    def generate_tags(context: DebugContext, fix: FixSuggestion) -> list[str]:
        tags = [fix.type.value]
        error = context.error_message.lower()
        for needle, tag in (
            ("timeout", "timeout"),
            ("not found", "element_not_found"),
            ("click", "click"),
            ("assert", "assertion"),
        ):
            if needle in error:
                tags.append(tag)
        if context.url:
            path = urlparse(context.url).path
            if "login" in path:
                tags.append("login_page")
            if "admin" in path:
                tags.append("admin_page")
        return tags

    @staticmethod
    def get_common_fixes(category: ErrorCategory) -> list[FixSuggestion]:
        return [_fix(*spec) for spec in _COMMON_FIXES.get(category, ())]
