"""Response parser: turns free-form model output into structured data.

The model speaks a small tagged protocol inline with its prose::

    [ACTION:<type>[:<target>][:<value>]]
    [SUGGESTION:<description>[|<code>][|<confidence>]]
    [CONTEXT:<type>[:<details>]]

Recognised tags become :class:`DebugAction`, :class:`FixSuggestion` and
:class:`ContextRequest` values and are stripped from the displayed text.
Suggestion sentences written in plain language ("建议...", "suggest ...")
are mined as well, at a lower confidence.

The parser never raises.  A malformed tag is skipped and the rest of the
reply is still returned.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from debug_assistant.domain.enums import ActionType, FixType, ScrollDirection
from debug_assistant.domain.values import (
    BeforeAfter,
    ContextRequest,
    DebugAction,
    FixSuggestion,
    ParsedResponse,
    clamp_unit,
)

logger = logging.getLogger(__name__)


# =========================================================================== #
#  Patterns                                                                    #
# =========================================================================== #

ACTION_PATTERN = re.compile(
    r"\[ACTION:\s*([a-z_]+)(?:\s*:\s*([^\]:]*))?(?:\s*:\s*([^\]]*))?\]",
    re.IGNORECASE,
)
SUGGESTION_TAG_PATTERN = re.compile(r"\[SUGGESTION:[^\]]+\]", re.IGNORECASE)
CONTEXT_PATTERN = re.compile(r"\[CONTEXT:([^\]:]+):?([^\]]*)\]", re.IGNORECASE)

_SUGGESTION_BODY = re.compile(r"\[SUGGESTION:(.*)\]", re.IGNORECASE | re.DOTALL)
_TRAILING_CONFIDENCE = re.compile(r"\|(\d*\.?\d+)\s*$")
_CONTEXT_TAG = re.compile(r"\[CONTEXT:[^\]]*\]", re.IGNORECASE)
_EMPTY_FENCE = re.compile(r"^```\s*$", re.MULTILINE)
_BLANK_RUN = re.compile(r"\n{3,}")

_DURATION = re.compile(r"(\d+)\s*(ms|s)?", re.IGNORECASE)
_ORDINAL = re.compile(r"(\d+)|第([一二三四五六七八九十]+)[个些]")

_NATURAL_SUGGESTIONS = (
    re.compile(r"(?:建议|推荐|可以尝试)[:：]?\s*([^\n.]+(?:[。\n]|$))"),
    re.compile(r"\b(?:suggest|recommend|try)\b[:：]?\s*([^\n.]+(?:[.\n]|$))", re.IGNORECASE),
)

ACTION_ALIASES: dict[str, ActionType] = {
    **{t.value: t for t in ActionType},
    "type": ActionType.INPUT,
    "reload": ActionType.REFRESH,
    "sleep": ActionType.WAIT,
    "find": ActionType.LOCATE,
}

_SCROLL_KEYWORDS: tuple[tuple[tuple[str, ...], ScrollDirection], ...] = (
    (("up", "上"), ScrollDirection.UP),
    (("down", "下"), ScrollDirection.DOWN),
    (("left", "左"), ScrollDirection.LEFT),
    (("right", "右"), ScrollDirection.RIGHT),
)

# Whole-target words that mean "scroll to the page edge".
_SCROLL_EDGES: dict[str, str] = {
    "top": "top",
    "顶部": "top",
    "页面顶部": "top",
    "bottom": "bottom",
    "底部": "bottom",
    "页面底部": "bottom",
}

# Evaluated top-down against the lowercased description; first hit wins.
SUGGESTION_TYPE_RULES: tuple[tuple[re.Pattern[str], FixType], ...] = (
    (re.compile(r"超时|timeout|time out"), FixType.TIMEOUT),
    (re.compile(r"等待|延迟|wait|sleep|delay"), FixType.WAIT),
    (re.compile(r"定位|选择器|找不到|locator|selector"), FixType.LOCATOR),
    (re.compile(r"重试|retry|again"), FixType.RETRY),
    (re.compile(r"断言|assert|expect"), FixType.ASSERTION),
    (re.compile(r"调试|debug|日志|log"), FixType.DEBUG),
    (re.compile(r"导航|跳转|navigat|goto|url"), FixType.NAVIGATION),
    (re.compile(r"登录|认证|auth|login|token"), FixType.AUTH),
    (re.compile(r"先|前置|之前|before"), FixType.PRE_ACTION),
)

_ACTIONABLE_VERBS = (
    re.compile(r"点击|click", re.IGNORECASE),
    re.compile(r"输入|input", re.IGNORECASE),
    re.compile(r"等待|wait", re.IGNORECASE),
    re.compile(r"高亮|highlight", re.IGNORECASE),
    re.compile(r"刷新|refresh", re.IGNORECASE),
)
_HEDGING = re.compile(r"可能|\bmaybe\b|\bperhaps\b", re.IGNORECASE)

_CN_DIGITS = {"一": 1, "二": 2, "三": 3, "四": 4, "五": 5, "六": 6, "七": 7, "八": 8, "九": 9}


# =========================================================================== #
#  Heuristics                                                                  #
# =========================================================================== #

def response_confidence(
    text: str,
    actions: Sequence[DebugAction],
    suggestions: Sequence[FixSuggestion],
) -> float:
    """Informational quality score of a whole reply, in ``[0, 1]``.

    0.5 base; +0.2 when anything structured was found; +0.1 for replies
    longer than 100 characters; +0.05 per kind of actionable verb; -0.15
    for hedging language.
    """
    confidence = 0.5
    if actions or suggestions:
        confidence += 0.2
    if len(text) > 100:
        confidence += 0.1
    for pattern in _ACTIONABLE_VERBS:
        if pattern.search(text):
            confidence += 0.05
    if _HEDGING.search(text):
        confidence -= 0.15
    return clamp_unit(confidence)


def infer_suggestion_type(description: str, code: str = "") -> FixType:
    """Classify a suggestion by the first matching keyword rule."""
    if code and "- ai:" in code:
        return FixType.CODE_CHANGE
    desc = description.lower()
    for pattern, fix_type in SUGGESTION_TYPE_RULES:
        if pattern.search(desc):
            return fix_type
    return FixType.CODE_CHANGE if code else FixType.GENERIC


def chinese_to_number(token: str) -> int | None:
    """Convert ``"3"``, ``"三"``, ``"十二"`` or ``"二十"`` to an int."""
    if token.isdigit():
        return int(token)
    if "十" in token:
        tens, _, ones = token.partition("十")
        value = (_CN_DIGITS.get(tens, 0) if tens else 1) * 10
        return value + (_CN_DIGITS.get(ones, 0) if ones else 0)
    if len(token) == 1 and token in _CN_DIGITS:
        return _CN_DIGITS[token]
    return None


def parse_duration_ms(text: str | None) -> int | None:
    """``"2000"`` / ``"2000ms"`` -> 2000, ``"2s"`` -> 2000; ``None`` if absent."""
    if not text:
        return None
    match = _DURATION.search(text)
    if not match:
        return None
    amount = int(match.group(1))
    unit = (match.group(2) or "").lower()
    return amount * 1000 if unit == "s" else amount


def scroll_direction_of(text: str | None) -> ScrollDirection | None:
    if not text:
        return None
    lowered = text.lower()
    for keywords, direction in _SCROLL_KEYWORDS:
        if any(k in lowered for k in keywords):
            return direction
    return None


def scroll_edge_of(text: str | None) -> str | None:
    """``"top"`` or ``"bottom"`` when *text* names a page edge."""
    if not text:
        return None
    return _SCROLL_EDGES.get(text.strip().lower())


def extract_before_after(code: str) -> BeforeAfter | None:
    """Pair the first ``-`` line and the first ``+`` line of a diff snippet."""
    lines = [line.strip() for line in code.split("\n")]
    before = next((line for line in lines if line.startswith("-")), None)
    after = next((line for line in lines if line.startswith("+")), None)
    if before is None or after is None:
        return None
    return BeforeAfter(before=before[1:].lstrip(), after=after[1:].lstrip())


def _is_in_tag(fragment: str, text: str) -> bool:
    """Whether *fragment* first occurs after an unmatched ``[``."""
    index = text.find(fragment)
    if index == -1:
        return False
    prefix = text[:index]
    open_at = prefix.rfind("[")
    return open_at != -1 and open_at > prefix.rfind("]")


# =========================================================================== #
#  Parser                                                                      #
# =========================================================================== #

class ResponseParser:
    """Extracts actions, suggestions and context requests from model replies.

    Stateless; one instance can be shared by every session.
    """

    def parse(self, response: str) -> ParsedResponse:
        trimmed = response.strip()
        actions = self.extract_actions(trimmed)
        suggestions = self.extract_suggestions(trimmed)
        return ParsedResponse(
            text=self._clean(trimmed),
            actions=tuple(actions),
            suggestions=tuple(suggestions),
            context_request=self.parse_context_request(trimmed),
            confidence=response_confidence(trimmed, actions, suggestions),
        )

    # -- actions --------------------------------------------------------------

    def extract_actions(self, text: str) -> list[DebugAction]:
        actions: list[DebugAction] = []
        for match in ACTION_PATTERN.finditer(text):
            action = self._build_action(*match.groups())
            if action is not None:
                actions.append(action)
        return actions

    def parse_action(self, text: str) -> DebugAction | None:
        """Parse the first action tag in *text*.

        Stricter than :meth:`extract_actions`: returns ``None`` when a type
        that needs a target has none.
        """
        match = ACTION_PATTERN.search(text)
        if match is None:
            return None
        action = self._build_action(*match.groups())
        if action is None or (action.type.requires_target and not action.target):
            return None
        return action

    def _build_action(
        self, raw_type: str, raw_target: str | None, raw_value: str | None
    ) -> DebugAction | None:
        action_type = ACTION_ALIASES.get(raw_type.strip().lower())
        if action_type is None:
            logger.debug("ResponseParser: dropping unknown action type %r", raw_type)
            return None
        target = (raw_target or "").strip() or None
        value = (raw_value or "").strip() or None
        return DebugAction(
            type=action_type,
            target=target,
            value=value,
            options=self._action_options(action_type, target, value),
        )

    @staticmethod
    def _action_options(
        action_type: ActionType, target: str | None, value: str | None
    ) -> dict[str, object]:
        options: dict[str, object] = {}
        if action_type == ActionType.WAIT:
            timeout = parse_duration_ms(value) or parse_duration_ms(target)
            if timeout is not None:
                options["timeout"] = timeout
        elif action_type == ActionType.SCROLL:
            direction = scroll_direction_of(value) or scroll_direction_of(target)
            if direction is not None:
                options["scroll_direction"] = direction.value
        elif action_type in (ActionType.CLICK, ActionType.HIGHLIGHT, ActionType.LOCATE) and value:
            match = _ORDINAL.search(value)
            if match:
                index = chinese_to_number(match.group(1) or match.group(2))
                if index is not None:
                    options["index"] = index
        return options

    # -- suggestions ----------------------------------------------------------

    def extract_suggestions(self, text: str) -> list[FixSuggestion]:
        suggestions: list[FixSuggestion] = []
        for tag in SUGGESTION_TAG_PATTERN.findall(text):
            suggestion = self.parse_suggestion(tag)
            if suggestion is not None:
                suggestions.append(suggestion)
        suggestions.extend(self._natural_language_suggestions(text))
        return suggestions

    def parse_suggestion(self, text: str) -> FixSuggestion | None:
        """Parse one ``[SUGGESTION:...]`` tag, reading from the end backward.

        A trailing ``|<number>`` is the confidence; the rest splits on the
        first pipe into description and code, so code may contain ``|``.
        """
        match = _SUGGESTION_BODY.search(text)
        if match is None:
            return None
        inner = match.group(1).strip()

        confidence = 0.7
        conf_match = _TRAILING_CONFIDENCE.search(inner)
        if conf_match:
            confidence = clamp_unit(float(conf_match.group(1)))
            inner = inner[: inner.rfind("|")].strip()

        description, sep, code = inner.partition("|")
        description = description.strip()
        code = code.strip() if sep else ""
        if not description:
            return None

        return FixSuggestion(
            type=infer_suggestion_type(description, code),
            description=description,
            code=code,
            confidence=confidence,
            before_after=extract_before_after(code) if code else None,
        )

    def _natural_language_suggestions(self, text: str) -> list[FixSuggestion]:
        found: list[FixSuggestion] = []
        for pattern in _NATURAL_SUGGESTIONS:
            for match in pattern.finditer(text):
                description = (match.group(1) or "").strip()
                if description and not _is_in_tag(description, text):
                    found.append(
                        FixSuggestion(type=FixType.RETRY, description=description, confidence=0.5)
                    )
        return found

    # -- context requests -----------------------------------------------------

    @staticmethod
    def parse_context_request(text: str) -> ContextRequest | None:
        match = CONTEXT_PATTERN.search(text)
        if match is None:
            return None
        return ContextRequest(type=match.group(1).strip(), details=(match.group(2) or "").strip())

    # -- text -----------------------------------------------------------------

    @staticmethod
    def strip_tags(text: str) -> str:
        """Remove every action, suggestion and context tag, leaving prose."""
        text = ACTION_PATTERN.sub("", text)
        text = SUGGESTION_TAG_PATTERN.sub("", text)
        return _CONTEXT_TAG.sub("", text)

    def _clean(self, text: str) -> str:
        cleaned = _EMPTY_FENCE.sub("", self.strip_tags(text))
        cleaned = cleaned.replace("\r\n", "\n")
        return _BLANK_RUN.sub("\n\n", cleaned).strip()
