"""Reference resolution for action targets.

Model replies and operators often point at elements indirectly: a quoted
label (``'提交'``), a bracketed name (``【登录】``) or a pronoun (``它``,
``that button``).  This module turns those into concrete target strings
by looking back through the conversation for the elements and actions
mentioned so far.

Pronouns are recognised with the ordered :data:`PRONOUN_PATTERNS` table;
element mentions with :data:`ELEMENT_PATTERNS`.  Both are evaluated
top-down and the first hit wins.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from debug_assistant.domain.enums import ActionType, MessageRole
from debug_assistant.domain.values import DebugAction, DebugContext, Message

logger = logging.getLogger(__name__)

# -- tables -------------------------------------------------------------------

# (pattern, kind): ``input`` pronouns prefer the latest input target,
# ``element`` pronouns take the latest target of any kind.
PRONOUN_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^(?:it|this|that)\s+(?:input|field|box|textbox)$", re.IGNORECASE), "input"),
    (re.compile(r"^(?:这个|那个|该)(?:输入框|文本框)$"), "input"),
    (
        re.compile(r"^(?:it|this|that)(?:\s+(?:one|button|link|element))?$", re.IGNORECASE),
        "element",
    ),
    (re.compile(r"^(?:它|这|那|这个|那个|该)(?:按钮|链接|元素)?$"), "element"),
)

# (pattern, kind): group 1 holds the element text when present.
ELEMENT_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?<![A-Za-z])'([^'\n]+)'(?![A-Za-z])"), "quoted"),
    (re.compile(r"\"([^\"\n]+)\""), "quoted"),
    (re.compile(r"[“‘]([^”’\n]+)[”’]"), "quoted"),
    (re.compile(r"【([^】]+)】"), "bracketed"),
    (re.compile(r"「([^」]+)」"), "bracketed"),
    (re.compile(r"『([^』]+)』"), "bracketed"),
    (
        re.compile(r"\b(?:the|this|that|an?)\s+(?:button|input|field|link|element|text)\b", re.IGNORECASE),
        "generic",
    ),
)

_MENTIONED_ELEMENT = re.compile(
    "|".join(pattern.pattern for pattern, kind in ELEMENT_PATTERNS if kind != "generic")
)
_MENTIONED_ACTION = re.compile(r"(?:点击|输入|滚动|高亮|悬停)\s*[:：]?\s*[^\n,，。]+", re.IGNORECASE)
_MENTIONED_ERROR = re.compile(r"(?:error|错误)[:：]?\s*[^\n]+", re.IGNORECASE)

_GENERIC_TERMS = frozenset({"button", "input", "element", "the", "a", "an", "按钮", "元素", "输入框"})

_QUOTES = "'\"“”‘’"
_BRACKETS_OPEN = "【『「"
_BRACKETS_CLOSE = "】』」"


# -- values -------------------------------------------------------------------

@dataclass(frozen=True)
class ResolvedReference:
    """An element reference found in free text."""

    value: str
    confidence: float
    source: str
    kind: str = "element"

    @property
    def is_valid(self) -> bool:
        return self.confidence >= 0.3 and bool(self.value.strip())


@dataclass
class HistoryReferences:
    """What the conversation has mentioned so far, oldest first."""

    elements: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    # Quoted elements (no action type) and concrete action targets, in order.
    mentions: list[tuple[str, ActionType | None]] = field(default_factory=list)

    def add_target(self, target: str, action_type: ActionType | None = None) -> None:
        self.mentions.append((normalize_element_reference(target), action_type))

    def latest_target(self, kind: str = "element") -> str | None:
        """Most recent mention; ``input`` prefers the latest input target."""
        if kind == "input":
            for target, action_type in reversed(self.mentions):
                if action_type == ActionType.INPUT:
                    return target
        return self.mentions[-1][0] if self.mentions else None


# -- helpers ------------------------------------------------------------------

def _remember(items: list[str], value: str) -> None:
    """Append *value*, moving an earlier mention to the end."""
    if value in items:
        items.remove(value)
    items.append(value)


def pronoun_kind(text: str | None) -> str | None:
    """The pronoun kind of *text*, or ``None`` when it names something."""
    if not text:
        return None
    stripped = text.strip()
    for pattern, kind in PRONOUN_PATTERNS:
        if pattern.match(stripped):
            return kind
    return None


def normalize_element_reference(ref: str) -> str:
    """Strip surrounding quotes, CJK brackets and whitespace."""
    normalized = ref.strip()
    if normalized[:1] in _QUOTES:
        normalized = normalized[1:]
    if normalized[-1:] in _QUOTES:
        normalized = normalized[:-1]
    if normalized[:1] in _BRACKETS_OPEN:
        normalized = normalized[1:]
    if normalized[-1:] in _BRACKETS_CLOSE:
        normalized = normalized[:-1]
    return normalized.strip()


def element_confidence(value: str, kind: str, context: DebugContext | None = None) -> float:
    confidence = 0.5
    if context is not None and any(value in step.description for step in context.execution_history):
        confidence += 0.2
    if value.strip().lower() not in _GENERIC_TERMS:
        confidence += 0.15
    if kind in ("quoted", "bracketed"):
        confidence += 0.1
    return min(confidence, 1.0)


# -- resolution ---------------------------------------------------------------

def resolve_element_reference(
    text: str,
    context: DebugContext | None = None,
    fuzzy_match: bool = True,
) -> ResolvedReference | None:
    """Find the element *text* refers to.

    Quoted and bracketed labels win over generic phrases such as
    ``the button``.  Without a pattern hit the whole text is the
    reference when ``fuzzy_match`` is set.
    """
    for pattern, kind in ELEMENT_PATTERNS:
        match = pattern.search(text)
        if match:
            value = match.group(1) if match.groups() else match.group(0)
            return ResolvedReference(
                value=value.strip(),
                confidence=element_confidence(value, kind, context),
                source=text,
                kind=kind,
            )
    if fuzzy_match and text.strip():
        return ResolvedReference(value=text.strip(), confidence=0.6, source=text)
    return None


def extract_references_from_history(
    messages: Iterable[Message],
    stop_at: str | None = None,
) -> HistoryReferences:
    """Collect mentioned elements, actions and errors from user and assistant turns.

    Parameters
    ----------
    messages:
        Conversation, oldest first.
    stop_at:
        Action id; collection stops just before that action so a pronoun
        only sees what was said before it.
    """
    refs = HistoryReferences()
    for message in messages:
        if message.role not in (MessageRole.USER, MessageRole.ASSISTANT):
            continue
        for match in _MENTIONED_ELEMENT.finditer(message.content):
            element = normalize_element_reference(next(g for g in match.groups() if g))
            if len(element) > 1:
                _remember(refs.elements, element)
                refs.add_target(element)
        for match in _MENTIONED_ACTION.finditer(message.content):
            _remember(refs.actions, match.group(0).strip())
        for match in _MENTIONED_ERROR.finditer(message.content):
            _remember(refs.errors, match.group(0).strip())
        for action in message.actions:
            if stop_at is not None and action.id == stop_at:
                return refs
            if action.target and pronoun_kind(action.target) is None:
                refs.add_target(action.target, action.type)
    return refs


def resolve_pronoun_reference(
    pronoun: str,
    context: DebugContext | None = None,
    messages: Iterable[Message] = (),
    references: HistoryReferences | None = None,
) -> str | None:
    """The most recently mentioned element *pronoun* stands for.

    Falls back to the current step description when nothing was
    mentioned yet.
    """
    refs = references if references is not None else extract_references_from_history(messages)
    kind = pronoun_kind(pronoun) or "element"
    found = refs.latest_target(kind)
    if found is not None:
        return found
    step = context.current_step if context is not None else None
    if step is not None and step.description:
        return step.description
    return None


def resolve_action_target(
    action: DebugAction,
    context: DebugContext | None = None,
    messages: Sequence[Message] = (),
    preceding: Sequence[DebugAction] = (),
) -> DebugAction:
    """Replace an indirect target of *action* with the element it names.

    ``preceding`` are actions run just before *action* in the same batch;
    they count as the most recent mentions.  The action is returned
    unchanged when its target is already concrete.
    """
    target = action.target
    if not target or not action.type.requires_target:
        return action

    if pronoun_kind(target) is not None:
        refs = extract_references_from_history(messages, stop_at=action.id)
        for earlier in preceding:
            if earlier.target and pronoun_kind(earlier.target) is None:
                refs.add_target(earlier.target, earlier.type)
        resolved = resolve_pronoun_reference(target, context, references=refs)
    else:
        # Only an explicitly delimited label narrows a concrete target.
        ref = resolve_element_reference(target, context, fuzzy_match=False)
        explicit = ref is not None and ref.kind in ("quoted", "bracketed") and ref.is_valid
        resolved = normalize_element_reference(ref.value) if explicit else None

    if not resolved or resolved == target:
        return action
    logger.debug("Resolved %s target %r -> %r", action.type.value, target, resolved)
    return replace(action, target=resolved)
