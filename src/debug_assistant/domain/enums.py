"""Domain enumerations for the debug assistant.

Fixed vocabularies shared across the domain layer: conversation roles,
executable action types, fix-suggestion kinds, failure categories, session
lifecycle states, and the diagnostic slices the model may request.
"""

from enum import Enum


class MessageRole(Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ActionType(Enum):
    """Side-effecting operations the executor can run against a page."""

    CLICK = "click"
    INPUT = "input"
    SCROLL = "scroll"
    REFRESH = "refresh"
    HIGHLIGHT = "highlight"
    HOVER = "hover"
    SCREENSHOT = "screenshot"
    WAIT = "wait"
    COMPARE = "compare"
    DESCRIBE = "describe"
    LOCATE = "locate"

    @property
    def is_critical(self) -> bool:
        """Whether a failure of this action aborts a multi-action sequence."""
        return self in (ActionType.CLICK, ActionType.INPUT)

    @property
    def requires_target(self) -> bool:
        """Whether a parsed tag of this type is meaningless without a target."""
        return self in _TARGETED_ACTIONS


_TARGETED_ACTIONS = frozenset({
    ActionType.CLICK,
    ActionType.INPUT,
    ActionType.HOVER,
    ActionType.SCROLL,
    ActionType.HIGHLIGHT,
    ActionType.LOCATE,
    ActionType.DESCRIBE,
    ActionType.COMPARE,
})


class FixType(Enum):
    """Kinds of remediation a fix suggestion can propose."""

    WAIT = "wait"
    WAIT_TIME = "wait_time"
    TIMEOUT = "timeout"
    LOCATOR = "locator"
    LOCATOR_CHANGE = "locator_change"
    RETRY = "retry"
    PRE_ACTION = "pre_action"
    ASSERTION = "assertion"
    ACTION = "action"
    DEBUG = "debug"
    NAVIGATION = "navigation"
    AUTH = "auth"
    CODE_CHANGE = "code_change"
    GENERIC = "generic"


class ErrorCategory(Enum):
    """Failure taxonomy used by rule-based fix generation."""

    ELEMENT_NOT_FOUND = "element_not_found"
    TIMEOUT = "timeout"
    STALE_ELEMENT = "stale_element"
    CLICK_INTERCEPTED = "click_intercepted"
    ASSERTION_FAILED = "assertion_failed"
    NETWORK_ERROR = "network_error"
    ACTION_FAILED = "action_failed"
    UNKNOWN = "unknown"


class SessionStatus(Enum):
    """Lifecycle status of a debug session."""

    ACTIVE = "active"
    RESOLVED = "resolved"  # a fix succeeded
    ABANDONED = "abandoned"  # superseded or discarded


class ContextType(Enum):
    """Diagnostic slices that can be injected into a prompt."""

    CONSOLE = "console"
    NETWORK = "network"
    ELEMENTS = "elements"
    HISTORY = "history"
    SCREENSHOT = "screenshot"
    DOM = "dom"


class ScrollDirection(Enum):
    """Scroll direction for scroll actions."""

    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
