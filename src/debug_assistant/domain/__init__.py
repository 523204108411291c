"""Domain layer for the debug assistant.

Re-exports all public domain types so that consumers can write::

    from debug_assistant.domain import DebugAction, ActionType, FixSuggestion
"""

# -- Enumerations -------------------------------------------------------------
from .enums import (
    ActionType,
    ContextType,
    ErrorCategory,
    FixType,
    MessageRole,
    ScrollDirection,
    SessionStatus,
)

# -- Value Objects ------------------------------------------------------------
from .values import (
    ActionResult,
    ApplyResult,
    BeforeAfter,
    ConsoleEntry,
    ContextRequest,
    DebugAction,
    DebugContext,
    DebugError,
    ElementInfo,
    FixSuggestion,
    LLMContext,
    Message,
    NetworkError,
    ParsedResponse,
    QuickQuestion,
    Rect,
    ScreenshotInfo,
    StepInfo,
    StepResult,
)

# -- Entities -----------------------------------------------------------------
from .entities import CacheEntry, DebugSession, KnowledgeEntry

# -- Events -------------------------------------------------------------------
from .events import (
    ActionExecuted,
    DomainEvent,
    FixApplied,
    MessageAdded,
    SessionEnded,
    SessionStarted,
)

# -- Exceptions ---------------------------------------------------------------
from .exceptions import (
    ActionTimeoutError,
    AgentUnavailableError,
    ConfigurationError,
    DebugAssistantError,
    ElementNotFoundError,
    KnowledgeBaseImportError,
)

__all__ = [
    # Enums
    "ActionType",
    "ContextType",
    "ErrorCategory",
    "FixType",
    "MessageRole",
    "ScrollDirection",
    "SessionStatus",
    # Values
    "ActionResult",
    "ApplyResult",
    "BeforeAfter",
    "ConsoleEntry",
    "ContextRequest",
    "DebugAction",
    "DebugContext",
    "DebugError",
    "ElementInfo",
    "FixSuggestion",
    "LLMContext",
    "Message",
    "NetworkError",
    "ParsedResponse",
    "QuickQuestion",
    "Rect",
    "ScreenshotInfo",
    "StepInfo",
    "StepResult",
    # Entities
    "CacheEntry",
    "DebugSession",
    "KnowledgeEntry",
    # Events
    "DomainEvent",
    "MessageAdded",
    "SessionStarted",
    "SessionEnded",
    "ActionExecuted",
    "FixApplied",
    # Exceptions
    "DebugAssistantError",
    "AgentUnavailableError",
    "ElementNotFoundError",
    "ActionTimeoutError",
    "KnowledgeBaseImportError",
    "ConfigurationError",
]
