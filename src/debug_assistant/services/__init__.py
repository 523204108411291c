"""Service layer for the debug assistant.

Re-exports public service types for convenient top-level access::

    from debug_assistant.services import (
        ResponseParser, ContextBuilder, ActionExecutor, PageActions,
        HighlightAction, CompareAction, FixSuggestionGenerator,
        FixApplier, DebugAssistantService,
    )
"""

from debug_assistant.services.action_executor import ActionExecutor
from debug_assistant.services.compare import CompareAction, CompareResult, Snapshot
from debug_assistant.services.context_builder import ContextBuilder
from debug_assistant.services.fix_applier import FixApplier
from debug_assistant.services.fix_generator import (
    FailureAnalysis,
    FixSuggestionGenerator,
    classify_error,
    extract_pattern,
)
from debug_assistant.services.highlight import HighlightAction, HighlightOptions, HighlightResult
from debug_assistant.services.orchestrator import DebugAssistantService
from debug_assistant.services.page_actions import PageActions
from debug_assistant.services.prompts import build_system_prompt, quick_questions_for
from debug_assistant.services.response_parser import ResponseParser

__all__ = [
    # Parsing and prompting
    "ResponseParser",
    "ContextBuilder",
    "build_system_prompt",
    "quick_questions_for",
    # Page interaction
    "ActionExecutor",
    "PageActions",
    "HighlightAction",
    "HighlightOptions",
    "HighlightResult",
    "CompareAction",
    "CompareResult",
    "Snapshot",
    # Fixes
    "FixSuggestionGenerator",
    "FailureAnalysis",
    "FixApplier",
    "classify_error",
    "extract_pattern",
    # Orchestration
    "DebugAssistantService",
]
