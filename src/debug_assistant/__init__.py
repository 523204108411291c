"""Debug Assistant.

Conversational debugging for failed browser-automation test steps: parses
tagged model replies into page actions and fix suggestions, drives an
automation agent with AI-first and manual fallback strategies, and learns
which fixes work in a fuzzy-matched knowledge base.
"""

__version__ = "0.1.0"

from debug_assistant.services.orchestrator import DebugAssistantService
from debug_assistant.services.response_parser import ResponseParser

__all__ = [
    "DebugAssistantService",
    "ResponseParser",
    "__version__",
]
