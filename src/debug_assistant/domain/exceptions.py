"""Domain exceptions for the debug assistant.

All domain-specific exceptions inherit from ``DebugAssistantError`` so
callers can catch the full family with a single ``except`` clause.  Most
runtime failures never surface as exceptions: the executor and fix applier
convert them into result objects.  The exceptions below are raised at the
few seams where throwing is the contract.
"""

from __future__ import annotations

from typing import Any


class DebugAssistantError(Exception):
    """Base exception for all debug assistant errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class AgentUnavailableError(DebugAssistantError):
    """Raised when no automation agent or page is attached."""

    def __init__(
        self,
        message: str = "Agent not available",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)


class ElementNotFoundError(DebugAssistantError):
    """Raised when a target description resolves to no element.

    Recoverable: callers may wait, retry, or ask for a different target.
    """

    def __init__(
        self,
        message: str = "Element not found",
        target: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or f"Element not found: {target}", details)
        self.target = target


class ActionTimeoutError(DebugAssistantError):
    """Raised when a polled condition does not hold before its deadline."""

    def __init__(
        self,
        message: str = "Operation timed out",
        timeout: float = 0.0,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.timeout = timeout


class KnowledgeBaseImportError(DebugAssistantError):
    """Raised when an import payload is not a valid knowledge-base dump.

    The store is left untouched when this is raised.
    """


class ConfigurationError(DebugAssistantError):
    """Raised for programmer errors such as a missing agent getter."""
