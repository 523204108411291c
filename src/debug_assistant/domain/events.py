"""Domain events for the debug assistant.

Every event is a frozen dataclass inheriting from ``DomainEvent``.  The
session orchestrator publishes them on its event bus; UI layers and tests
subscribe to the ones they care about.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from .entities import DebugSession
from .values import ActionResult, ApplyResult, DebugAction, FixSuggestion, Message


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    timestamp: float = field(default_factory=time.time)
    source_id: str = ""


@dataclass(frozen=True)
class MessageAdded(DomainEvent):
    """A message was appended to the active conversation."""

    message: Message | None = None


@dataclass(frozen=True)
class SessionStarted(DomainEvent):
    """A debug session became active."""

    session: DebugSession | None = None


@dataclass(frozen=True)
class SessionEnded(DomainEvent):
    """A debug session reached a terminal status."""

    session: DebugSession | None = None


@dataclass(frozen=True)
class ActionExecuted(DomainEvent):
    """An action ran against the page (successfully or not)."""

    action: DebugAction | None = None
    result: ActionResult | None = None


@dataclass(frozen=True)
class FixApplied(DomainEvent):
    """A fix suggestion was applied to the failing step."""

    fix: FixSuggestion | None = None
    result: ApplyResult | None = None
