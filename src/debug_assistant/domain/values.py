"""Value objects for the debug assistant.

All types here are frozen dataclasses -- immutable, compared by value.
They describe parsed model output, executed actions, failure snapshots and
page observations.  Nothing in this module has identity beyond its content;
see :mod:`debug_assistant.domain.entities` for the objects that do.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .enums import ActionType, ErrorCategory, FixType, MessageRole


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def clamp_unit(value: float) -> float:
    """Clamp *value* into ``[0, 1]``."""
    return max(0.0, min(1.0, float(value)))


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Rect:
    """Axis-aligned bounding box in CSS pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Rect:
        """Build from ``{x, y, width, height}`` or ``{left, top, width, height}``."""
        return cls(
            x=float(data.get("x", data.get("left", 0.0))),
            y=float(data.get("y", data.get("top", 0.0))),
            width=float(data.get("width", 0.0)),
            height=float(data.get("height", 0.0)),
        )

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DebugAction:
    """A plan for one side-effecting operation.

    Consumed once by the action executor.  ``options`` carries per-type
    knobs (``timeout`` in milliseconds, ``index``, ``scroll_direction``,
    ``scroll_amount`` and the manual-path click/input flags).
    """

    type: ActionType
    target: str | None = None
    value: Any = None
    options: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: _short_id("action"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "target": self.target,
            "value": self.value,
            "options": dict(self.options),
        }


@dataclass(frozen=True)
class ActionResult:
    """Outcome of executing one :class:`DebugAction`.

    ``duration`` is wall-clock milliseconds.  The executor never retries on
    its own; retrying is a caller decision.
    """

    success: bool
    message: str
    data: Any = None
    screenshot: str | None = None
    error: str | None = None
    duration: float = 0.0

    @classmethod
    def failure(cls, message: str, error: str | None = None, duration: float = 0.0) -> ActionResult:
        return cls(success=False, message=message, error=error or message, duration=duration)

    def with_duration(self, duration: float) -> ActionResult:
        return ActionResult(
            success=self.success,
            message=self.message,
            data=self.data,
            screenshot=self.screenshot,
            error=self.error,
            duration=duration,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "screenshot": self.screenshot,
            "error": self.error,
            "duration": self.duration,
        }


# ---------------------------------------------------------------------------
# Fix suggestions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BeforeAfter:
    """Paired before/after snippets of a proposed change."""

    before: str
    after: str


@dataclass(frozen=True)
class FixSuggestion:
    """A proposed remediation for a failure.

    ``confidence`` is clamped into ``[0, 1]`` on construction.
    """

    type: FixType
    description: str
    code: str = ""
    confidence: float = 0.7
    before_after: BeforeAfter | None = None
    id: str = field(default_factory=lambda: _short_id("fix"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_unit(self.confidence))

    def with_confidence(self, confidence: float) -> FixSuggestion:
        return FixSuggestion(
            type=self.type,
            description=self.description,
            code=self.code,
            confidence=confidence,
            before_after=self.before_after,
            id=self.id,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "code": self.code,
            "confidence": self.confidence,
        }
        if self.before_after is not None:
            d["beforeAfter"] = {
                "before": self.before_after.before,
                "after": self.before_after.after,
            }
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FixSuggestion:
        ba = data.get("beforeAfter") or data.get("before_after")
        try:
            fix_type = FixType(data.get("type", FixType.GENERIC.value))
        except ValueError:
            fix_type = FixType.GENERIC
        kwargs: dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(
            type=fix_type,
            description=data.get("description", ""),
            code=data.get("code") or "",
            confidence=data.get("confidence", 0.7),
            before_after=BeforeAfter(ba["before"], ba["after"]) if ba else None,
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Parsed model output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContextRequest:
    """A model-issued request to inject a diagnostic slice next turn."""

    type: str
    details: str = ""


@dataclass(frozen=True)
class ParsedResponse:
    """Structured view of one raw model reply.

    ``confidence`` is informational only and never gates behaviour.
    """

    text: str
    actions: tuple[DebugAction, ...] = ()
    suggestions: tuple[FixSuggestion, ...] = ()
    context_request: ContextRequest | None = None
    confidence: float = 0.5


@dataclass(frozen=True)
class Message:
    """One conversation turn.  Immutable once appended to a session."""

    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: _short_id("msg"))
    timestamp: float = field(default_factory=time.time)
    actions: tuple[DebugAction, ...] = ()
    suggestions: tuple[FixSuggestion, ...] = ()
    context_request: ContextRequest | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Failure snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DebugError:
    """The error that made a step fail."""

    message: str
    type: ErrorCategory = ErrorCategory.UNKNOWN
    stack: str = ""
    details: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class StepInfo:
    """The test step currently under investigation."""

    id: str
    description: str
    index: int = 0
    generated_action: str = ""


@dataclass(frozen=True)
class StepResult:
    """Outcome of one previously executed step."""

    step_id: str
    description: str
    success: bool
    error: str = ""
    duration: float = 0.0
    screenshot: str | None = None


@dataclass(frozen=True)
class ScreenshotInfo:
    """A screenshot captured after an earlier step."""

    data_url: str
    step_index: int = 0
    status: str = "success"
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ElementInfo:
    """A visible (or located) page element."""

    tag: str = ""
    text: str = ""
    selector: str = ""
    rect: Rect | None = None
    visible: bool = True
    attributes: Mapping[str, str] = field(default_factory=dict)

    @property
    def center(self) -> tuple[float, float] | None:
        return self.rect.center if self.rect is not None else None


@dataclass(frozen=True)
class NetworkError:
    """A failed network request observed on the page."""

    url: str
    error: str
    status: int | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ConsoleEntry:
    """A console message captured from the page."""

    message: str
    level: str = "error"
    source: str = ""
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_text(cls, text: str) -> ConsoleEntry:
        """Infer the level of a bare console line from its wording."""
        lowered = text.lower()
        if "error" in lowered:
            level = "error"
        elif "warning" in lowered:
            level = "warning"
        else:
            level = "info"
        return cls(message=text, level=level)


@dataclass(frozen=True)
class DebugContext:
    """Snapshot of failure state, rebuilt per analysis request.

    Plain strings passed as ``console_errors`` are coerced into
    :class:`ConsoleEntry` values.
    """

    url: str = ""
    title: str = ""
    current_step: StepInfo | None = None
    last_error: DebugError | None = None
    screenshot: str | None = None
    previous_screenshots: tuple[ScreenshotInfo, ...] = ()
    console_errors: tuple[ConsoleEntry, ...] = ()
    network_errors: tuple[NetworkError, ...] = ()
    visible_elements: tuple[ElementInfo, ...] = ()
    execution_history: tuple[StepResult, ...] = ()
    failed_step: str = ""
    test_case_id: str = ""
    test_case_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "console_errors",
            tuple(
                ConsoleEntry.from_text(e) if isinstance(e, str) else e
                for e in self.console_errors
            ),
        )
        object.__setattr__(self, "previous_screenshots", tuple(self.previous_screenshots))
        object.__setattr__(self, "network_errors", tuple(self.network_errors))
        object.__setattr__(self, "visible_elements", tuple(self.visible_elements))
        object.__setattr__(self, "execution_history", tuple(self.execution_history))

    @property
    def error_message(self) -> str:
        return self.last_error.message if self.last_error is not None else ""


# ---------------------------------------------------------------------------
# Model request
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LLMContext:
    """Everything one model call needs.

    ``system_prompt`` already has the selected diagnostic sections appended;
    ``additional_context`` keeps them separately for token accounting.
    ``images`` are base64 PNG payloads or ``data:`` URLs, current first.
    ``max_tokens`` caps the reply; ``None`` leaves it to the engine.
    """

    system_prompt: str
    conversation_history: tuple[Message, ...] = ()
    images: tuple[str, ...] = ()
    additional_context: str = ""
    max_tokens: int | None = None
    temperature: float = 0.7


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QuickQuestion:
    """A one-click prompt offered to the operator."""

    id: str
    text: str
    category: str
    icon: str = ""


@dataclass(frozen=True)
class ApplyResult:
    """Result of applying a fix suggestion to the failing step."""

    success: bool
    message: str
    modified_step: str = ""
    retry_result: Any = None
