"""Domain entities for the debug assistant.

Entities have *identity* and a mutable lifecycle.  ``DebugSession`` moves
from active to a terminal status; ``KnowledgeEntry`` is updated in place as
the same failure pattern recurs; ``CacheEntry`` tracks access statistics
for the eviction policy of the single cache that owns it.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .enums import SessionStatus
from .values import DebugError, FixSuggestion, clamp_unit

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Debug session
# ---------------------------------------------------------------------------

@dataclass
class DebugSession:
    """One debugging conversation tied to a single failed test step.

    Terminal states are ``RESOLVED`` (a fix succeeded) and ``ABANDONED``
    (superseded by a newer session or discarded by the operator).
    """

    id: str = field(default_factory=lambda: f"session-{uuid.uuid4().hex[:12]}")
    start_time: float = field(default_factory=time.time)
    test_case_id: str = ""
    test_case_name: str = ""
    step_id: str = ""
    step_index: int = 0
    error: DebugError | None = None
    screenshot: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    end_time: float | None = None

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def end(self, status: SessionStatus) -> None:
        """Move the session to a terminal *status*."""
        if status is SessionStatus.ACTIVE:
            raise ValueError("a session can only be ended with a terminal status")
        self.status = status
        self.end_time = time.time()


# ---------------------------------------------------------------------------
# Knowledge entry
# ---------------------------------------------------------------------------

@dataclass
class KnowledgeEntry:
    """An error pattern together with the fixes known to address it.

    Timestamps are epoch seconds.  ``success_rate`` stays within ``[0, 1]``.
    """

    pattern: str
    fixes: list[FixSuggestion] = field(default_factory=list)
    frequency: int = 1
    success_rate: float = 0.5
    tags: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: f"kb-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}")
    created_at: float = field(default_factory=time.time)
    last_used_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.success_rate = clamp_unit(self.success_rate)

    def touch(self) -> None:
        self.last_used_at = time.time()

    def merge_fixes(self, fixes: list[FixSuggestion]) -> None:
        """Merge *fixes* by description, keeping the higher confidence."""
        for fix in fixes:
            for i, existing in enumerate(self.fixes):
                if existing.description == fix.description:
                    if fix.confidence > existing.confidence:
                        self.fixes[i] = existing.with_confidence(fix.confidence)
                    break
            else:
                self.fixes.append(fix)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "fixes": [f.to_dict() for f in self.fixes],
            "frequency": self.frequency,
            "success_rate": self.success_rate,
            "created_at": self.created_at,
            "last_used_at": self.last_used_at,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KnowledgeEntry:
        now = time.time()
        return cls(
            id=data["id"],
            pattern=data["pattern"],
            fixes=[FixSuggestion.from_dict(f) for f in data.get("fixes", [])],
            frequency=int(data.get("frequency", 1)),
            success_rate=float(data.get("success_rate", 0.5)),
            created_at=float(data.get("created_at", now)),
            last_used_at=float(data.get("last_used_at", now)),
            tags=list(data.get("tags", [])),
        )


# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------

@dataclass
class CacheEntry(Generic[T]):
    """A cached value with the bookkeeping the eviction policy needs.

    Owned by exactly one cache instance.
    """

    value: T
    timestamp: float = field(default_factory=time.time)
    access_count: int = 0
    last_access: float = field(default_factory=time.time)

    def is_expired(self, ttl: float, now: float | None = None) -> bool:
        """``ttl`` of ``0`` disables expiry."""
        if ttl <= 0:
            return False
        now = time.time() if now is None else now
        return now - self.timestamp > ttl

    def record_access(self, now: float | None = None) -> None:
        self.access_count += 1
        self.last_access = time.time() if now is None else now
