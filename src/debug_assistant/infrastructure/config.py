"""Configuration dataclasses for the debug assistant.

Each config is a plain ``dataclass`` with a ``validate()`` method that raises
``ValueError`` on invalid combinations.  No third-party dependencies -- just
stdlib ``dataclasses``.

Configs are **frozen** so a single instance can be shared by the
orchestrator and every service it constructs.  Durations are seconds.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any


def _filtered(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    valid_keys = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_keys}


# ===================================================================== #
#  Cache Configuration                                                   #
# ===================================================================== #

@dataclass(frozen=True)
class CacheTierConfig:
    """Sizing of one LRU+TTL cache.

    Attributes
    ----------
    max_size:
        Maximum number of entries before eviction kicks in.
    ttl:
        Seconds before an entry expires.  ``0`` disables expiry.
    enabled:
        When ``False`` the cache stores nothing and every lookup misses.
    """

    max_size: int = 100
    ttl: float = 300.0
    enabled: bool = True

    def validate(self) -> None:
        if self.max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {self.max_size}")
        if self.ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {self.ttl}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheTierConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


_TIER_NAMES = ("llm", "diagnostics", "screenshot", "context", "element", "fixes")


@dataclass(frozen=True)
class CacheConfig:
    """The six cache tiers owned by :class:`CacheManager`.

    Attributes
    ----------
    llm:
        Model replies.  Long TTL: identical failure + query pairs recur.
    diagnostics:
        Page diagnostics.  Very short TTL: page state is volatile.
    screenshot:
        Captured screenshots.
    context:
        Debug-context snapshots.
    element:
        Element locations.  Medium TTL: elements can move.
    fixes:
        Generated fix suggestions.
    enabled:
        Master switch for every tier.
    sweep_interval:
        Seconds between periodic sweeps of expired entries.
    """

    llm: CacheTierConfig = field(default_factory=lambda: CacheTierConfig(50, 600.0))
    diagnostics: CacheTierConfig = field(default_factory=lambda: CacheTierConfig(20, 30.0))
    screenshot: CacheTierConfig = field(default_factory=lambda: CacheTierConfig(10, 60.0))
    context: CacheTierConfig = field(default_factory=lambda: CacheTierConfig(30, 60.0))
    element: CacheTierConfig = field(default_factory=lambda: CacheTierConfig(100, 120.0))
    fixes: CacheTierConfig = field(default_factory=lambda: CacheTierConfig(40, 900.0))
    enabled: bool = True
    sweep_interval: float = 60.0

    def validate(self) -> None:
        for name in _TIER_NAMES:
            getattr(self, name).validate()
        if self.sweep_interval <= 0:
            raise ValueError(
                f"sweep_interval must be > 0, got {self.sweep_interval}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheConfig:
        filtered = _filtered(cls, data)
        for name in _TIER_NAMES:
            if isinstance(filtered.get(name), dict):
                filtered[name] = CacheTierConfig.from_dict(filtered[name])
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Knowledge Base Configuration                                          #
# ===================================================================== #

@dataclass(frozen=True)
class KnowledgeBaseConfig:
    """Sizing and persistence of the knowledge base.

    Attributes
    ----------
    max_entries:
        Entry cap; exceeding it prunes the lowest-ranked entries.
    storage_key:
        Key under which the store is persisted.
    persistence_enabled:
        When ``False`` nothing is loaded or saved.
    """

    max_entries: int = 1000
    storage_key: str = "debug-assistant-knowledge"
    persistence_enabled: bool = True

    def validate(self) -> None:
        if self.max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {self.max_entries}")
        if not self.storage_key:
            raise ValueError("storage_key must not be empty")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KnowledgeBaseConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Executor Configuration                                                #
# ===================================================================== #

@dataclass(frozen=True)
class ExecutorConfig:
    """Timing defaults of the action executor.

    Attributes
    ----------
    default_timeout:
        Seconds allowed for navigation and element waits.
    default_wait:
        Seconds a ``wait`` action sleeps when no duration was given.
    scroll_amount:
        Pixels scrolled per ``scroll`` action.
    highlight_duration:
        Seconds a ``highlight`` overlay stays on the page.
    """

    default_timeout: float = 10.0
    default_wait: float = 1.0
    scroll_amount: int = 500
    highlight_duration: float = 3.0

    def validate(self) -> None:
        if self.default_timeout <= 0:
            raise ValueError(
                f"default_timeout must be > 0, got {self.default_timeout}"
            )
        if self.default_wait < 0:
            raise ValueError(f"default_wait must be >= 0, got {self.default_wait}")
        if self.scroll_amount < 1:
            raise ValueError(f"scroll_amount must be >= 1, got {self.scroll_amount}")
        if self.highlight_duration <= 0:
            raise ValueError(
                f"highlight_duration must be > 0, got {self.highlight_duration}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutorConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Context Builder Configuration                                         #
# ===================================================================== #

@dataclass(frozen=True)
class ContextConfig:
    """Bounds on the prompt assembled for each model call."""

    max_context_tokens: int = 8000
    include_console: bool = True
    include_network: bool = True
    include_visible_elements: bool = True
    max_previous_screenshots: int = 3
    max_history_size: int = 10
    max_images: int = 3

    def validate(self) -> None:
        if self.max_context_tokens < 1:
            raise ValueError(
                f"max_context_tokens must be >= 1, got {self.max_context_tokens}"
            )
        if self.max_history_size < 0:
            raise ValueError(
                f"max_history_size must be >= 0, got {self.max_history_size}"
            )
        if self.max_images < 0:
            raise ValueError(f"max_images must be >= 0, got {self.max_images}")
        if self.max_previous_screenshots < 0:
            raise ValueError(
                "max_previous_screenshots must be >= 0, "
                f"got {self.max_previous_screenshots}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Fix Generator Configuration                                           #
# ===================================================================== #

@dataclass(frozen=True)
class FixGeneratorConfig:
    max_suggestions: int = 5
    min_confidence: float = 0.3

    def validate(self) -> None:
        if self.max_suggestions < 1:
            raise ValueError(
                f"max_suggestions must be >= 1, got {self.max_suggestions}"
            )
        if not (0.0 <= self.min_confidence <= 1.0):
            raise ValueError(
                f"min_confidence must be in [0, 1], got {self.min_confidence}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FixGeneratorConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Assistant Configuration                                               #
# ===================================================================== #

_VALID_LANGUAGES = frozenset({"zh", "en"})


@dataclass(frozen=True)
class AssistantConfig:
    """Top-level knobs of the session orchestrator.

    Attributes
    ----------
    max_message_history:
        Conversation ring size; the oldest messages are trimmed beyond it.
    model:
        Model identifier passed to the LLM engine.
    temperature:
        Sampling temperature.
    max_tokens:
        Response token budget.
    timeout:
        Seconds allowed per model call.
    knowledge_base_enabled:
        Consult and feed the knowledge base.
    auto_learn_from_fixes:
        Record model-proposed fixes as tentative knowledge entries.
    auto_open_on_error:
        Post a rule-based failure analysis when a session opens on an error.
    language:
        Reply language of canned messages (``"zh"`` or ``"en"``).
    """

    max_message_history: int = 50
    model: str = "claude-3-5-sonnet-20241022"
    temperature: float = 0.7
    max_tokens: int = 8000
    timeout: float = 30.0
    knowledge_base_enabled: bool = True
    auto_learn_from_fixes: bool = True
    auto_open_on_error: bool = False
    language: str = "zh"

    def validate(self) -> None:
        if self.max_message_history < 1:
            raise ValueError(
                f"max_message_history must be >= 1, got {self.max_message_history}"
            )
        if not self.model:
            raise ValueError("model must not be empty")
        if not (0.0 <= self.temperature <= 2.0):
            raise ValueError(
                f"temperature must be in [0, 2], got {self.temperature}"
            )
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {self.max_tokens}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.language not in _VALID_LANGUAGES:
            raise ValueError(
                f"language must be one of {sorted(_VALID_LANGUAGES)}, "
                f"got '{self.language}'"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssistantConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Unified config loader                                                 #
# ===================================================================== #

_CONFIG_MAP: dict[str, type] = {
    "assistant": AssistantConfig,
    "cache": CacheConfig,
    "knowledge_base": KnowledgeBaseConfig,
    "executor": ExecutorConfig,
    "context": ContextConfig,
    "fix_generator": FixGeneratorConfig,
}


def load_config_from_json(json_str: str) -> dict[str, Any]:
    """Parse a JSON string into a dict of typed config objects.

    Top-level keys are section names (``assistant``, ``cache``,
    ``knowledge_base``, ``executor``, ``context``, ``fix_generator``).
    Unknown sections are preserved as raw dicts.
    """
    raw = json.loads(json_str)
    if not isinstance(raw, dict):
        raise ValueError("Top-level JSON must be an object")
    result: dict[str, Any] = {}
    for section, data in raw.items():
        cls = _CONFIG_MAP.get(section)
        if cls is not None and isinstance(data, dict):
            result[section] = cls.from_dict(data)
        else:
            result[section] = data
    return result
