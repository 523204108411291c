"""Bounded LRU+TTL caches for expensive debug-assistant boundaries.

``LRUCache`` is a generic cache keyed by the string form of arbitrary
argument tuples.  ``CacheManager`` owns six independently tuned instances
(LLM replies, page diagnostics, screenshots, context snapshots, element
locations, fix suggestions) and an optional asyncio sweeper that removes
expired entries periodically.

Only *sequential* repeats are served from cache: two identical calls that
are in flight at the same time both reach the factory.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from debug_assistant.domain.entities import CacheEntry
from debug_assistant.domain.values import DebugContext
from debug_assistant.infrastructure.config import CacheConfig, CacheTierConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Key + score helpers
# ---------------------------------------------------------------------------

def _key_part(arg: Any) -> str:
    if isinstance(arg, (dict, list, tuple)):
        return json.dumps(arg, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(arg)


def make_cache_key(*args: Any) -> str:
    """Join *args* with ``:``; containers are JSON-encoded first."""
    return ":".join(_key_part(a) for a in args)


def eviction_score(entry: CacheEntry[Any]) -> float:
    """Lower scores are evicted first.

    Approximates least-recently/least-frequently used: an entry that was
    touched long ago and rarely scores lowest.
    """
    return entry.last_access / (entry.access_count + 1)


# ===================================================================== #
#  LRU cache                                                             #
# ===================================================================== #

class LRUCache(Generic[T]):
    """Generic LRU cache with TTL expiry.

    Parameters
    ----------
    max_size:
        Entry cap.  Inserting a new key at capacity evicts the entry with
        the lowest :func:`eviction_score`.
    ttl:
        Seconds before an entry expires; ``0`` disables expiry.  Expired
        entries are removed lazily on access or by :meth:`clean_expired`.
    enabled:
        When ``False`` nothing is stored and :meth:`get` always returns
        ``None`` (without counting a miss).
    name:
        Label used in log messages.
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl: float = 300.0,
        enabled: bool = True,
        name: str = "cache",
    ) -> None:
        self._entries: dict[str, CacheEntry[T]] = {}
        self._max_size = max_size
        self._ttl = ttl
        self._enabled = enabled
        self._name = name
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_config(cls, config: CacheTierConfig, name: str = "cache") -> LRUCache[T]:
        return cls(
            max_size=config.max_size,
            ttl=config.ttl,
            enabled=config.enabled,
            name=name,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if not value:
            self._entries.clear()

    # -- core operations ----------------------------------------------------

    def get(self, *key_args: Any) -> T | None:
        """Return the cached value, or ``None`` on a miss or expiry."""
        if not self._enabled:
            return None
        key = make_cache_key(*key_args)
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("%s: miss %r", self._name, key)
            return None
        if entry.is_expired(self._ttl):
            del self._entries[key]
            self._misses += 1
            logger.debug("%s: expired %r", self._name, key)
            return None
        entry.record_access()
        self._hits += 1
        return entry.value

    def set(self, *key_args_and_value: Any) -> None:
        """``set(*key_args, value)`` -- the last positional is the value."""
        if not self._enabled:
            return
        if len(key_args_and_value) < 2:
            raise TypeError("set() needs at least one key part and a value")
        *key_args, value = key_args_and_value
        key = make_cache_key(*key_args)
        if key not in self._entries:
            self._evict_if_needed()
        now = time.time()
        self._entries[key] = CacheEntry(value=value, timestamp=now, last_access=now)

    def has(self, *key_args: Any) -> bool:
        """Whether a live entry exists.  Does not touch hit/miss stats."""
        if not self._enabled:
            return False
        key = make_cache_key(*key_args)
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._ttl):
            del self._entries[key]
            return False
        return True

    def delete(self, *key_args: Any) -> bool:
        return self._entries.pop(make_cache_key(*key_args), None) is not None

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def keys(self) -> list[str]:
        return list(self._entries)

    def clean_expired(self) -> int:
        """Remove expired entries; return how many were removed."""
        now = time.time()
        expired = [k for k, e in self._entries.items() if e.is_expired(self._ttl, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def get_or_set(
        self,
        key: Any,
        factory: Callable[[], T] | Callable[[], Awaitable[T]],
    ) -> T:
        """Return the cached value for *key*, computing and caching on miss.

        *factory* may be a plain callable or return an awaitable.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = factory()
        if inspect.isawaitable(value):
            value = await value
        self.set(key, value)
        return value  # type: ignore[return-value]

    # -- introspection ------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self._max_size,
            "hit_rate": self._hits / total if total > 0 else 0.0,
            "total_hits": self._hits,
            "total_misses": self._misses,
            "evicted_count": self._evictions,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return (
            f"LRUCache(name={self._name!r}, size={len(self._entries)}, "
            f"max_size={self._max_size}, ttl={self._ttl})"
        )

    # -- internal -----------------------------------------------------------

    def _evict_if_needed(self) -> None:
        if len(self._entries) < self._max_size:
            return
        victim = min(self._entries, key=lambda k: eviction_score(self._entries[k]))
        del self._entries[victim]
        self._evictions += 1
        logger.debug("%s: evicted %r", self._name, victim)


# ===================================================================== #
#  Cache manager                                                         #
# ===================================================================== #

def query_cache_key(query: str, context: DebugContext | None) -> str:
    """Key of an LLM reply: the query plus the failure shape it was asked in."""
    shape: dict[str, Any] = {}
    if context is not None:
        if context.last_error is not None:
            shape["errorType"] = context.last_error.type.value
        shape["hasScreenshot"] = bool(context.screenshot)
        if context.current_step is not None:
            shape["stepIndex"] = context.current_step.index
    else:
        shape["hasScreenshot"] = False
    return f"{query}:{make_cache_key(shape)}"


class CacheManager:
    """Owns one :class:`LRUCache` per expensive boundary.

    Parameters
    ----------
    config:
        Tier sizing; defaults to :class:`CacheConfig`.
    """

    def __init__(self, config: CacheConfig | None = None) -> None:
        self._config = config or CacheConfig()
        self._config.validate()
        self._enabled = self._config.enabled
        self._sweeper: asyncio.Task[None] | None = None
        self._build_tiers()

    def _build_tiers(self) -> None:
        cfg = self._config

        def tier(tier_cfg: CacheTierConfig, name: str) -> LRUCache[Any]:
            cache: LRUCache[Any] = LRUCache.from_config(tier_cfg, name=name)
            cache.enabled = self._enabled and tier_cfg.enabled
            return cache

        self.llm_responses: LRUCache[str] = tier(cfg.llm, "llm")
        self.page_diagnostics: LRUCache[Any] = tier(cfg.diagnostics, "diagnostics")
        self.screenshots: LRUCache[str] = tier(cfg.screenshot, "screenshot")
        self.contexts: LRUCache[Any] = tier(cfg.context, "context")
        self.element_locations: LRUCache[Any] = tier(cfg.element, "element")
        self.fix_suggestions: LRUCache[Any] = tier(cfg.fixes, "fixes")

    def _tiers(self) -> dict[str, LRUCache[Any]]:
        return {
            "llm": self.llm_responses,
            "diagnostics": self.page_diagnostics,
            "screenshot": self.screenshots,
            "context": self.contexts,
            "element": self.element_locations,
            "fixes": self.fix_suggestions,
        }

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable every tier.  Existing entries are dropped."""
        self._enabled = enabled
        self._build_tiers()

    # -- LLM replies ----------------------------------------------------------

    def cache_llm_response(self, query: str, context: DebugContext | None, response: str) -> None:
        self.llm_responses.set(query_cache_key(query, context), response)

    def get_llm_response(self, query: str, context: DebugContext | None) -> str | None:
        return self.llm_responses.get(query_cache_key(query, context))

    async def get_or_call_llm(
        self,
        query: str,
        context: DebugContext | None,
        factory: Callable[[], Awaitable[str]],
    ) -> str:
        cached = self.get_llm_response(query, context)
        if cached is not None:
            return cached
        response = await factory()
        self.cache_llm_response(query, context, response)
        return response

    # -- page diagnostics -----------------------------------------------------

    def cache_page_diagnostics(self, url: str, diagnostics: Any) -> None:
        self.page_diagnostics.set(url, diagnostics)

    def get_page_diagnostics(self, url: str) -> Any | None:
        return self.page_diagnostics.get(url)

    async def get_or_fetch_diagnostics(
        self,
        url: str,
        factory: Callable[[], Awaitable[Any]],
    ) -> Any:
        cached = self.get_page_diagnostics(url)
        if cached is not None:
            return cached
        diagnostics = await factory()
        self.cache_page_diagnostics(url, diagnostics)
        return diagnostics

    # -- screenshots / contexts ----------------------------------------------

    def cache_screenshot(self, label: str, screenshot: str) -> None:
        self.screenshots.set(label, screenshot)

    def get_screenshot(self, label: str) -> str | None:
        return self.screenshots.get(label)

    def cache_context(self, session_id: str, context: DebugContext) -> None:
        self.contexts.set(session_id, context)

    def get_context(self, session_id: str) -> DebugContext | None:
        return self.contexts.get(session_id)

    # -- element locations ------------------------------------------------------

    def cache_element_location(self, selector: str, location: Any) -> None:
        self.element_locations.set(selector, location)

    def get_element_location(self, selector: str) -> Any | None:
        return self.element_locations.get(selector)

    def invalidate_element_locations(self) -> None:
        """Forget every element location (call after navigation or reload)."""
        self.element_locations.clear()

    # -- fix suggestions ------------------------------------------------------

    def cache_fix_suggestions(self, error_pattern: str, suggestions: list[Any]) -> None:
        self.fix_suggestions.set(error_pattern, list(suggestions))

    def get_fix_suggestions(self, error_pattern: str) -> list[Any] | None:
        return self.fix_suggestions.get(error_pattern)

    # -- maintenance ------------------------------------------------------------

    def clean_expired(self) -> int:
        total = sum(cache.clean_expired() for cache in self._tiers().values())
        if total:
            logger.debug("CacheManager: swept %d expired entries", total)
        return total

    def clear_all(self) -> None:
        for cache in self._tiers().values():
            cache.clear()

    def get_all_stats(self) -> dict[str, Any]:
        """Per-tier stats plus ``total_size`` and ``overall_hit_rate``."""
        stats: dict[str, Any] = {name: c.get_stats() for name, c in self._tiers().items()}
        hits = sum(s["total_hits"] for s in stats.values())
        misses = sum(s["total_misses"] for s in stats.values())
        stats["total_size"] = sum(s["size"] for s in list(stats.values()))
        stats["overall_hit_rate"] = hits / (hits + misses) if hits + misses else 0.0
        return stats

    # -- periodic sweep ---------------------------------------------------------

    def start_sweeper(self) -> asyncio.Task[None]:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval)
            self.clean_expired()
