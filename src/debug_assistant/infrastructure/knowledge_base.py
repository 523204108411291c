"""KnowledgeBase -- durable error-pattern to fix mappings.

Stores :class:`KnowledgeEntry` objects keyed by id, merges near-duplicate
patterns on insert, ranks entries against free-text queries, and learns
which entries work through an exponential moving average of outcomes.

Persistence goes through a :class:`KeyValueStorage`; the on-disk form is a
JSON array of ``[id, entry]`` pairs, which is also the export format.

The scoring heuristics are isolated in module-level functions
(:func:`patterns_similar`, :func:`match_score`, :func:`retention_score`) so
they can be tuned without touching the control flow.
"""

from __future__ import annotations

import json
import logging
import math
import re
import time
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from debug_assistant.domain.entities import KnowledgeEntry
from debug_assistant.domain.exceptions import KnowledgeBaseImportError
from debug_assistant.domain.values import FixSuggestion, clamp_unit
from debug_assistant.infrastructure.config import KnowledgeBaseConfig
from debug_assistant.infrastructure.storage import InMemoryStorage, KeyValueStorage

logger = logging.getLogger(__name__)

_DAY = 24 * 60 * 60
_WS = re.compile(r"\s+")

# Exponential moving average weight of the newest outcome.
SUCCESS_RATE_ALPHA = 0.2


# ===================================================================== #
#  Scoring heuristics                                                    #
# ===================================================================== #

def _words(text: str, min_len: int) -> set[str]:
    return {w for w in _WS.split(text.lower()) if len(w) > min_len}


def patterns_similar(pattern: str, other: str) -> bool:
    """Decide whether two patterns describe the same failure.

    Checked in order:

    1. both reduce to only short (<= 3 char) tokens: identical text;
    2. both have exactly one significant word: identical word;
    3. overlap of significant words >= 75% of the smaller set;
    4. when either side has several words: the shorter string is
       contained in the longer and is >= 85% of its length.

    Rule 4 can merge patterns that differ only in a trailing qualifier,
    e.g. a step suffix.
    """
    a, b = pattern.lower(), other.lower()
    a_words, b_words = _words(a, 3), _words(b, 3)

    if not a_words and not b_words:
        return a == b

    if len(a_words) == 1 and len(b_words) == 1:
        return a_words == b_words

    if a_words and b_words:
        overlap = len(a_words & b_words)
        if overlap / min(len(a_words), len(b_words)) >= 0.75:
            return True

    if len(a_words) > 1 or len(b_words) > 1:
        shorter, longer = (a, b) if len(a) < len(b) else (b, a)
        if longer and len(shorter) / len(longer) >= 0.85 and shorter in longer:
            return True

    return False


def match_score(entry: KnowledgeEntry, query: str, now: float | None = None) -> float:
    """Relevance of *entry* to a free-text *query*; ``0`` means no match.

    +10 when query and pattern contain one another, +2 per query word
    (length > 2) found in the pattern, +3 per tag that contains or is
    contained by the query.  Only matching entries receive the boosts:
    ``2 * log10(frequency + 1)``, ``5 * success_rate`` and a recency bonus
    of +2 (used within 7 days) or +1 (within 30 days).
    """
    now = time.time() if now is None else now
    q = query.lower()
    pattern = entry.pattern.lower()
    score = 0.0
    matched = False

    if q in pattern or pattern in q:
        score += 10
        matched = True

    for word in (w for w in _WS.split(q) if len(w) > 2):
        if word in pattern:
            score += 2
            matched = True

    for tag in entry.tags:
        t = tag.lower()
        if q in t or t in q:
            score += 3
            matched = True

    if not matched:
        return 0.0

    score += math.log10(entry.frequency + 1) * 2
    score += entry.success_rate * 5
    days_idle = (now - entry.last_used_at) / _DAY
    if days_idle < 7:
        score += 2
    elif days_idle < 30:
        score += 1
    return score


def retention_score(entry: KnowledgeEntry, now: float | None = None) -> float:
    """Rank used when pruning: reliable, recently used entries survive."""
    now = time.time() if now is None else now
    return entry.success_rate * 100 + (10000 - (now - entry.last_used_at))


def updated_success_rate(rate: float, success: bool) -> float:
    return clamp_unit(rate * (1 - SUCCESS_RATE_ALPHA) + (1.0 if success else 0.0) * SUCCESS_RATE_ALPHA)


# ===================================================================== #
#  Persisted form                                                        #
# ===================================================================== #

class _BeforeAfterRecord(BaseModel):
    before: str
    after: str


class _FixRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    type: str = "generic"
    description: str
    code: str = ""
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    before_after: _BeforeAfterRecord | None = Field(default=None, alias="beforeAfter")


class _EntryRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    pattern: str
    fixes: list[_FixRecord] = Field(default_factory=list)
    frequency: int = Field(default=1, ge=0)
    success_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: float
    last_used_at: float
    tags: list[str] = Field(default_factory=list)


_DUMP = TypeAdapter(list[tuple[str, _EntryRecord]])


def _entry_from_record(record: _EntryRecord) -> KnowledgeEntry:
    data = record.model_dump()
    data["fixes"] = [f.model_dump(by_alias=True) for f in record.fixes]
    return KnowledgeEntry.from_dict(data)


# ===================================================================== #
#  Knowledge base                                                        #
# ===================================================================== #

class KnowledgeBase:
    """Pattern -> fixes store with fuzzy lookup and success-rate learning.

    Parameters
    ----------
    config:
        Entry cap and storage key; defaults to :class:`KnowledgeBaseConfig`.
    storage:
        Persistence surface.  Defaults to a fresh :class:`InMemoryStorage`.
        The store is loaded from it on construction and saved after every
        mutation.

    Not reentrant: nothing here calls back into user code, and callers
    must not mutate the store from inside another mutation.
    """

    def __init__(
        self,
        config: KnowledgeBaseConfig | None = None,
        storage: KeyValueStorage | None = None,
    ) -> None:
        self._config = config or KnowledgeBaseConfig()
        self._config.validate()
        self._storage: KeyValueStorage = storage if storage is not None else InMemoryStorage()
        self._entries: dict[str, KnowledgeEntry] = {}
        if self._config.persistence_enabled:
            self._load()

    # -- mutation -----------------------------------------------------------

    def add_entry(
        self,
        pattern: str,
        fixes: Iterable[FixSuggestion] = (),
        frequency: int = 1,
        success_rate: float = 0.5,
        tags: Iterable[str] = (),
    ) -> str:
        """Insert *pattern*, or merge it into a similar existing entry.

        Returns the id of the created or merged entry.
        """
        fixes = list(fixes)
        existing = self._find_similar_entry(pattern)
        if existing is not None:
            existing.frequency += frequency
            existing.touch()
            existing.merge_fixes(fixes)
            logger.debug(
                "KnowledgeBase: merged %r into %s (%r)", pattern, existing.id, existing.pattern
            )
            self._save()
            return existing.id

        entry = KnowledgeEntry(
            pattern=pattern,
            fixes=fixes,
            frequency=frequency,
            success_rate=success_rate,
            tags=list(tags),
        )
        self._entries[entry.id] = entry
        if len(self._entries) > self._config.max_entries:
            self._prune()
        self._save()
        return entry.id

    def update_success_rate(self, entry_id: str, success: bool) -> None:
        """Fold one outcome into the entry's moving-average success rate."""
        entry = self._entries.get(entry_id)
        if entry is None:
            return
        entry.success_rate = updated_success_rate(entry.success_rate, success)
        entry.touch()
        self._save()

    def record_fix_used(self, entry_id: str, fix_index: int) -> None:
        """Count a use of the entry and move the used fix to the front."""
        entry = self._entries.get(entry_id)
        if entry is None:
            return
        entry.frequency += 1
        entry.touch()
        if 0 <= fix_index < len(entry.fixes):
            entry.fixes.insert(0, entry.fixes.pop(fix_index))
        self._save()

    def delete_entry(self, entry_id: str) -> bool:
        removed = self._entries.pop(entry_id, None) is not None
        if removed:
            self._save()
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._save()

    # -- lookup -------------------------------------------------------------

    def get_entry(self, entry_id: str) -> KnowledgeEntry | None:
        return self._entries.get(entry_id)

    def get_all_entries(self) -> list[KnowledgeEntry]:
        return list(self._entries.values())

    def find_matching_patterns(self, query: str, limit: int = 5) -> list[KnowledgeEntry]:
        """Entries ranked by :func:`match_score`, best first, zero scores dropped."""
        now = time.time()
        scored = [(match_score(e, query, now), e) for e in self._entries.values()]
        scored = [pair for pair in scored if pair[0] > 0]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [e for _, e in scored[:limit]]

    def find_by_tags(self, tags: Sequence[str]) -> list[KnowledgeEntry]:
        """Entries carrying any of *tags* (case-insensitive)."""
        wanted = {t.lower() for t in tags}
        return [
            e for e in self._entries.values()
            if any(t.lower() in wanted for t in e.tags)
        ]

    def get_by_success_rate(self, min_rate: float, max_rate: float) -> list[KnowledgeEntry]:
        return [
            e for e in self._entries.values()
            if min_rate <= e.success_rate <= max_rate
        ]

    def get_recent_entries(self, days: float = 7, limit: int = 10) -> list[KnowledgeEntry]:
        cutoff = time.time() - days * _DAY
        recent = [e for e in self._entries.values() if e.last_used_at >= cutoff]
        recent.sort(key=lambda e: e.last_used_at, reverse=True)
        return recent[:limit]

    def get_stats(self) -> dict[str, Any]:
        entries = list(self._entries.values())
        by_frequency = sorted(entries, key=lambda e: e.frequency, reverse=True)
        return {
            "total_entries": len(entries),
            "total_fixes": sum(len(e.fixes) for e in entries),
            "average_success_rate": (
                sum(e.success_rate for e in entries) / len(entries) if entries else 0.0
            ),
            "most_common_patterns": [
                {"pattern": e.pattern, "frequency": e.frequency}
                for e in by_frequency[:5]
            ],
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._entries

    # -- import / export ----------------------------------------------------

    def to_pairs(self) -> list[list[Any]]:
        return [[entry_id, e.to_dict()] for entry_id, e in self._entries.items()]

    def export_json(self) -> str:
        """Serialize as a JSON array of ``[id, entry]`` pairs."""
        return json.dumps(self.to_pairs(), indent=2, ensure_ascii=False)

    def import_json(self, json_str: str) -> int:
        """Merge a JSON dump produced by :meth:`export_json`.

        The payload is fully validated before anything is written, so a
        malformed payload leaves the store untouched.  Entries with an id
        already present are replaced.  Returns the number of imported
        entries.

        Raises
        ------
        KnowledgeBaseImportError
            On malformed JSON or entries that do not validate.
        """
        try:
            records = _DUMP.validate_json(json_str)
        except ValidationError as exc:
            raise KnowledgeBaseImportError(
                f"Failed to import knowledge base: {exc}"
            ) from exc

        imported = {entry_id: _entry_from_record(record) for entry_id, record in records}
        for entry_id, entry in imported.items():
            entry.id = entry_id
            self._entries[entry_id] = entry
        if len(self._entries) > self._config.max_entries:
            self._prune()
        self._save()
        logger.info("KnowledgeBase: imported %d entries", len(imported))
        return len(imported)

    # -- internal -----------------------------------------------------------

    def _find_similar_entry(self, pattern: str) -> KnowledgeEntry | None:
        for entry in self._entries.values():
            if patterns_similar(pattern, entry.pattern):
                return entry
        return None

    def _prune(self) -> None:
        now = time.time()
        ranked = sorted(
            self._entries.values(),
            key=lambda e: retention_score(e, now),
            reverse=True,
        )
        doomed = ranked[self._config.max_entries:]
        for entry in doomed:
            del self._entries[entry.id]
        logger.info("KnowledgeBase: pruned %d entries", len(doomed))

    def _save(self) -> None:
        if not self._config.persistence_enabled:
            return
        try:
            self._storage.set(self._config.storage_key, json.dumps(self.to_pairs(), ensure_ascii=False))
        except Exception:
            logger.warning("Failed to save knowledge base to storage", exc_info=True)

    def _load(self) -> None:
        try:
            raw = self._storage.get(self._config.storage_key)
            if not raw:
                return
            records = _DUMP.validate_json(raw)
        except Exception:
            logger.warning("Failed to load knowledge base from storage", exc_info=True)
            return
        self._entries = {}
        for entry_id, record in records:
            entry = _entry_from_record(record)
            entry.id = entry_id
            self._entries[entry_id] = entry
        logger.debug("KnowledgeBase: loaded %d entries", len(self._entries))
