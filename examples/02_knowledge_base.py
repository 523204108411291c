#!/usr/bin/env python3
"""Example 02: Rule-based suggestions and the fix knowledge base.

Demonstrates:
- Classifying error messages into categories
- Generating ranked fix suggestions without a model
- Learning a successful fix and seeing it reused for a similar failure
- Persisting the knowledge base to a JSON file and exporting it

Run:
    PYTHONPATH=src python examples/02_knowledge_base.py
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from debug_assistant.domain.enums import FixType
from debug_assistant.domain.values import DebugContext, DebugError, FixSuggestion
from debug_assistant.infrastructure.knowledge_base import KnowledgeBase
from debug_assistant.infrastructure.storage import JSONFileStorage
from debug_assistant.services.fix_generator import (
    FixSuggestionGenerator,
    classify_error,
    extract_pattern,
)

ERRORS = [
    "Element not found: submit button",
    "Timeout 30000ms exceeded while waiting for navigation",
    "Expected 'Welcome' but got 'Login'",
    "net::ERR_CONNECTION_REFUSED at https://api.example.com",
    "Element click intercepted by <div class=\"modal-mask\">",
]


def _context(message: str, url: str = "https://example.com/login") -> DebugContext:
    return DebugContext(url=url, last_error=DebugError(message, type=classify_error(message)))


def main() -> None:
    # -- Classification -------------------------------------------------------
    print("--- Categories ---")
    for message in ERRORS:
        print(f"  {classify_error(message).value:<20} {message}")
        print(f"  {'':<20} pattern: {extract_pattern(message)}")

    with tempfile.TemporaryDirectory() as tmp:
        store = Path(tmp) / "kb.json"
        kb = KnowledgeBase(storage=JSONFileStorage(store))
        generator = FixSuggestionGenerator(kb)

        # -- Rule-based suggestions --------------------------------------------
        first = _context("Timeout 30000ms exceeded")
        print("\n--- Suggestions (rules only) ---")
        for fix in generator.generate(first):
            print(f"  [{fix.confidence:.2f}] {fix.type.value:<10} {fix.description}")

        # -- Learn a fix that worked -------------------------------------------
        worked = FixSuggestion(
            type=FixType.WAIT,
            description="等待 /api/session 响应后再继续",
            code="await waitForResponse('/api/session');",
            confidence=0.9,
        )
        entry_id = generator.learn_from_success(first, worked)
        print(f"\nLearned entry {entry_id}")

        # -- A similar failure now sees the learned fix ---------------------------
        second = _context("Timeout 15000ms exceeded")
        print("\n--- Suggestions (rules + knowledge base) ---")
        for fix in generator.generate(second):
            print(f"  [{fix.confidence:.2f}] {fix.type.value:<10} {fix.description}")

        # -- Persistence ----------------------------------------------------------
        reloaded = KnowledgeBase(storage=JSONFileStorage(store))
        print(f"\nReloaded {len(reloaded)} entries from {store.name}")
        print(reloaded.get_stats())
        print(reloaded.export_json())


if __name__ == "__main__":
    main()
