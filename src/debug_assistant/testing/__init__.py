"""Public testing utilities for the debug assistant.

Provides a mock chat model and in-memory browser doubles for writing
self-contained examples and tests without an API key or a browser.
"""

from debug_assistant.testing.fake_browser import (
    FakeAgent,
    FakeKeyboard,
    FakeManualAgent,
    FakeMouse,
    FakePage,
    solid_png,
)
from debug_assistant.testing.mock_llm import MockChatModel

__all__ = [
    "MockChatModel",
    "FakeAgent",
    "FakeManualAgent",
    "FakePage",
    "FakeMouse",
    "FakeKeyboard",
    "solid_png",
]
