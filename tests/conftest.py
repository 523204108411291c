"""Shared fixtures for the debug assistant test suite."""

from __future__ import annotations

import base64
from collections.abc import Callable

import pytest

from debug_assistant.domain.enums import ErrorCategory
from debug_assistant.domain.values import (
    DebugContext,
    DebugError,
    ElementInfo,
    Rect,
    StepInfo,
    StepResult,
)
from debug_assistant.infrastructure.config import KnowledgeBaseConfig
from debug_assistant.infrastructure.knowledge_base import KnowledgeBase
from debug_assistant.infrastructure.storage import InMemoryStorage
from debug_assistant.testing import FakeAgent, FakeManualAgent, FakePage, solid_png

# ---------------------------------------------------------------------------
# Failure snapshots
# ---------------------------------------------------------------------------


@pytest.fixture
def failed_step() -> StepInfo:
    return StepInfo(id="step-3", description="点击提交按钮", index=2, generated_action="click('提交按钮')")


@pytest.fixture
def element_error_context(failed_step: StepInfo) -> DebugContext:
    """A click that failed because the button was never found."""
    return DebugContext(
        url="https://example.com/login",
        title="Login",
        current_step=failed_step,
        last_error=DebugError(
            message="Element not found: submit button",
            type=ErrorCategory.ELEMENT_NOT_FOUND,
        ),
        console_errors=("TypeError: cannot read properties of undefined",),
        execution_history=(
            StepResult(step_id="step-1", description="打开登录页", success=True),
            StepResult(step_id="step-2", description="输入用户名", success=True),
            StepResult(
                step_id="step-3",
                description="点击提交按钮",
                success=False,
                error="Element not found",
            ),
        ),
        failed_step="点击提交按钮",
    )


@pytest.fixture
def timeout_context(failed_step: StepInfo) -> DebugContext:
    return DebugContext(
        url="https://example.com/dashboard",
        current_step=failed_step,
        last_error=DebugError(message="Timeout 30000ms exceeded", type=ErrorCategory.TIMEOUT),
    )


# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def kb(storage: InMemoryStorage) -> KnowledgeBase:
    return KnowledgeBase(KnowledgeBaseConfig(), storage)


# ---------------------------------------------------------------------------
# Browser doubles
# ---------------------------------------------------------------------------

SUBMIT = ElementInfo(tag="button", text="提交", rect=Rect(100, 200, 80, 30))
SECOND_SUBMIT = ElementInfo(tag="button", text="提交", rect=Rect(300, 200, 80, 30))


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def agent(page: FakePage) -> FakeAgent:
    """Agent with AI capabilities that can locate the submit buttons."""
    return FakeAgent(page, {"Submit": [SUBMIT, SECOND_SUBMIT], "提交": [SUBMIT, SECOND_SUBMIT]})


@pytest.fixture
def manual_agent(page: FakePage) -> FakeManualAgent:
    """Agent without ``act``: forces the mouse/keyboard path."""
    return FakeManualAgent(page, {"Submit": [SUBMIT, SECOND_SUBMIT], "提交": [SUBMIT, SECOND_SUBMIT]})


@pytest.fixture
def png() -> Callable[..., str]:
    """Factory of base64 PNGs of one solid colour."""

    def make(color: tuple[int, int, int] = (255, 255, 255), width: int = 10, height: int = 10) -> str:
        return base64.b64encode(solid_png(width, height, color)).decode("ascii")

    return make
