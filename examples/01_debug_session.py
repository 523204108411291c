#!/usr/bin/env python3
"""Example 01: One debug session end to end.

Demonstrates:
- Opening a session on a failed click step
- Asking the model and reading the parsed actions and suggestions
- Executing the proposed action against the page
- Applying a fix, which resolves the session

Self-contained: runs with a mock chat model and an in-memory page by
default (no API key or browser required).  Set ANTHROPIC_API_KEY to ask a
real model instead.

Run:
    PYTHONPATH=src python examples/01_debug_session.py
"""

from __future__ import annotations

import asyncio
import os

from debug_assistant import DebugAssistantService
from debug_assistant.domain.enums import ErrorCategory
from debug_assistant.domain.values import (
    DebugContext,
    DebugError,
    ElementInfo,
    Rect,
    StepInfo,
    StepResult,
)
from debug_assistant.testing import FakeAgent, FakePage, MockChatModel

MOCK_REPLY = (
    "提交按钮在页面上存在，但点击时还处于禁用状态。\n"
    "[ACTION:highlight:提交按钮]\n"
    "[SUGGESTION:等待按钮可点击后再操作|await waitFor(() => button.isEnabled());|0.85]\n"
    "[SUGGESTION:增加超时时间|{ timeout: 30000 }|0.6]"
)


def _build_engine():
    if os.environ.get("ANTHROPIC_API_KEY"):
        from debug_assistant.infrastructure.llm import AnthropicEngine, LLMConfig

        return AnthropicEngine(LLMConfig(api_key=os.environ["ANTHROPIC_API_KEY"]))

    from debug_assistant.infrastructure.llm import ChatModelEngine

    return ChatModelEngine(MockChatModel(responses=[MOCK_REPLY]))


async def main() -> None:
    # -- Browser ---------------------------------------------------------------
    submit = ElementInfo(tag="button", text="提交", rect=Rect(100, 200, 80, 30))
    agent = FakeAgent(FakePage(url="https://example.com/login", title="Login"), {"提交": [submit]})

    # -- Failure snapshot -----------------------------------------------------
    step = StepInfo(id="step-3", description="点击提交按钮", index=2, generated_action="click('提交按钮')")
    context = DebugContext(
        url="https://example.com/login",
        title="Login",
        current_step=step,
        last_error=DebugError("Element click intercepted", type=ErrorCategory.CLICK_INTERCEPTED),
        execution_history=(
            StepResult(step_id="step-1", description="打开登录页", success=True),
            StepResult(step_id="step-2", description="输入用户名", success=True),
            StepResult(step_id="step-3", description="点击提交按钮", success=False,
                       error="Element click intercepted"),
        ),
        failed_step=step.description,
    )

    # -- Service ---------------------------------------------------------------
    service = DebugAssistantService(lambda: agent, _build_engine())
    service.on_session_end(lambda s: print(f"Session {s.id} ended: {s.status.value}"))

    session = await service.start_debug_session(context, test_case_name="登录流程")
    print(f"Session {session.id} started for step {session.step_index + 1}")

    reply = await service.send_message("为什么点击提交按钮失败了？")
    print("\n--- Assistant ---")
    print(reply.content)
    print(f"confidence: {reply.metadata.get('confidence', 0.0):.2f}")

    for action in reply.actions:
        result = await service.execute_action(action)
        print(f"  {action.type.value} {action.target}: {result.message}")

    if reply.suggestions:
        best = max(reply.suggestions, key=lambda s: s.confidence)
        print("\n--- Preview ---")
        print(service.fix_applier.preview_diff(best, context))
        result = await service.apply_fix(best)
        print(f"Applied: {result.message}")

    print("\n--- Execution log ---")
    for line in service.get_execution_log():
        print(f"  {line}")
    print(f"Knowledge base entries: {service.get_knowledge_base_stats()['total_entries']}")

    await service.aclose()


if __name__ == "__main__":
    asyncio.run(main())
