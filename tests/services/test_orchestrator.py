"""Tests for the session orchestrator."""

from __future__ import annotations

from dataclasses import replace

import pytest

from debug_assistant.domain.entities import DebugSession
from debug_assistant.domain.enums import ActionType, ErrorCategory, FixType, MessageRole, SessionStatus
from debug_assistant.domain.exceptions import ConfigurationError, KnowledgeBaseImportError
from debug_assistant.domain.values import (
    ActionResult,
    ApplyResult,
    DebugAction,
    DebugContext,
    DebugError,
    FixSuggestion,
    Message,
)
from debug_assistant.infrastructure.config import AssistantConfig, ExecutorConfig
from debug_assistant.infrastructure.knowledge_base import KnowledgeBase
from debug_assistant.infrastructure.llm import LLMError
from debug_assistant.infrastructure.llm.langchain_bridge import ChatModelEngine
from debug_assistant.services.orchestrator import DebugAssistantService
from debug_assistant.testing import FakeAgent, MockChatModel

REPLY = (
    "按钮可能还没渲染出来。\n"
    "[ACTION:click:Submit button]\n"
    "[SUGGESTION:增加等待时间|await page.waitForTimeout(1000)|0.8]"
)


def _service(
    agent: FakeAgent | None,
    model: MockChatModel,
    config: AssistantConfig | None = None,
    **kwargs,
) -> DebugAssistantService:
    return DebugAssistantService(
        lambda: agent,
        ChatModelEngine(model),
        config,
        executor_config=ExecutorConfig(default_wait=0.01),
        **kwargs,
    )


def system_prompt_of(model: MockChatModel, call: int) -> str:
    return model.received[call][0].content


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class TestSessions:
    def test_requires_agent_getter(self) -> None:
        with pytest.raises(ConfigurationError):
            DebugAssistantService(None, ChatModelEngine(MockChatModel()))  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_message_without_session(self, agent: FakeAgent) -> None:
        model = MockChatModel(responses=[REPLY])
        service = _service(agent, model)

        reply = await service.send_message("为什么失败了?")

        assert reply.content == "请先执行测试用例以开始调试会话"
        assert service.get_conversation_history() == []
        assert model.call_count == 0

    @pytest.mark.asyncio
    async def test_english_canned_text(self, agent: FakeAgent) -> None:
        service = _service(agent, MockChatModel(), AssistantConfig(language="en"))
        reply = await service.send_message("why?")
        assert reply.content == "Run a test case first to start a debug session"

    @pytest.mark.asyncio
    async def test_start(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel())
        started: list[DebugSession] = []
        service.on_session_start(started.append)

        session = await service.start_debug_session(element_error_context, "tc-1", "登录")

        assert service.current_session is session
        assert session.status == SessionStatus.ACTIVE
        assert session.step_id == "step-3"
        assert session.test_case_name == "登录"
        assert started == [session]
        assert service.get_execution_log() == ["步骤 3: 点击提交按钮 - 失败"]
        assert service.cache.get_context(session.id) == element_error_context

    @pytest.mark.asyncio
    async def test_new_session_abandons_previous(
        self, agent: FakeAgent, element_error_context: DebugContext, timeout_context: DebugContext
    ) -> None:
        service = _service(agent, MockChatModel())
        ended: list[DebugSession] = []
        service.on_session_end(ended.append)

        first = await service.start_debug_session(element_error_context)
        second = await service.start_debug_session(timeout_context)

        assert ended == [first]
        assert first.status == SessionStatus.ABANDONED
        assert first.end_time is not None
        assert service.current_session is second
        assert service.current_context is timeout_context

    @pytest.mark.asyncio
    async def test_unsubscribe(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel())
        started: list[DebugSession] = []
        unsubscribe = service.on_session_start(started.append)
        unsubscribe()

        await service.start_debug_session(element_error_context)
        assert started == []

    @pytest.mark.asyncio
    async def test_auto_open_posts_analysis(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel(), AssistantConfig(auto_open_on_error=True))
        await service.start_debug_session(element_error_context)

        history = service.get_conversation_history()
        assert len(history) == 1
        assert history[0].content.startswith("## 错误分析")

    @pytest.mark.asyncio
    async def test_end_without_session_is_noop(self, agent: FakeAgent) -> None:
        service = _service(agent, MockChatModel())
        await service.end_debug_session()
        assert service.current_session is None


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class TestConversation:
    @pytest.mark.asyncio
    async def test_reply_is_parsed(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        model = MockChatModel(responses=[REPLY])
        service = _service(agent, model)
        await service.start_debug_session(element_error_context)
        seen: list[Message] = []
        service.on_message(seen.append)

        reply = await service.send_message("帮我看看")

        assert reply.role == MessageRole.ASSISTANT
        assert "按钮可能还没渲染出来" in reply.content
        assert "[ACTION" not in reply.content
        assert [a.type for a in reply.actions] == [ActionType.CLICK]
        assert reply.actions[0].target == "Submit button"
        assert reply.suggestions[0].confidence == 0.8
        assert reply.metadata["engine"] == "langchain:mock-chat"
        assert [m.role for m in seen] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert [m.content for m in service.get_conversation_history()][0] == "帮我看看"

    @pytest.mark.asyncio
    async def test_prompt_carries_failure(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        model = MockChatModel(responses=["好的"])
        service = _service(agent, model)
        await service.start_debug_session(element_error_context)

        await service.send_message("帮我看看")

        prompt = system_prompt_of(model, 0)
        assert "https://example.com/login" in prompt
        assert "Element not found: submit button" in prompt
        assert model.received[0][-1].content == "帮我看看"

    @pytest.mark.asyncio
    async def test_suggestions_are_learned_tentatively(
        self, agent: FakeAgent, element_error_context: DebugContext
    ) -> None:
        service = _service(agent, MockChatModel(responses=[REPLY]))
        await service.start_debug_session(element_error_context)

        await service.send_message("帮我看看")

        entries = service.knowledge_base.get_all_entries()
        assert len(entries) == 1
        assert entries[0].pattern == "element not found: submit button"
        assert entries[0].success_rate == 0.5
        assert set(entries[0].tags) == {"element_not_found", "auto-generated"}

    @pytest.mark.asyncio
    async def test_no_learning_when_disabled(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        config = AssistantConfig(auto_learn_from_fixes=False)
        service = _service(agent, MockChatModel(responses=[REPLY]), config)
        await service.start_debug_session(element_error_context)

        await service.send_message("帮我看看")
        assert len(service.knowledge_base) == 0

    @pytest.mark.asyncio
    async def test_llm_failure_becomes_reply(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel(error=RuntimeError("quota exceeded")))
        await service.start_debug_session(element_error_context)

        reply = await service.send_message("帮我看看")

        assert reply.content == "抱歉，AI 服务暂时不可用：LLM request failed: quota exceeded"
        assert reply.metadata["error"] == "LLM request failed: quota exceeded"
        assert len(service.get_conversation_history()) == 2

    @pytest.mark.asyncio
    async def test_repeated_question_uses_cache(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        model = MockChatModel(responses=["第一次", "第二次"])
        service = _service(agent, model)
        await service.start_debug_session(element_error_context)

        first = await service.send_message("帮我看看")
        second = await service.send_message("帮我看看")

        assert model.call_count == 1
        assert first.content == second.content == "第一次"

    @pytest.mark.asyncio
    async def test_cached_reply_is_not_learned_twice(
        self, agent: FakeAgent, element_error_context: DebugContext
    ) -> None:
        service = _service(agent, MockChatModel(responses=[REPLY]))
        await service.start_debug_session(element_error_context)

        await service.send_message("帮我看看")
        await service.send_message("帮我看看")

        entries = service.knowledge_base.get_all_entries()
        assert len(entries) == 1
        assert entries[0].frequency == 1

    @pytest.mark.asyncio
    async def test_new_failure_is_not_answered_from_cache(
        self, agent: FakeAgent, element_error_context: DebugContext
    ) -> None:
        model = MockChatModel(responses=["提交按钮的问题", "用户名输入框的问题"])
        service = _service(agent, model)
        other_failure = replace(
            element_error_context,
            last_error=DebugError(
                message="Element not found: username field",
                type=ErrorCategory.ELEMENT_NOT_FOUND,
            ),
        )

        await service.start_debug_session(element_error_context)
        first = await service.send_message("为什么失败了?")
        await service.start_debug_session(other_failure)
        second = await service.send_message("为什么失败了?")

        assert model.call_count == 2
        assert first.content == "提交按钮的问题"
        assert second.content == "用户名输入框的问题"
        assert "Element not found: username field" in system_prompt_of(model, 1)

    @pytest.mark.asyncio
    async def test_updated_context_drops_cached_replies(
        self, agent: FakeAgent, element_error_context: DebugContext
    ) -> None:
        model = MockChatModel(responses=["a", "b"])
        service = _service(agent, model)
        await service.start_debug_session(element_error_context)

        await service.send_message("帮我看看")
        service.update_context(element_error_context)
        await service.send_message("帮我看看")

        assert model.call_count == 2

    @pytest.mark.asyncio
    async def test_context_request_feeds_next_prompt(
        self, agent: FakeAgent, element_error_context: DebugContext
    ) -> None:
        model = MockChatModel(responses=["需要更多信息 [CONTEXT:console_errors]", "找到原因了"])
        service = _service(agent, model)
        await service.start_debug_session(element_error_context)

        first = await service.send_message("帮我看看")
        await service.send_message("然后呢")
        await service.send_message("还有呢")

        assert first.context_request is not None
        assert "consoleErrors" not in system_prompt_of(model, 0)
        assert "consoleErrors" in system_prompt_of(model, 1)
        assert "consoleErrors" not in system_prompt_of(model, 2)

    @pytest.mark.asyncio
    async def test_history_is_trimmed(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel(responses=["a", "b"]), AssistantConfig(max_message_history=3))
        await service.start_debug_session(element_error_context)

        await service.send_message("帮我看看")
        await service.send_message("然后呢")

        assert [m.content for m in service.get_conversation_history()] == ["a", "然后呢", "b"]

    @pytest.mark.asyncio
    async def test_clear_history(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel(responses=["a"]))
        await service.start_debug_session(element_error_context)
        await service.send_message("帮我看看")

        service.clear_conversation_history()
        assert service.get_conversation_history() == []


class TestStreaming:
    @pytest.mark.asyncio
    async def test_deltas_then_recorded_reply(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        model = MockChatModel(responses=[REPLY], chunk_size=5)
        service = _service(agent, model)
        await service.start_debug_session(element_error_context)

        deltas = [d async for d in service.stream_message("帮我看看")]

        assert len(deltas) > 1
        assert "".join(deltas) == REPLY
        reply = service.get_conversation_history()[-1]
        assert reply.role == MessageRole.ASSISTANT
        assert [a.type for a in reply.actions] == [ActionType.CLICK]

    @pytest.mark.asyncio
    async def test_without_session(self, agent: FakeAgent) -> None:
        service = _service(agent, MockChatModel(responses=[REPLY]))
        deltas = [d async for d in service.stream_message("帮我看看")]
        assert deltas == ["请先执行测试用例以开始调试会话"]

    @pytest.mark.asyncio
    async def test_error_propagates(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel(error=RuntimeError("stream dropped")))
        await service.start_debug_session(element_error_context)

        with pytest.raises(LLMError):
            async for _ in service.stream_message("帮我看看"):
                pass

        assert [m.role for m in service.get_conversation_history()] == [MessageRole.USER]


# ---------------------------------------------------------------------------
# Actions and fixes
# ---------------------------------------------------------------------------


class TestActions:
    @pytest.mark.asyncio
    async def test_execute_action(self, agent: FakeAgent) -> None:
        service = _service(agent, MockChatModel())
        executed: list[tuple[DebugAction, ActionResult]] = []
        service.on_action_executed(lambda action, result: executed.append((action, result)))

        action = DebugAction(type=ActionType.CLICK, target="提交按钮")
        result = await service.execute_action(action)

        assert result.success is True
        assert executed == [(action, result)]
        assert service.get_execution_log() == ['执行操作: 点击 "提交按钮" - 成功']

    @pytest.mark.asyncio
    async def test_execute_actions_stops_on_critical_failure(self, page) -> None:
        agent = FakeAgent(page, act_error=RuntimeError("detached"))
        service = _service(agent, MockChatModel())
        executed: list[DebugAction] = []
        service.on_action_executed(lambda action, result: executed.append(action))

        actions = [
            DebugAction(type=ActionType.CLICK, target="提交"),
            DebugAction(type=ActionType.REFRESH),
        ]
        results = await service.execute_actions(actions)

        assert [r.success for r in results] == [False]
        assert executed == actions[:1]
        assert service.get_execution_log() == ['执行操作: 点击 "提交" - 失败']

    @pytest.mark.asyncio
    async def test_pronoun_target_follows_conversation(
        self, manual_agent, element_error_context: DebugContext
    ) -> None:
        service = _service(manual_agent, MockChatModel(responses=[REPLY]))
        await service.start_debug_session(element_error_context)
        await service.send_message("帮我看看")
        executed: list[DebugAction] = []
        service.on_action_executed(lambda action, result: executed.append(action))

        result = await service.execute_action(DebugAction(type=ActionType.HIGHLIGHT, target="它"))

        assert result.success is True
        assert executed[0].target == "Submit button"
        assert service.get_execution_log()[-1] == '执行操作: 高亮 "Submit button" - 成功'

    @pytest.mark.asyncio
    async def test_pronoun_in_batch_uses_previous_action(self, manual_agent) -> None:
        service = _service(manual_agent, MockChatModel())
        actions = [
            DebugAction(type=ActionType.CLICK, target="提交按钮"),
            DebugAction(type=ActionType.HOVER, target="那个按钮"),
        ]

        results = await service.execute_actions(actions)

        assert [r.success for r in results] == [True, True]
        assert manual_agent.located[-1] == "提交按钮"


class TestApplyFix:
    @pytest.mark.asyncio
    async def test_without_session(self, agent: FakeAgent) -> None:
        result = await _service(agent, MockChatModel()).apply_fix(
            FixSuggestion(type=FixType.WAIT, description="等待")
        )
        assert result.success is False
        assert result.message == "没有活动的调试会话"

    @pytest.mark.asyncio
    async def test_success_resolves_session(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel(responses=["好的"]))
        session = await service.start_debug_session(element_error_context)
        await service.send_message("帮我看看")
        applied: list[ApplyResult] = []
        service.on_fix_applied(lambda fix, result: applied.append(result))

        fix = FixSuggestion(type=FixType.TIMEOUT, description="增加超时时间")
        result = await service.apply_fix(fix)

        assert result.success is True
        assert applied == [result]
        assert session.status == SessionStatus.RESOLVED
        assert service.current_session is None
        assert service.get_conversation_history() == []
        assert service.get_execution_log()[-1] == "应用修复: 增加超时时间 - 成功"
        assert any(e.success_rate == 1.0 for e in service.knowledge_base.get_all_entries())

    @pytest.mark.asyncio
    async def test_success_raises_tentative_entry(
        self, agent: FakeAgent, element_error_context: DebugContext
    ) -> None:
        service = _service(agent, MockChatModel(responses=[REPLY]))
        await service.start_debug_session(element_error_context)
        reply = await service.send_message("帮我看看")
        [tentative] = service.knowledge_base.get_all_entries()
        assert tentative.success_rate == 0.5

        result = await service.apply_fix(reply.suggestions[0])

        assert result.success is True
        [entry] = service.knowledge_base.get_all_entries()
        assert entry.id == tentative.id
        assert entry.success_rate > 0.5

    @pytest.mark.asyncio
    async def test_failure_keeps_session(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel())
        session = await service.start_debug_session(element_error_context)

        result = await service.apply_fix(FixSuggestion(type=FixType.GENERIC, description="看看别的"))

        assert result.success is False
        assert service.current_session is session
        assert session.is_active

    @pytest.mark.asyncio
    async def test_retry_reruns_step_through_agent(
        self, agent: FakeAgent, element_error_context: DebugContext
    ) -> None:
        service = _service(agent, MockChatModel())
        await service.start_debug_session(element_error_context)

        result = await service.apply_fix(FixSuggestion(type=FixType.RETRY, description="重试"))

        assert result.success is True
        assert agent.instructions == ["click('提交按钮')"]

    @pytest.mark.asyncio
    async def test_retry_failure(self, page, element_error_context: DebugContext) -> None:
        agent = FakeAgent(page, act_error=RuntimeError("still missing"))
        service = _service(agent, MockChatModel())
        await service.start_debug_session(element_error_context)

        result = await service.apply_fix(FixSuggestion(type=FixType.RETRY, description="重试"))

        assert result.success is False
        assert service.current_session is not None


# ---------------------------------------------------------------------------
# Analysis and quick questions
# ---------------------------------------------------------------------------


class TestAnalysis:
    @pytest.mark.asyncio
    async def test_analyze_failure(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel())
        await service.start_debug_session(element_error_context)

        message = await service.analyze_failure()

        assert message.content.startswith("## 错误分析")
        assert "**类型**: 元素未找到" in message.content
        assert "## 修复建议" in message.content
        assert len(message.suggestions) == 3
        assert [a.type for a in message.actions] == [ActionType.SCREENSHOT]
        assert service.get_conversation_history() == [message]

    @pytest.mark.asyncio
    async def test_no_error(self, agent: FakeAgent) -> None:
        message = await _service(agent, MockChatModel()).analyze_failure(DebugContext())
        assert message.content == "没有检测到错误"

    @pytest.mark.asyncio
    async def test_quick_questions(self, agent: FakeAgent, element_error_context: DebugContext) -> None:
        service = _service(agent, MockChatModel())
        assert len(service.get_quick_questions()) == 5

        await service.start_debug_session(element_error_context)
        assert service.get_quick_questions()[0].id == "enf-why"


# ---------------------------------------------------------------------------
# Knowledge base surface
# ---------------------------------------------------------------------------


class TestKnowledgeBase:
    def test_injected_knowledge_base(self, agent: FakeAgent, kb: KnowledgeBase) -> None:
        service = _service(agent, MockChatModel(), knowledge_base=kb)
        assert service.knowledge_base is kb

    def test_export_import_clear(self, agent: FakeAgent, kb: KnowledgeBase) -> None:
        kb.add_entry("timeout exceeded", [FixSuggestion(type=FixType.WAIT, description="等待")])
        source = _service(agent, MockChatModel(), knowledge_base=kb)
        dump = source.export_knowledge_base()

        target = _service(agent, MockChatModel())
        assert target.import_knowledge_base(dump) == 1
        assert target.get_knowledge_base_stats()["total_entries"] == 1

        target.clear_knowledge_base()
        assert target.get_knowledge_base_stats()["total_entries"] == 0

    def test_bad_import(self, agent: FakeAgent) -> None:
        with pytest.raises(KnowledgeBaseImportError):
            _service(agent, MockChatModel()).import_knowledge_base("{not json")


class TestShutdown:
    @pytest.mark.asyncio
    async def test_aclose(self, agent: FakeAgent) -> None:
        service = _service(agent, MockChatModel())
        await service.aclose()
        await service.aclose()
