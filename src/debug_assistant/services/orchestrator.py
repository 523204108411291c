"""Session orchestrator: the debug assistant's public service.

Lifecycle::

    no session --start_debug_session--> ACTIVE --apply_fix ok--> RESOLVED
                                          |
                                          +--new session / end--> ABANDONED

One :class:`DebugAssistantService` owns every collaborator (parser,
context builder, executor, fix generator and applier, knowledge base,
caches, event bus) and is constructed once by the host.  Observers
subscribe through the ``on_*`` methods, each returning an unsubscribe
callable.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from debug_assistant.domain.enums import ActionType, ContextType, MessageRole, SessionStatus
from debug_assistant.domain.entities import DebugSession
from debug_assistant.domain.events import (
    ActionExecuted,
    FixApplied,
    MessageAdded,
    SessionEnded,
    SessionStarted,
)
from debug_assistant.domain.exceptions import ConfigurationError
from debug_assistant.domain.values import (
    ActionResult,
    ApplyResult,
    DebugAction,
    DebugContext,
    FixSuggestion,
    LLMContext,
    Message,
    ParsedResponse,
    QuickQuestion,
    StepInfo,
)
from debug_assistant.infrastructure.browser import AgentGetter, supports
from debug_assistant.infrastructure.cache import CacheManager
from debug_assistant.infrastructure.config import (
    AssistantConfig,
    CacheConfig,
    ContextConfig,
    ExecutorConfig,
    FixGeneratorConfig,
    KnowledgeBaseConfig,
)
from debug_assistant.infrastructure.event_bus import AsyncEventBus, Unsubscribe
from debug_assistant.infrastructure.knowledge_base import KnowledgeBase
from debug_assistant.infrastructure.llm import LLMEngine, LLMError
from debug_assistant.infrastructure.storage import KeyValueStorage
from debug_assistant.services.action_executor import ActionExecutor
from debug_assistant.services.context_builder import CONTEXT_REQUEST_ALIASES, ContextBuilder
from debug_assistant.services.fix_applier import FixApplier, step_text
from debug_assistant.services.fix_generator import FixSuggestionGenerator, extract_pattern
from debug_assistant.services.prompts import (
    format_action_description,
    format_error_type,
    quick_questions_for,
)
from debug_assistant.services.reference_resolver import resolve_action_target
from debug_assistant.services.response_parser import ResponseParser

logger = logging.getLogger(__name__)

_TEXT: dict[str, dict[str, str]] = {
    "zh": {
        "no_session": "请先执行测试用例以开始调试会话",
        "no_active": "没有活动的调试会话",
        "llm_failed": "抱歉，AI 服务暂时不可用：{error}",
        "no_error": "没有检测到错误",
        "analysis": "## 错误分析",
        "type": "**类型**",
        "info": "**信息**",
        "fixes": "## 修复建议",
        "ok": "成功",
        "failed": "失败",
    },
    "en": {
        "no_session": "Run a test case first to start a debug session",
        "no_active": "No active debug session",
        "llm_failed": "Sorry, the AI service is unavailable: {error}",
        "no_error": "No error detected",
        "analysis": "## Error Analysis",
        "type": "**Type**",
        "info": "**Message**",
        "fixes": "## Suggested Fixes",
        "ok": "succeeded",
        "failed": "failed",
    },
}


class DebugAssistantService:
    """Conversational debugging over one failed test step at a time.

    Parameters
    ----------
    get_agent:
        Zero-argument callable returning the automation agent, or ``None``.
    engine:
        Language-model backend.
    config:
        Orchestrator knobs; see :class:`AssistantConfig`.
    storage:
        Persistence surface of the knowledge base.
    knowledge_base, cache, event_bus:
        Pre-built collaborators; fresh ones are created when omitted.
    """

    def __init__(
        self,
        get_agent: AgentGetter,
        engine: LLMEngine,
        config: AssistantConfig | None = None,
        *,
        cache_config: CacheConfig | None = None,
        knowledge_config: KnowledgeBaseConfig | None = None,
        executor_config: ExecutorConfig | None = None,
        context_config: ContextConfig | None = None,
        fix_config: FixGeneratorConfig | None = None,
        storage: KeyValueStorage | None = None,
        knowledge_base: KnowledgeBase | None = None,
        cache: CacheManager | None = None,
        event_bus: AsyncEventBus | None = None,
    ) -> None:
        if not callable(get_agent):
            raise ConfigurationError("get_agent must be a callable returning the agent")
        if engine is None:
            raise ConfigurationError("an LLM engine is required")
        self._config = config or AssistantConfig()
        self._config.validate()
        self._get_agent = get_agent
        self._engine = engine
        self._text = _TEXT[self._config.language]

        self._knowledge_base = (
            knowledge_base if knowledge_base is not None
            else KnowledgeBase(knowledge_config, storage)
        )
        kb = self._knowledge_base if self._config.knowledge_base_enabled else None
        self._cache = cache or CacheManager(cache_config)
        self._bus = event_bus or AsyncEventBus()
        self._parser = ResponseParser()
        self._context_builder = ContextBuilder(context_config, self._config.language)
        self._executor = ActionExecutor(get_agent, executor_config, self._cache)
        self._generator = FixSuggestionGenerator(kb, fix_config)
        self._applier = FixApplier(kb, self._rerun_step)

        self._session: DebugSession | None = None
        self._context: DebugContext | None = None
        self._messages: list[Message] = []
        self._log: list[str] = []
        self._requested: set[ContextType] = set()

    # -- accessors -----------------------------------------------------------

    @property
    def config(self) -> AssistantConfig:
        return self._config

    @property
    def engine(self) -> LLMEngine:
        return self._engine

    @property
    def knowledge_base(self) -> KnowledgeBase:
        return self._knowledge_base

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def executor(self) -> ActionExecutor:
        return self._executor

    @property
    def fix_applier(self) -> FixApplier:
        return self._applier

    @property
    def event_bus(self) -> AsyncEventBus:
        return self._bus

    @property
    def current_session(self) -> DebugSession | None:
        return self._session

    @property
    def current_context(self) -> DebugContext | None:
        return self._context

    def get_conversation_history(self) -> list[Message]:
        return list(self._messages)

    def clear_conversation_history(self) -> None:
        self._messages.clear()
        self._requested.clear()

    def get_execution_log(self) -> list[str]:
        return list(self._log)

    # -- session lifecycle ---------------------------------------------------

    async def start_debug_session(
        self,
        context: DebugContext,
        test_case_id: str = "",
        test_case_name: str = "",
    ) -> DebugSession:
        """Open a session for the failure in *context*.

        Any active session is ended as abandoned first.
        """
        if self._session is not None:
            await self.end_debug_session(SessionStatus.ABANDONED)

        step = context.current_step
        session = DebugSession(
            test_case_id=test_case_id or context.test_case_id,
            test_case_name=test_case_name or context.test_case_name,
            step_id=step.id if step is not None else "",
            step_index=step.index if step is not None else 0,
            error=context.last_error,
            screenshot=context.screenshot,
        )
        self._session = session
        self._context = context
        # Reply keys only carry the failure shape; answers belong to one failure.
        self._cache.llm_responses.clear()
        self._cache.cache_context(session.id, context)
        if step is not None:
            outcome = self._text["failed"] if context.last_error else self._text["ok"]
            self._log.append(f"步骤 {step.index + 1}: {step.description} - {outcome}")

        logger.info("Debug session %s started", session.id)
        await self._bus.publish(SessionStarted(source_id=session.id, session=session))

        if self._config.auto_open_on_error and context.last_error is not None:
            await self.analyze_failure(context)
        return session

    async def end_debug_session(self, status: SessionStatus = SessionStatus.RESOLVED) -> None:
        session = self._session
        if session is None:
            return
        session.end(status)
        self._session = None
        self._requested.clear()
        if status is SessionStatus.RESOLVED:
            self._messages.clear()
        logger.info("Debug session %s ended as %s", session.id, status.value)
        await self._bus.publish(SessionEnded(source_id=session.id, session=session))

    def update_context(self, context: DebugContext) -> None:
        """Replace the failure snapshot of the active session."""
        self._context = context
        self._cache.llm_responses.clear()
        if self._session is not None:
            self._cache.cache_context(self._session.id, context)

    def _active_context(self) -> DebugContext | None:
        if self._session is None:
            return None
        return self._cache.get_context(self._session.id) or self._context

    # -- conversation --------------------------------------------------------

    def _system_reply(self, text: str, **metadata: Any) -> Message:
        return Message(role=MessageRole.ASSISTANT, content=text, metadata=metadata)

    async def _append(self, message: Message) -> None:
        self._messages.append(message)
        overflow = len(self._messages) - self._config.max_message_history
        if overflow > 0:
            del self._messages[:overflow]
        await self._bus.publish(MessageAdded(source_id=message.id, message=message))

    def _prepare(self, context: DebugContext, text: str) -> LLMContext:
        llm_context = self._context_builder.build(
            context,
            self._messages,
            user_query=text,
            requested=self._requested,
        )
        self._requested = set()
        return llm_context

    async def send_message(self, text: str) -> Message:
        """Ask the model about the active failure and return its parsed reply.

        Without an active session a canned assistant message is returned
        and nothing is recorded.  Model failures become an assistant
        message carrying the error text.
        """
        context = self._active_context()
        if context is None:
            return self._system_reply(self._text["no_session"])

        await self._append(Message(role=MessageRole.USER, content=text))
        llm_context = self._prepare(context, text)
        cached = self._cache.get_llm_response(text, context)
        if cached is not None:
            logger.debug("Reusing cached reply for %r", text)
            return await self._handle_reply(cached, context, learn=False)
        try:
            raw = await self._engine.complete(llm_context)
        except LLMError as exc:
            logger.warning("LLM call failed: %s", exc)
            reply = self._system_reply(self._text["llm_failed"].format(error=exc), error=str(exc))
            await self._append(reply)
            return reply

        self._cache.cache_llm_response(text, context, raw)
        return await self._handle_reply(raw, context)

    async def stream_message(self, text: str) -> AsyncIterator[str]:
        """Yield reply text deltas, then record the parsed reply.

        A stream error propagates to the caller and nothing is recorded
        for the reply; partial output should be discarded.
        """
        context = self._active_context()
        if context is None:
            reply = self._system_reply(self._text["no_session"])
            yield reply.content
            return

        await self._append(Message(role=MessageRole.USER, content=text))
        llm_context = self._prepare(context, text)
        parts: list[str] = []
        async for delta in self._engine.stream(llm_context):
            parts.append(delta)
            yield delta
        await self._handle_reply("".join(parts), context)

    async def _handle_reply(self, raw: str, context: DebugContext, *, learn: bool = True) -> Message:
        parsed = self._parser.parse(raw)
        reply = Message(
            role=MessageRole.ASSISTANT,
            content=parsed.text,
            actions=parsed.actions,
            suggestions=parsed.suggestions,
            context_request=parsed.context_request,
            metadata={"confidence": parsed.confidence, "engine": self._engine.engine_name},
        )
        await self._append(reply)
        self._queue_context_request(parsed)
        if learn and parsed.suggestions:
            self._learn_tentatively(context, parsed.suggestions)
        return reply

    def _queue_context_request(self, parsed: ParsedResponse) -> None:
        request = parsed.context_request
        if request is None:
            return
        section = CONTEXT_REQUEST_ALIASES.get(request.type.strip().lower())
        if section is None:
            logger.debug("Ignoring unknown context request %r", request.type)
            return
        self._requested.add(section)

    def _learn_tentatively(self, context: DebugContext, fixes: Sequence[FixSuggestion]) -> None:
        if not (self._config.knowledge_base_enabled and self._config.auto_learn_from_fixes):
            return
        error = context.last_error
        pattern = extract_pattern(error.message) if error is not None else "unknown_error"
        self._knowledge_base.add_entry(
            pattern,
            fixes,
            frequency=1,
            success_rate=0.5,
            tags=[error.type.value if error is not None else "general", "auto-generated"],
        )

    # -- actions and fixes ---------------------------------------------------

    def _resolve_targets(self, actions: Sequence[DebugAction]) -> list[DebugAction]:
        context = self._active_context()
        resolved: list[DebugAction] = []
        for action in actions:
            resolved.append(resolve_action_target(action, context, self._messages, preceding=resolved))
        return resolved

    async def execute_action(self, action: DebugAction) -> ActionResult:
        """Run *action*; pronoun and quoted targets are resolved first."""
        [action] = self._resolve_targets([action])
        result = await self._executor.execute(action)
        self._record_action(action, result)
        await self._bus.publish(ActionExecuted(source_id=action.id, action=action, result=result))
        return result

    async def execute_actions(self, actions: Sequence[DebugAction]) -> list[ActionResult]:
        """Run *actions* in order, stopping after a failed critical action."""
        actions = self._resolve_targets(actions)
        results = await self._executor.execute_multiple(actions)
        for action, result in zip(actions, results):
            self._record_action(action, result)
            await self._bus.publish(ActionExecuted(source_id=action.id, action=action, result=result))
        return results

    def _record_action(self, action: DebugAction, result: ActionResult) -> None:
        outcome = self._text["ok"] if result.success else self._text["failed"]
        self._log.append(f"执行操作: {format_action_description(action.type, action.target)} - {outcome}")

    async def _rerun_step(self, step: StepInfo) -> ActionResult:
        agent = self._get_agent()
        if not supports(agent, "act"):
            return ActionResult.failure("无法重试: agent 不支持 AI 操作")
        try:
            await agent.act(step_text(step))  # type: ignore[union-attr]
        except Exception as exc:
            logger.debug("Step re-run failed", exc_info=True)
            return ActionResult.failure(f"重试失败: {exc}")
        return ActionResult(success=True, message=f"已重新执行: {step.description}")

    async def apply_fix(self, fix: FixSuggestion) -> ApplyResult:
        """Apply *fix* to the active step; a success resolves the session."""
        context = self._active_context()
        if context is None:
            return ApplyResult(success=False, message=self._text["no_active"])

        result = await self._applier.apply_fix(fix, context)
        outcome = self._text["ok"] if result.success else self._text["failed"]
        self._log.append(f"应用修复: {fix.description} - {outcome}")
        await self._bus.publish(FixApplied(source_id=fix.id, fix=fix, result=result))
        if result.success:
            await self.end_debug_session(SessionStatus.RESOLVED)
        return result

    # -- analysis ------------------------------------------------------------

    async def analyze_failure(self, context: DebugContext | None = None) -> Message:
        """Rule-based analysis of the failure as an assistant message."""
        ctx = context or self._active_context() or DebugContext()
        suggestions = self._generator.generate(ctx)
        error = ctx.last_error
        if error is None:
            message = self._system_reply(self._text["no_error"])
        else:
            lines = [
                self._text["analysis"],
                "",
                f"{self._text['type']}: {format_error_type(error.type.value)}",
                "",
                f"{self._text['info']}: {error.message}",
            ]
            if suggestions:
                lines += ["", self._text["fixes"], ""]
                lines += [f"{i}. {s.description}" for i, s in enumerate(suggestions, start=1)]
            message = Message(
                role=MessageRole.ASSISTANT,
                content="\n".join(lines),
                suggestions=tuple(suggestions),
                actions=(DebugAction(type=ActionType.SCREENSHOT),),
            )
        await self._append(message)
        return message

    def get_quick_questions(self, context: DebugContext | None = None) -> list[QuickQuestion]:
        ctx = context or self._active_context()
        error = ctx.last_error if ctx is not None else None
        return quick_questions_for(error.type if error is not None else None)

    # -- observers -----------------------------------------------------------

    def on_message(self, callback: Callable[[Message], Any]) -> Unsubscribe:
        return self._bus.subscribe(MessageAdded, lambda e: callback(e.message))

    def on_session_start(self, callback: Callable[[DebugSession], Any]) -> Unsubscribe:
        return self._bus.subscribe(SessionStarted, lambda e: callback(e.session))

    def on_session_end(self, callback: Callable[[DebugSession], Any]) -> Unsubscribe:
        return self._bus.subscribe(SessionEnded, lambda e: callback(e.session))

    def on_action_executed(self, callback: Callable[[DebugAction, ActionResult], Any]) -> Unsubscribe:
        return self._bus.subscribe(ActionExecuted, lambda e: callback(e.action, e.result))

    def on_fix_applied(self, callback: Callable[[FixSuggestion, ApplyResult], Any]) -> Unsubscribe:
        return self._bus.subscribe(FixApplied, lambda e: callback(e.fix, e.result))

    # -- knowledge base ------------------------------------------------------

    def get_knowledge_base_stats(self) -> dict[str, Any]:
        return self._knowledge_base.get_stats()

    def export_knowledge_base(self) -> str:
        return self._knowledge_base.export_json()

    def import_knowledge_base(self, json_str: str) -> int:
        """Import entries; raises ``KnowledgeBaseImportError`` on bad input."""
        return self._knowledge_base.import_json(json_str)

    def clear_knowledge_base(self) -> None:
        self._knowledge_base.clear()

    # -- shutdown ------------------------------------------------------------

    async def aclose(self) -> None:
        await self._cache.stop_sweeper()
        self._executor.highlighter.clear_tracking()
        await self._engine.aclose()

