"""Fix applier: rewrites the failing step according to a fix suggestion.

A step is the text of the current test step (its generated action when
present, otherwise its description).  Each fix type maps to one rewrite
mode in :data:`REWRITE_MODES`; retry fixes re-run the step instead.  Every
outcome is fed back to the knowledge base: successes are learned as new
or merged entries, failures lower the success rate of the best match.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from debug_assistant.domain.enums import FixType
from debug_assistant.domain.values import (
    ActionResult,
    ApplyResult,
    BeforeAfter,
    DebugContext,
    FixSuggestion,
    StepInfo,
)
from debug_assistant.infrastructure.knowledge_base import KnowledgeBase
from debug_assistant.services.fix_generator import FixSuggestionGenerator, extract_pattern

logger = logging.getLogger(__name__)

StepRunner = Callable[[StepInfo], Awaitable[Any]]

# How the fix code is combined with the original step text.
PREPEND, APPEND, SUFFIX, REPLACE = "prepend", "append", "suffix", "replace"

REWRITE_MODES: dict[FixType, str] = {
    FixType.WAIT: PREPEND,
    FixType.WAIT_TIME: PREPEND,
    FixType.PRE_ACTION: PREPEND,
    FixType.ACTION: PREPEND,
    FixType.NAVIGATION: PREPEND,
    FixType.AUTH: PREPEND,
    FixType.TIMEOUT: SUFFIX,
    FixType.ASSERTION: APPEND,
    FixType.DEBUG: APPEND,
    FixType.LOCATOR: REPLACE,
    FixType.LOCATOR_CHANGE: REPLACE,
    FixType.CODE_CHANGE: REPLACE,
}

_MODE_LABELS: dict[FixType, str] = {
    FixType.WAIT: "添加等待条件",
    FixType.WAIT_TIME: "添加等待条件",
    FixType.TIMEOUT: "更新超时设置",
    FixType.LOCATOR: "更新选择器",
    FixType.LOCATOR_CHANGE: "更新选择器",
    FixType.ASSERTION: "更新断言",
    FixType.ACTION: "添加操作",
    FixType.PRE_ACTION: "添加前置操作",
    FixType.DEBUG: "添加调试代码",
    FixType.NAVIGATION: "添加导航",
    FixType.AUTH: "添加认证",
    FixType.CODE_CHANGE: "替换步骤",
}

DEFAULT_TIMEOUT_CODE = "{ timeout: 30000 }"


def default_wait_code(fix: FixSuggestion) -> str:
    description = fix.description
    if "元素" in description or "element" in description.lower():
        return "await waitFor(element, { state: 'visible' });"
    if "加载" in description or "load" in description.lower():
        return "await waitForLoadState('networkidle');"
    if "动画" in description or "animation" in description.lower():
        return "await waitForAnimation();"
    return "await waitFor(1000);"


def step_text(step: StepInfo) -> str:
    return step.generated_action or step.description


def rewrite_step(original: str, fix: FixSuggestion) -> str | None:
    """Apply *fix* to *original*; ``None`` when the fix carries nothing usable."""
    mode = REWRITE_MODES.get(fix.type)
    if mode is None:
        return None
    code = fix.code.strip()

    if mode == REPLACE:
        ba = fix.before_after
        if ba is not None and ba.before and ba.before in original:
            return original.replace(ba.before, ba.after)
        return code or None
    if mode == SUFFIX:
        return f"{original} {code or DEFAULT_TIMEOUT_CODE}"
    if mode == PREPEND:
        if not code and fix.type in (FixType.WAIT, FixType.WAIT_TIME):
            code = default_wait_code(fix)
        return f"{code or '// ' + fix.description}\n{original}"
    return f"{original}\n{code or '// ' + fix.description}"


def unified_preview(original: str, modified: str) -> str:
    lines = ["```diff"]
    lines += [f"- {line}" for line in original.split("\n")]
    lines += [f"+ {line}" for line in modified.split("\n")]
    lines.append("```")
    return "\n".join(lines)


@dataclass(frozen=True)
class AppliedFix:
    step_id: str
    original: str
    modified: str
    fix: FixSuggestion


class FixApplier:
    """Applies fix suggestions to the failing step and records the outcome.

    Parameters
    ----------
    knowledge_base:
        Receives success/failure feedback; optional.
    run_step:
        Async callable that re-runs a step, used by ``retry`` fixes.  Its
        return value is truthy (or an :class:`ActionResult` with
        ``success``) when the step passed.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase | None = None,
        run_step: StepRunner | None = None,
    ) -> None:
        self._kb = knowledge_base
        self._run_step = run_step
        self._learner = FixSuggestionGenerator(knowledge_base)
        self._applied: dict[str, AppliedFix] = {}

    def set_knowledge_base(self, kb: KnowledgeBase | None) -> None:
        self._kb = kb
        self._learner.set_knowledge_base(kb)

    def set_step_runner(self, run_step: StepRunner | None) -> None:
        self._run_step = run_step

    @property
    def applied_fixes(self) -> dict[str, AppliedFix]:
        return dict(self._applied)

    # -- apply ---------------------------------------------------------------

    async def apply_fix(self, fix: FixSuggestion, context: DebugContext) -> ApplyResult:
        """Apply *fix* to ``context.current_step``; never raises."""
        try:
            result = await self._apply(fix, context)
        except Exception as exc:
            logger.exception("Applying %s fix failed", fix.type.value)
            result = ApplyResult(success=False, message=f"应用修复失败: {exc}")
        self._record(fix, context, result.success)
        return result

    async def _apply(self, fix: FixSuggestion, context: DebugContext) -> ApplyResult:
        step = context.current_step
        if fix.type == FixType.RETRY:
            return await self._retry(fix, step)
        if fix.type not in REWRITE_MODES:
            logger.warning("Unsupported fix type %s", fix.type.value)
            return ApplyResult(success=False, message=f"不支持的修复类型: {fix.type.value}")
        if step is None:
            return ApplyResult(success=False, message="需要知道当前步骤才能应用修复")

        original = step_text(step)
        modified = rewrite_step(original, fix)
        if modified is None:
            return ApplyResult(success=False, message=f"修复缺少可应用的代码: {fix.description}")

        self._applied[step.id] = AppliedFix(step.id, original, modified, fix)
        logger.info("Applied %s fix to step %s", fix.type.value, step.id)
        return ApplyResult(
            success=True,
            message=f"{_MODE_LABELS[fix.type]}: {fix.description}",
            modified_step=modified,
        )

    async def _retry(self, fix: FixSuggestion, step: StepInfo | None) -> ApplyResult:
        if step is None:
            return ApplyResult(success=False, message="需要知道当前步骤才能重试")
        if self._run_step is None:
            return ApplyResult(success=False, message="无法重试: 未配置步骤执行器")
        outcome = await self._run_step(step)
        passed = outcome.success if isinstance(outcome, ActionResult) else bool(outcome)
        message = f"重试{'成功' if passed else '失败'}: {step.description}"
        return ApplyResult(
            success=passed,
            message=message,
            modified_step=step_text(step),
            retry_result=outcome,
        )

    # -- preview / revert ----------------------------------------------------

    def preview_fix(self, fix: FixSuggestion, context: DebugContext) -> BeforeAfter:
        """Before/after text of the current step without applying anything."""
        step = context.current_step
        original = step_text(step) if step is not None else ""
        if fix.type == FixType.RETRY:
            return BeforeAfter(before=original, after=original)
        modified = rewrite_step(original, fix)
        return BeforeAfter(before=original, after=modified if modified is not None else original)

    def preview_diff(self, fix: FixSuggestion, context: DebugContext) -> str:
        ba = self.preview_fix(fix, context)
        return unified_preview(ba.before, ba.after)

    def revert_fix(self, step_id: str) -> str | None:
        """Forget the fix applied to *step_id*; returns the original step text."""
        applied = self._applied.pop(step_id, None)
        if applied is None:
            return None
        logger.info("Reverted %s fix on step %s", applied.fix.type.value, step_id)
        return applied.original

    def clear_history(self) -> None:
        self._applied.clear()

    # -- knowledge feedback --------------------------------------------------

    def _record(self, fix: FixSuggestion, context: DebugContext, success: bool) -> None:
        if self._kb is None or not context.error_message:
            return
        if success:
            # add_entry merges into a similar entry without touching its rate.
            entry_id = self._learner.learn_from_success(context, fix)
            if entry_id is not None:
                self._kb.update_success_rate(entry_id, True)
            return
        pattern = extract_pattern(context.error_message, context.failed_step)
        matches = self._kb.find_matching_patterns(pattern, 1)
        if matches:
            self._kb.update_success_rate(matches[0].id, False)
