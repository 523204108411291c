"""Prompt text and canned questions.

The system prompt teaches the model the tagged reply protocol understood by
:mod:`debug_assistant.services.response_parser`.  Chinese is the default
reply language; English is available for every prompt.
"""

from __future__ import annotations

from debug_assistant.domain.enums import ActionType, ErrorCategory
from debug_assistant.domain.values import QuickQuestion

# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

_ZH_SYSTEM = """# 测试调试助手

你是一个专业的测试调试助手，帮助用户分析测试失败原因并提供修复建议。

## 你的能力
1. **分析错误** - 理解控制台错误、网络错误和测试失败信息
2. **定位问题** - 通过截图和页面状态找到问题根源
3. **提供建议** - 给出具体、可操作的修复方案
4. **执行操作** - 可以执行调试操作如点击、高亮、截图等
5. **学习改进** - 从成功的修复中学习，不断改进建议质量

## 响应格式
**文本解释** - 用清晰的语言解释问题和解决方案

[ACTION:操作类型:目标参数[:值]]
- 可用的操作类型：
{actions}

[SUGGESTION:修复描述|代码|置信度]
- 提供修复建议，包括清晰的描述、可执行的代码和置信度 (0-1)

[CONTEXT:类型[:细节]]
- 需要更多信息时请求上下文：console_errors、network_errors、visible_elements、execution_history

## 常见问题模式
- **元素未找到**: 检查选择器、等待加载、使用更稳定的选择器
- **超时**: 增加超时时间、等待特定状态、检查网络
- **断言失败**: 验证期望值、检查业务逻辑、添加调试输出
- **点击被拦截**: 关闭弹窗、等待动画、使用强制点击
- **元素过期**: 重新定位元素、避免缓存引用

## 语气和风格
- 专业但友好，简洁而完整
- 使用中文，对关键点加粗强调
"""

_ZH_VERBOSE = """
## 调试流程
1. 理解问题：分析错误信息和上下文
2. 收集信息：执行定位和描述操作
3. 提出假设：基于经验判断可能的原因
4. 验证假设：通过操作确认问题
5. 提供方案：给出具体的修复建议
6. 跟进确认：确保问题解决

## 示例
用户: "测试失败了，说找不到登录按钮"
助手: "让我先看一下页面上有什么登录相关的元素。
[ACTION:locate:登录按钮]
[SUGGESTION:等待按钮可见|await waitFor('登录按钮', { state: 'visible' });|0.85]"
"""

_EN_SYSTEM = """# Test Debug Assistant

You are a professional test debugging assistant, helping users analyze test failures and provide fix suggestions.

## Your Capabilities
1. **Analyze Errors** - Understand console errors, network errors, and test failure messages
2. **Locate Issues** - Find root causes through screenshots and page state
3. **Provide Suggestions** - Give specific, actionable fix recommendations
4. **Execute Actions** - Perform debug operations like click, highlight, screenshot
5. **Learn & Improve** - Learn from successful fixes to improve suggestion quality

## Response Format
**Text Explanation** - Explain the issue and solution clearly

[ACTION:type:target[:value]]
- Available action types:
{actions}

[SUGGESTION:description|code|confidence]
- Provide a clear description, executable code and a confidence score (0-1)

[CONTEXT:type[:details]]
- Request more context when needed: console_errors, network_errors, visible_elements, execution_history
"""

_EN_VERBOSE = """
## Debugging Process
1. Understand: Analyze error messages and context
2. Collect: Execute locate and describe operations
3. Hypothesize: Apply experience to identify likely causes
4. Verify: Confirm issue through actions
5. Propose: Provide specific fix recommendations
6. Follow-up: Ensure the issue is resolved
"""

ACTION_LABELS: dict[str, dict[ActionType, str]] = {
    "zh": {
        ActionType.CLICK: "点击",
        ActionType.INPUT: "输入",
        ActionType.SCROLL: "滚动",
        ActionType.REFRESH: "刷新",
        ActionType.HIGHLIGHT: "高亮",
        ActionType.HOVER: "悬停",
        ActionType.SCREENSHOT: "截图",
        ActionType.WAIT: "等待",
        ActionType.COMPARE: "对比",
        ActionType.DESCRIBE: "描述",
        ActionType.LOCATE: "定位",
    },
    "en": {t: t.value for t in ActionType},
}

ERROR_TYPE_LABELS: dict[str, str] = {
    ErrorCategory.ELEMENT_NOT_FOUND.value: "元素未找到",
    ErrorCategory.TIMEOUT.value: "操作超时",
    ErrorCategory.ACTION_FAILED.value: "操作失败",
    ErrorCategory.ASSERTION_FAILED.value: "断言失败",
    ErrorCategory.STALE_ELEMENT.value: "元素过期",
    ErrorCategory.CLICK_INTERCEPTED.value: "点击被拦截",
    ErrorCategory.NETWORK_ERROR.value: "网络错误",
    ErrorCategory.UNKNOWN.value: "未知错误",
}


def build_system_prompt(language: str = "zh", verbose: bool = True) -> str:
    """Main system prompt describing the reply protocol."""
    labels = ACTION_LABELS["zh" if language == "zh" else "en"]
    actions = "\n".join(f"  - {t.value} - {labels[t]}" for t in ActionType)
    if language == "zh":
        return _ZH_SYSTEM.format(actions=actions) + (_ZH_VERBOSE if verbose else "")
    return _EN_SYSTEM.format(actions=actions) + (_EN_VERBOSE if verbose else "")


def format_error_type(error_type: str) -> str:
    return ERROR_TYPE_LABELS.get(error_type, error_type)


def format_action_description(action_type: ActionType, target: str | None = None) -> str:
    base = ACTION_LABELS["zh"][action_type]
    return f'{base} "{target}"' if target else base


def build_fix_result_prompt(applied_fix: str, success: bool, language: str = "zh") -> str:
    """Follow-up prompt telling the model how an applied fix turned out."""
    if language == "zh":
        if success:
            return (
                f"## 修复结果\n\n修复成功！应用的建议是：\n```\n{applied_fix}\n```\n\n"
                "请记住这个成功的模式，以便在未来类似问题中推荐。"
            )
        return (
            f"## 修复结果\n\n修复失败。尝试的建议是：\n```\n{applied_fix}\n```\n\n"
            "请分析原因并提供其他解决方案。"
        )
    if success:
        return (
            f"## Fix Result\n\nFix successful! The applied suggestion was:\n```\n{applied_fix}\n```\n\n"
            "Remember this successful pattern for future similar issues."
        )
    return (
        f"## Fix Result\n\nFix failed. The attempted suggestion was:\n```\n{applied_fix}\n```\n\n"
        "Analyze why it failed and provide alternative solutions."
    )


# ---------------------------------------------------------------------------
# Quick questions
# ---------------------------------------------------------------------------

DEFAULT_QUICK_QUESTIONS: tuple[QuickQuestion, ...] = (
    QuickQuestion(id="reason", text="为什么失败了？", category="reason", icon="❓"),
    QuickQuestion(id="fix", text="怎么修复这个问题？", category="fix", icon="🔧"),
    QuickQuestion(id="status", text="当前页面是什么状态？", category="status", icon="🔍"),
    QuickQuestion(id="element", text="帮我找一下目标元素", category="element", icon="🎯"),
    QuickQuestion(id="retry", text="重试这个步骤", category="retry", icon="🔄"),
)

_CATEGORY_QUESTIONS: dict[ErrorCategory, tuple[QuickQuestion, ...]] = {
    ErrorCategory.ELEMENT_NOT_FOUND: (
        QuickQuestion(id="enf-why", text="为什么找不到这个元素？", category="diagnosis"),
        QuickQuestion(id="enf-locate", text="如何定位这个元素？", category="action"),
        QuickQuestion(id="enf-loaded", text="页面加载完成了吗？", category="diagnosis"),
    ),
    ErrorCategory.TIMEOUT: (
        QuickQuestion(id="timeout-why", text="为什么会超时？", category="diagnosis"),
        QuickQuestion(id="timeout-wait", text="如何增加等待时间？", category="fix"),
        QuickQuestion(id="timeout-network", text="检查网络状态", category="action"),
    ),
    ErrorCategory.ASSERTION_FAILED: (
        QuickQuestion(id="assert-why", text="断言为什么失败？", category="diagnosis"),
        QuickQuestion(id="assert-actual", text="实际值是什么？", category="diagnosis"),
        QuickQuestion(id="assert-fix", text="如何修正断言？", category="fix"),
    ),
}

_GENERIC_QUESTIONS: tuple[QuickQuestion, ...] = (
    QuickQuestion(id="generic-meaning", text="这个错误是什么意思？", category="diagnosis"),
    QuickQuestion(id="generic-fix", text="如何修复？", category="fix"),
)


def quick_questions_for(category: ErrorCategory | None) -> list[QuickQuestion]:
    """Category-specific questions first, then the defaults.

    With no error at all only the defaults are offered.
    """
    if category is None:
        return list(DEFAULT_QUICK_QUESTIONS)
    specific = _CATEGORY_QUESTIONS.get(category, _GENERIC_QUESTIONS)
    return [*specific, *DEFAULT_QUICK_QUESTIONS]
