"""Tests for rule-based fix suggestion generation."""

from __future__ import annotations

import pytest

from debug_assistant.domain.enums import ErrorCategory, FixType
from debug_assistant.domain.values import DebugContext, DebugError, FixSuggestion
from debug_assistant.infrastructure.config import FixGeneratorConfig
from debug_assistant.infrastructure.knowledge_base import KnowledgeBase
from debug_assistant.services.fix_generator import (
    KB_CONFIDENCE_FACTOR,
    FixSuggestionGenerator,
    classify_error,
    extract_pattern,
)


class TestClassifyError:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("Element not found: submit button", ErrorCategory.ELEMENT_NOT_FOUND),
            ("找不到元素: 提交按钮", ErrorCategory.ELEMENT_NOT_FOUND),
            ("Timeout 30000ms exceeded", ErrorCategory.TIMEOUT),
            ("Timeout waiting for element #submit", ErrorCategory.ELEMENT_NOT_FOUND),
            ("Expected 3 but got 2", ErrorCategory.ASSERTION_FAILED),
            ("TypeError: fetch failed", ErrorCategory.NETWORK_ERROR),
            ("stale element reference: node is detached", ErrorCategory.STALE_ELEMENT),
            ("Element click intercepted by overlay", ErrorCategory.CLICK_INTERCEPTED),
            ("页面出现遮罩", ErrorCategory.CLICK_INTERCEPTED),
            ("something odd happened", ErrorCategory.UNKNOWN),
        ],
    )
    def test_categories(self, message: str, expected: ErrorCategory) -> None:
        assert classify_error(message) == expected


class TestExtractPattern:
    def test_normalises_values(self) -> None:
        assert extract_pattern("Element 'submit' not found after 3000ms") == "element VALUE not found after Nms"

    def test_uuid(self) -> None:
        assert extract_pattern("session 123e4567-e89b-12d3-a456-426614174000 expired") == "session ID expired"

    def test_failed_step_suffix(self) -> None:
        assert extract_pattern("Timeout", "点击提交") == 'timeout 在步骤 "点击提交"'


class TestGenerate:
    def test_element_not_found_rules(self, element_error_context: DebugContext) -> None:
        fixes = FixSuggestionGenerator().generate(element_error_context)
        assert [f.confidence for f in fixes] == [0.85, 0.8, 0.7]
        assert fixes[0].type == FixType.WAIT
        assert fixes[1].type == FixType.LOCATOR

    def test_timeout_adds_animation_wait(self, timeout_context: DebugContext) -> None:
        fixes = FixSuggestionGenerator().generate(timeout_context)
        assert [f.confidence for f in fixes] == [0.8, 0.75, 0.7]
        assert fixes[-1].description == "等待加载动画消失"

    def test_unloaded_page_needs_navigation(self) -> None:
        context = DebugContext(url="about:blank", last_error=DebugError("Timeout exceeded"))
        fixes = FixSuggestionGenerator().generate(context)
        assert fixes[0].type == FixType.NAVIGATION
        assert fixes[0].confidence == 0.9

    def test_unauthorized_console_error(self) -> None:
        context = DebugContext(
            url="https://example.com/admin",
            last_error=DebugError("Element not found"),
            console_errors=("GET /api/me 401 (Unauthorized)",),
        )
        types = [f.type for f in FixSuggestionGenerator().generate(context)]
        assert FixType.AUTH in types

    def test_iframe_hint(self) -> None:
        context = DebugContext(url="https://x.test", last_error=DebugError("Element not found in frame"))
        descriptions = [f.description for f in FixSuggestionGenerator().generate(context)]
        assert "可能需要切换到 iframe" in descriptions

    def test_unknown_error_without_hints(self) -> None:
        context = DebugContext(url="https://x.test", last_error=DebugError("something odd"))
        generator = FixSuggestionGenerator()
        assert generator.generate(context) == []
        assert generator.analyze_failure(context).description == "未知错误类型"

    def test_limits(self, element_error_context: DebugContext) -> None:
        generator = FixSuggestionGenerator(config=FixGeneratorConfig(max_suggestions=2, min_confidence=0.75))
        assert [f.confidence for f in generator.generate(element_error_context)] == [0.85, 0.8]

    def test_error_message_argument(self) -> None:
        fixes = FixSuggestionGenerator().generate(DebugContext(url="https://x.test"), "Timeout exceeded")
        assert fixes[0].type == FixType.WAIT


class TestKnowledgeMerge:
    def test_kb_fix_is_discounted(self, kb: KnowledgeBase, element_error_context: DebugContext) -> None:
        learned = FixSuggestion(type=FixType.LOCATOR, description="改用 data-testid 定位", confidence=0.8)
        kb.add_entry("element not found: submit button", [learned], frequency=3, success_rate=0.9)

        fixes = FixSuggestionGenerator(kb).generate(element_error_context)

        match = next(f for f in fixes if f.description == learned.description)
        assert match.confidence == pytest.approx(0.8 * KB_CONFIDENCE_FACTOR)
        assert fixes[0].confidence == 0.85

    def test_duplicate_descriptions_collapse(self, kb: KnowledgeBase, element_error_context: DebugContext) -> None:
        rule = FixSuggestionGenerator().generate(element_error_context)[0]
        kb.add_entry("element not found", [rule], frequency=1, success_rate=1.0)

        fixes = FixSuggestionGenerator(kb).generate(element_error_context)
        assert sum(1 for f in fixes if f.description == rule.description) == 1


class TestLearning:
    def test_learn_from_success(self, kb: KnowledgeBase, element_error_context: DebugContext) -> None:
        fix = FixSuggestion(type=FixType.WAIT, description="等待按钮出现", confidence=0.8)
        entry_id = FixSuggestionGenerator(kb).learn_from_success(element_error_context, fix)

        entry = kb.get_entry(entry_id)
        assert entry is not None
        assert entry.success_rate == 1.0
        assert entry.pattern.startswith("element not found: submit button")
        assert set(entry.tags) == {"wait", "element_not_found", "login_page"}

    def test_learning_without_kb(self, element_error_context: DebugContext) -> None:
        fix = FixSuggestion(type=FixType.WAIT, description="x")
        assert FixSuggestionGenerator().learn_from_success(element_error_context, fix) is None

    def test_common_fixes(self) -> None:
        assert len(FixSuggestionGenerator.get_common_fixes(ErrorCategory.ELEMENT_NOT_FOUND)) == 2
        assert FixSuggestionGenerator.get_common_fixes(ErrorCategory.UNKNOWN) == []
