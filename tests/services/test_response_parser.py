"""Tests for the tagged-reply parser."""

from __future__ import annotations

import pytest

from debug_assistant.domain.enums import ActionType, FixType, ScrollDirection
from debug_assistant.services.response_parser import (
    ResponseParser,
    chinese_to_number,
    infer_suggestion_type,
    parse_duration_ms,
    response_confidence,
)


@pytest.fixture
def parser() -> ResponseParser:
    return ResponseParser()


class TestActions:
    def test_single_click(self, parser: ResponseParser) -> None:
        parsed = parser.parse("[ACTION:click:Submit button]")

        assert len(parsed.actions) == 1
        action = parsed.actions[0]
        assert action.type == ActionType.CLICK
        assert action.target == "Submit button"
        assert action.value is None
        assert parsed.suggestions == ()
        assert parsed.text == ""

    @pytest.mark.parametrize(
        "tag, expected",
        [
            ("[ACTION:type:用户名输入框:admin]", ActionType.INPUT),
            ("[ACTION:reload]", ActionType.REFRESH),
            ("[ACTION:SLEEP:2s]", ActionType.WAIT),
            ("[ACTION:find:登录按钮]", ActionType.LOCATE),
            ("[action:Highlight:提交按钮]", ActionType.HIGHLIGHT),
            ("[ACTION:hover:用户菜单]", ActionType.HOVER),
        ],
    )
    def test_aliases_and_case(self, parser: ResponseParser, tag: str, expected: ActionType) -> None:
        assert parser.parse(tag).actions[0].type == expected

    def test_target_and_value_are_trimmed(self, parser: ResponseParser) -> None:
        action = parser.parse("[ACTION: click : Submit button : 第二个 ]").actions[0]
        assert action.target == "Submit button"
        assert action.value == "第二个"
        assert action.options["index"] == 2

    def test_input_value(self, parser: ResponseParser) -> None:
        action = parser.parse("请输入: [ACTION:type:用户名输入框:admin]").actions[0]
        assert action.target == "用户名输入框"
        assert action.value == "admin"

    def test_unknown_type_dropped(self, parser: ResponseParser) -> None:
        parsed = parser.parse("[ACTION:dance:floor] [ACTION:refresh]")
        assert [a.type for a in parsed.actions] == [ActionType.REFRESH]

    def test_multiple_actions_keep_order(self, parser: ResponseParser) -> None:
        parsed = parser.parse("先 [ACTION:highlight:提交按钮] 然后 [ACTION:click:提交按钮]")
        assert [a.type for a in parsed.actions] == [ActionType.HIGHLIGHT, ActionType.CLICK]

    def test_wait_timeout_from_target(self, parser: ResponseParser) -> None:
        action = parser.parse("[ACTION:sleep:2s]").actions[0]
        assert action.options["timeout"] == 2000

    def test_wait_timeout_from_value(self, parser: ResponseParser) -> None:
        action = parser.parse("[ACTION:wait::500ms]").actions[0]
        assert action.target is None
        assert action.options["timeout"] == 500

    def test_scroll_direction(self, parser: ResponseParser) -> None:
        action = parser.parse("[ACTION:scroll:页面:向下]").actions[0]
        assert action.options["scroll_direction"] == ScrollDirection.DOWN.value

    def test_parse_action_requires_target(self, parser: ResponseParser) -> None:
        assert parser.parse_action("[ACTION:click]") is None
        assert parser.parse_action("没有标签") is None
        refresh = parser.parse_action("[ACTION:refresh]")
        assert refresh is not None and refresh.type == ActionType.REFRESH

    def test_extract_keeps_targetless_actions(self, parser: ResponseParser) -> None:
        assert len(parser.extract_actions("[ACTION:click]")) == 1


class TestSuggestions:
    def test_full_suggestion(self, parser: ResponseParser) -> None:
        parsed = parser.parse("[SUGGESTION:Increase timeout|{timeout:30000}|0.8]")

        assert len(parsed.suggestions) == 1
        s = parsed.suggestions[0]
        assert s.description == "Increase timeout"
        assert s.code == "{timeout:30000}"
        assert s.confidence == 0.8
        assert s.type == FixType.TIMEOUT

    def test_defaults(self, parser: ResponseParser) -> None:
        s = parser.parse("[SUGGESTION:Refresh the page and retry]").suggestions[0]
        assert s.code == ""
        assert s.confidence == 0.7
        assert s.type == FixType.RETRY

    def test_code_without_confidence(self, parser: ResponseParser) -> None:
        s = parser.parse_suggestion(
            "[SUGGESTION:Add wait before clicking|await page.waitForSelector('#submit')]"
        )
        assert s is not None
        assert s.confidence == 0.7
        assert s.code == "await page.waitForSelector('#submit')"
        assert s.type == FixType.WAIT

    def test_code_may_contain_pipes(self, parser: ResponseParser) -> None:
        s = parser.parse_suggestion("[SUGGESTION:Use a fallback locator|page.locator('a | b')|0.6]")
        assert s is not None
        assert s.description == "Use a fallback locator"
        assert s.code == "page.locator('a | b')"
        assert s.confidence == 0.6
        assert s.type == FixType.LOCATOR

    def test_confidence_clamped(self, parser: ResponseParser) -> None:
        s = parser.parse_suggestion("[SUGGESTION:Retry the click|retry()|1.7]")
        assert s is not None
        assert s.confidence == 1.0

    def test_diff_code_yields_before_after(self, parser: ResponseParser) -> None:
        s = parser.parse_suggestion("[SUGGESTION:Change the selector|- #submit\n+ .btn-submit|0.9]")
        assert s is not None
        assert s.before_after is not None
        assert s.before_after.before == "#submit"
        assert s.before_after.after == ".btn-submit"

    def test_empty_description_skipped(self, parser: ResponseParser) -> None:
        assert parser.parse("[SUGGESTION:|0.5]").suggestions == ()

    def test_natural_language_suggestion(self, parser: ResponseParser) -> None:
        parsed = parser.parse("按钮可能被遮挡。建议：先关闭弹窗再点击。")
        assert len(parsed.suggestions) == 1
        s = parsed.suggestions[0]
        assert s.description.startswith("先关闭弹窗再点击")
        assert s.confidence == 0.5
        assert s.type == FixType.RETRY

    def test_english_natural_language_suggestion(self, parser: ResponseParser) -> None:
        parsed = parser.parse("I suggest waiting for the network to settle")
        assert [s.confidence for s in parsed.suggestions] == [0.5]

    def test_natural_language_inside_tag_ignored(self, parser: ResponseParser) -> None:
        parsed = parser.parse("[SUGGESTION:建议刷新页面]")
        assert len(parsed.suggestions) == 1
        assert parsed.suggestions[0].description == "建议刷新页面"

    def test_confidence_always_in_unit_range(self, parser: ResponseParser) -> None:
        parsed = parser.parse(
            "[SUGGESTION:a wait|x|0.3] [SUGGESTION:b retry|y|9] [SUGGESTION:c debug log]"
        )
        assert len(parsed.suggestions) == 3
        assert all(0.0 <= s.confidence <= 1.0 for s in parsed.suggestions)


class TestContextRequest:
    def test_with_details(self, parser: ResponseParser) -> None:
        parsed = parser.parse("我需要更多信息 [CONTEXT:console_errors:最近的错误]")
        assert parsed.context_request is not None
        assert parsed.context_request.type == "console_errors"
        assert parsed.context_request.details == "最近的错误"
        assert parsed.text == "我需要更多信息"

    def test_without_details(self, parser: ResponseParser) -> None:
        request = parser.parse_context_request("[CONTEXT:network_errors]")
        assert request is not None
        assert request.details == ""

    def test_absent(self, parser: ResponseParser) -> None:
        assert parser.parse("纯文本回复").context_request is None


class TestText:
    def test_tags_stripped_and_blank_lines_collapsed(self, parser: ResponseParser) -> None:
        raw = "按钮被遮挡。\n\n\n\n[ACTION:highlight:提交按钮]\n\n```\n```\n请确认。"
        assert parser.parse(raw).text == "按钮被遮挡。\n\n请确认。"

    def test_strip_tags(self) -> None:
        text = "a [ACTION:click:x] b [SUGGESTION:wait|w()] c [CONTEXT:dom]"
        assert ResponseParser.strip_tags(text) == "a  b  c "

    @pytest.mark.parametrize("raw", ["", "[ACTION:", "[SUGGESTION:]", "]]][[[", "[CONTEXT:]"])
    def test_never_raises(self, parser: ResponseParser, raw: str) -> None:
        parsed = parser.parse(raw)
        assert parsed.actions == ()


class TestConfidence:
    def test_structured_reply_boosted(self, parser: ResponseParser) -> None:
        assert parser.parse("[ACTION:click:Submit button]").confidence == pytest.approx(0.75)

    def test_hedging_penalized(self) -> None:
        assert response_confidence("可能是网络问题", [], []) == pytest.approx(0.35)

    def test_long_reply_bonus(self) -> None:
        assert response_confidence("x" * 101, [], []) == pytest.approx(0.6)


class TestHelpers:
    @pytest.mark.parametrize(
        "token, expected",
        [("7", 7), ("三", 3), ("十", 10), ("十二", 12), ("二十", 20), ("二十三", 23), ("abc", None)],
    )
    def test_chinese_to_number(self, token: str, expected: int | None) -> None:
        assert chinese_to_number(token) == expected

    @pytest.mark.parametrize(
        "text, expected",
        [("2s", 2000), ("1500", 1500), ("300ms", 300), ("3 S", 3000), (None, None), ("soon", None)],
    )
    def test_parse_duration(self, text: str | None, expected: int | None) -> None:
        assert parse_duration_ms(text) == expected

    def test_infer_type(self) -> None:
        assert infer_suggestion_type("anything", "- ai: click submit") == FixType.CODE_CHANGE
        assert infer_suggestion_type("rewrite it", "foo()") == FixType.CODE_CHANGE
        assert infer_suggestion_type("rewrite it") == FixType.GENERIC
        assert infer_suggestion_type("请先登录") == FixType.AUTH
        assert infer_suggestion_type("Check the URL") == FixType.NAVIGATION
