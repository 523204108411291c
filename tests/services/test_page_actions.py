"""Tests for the AI-first / manual-fallback page primitives."""

from __future__ import annotations

import base64

import pytest

from debug_assistant.domain.exceptions import (
    ActionTimeoutError,
    AgentUnavailableError,
    ElementNotFoundError,
)
from debug_assistant.domain.values import ElementInfo, Rect
from debug_assistant.services.page_actions import PageActions, to_element_info
from debug_assistant.testing import FakeAgent, FakeManualAgent, FakePage, solid_png


def _actions(agent) -> PageActions:
    return PageActions(lambda: agent, default_timeout=0.2)


class TestToElementInfo:
    def test_passthrough(self) -> None:
        info = ElementInfo(tag="a")
        assert to_element_info(info) is info

    def test_mapping_with_rect(self) -> None:
        info = to_element_info({"tagName": "BUTTON", "rect": {"left": 10, "top": 20, "width": 4, "height": 6}})
        assert info.tag == "BUTTON"
        assert info.center == (12.0, 23.0)

    def test_mapping_with_center(self) -> None:
        info = to_element_info({"content": "登录", "center": [50, 60]})
        assert info.text == "登录"
        assert info.center == (50.0, 60.0)

    def test_other_values(self) -> None:
        assert to_element_info("plain").text == "plain"


class TestClick:
    @pytest.mark.asyncio
    async def test_ai_path(self, agent: FakeAgent) -> None:
        await _actions(agent).click("提交按钮")
        assert agent.instructions == ["点击提交按钮"]
        assert agent.page.mouse.clicks == []

    @pytest.mark.asyncio
    async def test_manual_path_clicks_center(self, manual_agent: FakeManualAgent) -> None:
        await _actions(manual_agent).click("提交按钮")
        assert manual_agent.page.mouse.clicks == [
            {"x": 140.0, "y": 215.0, "button": "left", "click_count": 1}
        ]

    @pytest.mark.asyncio
    async def test_failed_act_falls_back(self, page: FakePage) -> None:
        agent = FakeAgent(page, {"提交": [ElementInfo(rect=Rect(0, 0, 10, 10))]}, act_error=RuntimeError("x"))
        await _actions(agent).click("提交按钮")
        assert agent.instructions == ["点击提交按钮"]
        assert page.mouse.clicks[0]["x"] == 5.0

    @pytest.mark.asyncio
    async def test_double_right_click_skips_ai(self, agent: FakeAgent) -> None:
        await _actions(agent).click("提交按钮", button="right", click_count=2)
        assert agent.instructions == []
        click = agent.page.mouse.clicks[0]
        assert click["button"] == "right"
        assert click["click_count"] == 2

    @pytest.mark.asyncio
    async def test_explicit_position(self, manual_agent: FakeManualAgent) -> None:
        await _actions(manual_agent).click("anything", position=(7, 9))
        assert manual_agent.located == []
        assert manual_agent.page.mouse.clicks[0]["x"] == 7

    @pytest.mark.asyncio
    async def test_not_found(self, manual_agent: FakeManualAgent) -> None:
        with pytest.raises(ElementNotFoundError):
            await _actions(manual_agent).click("不存在的按钮")

    @pytest.mark.asyncio
    async def test_ai_hover(self, agent: FakeAgent) -> None:
        await _actions(agent).hover("提交按钮")
        assert agent.instructions == ["鼠标悬停在提交按钮上"]
        assert agent.page.mouse.moves == []

    @pytest.mark.asyncio
    async def test_manual_hover_moves_to_center(self, manual_agent: FakeManualAgent) -> None:
        await _actions(manual_agent).hover("提交按钮")
        assert manual_agent.page.mouse.moves == [(140.0, 215.0)]
        assert manual_agent.page.mouse.clicks == []

    @pytest.mark.asyncio
    async def test_hover_not_found(self, manual_agent: FakeManualAgent) -> None:
        with pytest.raises(ElementNotFoundError):
            await _actions(manual_agent).hover("不存在的按钮")

    @pytest.mark.asyncio
    async def test_no_agent(self) -> None:
        with pytest.raises(AgentUnavailableError, match="无法获取 agent 实例"):
            await PageActions(lambda: None).click("提交")

    @pytest.mark.asyncio
    async def test_no_page(self) -> None:
        agent = FakeManualAgent()
        agent.page = None
        with pytest.raises(AgentUnavailableError):
            await _actions(agent).refresh()


class TestKeyboard:
    @pytest.mark.asyncio
    async def test_manual_input_with_clear_and_submit(self, manual_agent: FakeManualAgent) -> None:
        await _actions(manual_agent).input("提交框", "hello", clear_first=True, submit=True)
        keyboard = manual_agent.page.keyboard
        assert keyboard.events == [
            ("down", "Control"),
            ("press", "a"),
            ("up", "Control"),
            ("press", "Backspace"),
            ("type", "hello"),
            ("press", "Enter"),
        ]
        assert len(manual_agent.page.mouse.clicks) == 1

    @pytest.mark.asyncio
    async def test_ai_input(self, agent: FakeAgent) -> None:
        await _actions(agent).input("用户名", "admin", clear_first=True)
        assert agent.instructions == ["在用户名清空并输入admin"]

    @pytest.mark.asyncio
    async def test_submit_forces_manual_path(self, agent: FakeAgent) -> None:
        await _actions(agent).input("提交框", "q", submit=True)
        assert agent.instructions == []
        assert agent.page.keyboard.events[-1] == ("press", "Enter")

    @pytest.mark.asyncio
    async def test_input_at_position_skips_lookup(self, agent: FakeAgent) -> None:
        await _actions(agent).input("用户名", "admin", position=(5, 6))
        assert agent.instructions == []
        assert agent.located == []
        assert agent.page.mouse.clicks[0]["x"] == 5
        assert agent.page.keyboard.events == [("type", "admin")]

    @pytest.mark.asyncio
    async def test_select_option_missing(self, manual_agent: FakeManualAgent) -> None:
        with pytest.raises(ElementNotFoundError):
            await _actions(manual_agent).select_option("提交", "选项A")


class TestScrollAndNavigation:
    @pytest.mark.asyncio
    async def test_scroll_by_direction(self, manual_agent: FakeManualAgent) -> None:
        await _actions(manual_agent).scroll("up", amount=300)
        _, arg = manual_agent.page.evaluated[-1]
        assert arg == [0, -300]

    @pytest.mark.asyncio
    async def test_scroll_to_target(self, manual_agent: FakeManualAgent) -> None:
        await _actions(manual_agent).scroll(target="提交按钮")
        _, arg = manual_agent.page.evaluated[-1]
        assert arg == {"x": 100, "y": 200, "width": 80, "height": 30}

    @pytest.mark.asyncio
    async def test_scroll_to_top(self, manual_agent: FakeManualAgent) -> None:
        await _actions(manual_agent).scroll_to_top()
        expression, _ = manual_agent.page.evaluated[-1]
        assert "top: 0" in expression

    @pytest.mark.asyncio
    async def test_scroll_to_bottom(self, manual_agent: FakeManualAgent) -> None:
        await _actions(manual_agent).scroll_to_bottom()
        expression, _ = manual_agent.page.evaluated[-1]
        assert "document.body.scrollHeight" in expression

    @pytest.mark.asyncio
    async def test_navigation(self, manual_agent: FakeManualAgent) -> None:
        actions = _actions(manual_agent)
        await actions.refresh()
        await actions.navigate("https://example.com/home")
        await actions.go_back()
        await actions.go_forward()
        assert manual_agent.page.navigations == [
            ("reload", "networkidle"),
            ("goto", "https://example.com/home"),
            ("back", None),
            ("forward", None),
        ]
        assert await actions.get_url() == "https://example.com/home"


class TestWaiting:
    @pytest.mark.asyncio
    async def test_wait_for_visible(self, manual_agent: FakeManualAgent) -> None:
        found = await _actions(manual_agent).wait_for_element("提交")
        assert found is not None and found.text == "提交"

    @pytest.mark.asyncio
    async def test_wait_for_hidden(self, manual_agent: FakeManualAgent) -> None:
        assert await _actions(manual_agent).wait_for_element("弹窗", state="hidden") is None

    @pytest.mark.asyncio
    async def test_wait_times_out(self, manual_agent: FakeManualAgent) -> None:
        with pytest.raises(ActionTimeoutError, match="timed out"):
            await _actions(manual_agent).wait_for_element("弹窗", timeout=0.15)


class TestReading:
    @pytest.mark.asyncio
    async def test_screenshot_is_base64(self) -> None:
        raw = solid_png(4, 4)
        agent = FakeManualAgent(FakePage(screenshots=[raw]))
        assert base64.b64decode(await _actions(agent).screenshot()) == raw

    @pytest.mark.asyncio
    async def test_page_properties(self, manual_agent: FakeManualAgent) -> None:
        actions = _actions(manual_agent)
        assert await actions.get_title() == "Example"
        assert "<body>" in await actions.get_content()
        assert await actions.get_visible_text() == ""

    @pytest.mark.asyncio
    async def test_locate_via_query(self, page: FakePage) -> None:
        class QueryOnly:
            def __init__(self) -> None:
                self.page = page

            async def query(self, prompt: str) -> dict:
                return {"elements": [{"text": "提交", "center": [1, 2]}]}

        found = await _actions(QueryOnly()).locate("提交按钮")
        assert found is not None
        assert found[0].center == (1.0, 2.0)

    @pytest.mark.asyncio
    async def test_locate_failure_is_none(self, page: FakePage) -> None:
        class Broken:
            def __init__(self) -> None:
                self.page = page

            async def locate(self, description: str) -> list:
                raise RuntimeError("vision model offline")

        assert await _actions(Broken()).locate("提交") is None
