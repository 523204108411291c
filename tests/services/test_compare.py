"""Tests for screenshot snapshots and visual comparison."""

from __future__ import annotations

import base64
from collections.abc import Callable

import pytest

from debug_assistant.domain.values import Rect
from debug_assistant.services.compare import (
    MISSING_TARGET,
    CompareAction,
    compare_images,
    decode_png,
)
from debug_assistant.services.page_actions import PageActions
from debug_assistant.testing import FakeManualAgent, FakePage, solid_png

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


def _service(*screens: bytes) -> CompareAction:
    agent = FakeManualAgent(FakePage(screenshots=list(screens)))
    return CompareAction(PageActions(lambda: agent))


class TestCompareImages:
    def test_identical(self, png: Callable[..., str]) -> None:
        result = compare_images(png(), png())
        assert result.similar is True
        assert result.similarity == 1.0
        assert result.different_pixels == 0
        assert result.total_pixels == 100

    def test_completely_different(self, png: Callable[..., str]) -> None:
        result = compare_images(png(WHITE), png(BLACK))
        assert result.similar is False
        assert result.similarity == 0.0
        assert result.difference_percentage == 100.0
        assert "差异" in result.message

    def test_size_mismatch_pads_with_black(self, png: Callable[..., str]) -> None:
        result = compare_images(png(WHITE, 10, 10), png(WHITE, 20, 10))
        assert result.total_pixels == 200
        assert result.similarity == pytest.approx(0.5)

    def test_ignore_regions(self, png: Callable[..., str]) -> None:
        result = compare_images(
            png(WHITE, 10, 10), png(WHITE, 20, 10), ignore_regions=[Rect(10, 0, 10, 10)]
        )
        assert result.total_pixels == 100
        assert result.similar is True

    def test_small_colour_shift_is_within_threshold(self, png: Callable[..., str]) -> None:
        assert compare_images(png((100, 100, 100)), png((110, 110, 110))).similar is True

    def test_luminance_mode(self, png: Callable[..., str]) -> None:
        result = compare_images(png(WHITE), png((200, 200, 200)), luminance=True)
        assert result.similar is False

    def test_threshold(self, png: Callable[..., str]) -> None:
        result = compare_images(png(WHITE, 10, 10), png(WHITE, 20, 10), threshold=0.4)
        assert result.similar is True

    def test_diff_image(self, png: Callable[..., str]) -> None:
        result = compare_images(png(WHITE), png(BLACK), create_diff=True)
        pixels = decode_png(result.diff_image)
        assert tuple(pixels[0, 0]) == (255.0, 0.0, 0.0)

    def test_accepts_data_urls(self, png: Callable[..., str]) -> None:
        assert compare_images("data:image/png;base64," + png(), png()).similar is True


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_take_and_label(self) -> None:
        service = _service(solid_png())
        snapshot = await service.take_snapshot("before-click")

        assert service.get_snapshot("before-click") is snapshot
        assert service.get_snapshot(snapshot.id) is snapshot
        assert snapshot.url == "https://example.com/login"
        assert service.snapshot_count == 2

        assert service.delete_snapshot("before-click") is True
        assert service.delete_snapshot("before-click") is False
        service.clear_snapshots()
        assert service.get_snapshot_ids() == []

    @pytest.mark.asyncio
    async def test_compare_with_snapshot(self) -> None:
        service = _service(solid_png(color=WHITE), solid_png(color=BLACK))
        snapshot = await service.take_snapshot()
        result = await service.compare_with_snapshot(snapshot.id)
        assert result.similar is False

    @pytest.mark.asyncio
    async def test_unknown_snapshot(self) -> None:
        result = await _service(solid_png()).compare_with_snapshot("nope")
        assert result.similar is False
        assert "nope" in result.message

    @pytest.mark.asyncio
    async def test_undecodable_screenshot(self) -> None:
        result = await _service(solid_png()).compare_screenshots("not-an-image", "@@@")
        assert result.similar is False
        assert result.message.startswith("对比失败")


class TestCompareAction:
    @pytest.mark.asyncio
    async def test_missing_target(self) -> None:
        result = await _service(solid_png()).compare(None)
        assert result.success is False
        assert result.error == MISSING_TARGET

    @pytest.mark.asyncio
    async def test_against_raw_screenshot(self) -> None:
        raw = solid_png(color=WHITE)
        result = await _service(raw).compare(base64.b64encode(raw).decode("ascii"))
        assert result.success is True
        assert result.data["similar"] is True
        assert result.screenshot

    @pytest.mark.asyncio
    async def test_against_snapshot_id_in_mapping(self) -> None:
        service = _service(solid_png(color=WHITE), solid_png(color=BLACK))
        snapshot = await service.take_snapshot("baseline")
        result = await service.compare({"snapshot_id": "baseline"})
        assert result.success is False
        assert result.error == result.message
        assert result.data["previous"] == snapshot.screenshot
