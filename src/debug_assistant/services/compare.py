"""Screenshot snapshots and pixel-level visual comparison.

Screenshots are base64 PNG strings (``data:`` URLs are accepted too).  They
are decoded with Pillow into ``numpy`` arrays; two images of different size
are compared on a canvas of the larger size, padded with black.
"""

from __future__ import annotations

import base64
import binascii
import io
import itertools
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from PIL import Image, UnidentifiedImageError

from debug_assistant.domain.values import ActionResult, Rect
from debug_assistant.infrastructure.llm import split_image
from debug_assistant.services.page_actions import PageActions

logger = logging.getLogger(__name__)

PIXEL_THRESHOLD = 0.1
MISSING_TARGET = "missing comparison target"

_LUMA = np.array([0.299, 0.587, 0.114])


@dataclass(frozen=True)
class Snapshot:
    id: str
    screenshot: str
    url: str = ""
    title: str = ""
    timestamp: float = 0.0


@dataclass(frozen=True)
class CompareResult:
    """Outcome of a visual comparison.

    ``similarity`` is ``1 - different_pixels / total_pixels``.
    """

    similar: bool
    similarity: float
    message: str
    total_pixels: int = 0
    different_pixels: int = 0
    diff_image: str = ""

    @property
    def difference_percentage(self) -> float:
        if not self.total_pixels:
            return 0.0
        return self.different_pixels / self.total_pixels * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "similar": self.similar,
            "similarity": self.similarity,
            "message": self.message,
            "totalPixels": self.total_pixels,
            "differentPixels": self.different_pixels,
            "differencePercentage": self.difference_percentage,
        }


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------

def decode_png(image: str) -> np.ndarray:
    """Decode a base64 image into an ``(H, W, 3)`` float array in ``[0, 255]``."""
    _, data = split_image(image)
    raw = base64.b64decode(data, validate=False)
    with Image.open(io.BytesIO(raw)) as img:
        return np.asarray(img.convert("RGB"), dtype=np.float64)


def encode_png(pixels: np.ndarray) -> str:
    buf = io.BytesIO()
    Image.fromarray(pixels.astype(np.uint8)).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def _pad(pixels: np.ndarray, height: int, width: int) -> np.ndarray:
    h, w = pixels.shape[:2]
    if (h, w) == (height, width):
        return pixels
    return np.pad(pixels, ((0, height - h), (0, width - w), (0, 0)))


def pixel_differences(
    before: np.ndarray,
    after: np.ndarray,
    luminance: bool = False,
) -> np.ndarray:
    """Per-pixel normalized difference in ``[0, 1]``.

    Colour mode uses the Euclidean RGB distance; ``luminance`` compares
    brightness only.
    """
    if luminance:
        return np.abs(before @ _LUMA - after @ _LUMA) / 255.0
    return np.sqrt(((before - after) ** 2).sum(axis=2)) / (255.0 * np.sqrt(3.0))


def ignore_mask(shape: tuple[int, int], regions: Sequence[Rect]) -> np.ndarray:
    mask = np.zeros(shape, dtype=bool)
    for r in regions:
        x0, y0 = max(int(r.x), 0), max(int(r.y), 0)
        mask[y0:int(r.y + r.height), x0:int(r.x + r.width)] = True
    return mask


def compare_images(
    before: str,
    after: str,
    threshold: float = 0.95,
    ignore_regions: Sequence[Rect] = (),
    luminance: bool = False,
    create_diff: bool = False,
) -> CompareResult:
    """Compare two base64 screenshots.

    Raises on undecodable input; :meth:`CompareAction.compare_screenshots`
    converts that into a failed result.
    """
    a, b = decode_png(before), decode_png(after)
    height = max(a.shape[0], b.shape[0])
    width = max(a.shape[1], b.shape[1])
    a, b = _pad(a, height, width), _pad(b, height, width)

    diff = pixel_differences(a, b, luminance)
    counted = ~ignore_mask((height, width), ignore_regions)
    changed = (diff > PIXEL_THRESHOLD) & counted
    total = int(counted.sum())
    different = int(changed.sum())
    similarity = 1.0 - different / total if total else 1.0
    similar = similarity >= threshold

    diff_image = ""
    if create_diff:
        gray = np.repeat((a @ _LUMA).round()[..., None], 3, axis=2)
        gray[changed] = (255, 0, 0)
        diff_image = encode_png(gray)

    message = (
        "页面状态基本一致"
        if similar
        else f"页面存在差异，差异比例: {different / max(total, 1) * 100:.1f}%"
    )
    return CompareResult(
        similar=similar,
        similarity=similarity,
        message=message,
        total_pixels=total,
        different_pixels=different,
        diff_image=diff_image,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class CompareAction:
    """Keeps labelled snapshots and compares them against the live page."""

    def __init__(self, page_actions: PageActions) -> None:
        self._actions = page_actions
        self._snapshots: dict[str, Snapshot] = {}
        self._counter = itertools.count()

    # -- snapshots ---------------------------------------------------------

    async def take_snapshot(self, label: str | None = None) -> Snapshot:
        """Capture the page; stored under its id and, if given, *label*."""
        snapshot = Snapshot(
            id=f"snapshot-{int(time.time() * 1000)}-{next(self._counter)}",
            screenshot=await self._actions.screenshot(),
            url=await self._actions.get_url(),
            title=await self._actions.get_title(),
            timestamp=time.time(),
        )
        self._snapshots[snapshot.id] = snapshot
        if label:
            self._snapshots[label] = snapshot
        return snapshot

    def get_snapshot(self, id_or_label: str) -> Snapshot | None:
        return self._snapshots.get(id_or_label)

    def delete_snapshot(self, id_or_label: str) -> bool:
        return self._snapshots.pop(id_or_label, None) is not None

    def clear_snapshots(self) -> None:
        self._snapshots.clear()

    def get_snapshot_ids(self) -> list[str]:
        return list(self._snapshots)

    @property
    def snapshot_count(self) -> int:
        return len(self._snapshots)

    # -- comparison --------------------------------------------------------

    async def compare_screenshots(
        self,
        before: str,
        after: str,
        threshold: float = 0.95,
        ignore_regions: Sequence[Rect] = (),
        luminance: bool = False,
        create_diff: bool = False,
    ) -> CompareResult:
        try:
            return compare_images(before, after, threshold, ignore_regions, luminance, create_diff)
        except (binascii.Error, UnidentifiedImageError, OSError, ValueError) as exc:
            logger.debug("Screenshot comparison failed", exc_info=True)
            return CompareResult(similar=False, similarity=0.0, message=f"对比失败: {exc}")

    async def compare_with_snapshot(self, snapshot_id: str, threshold: float = 0.95) -> CompareResult:
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            return CompareResult(similar=False, similarity=0.0, message=f"快照不存在: {snapshot_id}")
        current = await self._actions.screenshot()
        return await self.compare_screenshots(snapshot.screenshot, current, threshold)

    async def compare(self, value: Any = None) -> ActionResult:
        """Compare the live page with a previous screenshot or snapshot id.

        *value* is a snapshot id/label, a base64 screenshot, or a mapping
        with ``previous_screenshot`` / ``snapshot_id``.
        """
        previous = value
        if isinstance(value, Mapping):
            previous = (
                value.get("previous_screenshot")
                or value.get("previousScreenshot")
                or value.get("snapshot_id")
                or value.get("snapshotId")
            )
        if not previous:
            return ActionResult.failure(f"无法对比: {MISSING_TARGET}", MISSING_TARGET)

        previous = str(previous)
        snapshot = self._snapshots.get(previous)
        if snapshot is not None:
            previous = snapshot.screenshot

        current = await self._actions.screenshot()
        result = await self.compare_screenshots(previous, current, create_diff=True)
        return ActionResult(
            success=result.similar,
            message=result.message,
            data={"previous": previous, "current": current, **result.to_dict()},
            screenshot=current,
            error=None if result.similar else result.message,
        )
