"""Conversions between pixel boxes and normalized frame rectangles."""

from __future__ import annotations

from typing import Tuple

from common.events import NormBox

PixelBox = Tuple[int, int, int, int]


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def xyxy_to_norm(box: Tuple[float, float, float, float], width: int, height: int) -> NormBox:
    """Convert a pixel ``(x1, y1, x2, y2)`` box to ``(y_min, x_min, y_max, x_max)``."""

    x1, y1, x2, y2 = box
    w = float(max(1, width))
    h = float(max(1, height))
    y_min, y_max = sorted((clamp(y1 / h, 0.0, 1.0), clamp(y2 / h, 0.0, 1.0)))
    x_min, x_max = sorted((clamp(x1 / w, 0.0, 1.0), clamp(x2 / w, 0.0, 1.0)))
    return y_min, x_min, y_max, x_max


def rect_xywh_to_norm(x: float, y: float, w: float, h: float) -> NormBox:
    """Convert an operator ``{x, y, w, h}`` rectangle into the box convention."""

    x_min = clamp(float(x), 0.0, 1.0)
    y_min = clamp(float(y), 0.0, 1.0)
    x_max = clamp(float(x) + float(w), 0.0, 1.0)
    y_max = clamp(float(y) + float(h), 0.0, 1.0)
    return y_min, x_min, y_max, x_max


def norm_to_pixels(rect: NormBox, width: int, height: int) -> PixelBox:
    """Return the pixel ``(x1, y1, x2, y2)`` region of ``rect`` clipped to the frame."""

    y_min, x_min, y_max, x_max = rect
    x1 = int(round(clamp(x_min, 0.0, 1.0) * width))
    y1 = int(round(clamp(y_min, 0.0, 1.0) * height))
    x2 = int(round(clamp(x_max, 0.0, 1.0) * width))
    y2 = int(round(clamp(y_max, 0.0, 1.0) * height))
    return x1, y1, x2, y2


def norm_width(rect: NormBox) -> float:
    return rect[3] - rect[1]

