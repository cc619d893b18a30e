"""Utilities for drawing hazard overlays on video frames."""

from __future__ import annotations

from typing import Iterable, Mapping, Tuple

import cv2

from common.events import Detection, HazardType
from common.geometry import norm_to_pixels

# BGR
HAZARD_COLORS = {
    HazardType.LEARNED: (22, 115, 249),
    HazardType.COLLISION_RISK: (68, 68, 239),
}
DEFAULT_COLOR = (248, 189, 56)


def _put_boxed_text(
    img,
    text: str,
    org: Tuple[int, int],
    *,
    font_scale: float = 0.5,
    thickness: int = 1,
    fg: Tuple[int, int, int] = (0, 0, 0),
    bg: Tuple[int, int, int] = (255, 255, 255),
    alpha: float = 0.8,
):
    """Draw ``text`` at ``org`` with a filled background box."""

    font = cv2.FONT_HERSHEY_SIMPLEX
    (tw, th), base = cv2.getTextSize(text, font, font_scale, thickness)
    x, y = org
    pad = 3
    x1, y1 = max(0, x), max(0, y - th - 2 * pad)
    x2 = min(img.shape[1] - 1, x + tw + 2 * pad)
    y2 = min(img.shape[0] - 1, y + pad)

    overlay = img.copy()
    cv2.rectangle(overlay, (x1, y1), (x2, y2), bg, -1)
    cv2.addWeighted(overlay, alpha, img, 1 - alpha, 0, img)
    cv2.putText(img, text, (x + pad, y - base), font, font_scale, fg, thickness, cv2.LINE_AA)


def detection_tag(det: Detection, draw_scores: bool = True) -> str:
    tag = det.label or det.type.value
    if draw_scores and det.match_score is not None:
        tag += f" {round(det.match_score * 100)}%"
    elif draw_scores:
        tag += f" {det.confidence:.2f}"
    return tag.upper()


def draw_detections(frame, detections: Iterable[Detection], draw_scores: bool = True):
    """Annotate ``frame`` with boxes and labels; learned hazards get a heavier stroke."""

    height, width = frame.shape[:2]
    for det in detections:
        x1, y1, x2, y2 = norm_to_pixels(det.bbox, width, height)
        color = HAZARD_COLORS.get(det.type, DEFAULT_COLOR)
        stroke = 4 if det.type is HazardType.LEARNED else 2
        cv2.rectangle(frame, (x1, y1), (x2, y2), color, stroke)
        _put_boxed_text(
            frame,
            detection_tag(det, draw_scores),
            org=(x1, max(0, y1 - 4)),
            bg=color,
        )
    return frame


def draw_hud(
    frame,
    stats: Mapping[str, object],
    *,
    corner: str = "tl",
    scale: float = 0.6,
    opacity: float = 0.6,
):
    """Render a diagnostics heads-up display on ``frame``."""

    lines = [
        "cam: {}  {}x{}".format(
            stats.get("cam_id", "?"),
            stats.get("img_wh", (0, 0))[0],
            stats.get("img_wh", (0, 0))[1],
        ),
        f"t={stats.get('ts_str', '')}",
        f"frame: {stats.get('frame_idx', 0)}   fps~{stats.get('fps', 0.0):.2f}",
        f"dets: {stats.get('n_dets', 0)}   learned hits: {stats.get('n_learned', 0)}",
        f"memory bank: {stats.get('n_samples', 0)}  [{stats.get('mode', '?')}]",
    ]

    font = cv2.FONT_HERSHEY_SIMPLEX
    height, width = frame.shape[:2]
    line_h = int(18 * scale)
    pad = int(8 * scale)
    box_w = int(max(cv2.getTextSize(text, font, scale, 1)[0][0] for text in lines) + 2 * pad)
    box_h = int(line_h * len(lines) + 2 * pad)

    if corner == "tl":
        x1, y1 = 5, 5
    elif corner == "tr":
        x1, y1 = width - box_w - 5, 5
    elif corner == "bl":
        x1, y1 = 5, height - box_h - 5
    else:  # "br"
        x1, y1 = width - box_w - 5, height - box_h - 5

    overlay = frame.copy()
    cv2.rectangle(overlay, (x1, y1), (x1 + box_w, y1 + box_h), (0, 0, 0), -1)
    cv2.addWeighted(overlay, opacity, frame, 1 - opacity, 0, frame)

    y = y1 + pad + line_h
    for text in lines:
        cv2.putText(frame, text, (x1 + pad, y), font, scale, (255, 255, 255), 1, cv2.LINE_AA)
        y += line_h

    return frame
