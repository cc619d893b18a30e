"""Turn raw detector output into normalized, coarsely classified candidates."""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Tuple

import numpy as np

from common.events import Candidate, HazardType
from common.geometry import clamp, norm_width, xyxy_to_norm
from common.interfaces import Detector

LOGGER = logging.getLogger(__name__)

VEHICLE_KEYWORDS = ("car", "truck", "bus", "motorcycle")
PEDESTRIAN_KEYWORDS = ("person",)

DISTANCE_K = 0.45
DISTANCE_EPS = 0.001
MIN_DISTANCE = 0.5
MAX_DISTANCE = 30.0


def classify(category: str) -> Tuple[HazardType, str]:
    """Map a detector category onto ``(HazardType, display label)``."""

    name = category.lower()
    if any(word in name for word in VEHICLE_KEYWORDS):
        return HazardType.VEHICLE, "VEHICLE"
    if any(word in name for word in PEDESTRIAN_KEYWORDS):
        return HazardType.PEDESTRIAN, "PEDESTRIAN"
    # everything else is a generic candidate for learned matching
    return HazardType.COLLISION_RISK, "OBJECT"


def estimate_distance(normalized_width: float) -> float:
    """Inverse-width monocular heuristic, in metres-ish units."""

    return clamp(DISTANCE_K / (normalized_width + DISTANCE_EPS), MIN_DISTANCE, MAX_DISTANCE)


class CandidateGenerator:
    def __init__(self, detector: Detector, cfg: Optional[dict] = None):
        cfg = cfg or {}
        self.detector = detector
        self.min_score = float(cfg.get("min_score", 0.15))

    def generate(self, frame_bgr: np.ndarray) -> List[Candidate]:
        height, width = frame_bgr.shape[:2]
        try:
            raw = self.detector.detect(frame_bgr)
        except Exception as exc:
            LOGGER.warning("Detector unavailable for this frame: %s", exc)
            return []

        now_ms = int(time.time() * 1000)
        out: List[Candidate] = []
        for box, score, category in raw:
            if float(score) < self.min_score:
                continue
            bbox = xyxy_to_norm(box, width, height)
            out.append(
                Candidate(
                    raw_category=str(category),
                    score=float(score),
                    bbox=bbox,
                    distance=estimate_distance(norm_width(bbox)),
                    timestamp=now_ms,
                )
            )
        return out
