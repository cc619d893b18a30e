from __future__ import annotations

import base64
import logging
from typing import Optional

import cv2
import numpy as np

from common.errors import HazardPipelineError
from common.events import NormBox
from common.geometry import rect_xywh_to_norm
from haecceity.region import RegionEmbedder, sample_region
from mneme.samples import LearnedSample

LOGGER = logging.getLogger(__name__)

MIN_OPERATOR_RECT = 0.01


def operator_rect(x: float, y: float, w: float, h: float, min_frac: float = MIN_OPERATOR_RECT) -> NormBox:
    """Validate an operator drag rectangle (0..1 coordinates) and convert it."""

    w, h = float(w), float(h)
    if w <= min_frac or h <= min_frac:
        raise ValueError(f"Selection {w:.3f}x{h:.3f} is too small to train on")
    return rect_xywh_to_norm(x, y, w, h)


def encode_thumbnail(frame_bgr: np.ndarray, rect: NormBox, size: int, quality: int = 80) -> str:
    patch = sample_region(frame_bgr, rect, size)
    ok, encoded = cv2.imencode(".jpg", patch, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise HazardPipelineError("Failed to encode thumbnail")
    return "data:image/jpeg;base64," + base64.b64encode(encoded.tobytes()).decode("ascii")


class TrainingWorkflow:
    """Operator rectangle -> embedding + thumbnail -> store insert, all or nothing."""

    def __init__(
        self,
        embedder: RegionEmbedder,
        store,
        thumbnail_size: int = 120,
        jpeg_quality: int = 80,
    ):
        self.embedder = embedder
        self.store = store
        self.thumbnail_size = int(thumbnail_size)
        self.jpeg_quality = int(jpeg_quality)

    @classmethod
    def from_config(cls, embedder: RegionEmbedder, store, cfg: Optional[dict]) -> "TrainingWorkflow":
        cfg = cfg or {}
        return cls(
            embedder,
            store,
            thumbnail_size=int(cfg.get("thumbnail_size", 120)),
            jpeg_quality=int(cfg.get("thumbnail_quality", 80)),
        )

    def train(self, frame_bgr: np.ndarray, rect: NormBox) -> LearnedSample:
        """Raises ``EmbeddingUnavailable`` (nothing stored) or ``LocalStorageFailure``."""

        vector = self.embedder.embed(frame_bgr, rect)
        thumbnail = encode_thumbnail(frame_bgr, rect, self.thumbnail_size, self.jpeg_quality)
        sample = LearnedSample.create(vector.tolist(), thumbnail)
        self.store.insert(sample)
        LOGGER.info("Trained hazard %s from rect %s (%d dims)", sample.id, rect, sample.dim)
        return sample
