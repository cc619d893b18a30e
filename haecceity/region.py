"""Crop a normalized frame rectangle into the canonical patch and embed it."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from common.errors import EmbeddingUnavailable
from common.events import NormBox
from common.geometry import norm_to_pixels
from common.interfaces import EmbeddingModel

LOGGER = logging.getLogger(__name__)


def sample_region(frame_bgr: np.ndarray, rect: NormBox, size: int) -> np.ndarray:
    """Stretch ``rect`` of the frame into a ``size`` x ``size`` patch.

    Aspect ratio is not preserved; training and query patches go through the
    same resampling so their embeddings stay comparable.
    """

    height, width = frame_bgr.shape[:2]
    x1, y1, x2, y2 = norm_to_pixels(rect, width, height)
    crop = frame_bgr[y1:y2, x1:x2]
    return cv2.resize(crop, (size, size), interpolation=cv2.INTER_LINEAR)


class RegionEmbedder:
    def __init__(self, model: EmbeddingModel, patch_size: int = 224, min_region_px: int = 10):
        self.model = model
        self.patch_size = int(patch_size)
        self.min_region_px = int(min_region_px)

    @classmethod
    def from_config(cls, model: EmbeddingModel, cfg: dict) -> "RegionEmbedder":
        return cls(
            model,
            patch_size=int(cfg.get("patch_size", 224)),
            min_region_px=int(cfg.get("min_region_px", 10)),
        )

    def region_pixels(self, frame_bgr: np.ndarray, rect: NormBox):
        height, width = frame_bgr.shape[:2]
        return norm_to_pixels(rect, width, height)

    def embed(self, frame_bgr: np.ndarray, rect: NormBox) -> np.ndarray:
        """Return the region's vector or raise :class:`EmbeddingUnavailable`."""

        x1, y1, x2, y2 = self.region_pixels(frame_bgr, rect)
        if (x2 - x1) < self.min_region_px or (y2 - y1) < self.min_region_px:
            raise EmbeddingUnavailable(
                f"Region {x2 - x1}x{y2 - y1}px is below {self.min_region_px}px"
            )
        patch = sample_region(frame_bgr, rect, self.patch_size)
        try:
            vector = self.model.embed(patch)
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedder {self.model.name} failed: {exc}") from exc
        if vector is None:
            raise EmbeddingUnavailable(f"Embedder {self.model.name} produced no output")
        vector = np.asarray(vector, dtype=np.float32).reshape(-1)
        if vector.size == 0:
            raise EmbeddingUnavailable(f"Embedder {self.model.name} produced an empty vector")
        return vector
