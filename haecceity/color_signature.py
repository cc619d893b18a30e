from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from common.interfaces import EmbeddingModel


class ColorSignature(EmbeddingModel):
    """Model-free HSV histogram embedder, usable when no network is available."""

    name = "color.signature"

    def __init__(self, cfg: Optional[dict] = None):
        cfg = cfg or {}
        self.hue_bins = int(cfg.get("hue_bins", 16))
        self.sat_bins = int(cfg.get("sat_bins", 8))

    def embed(self, patch_bgr: np.ndarray) -> Optional[np.ndarray]:  # type: ignore[override]
        if patch_bgr.size == 0:
            return None
        hsv = cv2.cvtColor(patch_bgr, cv2.COLOR_BGR2HSV)
        hist = cv2.calcHist(
            [hsv], [0, 1], None, [self.hue_bins, self.sat_bins], [0, 180, 0, 256]
        )
        hist = hist.flatten().astype(np.float32)
        return hist / (np.linalg.norm(hist) + 1e-9)
