from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np

BBox = Tuple[int, int, int, int]


class Detector:
    """Quiddity interface: detect objects in a frame."""

    def detect(self, frame_bgr: np.ndarray) -> List[Tuple[BBox, float, str]]:
        """Return list of ``((x1, y1, x2, y2), score, category)`` in pixels."""

        raise NotImplementedError


class EmbeddingModel:
    """Haecceity interface: turn a canonical patch into a feature vector."""

    name: str = "generic"

    def embed(self, patch_bgr: np.ndarray) -> Optional[np.ndarray]:
        """Return a ``(D,)`` vector, or ``None`` when the model gives no output."""

        raise NotImplementedError
