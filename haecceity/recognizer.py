from __future__ import annotations

import itertools
import logging
from typing import List, Optional

import numpy as np

from common.errors import EmbeddingUnavailable
from common.events import Detection
from haecceity.matcher import DEFAULT_THRESHOLD, best_match, is_promoted
from haecceity.region import RegionEmbedder
from quiddity.candidates import CandidateGenerator, classify

LOGGER = logging.getLogger(__name__)


class HazardRecognizer:
    """One runtime matching pass: candidates -> embeddings -> learned matches."""

    def __init__(
        self,
        generator: CandidateGenerator,
        embedder: RegionEmbedder,
        store,
        threshold: float = DEFAULT_THRESHOLD,
        learned_only: bool = False,
    ):
        self.generator = generator
        self.embedder = embedder
        self.store = store
        self.threshold = float(threshold)
        self.learned_only = bool(learned_only)
        self._ids = itertools.count(1)

    @classmethod
    def from_config(
        cls, generator: CandidateGenerator, embedder: RegionEmbedder, store, cfg: Optional[dict]
    ) -> "HazardRecognizer":
        cfg = cfg or {}
        return cls(
            generator,
            embedder,
            store,
            threshold=float(cfg.get("match_threshold", DEFAULT_THRESHOLD)),
            learned_only=bool(cfg.get("learned_only", False)),
        )

    def process(self, frame_bgr: np.ndarray) -> List[Detection]:
        candidates = self.generator.generate(frame_bgr)
        # one snapshot per pass; concurrent inserts land in a later pass
        snapshot = self.store.snapshot()

        detections: List[Detection] = []
        for cand in candidates:
            hazard, label = classify(cand.raw_category)
            det = Detection.from_candidate(f"det-{next(self._ids)}", cand, hazard, label)
            if snapshot:
                det = self._match(frame_bgr, det, snapshot)
            if self.learned_only and det.match_score is None:
                continue
            detections.append(det)
        return detections

    def _match(self, frame_bgr: np.ndarray, det: Detection, snapshot) -> Detection:
        try:
            query = self.embedder.embed(frame_bgr, det.bbox)
        except EmbeddingUnavailable as exc:
            LOGGER.debug("Skipping %s (%s): %s", det.id, det.raw_category, exc)
            return det
        score, sample_id = best_match(query, snapshot)
        if not is_promoted(score, self.threshold):
            return det
        LOGGER.debug("%s matched learned sample %s at %.3f", det.id, sample_id, score)
        return det.promoted(score, sample_id)
