from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple

# (y_min, x_min, y_max, x_max), each in [0, 1]
NormBox = Tuple[float, float, float, float]


class HazardType(str, Enum):
    POTHOLE = "POTHOLE"
    COLLISION_RISK = "COLLISION_RISK"
    PEDESTRIAN = "PEDESTRIAN"
    VEHICLE = "VEHICLE"
    LEARNED = "LEARNED"


@dataclass(frozen=True)
class Candidate:
    """Unclassified detector output for one frame."""

    raw_category: str
    score: float
    bbox: NormBox
    distance: float
    timestamp: int


@dataclass(frozen=True)
class Detection:
    id: str
    type: HazardType
    label: str
    confidence: float
    bbox: NormBox
    distance: float
    timestamp: int
    raw_category: str = ""
    match_score: Optional[float] = None
    sample_id: Optional[str] = None

    @classmethod
    def from_candidate(
        cls, det_id: str, candidate: Candidate, hazard: HazardType, label: str
    ) -> "Detection":
        return cls(
            id=det_id,
            type=hazard,
            label=label,
            confidence=float(candidate.score),
            bbox=candidate.bbox,
            distance=float(candidate.distance),
            timestamp=candidate.timestamp,
            raw_category=candidate.raw_category,
        )

    def promoted(self, score: float, sample_id: Optional[str] = None) -> "Detection":
        """Return a copy reclassified as a learned hazard."""

        return replace(
            self,
            type=HazardType.LEARNED,
            label="TRAINED HAZARD",
            confidence=float(score),
            match_score=float(score),
            sample_id=sample_id,
        )

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class HazardEvent:
    """One emitted detection, as written to JSONL and MQTT."""

    ts_ms: int
    cam_id: str
    frame: int
    img_wh: Tuple[int, int]
    detection: Dict

    @classmethod
    def build(
        cls, ts_ms: int, cam_id: str, frame: int, img_wh: Tuple[int, int], det: Detection
    ) -> "HazardEvent":
        return cls(ts_ms=ts_ms, cam_id=cam_id, frame=frame, img_wh=img_wh, detection=det.to_dict())

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))
