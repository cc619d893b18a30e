from __future__ import annotations

import math
import pathlib
import sys

import numpy as np

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from common.events import HazardType
from common.interfaces import EmbeddingModel
from haecceity.recognizer import HazardRecognizer
from haecceity.region import RegionEmbedder
from mneme.backends import LocalJsonBackend
from mneme.samples import LearnedSample
from mneme.store import LearnedSampleStore
from quiddity.candidates import CandidateGenerator

FRAME = np.full((200, 200, 3), 90, dtype=np.uint8)


class _StaticDetector:
    def __init__(self, dets):
        self.dets = dets

    def detect(self, frame_bgr):
        return list(self.dets)


class _FixedModel(EmbeddingModel):
    name = "fixed"

    def __init__(self, vector):
        self.vector = vector
        self.calls = 0

    def embed(self, patch_bgr):
        self.calls += 1
        return None if self.vector is None else np.asarray(self.vector, dtype=np.float32)


def _recognizer(tmp_path, dets, vector, samples=(), **kw):
    store = LearnedSampleStore(LocalJsonBackend(tmp_path / "bank.json"))
    for sample in samples:
        store.insert(sample)
    model = _FixedModel(vector)
    rec = HazardRecognizer(
        CandidateGenerator(_StaticDetector(dets)), RegionEmbedder(model), store, **kw
    )
    return rec, model, store


def _e1() -> LearnedSample:
    return LearnedSample(id="learned-e1", embedding=(1.0, 0.0, 0.0), thumbnail="", timestamp=1)


def test_candidate_matching_learned_sample_is_promoted(tmp_path) -> None:
    query = (0.9, math.sqrt(1 - 0.81), 0.0)
    rec, _, _ = _recognizer(
        tmp_path, [((20, 20, 120, 120), 0.6, "dog")], query, samples=[_e1()], threshold=0.48
    )
    (det,) = rec.process(FRAME)
    assert det.type is HazardType.LEARNED
    assert det.label == "TRAINED HAZARD"
    assert math.isclose(det.match_score, 0.9, rel_tol=1e-5)
    assert math.isclose(det.confidence, 0.9, rel_tol=1e-5)
    assert det.sample_id == "learned-e1"


def test_weak_match_keeps_original_classification(tmp_path) -> None:
    query = (0.3, math.sqrt(1 - 0.09), 0.0)
    rec, _, _ = _recognizer(tmp_path, [((20, 20, 120, 120), 0.7, "car")], query, samples=[_e1()])
    (det,) = rec.process(FRAME)
    assert det.type is HazardType.VEHICLE
    assert det.label == "VEHICLE"
    assert det.match_score is None
    assert det.confidence == 0.7


def test_empty_store_skips_embedding(tmp_path) -> None:
    rec, model, _ = _recognizer(tmp_path, [((20, 20, 120, 120), 0.7, "person")], (1.0, 0.0, 0.0))
    (det,) = rec.process(FRAME)
    assert det.type is HazardType.PEDESTRIAN
    assert model.calls == 0


def test_unavailable_embedding_is_absorbed_per_candidate(tmp_path) -> None:
    dets = [((20, 20, 25, 120), 0.7, "dog"), ((20, 20, 120, 120), 0.7, "dog")]
    rec, model, _ = _recognizer(tmp_path, dets, (1.0, 0.0, 0.0), samples=[_e1()])
    tiny, big = rec.process(FRAME)
    assert tiny.type is HazardType.COLLISION_RISK
    assert tiny.label == "OBJECT"
    assert big.type is HazardType.LEARNED
    assert model.calls == 1


def test_dimension_mismatch_never_promotes(tmp_path) -> None:
    rec, _, _ = _recognizer(
        tmp_path, [((20, 20, 120, 120), 0.7, "dog")], (1.0, 0.0), samples=[_e1()]
    )
    (det,) = rec.process(FRAME)
    assert det.type is HazardType.COLLISION_RISK


def test_learned_only_drops_unpromoted(tmp_path) -> None:
    dets = [((20, 20, 120, 120), 0.7, "dog"), ((20, 20, 25, 120), 0.7, "car")]
    rec, _, _ = _recognizer(
        tmp_path, dets, (1.0, 0.0, 0.0), samples=[_e1()], learned_only=True
    )
    out = rec.process(FRAME)
    assert [d.type for d in out] == [HazardType.LEARNED]


def test_trained_sample_is_visible_to_next_pass(tmp_path) -> None:
    rec, _, store = _recognizer(tmp_path, [((20, 20, 120, 120), 0.7, "dog")], (0.0, 1.0, 0.0))
    assert rec.process(FRAME)[0].type is HazardType.COLLISION_RISK
    store.insert(LearnedSample(id="learned-y", embedding=(0.0, 1.0, 0.0), thumbnail="", timestamp=2))
    assert rec.process(FRAME)[0].type is HazardType.LEARNED


def test_detection_ids_are_unique_across_frames(tmp_path) -> None:
    rec, _, _ = _recognizer(tmp_path, [((20, 20, 120, 120), 0.7, "dog")] * 2, (1.0, 0.0, 0.0))
    ids = [d.id for d in rec.process(FRAME) + rec.process(FRAME)]
    assert len(set(ids)) == 4
