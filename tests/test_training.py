from __future__ import annotations

import base64
import pathlib
import sys

import cv2
import numpy as np
import pytest

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from common.errors import EmbeddingUnavailable
from common.interfaces import EmbeddingModel
from haecceity.region import RegionEmbedder
from mneme.backends import LocalJsonBackend
from mneme.samples import LearnedSample, new_sample_id
from mneme.store import LearnedSampleStore
from mneme.training import TrainingWorkflow, operator_rect

FRAME = np.random.RandomState(7).randint(0, 255, (240, 320, 3), dtype=np.uint8)


class _FixedModel(EmbeddingModel):
    name = "fixed"

    def __init__(self, vector):
        self.vector = vector

    def embed(self, patch_bgr):
        return None if self.vector is None else np.asarray(self.vector, dtype=np.float32)


def _workflow(tmp_path, vector):
    path = tmp_path / "bank.json"
    store = LearnedSampleStore(LocalJsonBackend(path))
    return TrainingWorkflow(RegionEmbedder(_FixedModel(vector)), store, thumbnail_size=120), store, path


def test_train_inserts_complete_sample(tmp_path) -> None:
    workflow, store, path = _workflow(tmp_path, (0.5, 0.5, 0.0))
    sample = workflow.train(FRAME, (0.25, 0.25, 0.75, 0.75))
    assert store.snapshot() == (sample,)
    assert sample.id.startswith("learned-")
    assert sample.embedding == (0.5, 0.5, 0.0)
    assert path.exists()

    prefix = "data:image/jpeg;base64,"
    assert sample.thumbnail.startswith(prefix)
    raw = np.frombuffer(base64.b64decode(sample.thumbnail[len(prefix):]), dtype=np.uint8)
    thumb = cv2.imdecode(raw, cv2.IMREAD_COLOR)
    assert thumb.shape == (120, 120, 3)


def test_embedding_failure_changes_nothing(tmp_path) -> None:
    workflow, store, path = _workflow(tmp_path, None)
    with pytest.raises(EmbeddingUnavailable):
        workflow.train(FRAME, (0.25, 0.25, 0.75, 0.75))
    assert store.snapshot() == ()
    assert not path.exists()


def test_degenerate_selection_changes_nothing(tmp_path) -> None:
    workflow, store, _ = _workflow(tmp_path, (1.0, 0.0))
    with pytest.raises(EmbeddingUnavailable):
        workflow.train(FRAME, (0.5, 0.5, 0.52, 0.9))
    assert store.snapshot() == ()


def test_operator_rect_conversion_and_minimum() -> None:
    assert operator_rect(0.1, 0.2, 0.3, 0.4) == pytest.approx((0.2, 0.1, 0.6, 0.4))
    assert operator_rect(0.9, 0.9, 0.5, 0.5) == pytest.approx((0.9, 0.9, 1.0, 1.0))
    with pytest.raises(ValueError):
        operator_rect(0.1, 0.1, 0.005, 0.5)


def test_sample_ids_are_unique_within_a_millisecond() -> None:
    ids = {new_sample_id(1000) for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("learned-1000-") for i in ids)


def test_sample_dict_roundtrip_keeps_vector() -> None:
    sample = LearnedSample.create([0.1, 0.2], "thumb")
    again = LearnedSample.from_dict(sample.to_dict())
    assert again == sample
    assert "embedding" not in sample.listing()
    assert sample.listing()["dim"] == 2
