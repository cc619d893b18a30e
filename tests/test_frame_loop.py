from __future__ import annotations

import pathlib
import sys

import numpy as np
import pytest

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from apps.run_edge import EdgeConsole, FrameLoop
from common.errors import HazardPipelineError
from common.interfaces import EmbeddingModel
from haecceity.region import RegionEmbedder
from mneme.backends import LocalJsonBackend
from mneme.store import LearnedSampleStore
from mneme.training import TrainingWorkflow


def _reader(n):
    frames = [np.full((60, 80, 3), i, dtype=np.uint8) for i in range(n)]

    def read_fn():
        if not frames:
            return False, None
        return True, frames.pop(0)

    return read_fn


class _CountingRecognizer:
    def __init__(self, fail_on=()):
        self.seen = []
        self.active = 0
        self.max_active = 0
        self.fail_on = set(fail_on)

    def process(self, frame):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            idx = int(frame[0, 0, 0])
            self.seen.append(idx)
            if idx in self.fail_on:
                raise RuntimeError("model hiccup")
            return []
        finally:
            self.active -= 1


class _FixedModel(EmbeddingModel):
    def embed(self, patch_bgr):
        return np.ones(4, dtype=np.float32)


def test_loop_processes_every_frame_one_at_a_time() -> None:
    rec = _CountingRecognizer()
    calls = []
    loop = FrameLoop(_reader(3), rec, on_frame=lambda i, f, d: calls.append((i, d)))
    assert loop.run() == 3
    assert rec.seen == [0, 1, 2]
    assert rec.max_active == 1
    assert calls == [(0, []), (1, []), (2, [])]
    assert int(loop.latest_frame[0, 0, 0]) == 2


def test_failing_pass_does_not_stop_the_loop() -> None:
    rec = _CountingRecognizer(fail_on={1})
    results = []
    loop = FrameLoop(_reader(3), rec, on_frame=lambda i, f, d: results.append(d))
    assert loop.run() == 3
    assert results == [[], [], []]


def test_stop_halts_future_scheduling() -> None:
    rec = _CountingRecognizer()
    loop = FrameLoop(_reader(10), rec)
    loop.on_frame = lambda i, f, d: loop.stop() if i == 1 else None
    assert loop.run() == 2
    assert loop.stopped
    assert rec.seen == [0, 1]


def test_stopped_loop_never_reads() -> None:
    rec = _CountingRecognizer()
    loop = FrameLoop(_reader(5), rec, fps=2.0)
    loop.stop()
    assert loop.run() == 0
    assert rec.seen == []


def test_console_trains_on_latest_frame(tmp_path) -> None:
    store = LearnedSampleStore(LocalJsonBackend(tmp_path / "bank.json"))
    trainer = TrainingWorkflow(RegionEmbedder(_FixedModel()), store)
    loop = FrameLoop(_reader(1), _CountingRecognizer())
    console = EdgeConsole(loop, trainer, store)

    with pytest.raises(HazardPipelineError):
        console.train(0.1, 0.1, 0.5, 0.5)

    loop.step()
    listing = console.train(0.1, 0.1, 0.5, 0.5)
    assert listing["dim"] == 4
    assert [s["id"] for s in console.list_samples()] == [listing["id"]]
    assert console.delete(listing["id"]) is True
    assert console.list_samples() == []
