from __future__ import annotations

import json
import pathlib
import sys
import threading
import time

import pytest

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from common.errors import LocalStorageFailure, RemoteReadFailure, RemoteWriteFailure, StoreClosed
from mneme.backends import LocalJsonBackend, RemoteBackend
from mneme.samples import LearnedSample
from mneme.store import LearnedSampleStore, PersistenceMode, StoreState


def _sample(sid: str, vec=(1.0, 0.0)) -> LearnedSample:
    return LearnedSample(id=sid, embedding=tuple(vec), thumbnail="thumb", timestamp=1)


def _mirror_ids(path: pathlib.Path):
    return [row["id"] for row in json.loads(path.read_text(encoding="utf-8"))]


class FakeRemote(RemoteBackend):
    name = "fake-remote"

    def __init__(self, rows=(), fail_read=False, fail_write=False, delay=0.0):
        self.rows = list(rows)
        self.fail_read = fail_read
        self.fail_write = fail_write
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def get_all(self):
        if self.fail_read:
            raise RemoteReadFailure("remote down")
        return list(self.rows)

    def _write(self, op, key):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            self.calls.append((op, key))
            if self.fail_write:
                raise RemoteWriteFailure(f"{op} rejected")
        finally:
            with self._lock:
                self.active -= 1

    def insert(self, sample):
        self._write("insert", sample.id)

    def delete(self, sample_id):
        self._write("delete", sample_id)


class BrokenLocal(LocalJsonBackend):
    def write(self, samples):
        raise LocalStorageFailure("disk full")


def test_local_only_mode_starts_empty(tmp_path) -> None:
    store = LearnedSampleStore(LocalJsonBackend(tmp_path / "bank.json"))
    assert store.mode is PersistenceMode.LOCAL_ONLY
    assert store.state is StoreState.UNINITIALIZED
    assert store.snapshot() == ()
    assert store.state is StoreState.READY


def test_insert_puts_new_sample_first_and_mirrors(tmp_path) -> None:
    path = tmp_path / "bank.json"
    store = LearnedSampleStore(LocalJsonBackend(path))
    store.insert(_sample("a"))
    store.insert(_sample("b"))
    assert [s.id for s in store.snapshot()] == ["b", "a"]
    assert _mirror_ids(path) == ["b", "a"]


def test_delete_keeps_survivor_order(tmp_path) -> None:
    path = tmp_path / "bank.json"
    store = LearnedSampleStore(LocalJsonBackend(path))
    for sid in ("a", "b", "c", "d"):
        store.insert(_sample(sid))
    assert store.delete("b") is True
    assert [s.id for s in store.snapshot()] == ["d", "c", "a"]
    assert _mirror_ids(path) == ["d", "c", "a"]


def test_delete_unknown_is_noop(tmp_path) -> None:
    remote = FakeRemote()
    store = LearnedSampleStore(LocalJsonBackend(tmp_path / "bank.json"), remote)
    store.insert(_sample("a"))
    assert store.delete("missing") is False
    assert [s.id for s in store.snapshot()] == ["a"]
    assert remote.calls == [("insert", "a")]


def test_local_mirror_survives_restart(tmp_path) -> None:
    path = tmp_path / "bank.json"
    first = LearnedSampleStore(LocalJsonBackend(path))
    first.insert(_sample("a", (0.5, 0.25)))
    first.insert(_sample("b"))
    first.close()

    second = LearnedSampleStore(LocalJsonBackend(path))
    snap = second.snapshot()
    assert [s.id for s in snap] == ["b", "a"]
    assert snap[1].embedding == (0.5, 0.25)


def test_remote_wins_when_reachable(tmp_path) -> None:
    path = tmp_path / "bank.json"
    LocalJsonBackend(path).write([_sample("stale")])
    remote = FakeRemote(rows=[_sample("r2"), _sample("r1")])
    store = LearnedSampleStore(LocalJsonBackend(path), remote)
    assert store.mode is PersistenceMode.REMOTE_CONFIGURED
    assert [s.id for s in store.snapshot()] == ["r2", "r1"]
    assert _mirror_ids(path) == ["r2", "r1"]


def test_remote_read_failure_falls_back_to_local(tmp_path) -> None:
    path = tmp_path / "bank.json"
    LocalJsonBackend(path).write([_sample("cached")])
    store = LearnedSampleStore(LocalJsonBackend(path), FakeRemote(fail_read=True))
    assert [s.id for s in store.snapshot()] == ["cached"]


def test_unreadable_local_leaves_store_ready_and_empty(tmp_path) -> None:
    path = tmp_path / "bank.json"
    path.write_text("{not json", encoding="utf-8")
    store = LearnedSampleStore(LocalJsonBackend(path), FakeRemote(fail_read=True))
    with pytest.raises(LocalStorageFailure):
        store.load()
    assert store.state is StoreState.READY
    assert store.snapshot() == ()


def test_snapshot_never_raises_on_unreadable_local(tmp_path) -> None:
    path = tmp_path / "bank.json"
    path.write_text("[{\"id\": 1}]", encoding="utf-8")
    store = LearnedSampleStore(LocalJsonBackend(path))
    assert store.snapshot() == ()
    assert store.state is StoreState.READY


def test_remote_write_failure_does_not_roll_back(tmp_path) -> None:
    path = tmp_path / "bank.json"
    remote = FakeRemote(fail_write=True)
    store = LearnedSampleStore(LocalJsonBackend(path), remote)
    store.insert(_sample("a"))
    assert [s.id for s in store.snapshot()] == ["a"]
    assert _mirror_ids(path) == ["a"]
    assert store.delete("a") is True
    assert store.snapshot() == ()
    assert remote.calls == [("insert", "a"), ("delete", "a")]


def test_local_write_failure_surfaces_and_keeps_snapshot(tmp_path) -> None:
    store = LearnedSampleStore(BrokenLocal(tmp_path / "bank.json"))
    before = store.snapshot()
    with pytest.raises(LocalStorageFailure):
        store.insert(_sample("a"))
    assert store.snapshot() == before


def test_concurrent_mutations_are_serialized(tmp_path) -> None:
    path = tmp_path / "bank.json"
    remote = FakeRemote(delay=0.01)
    store = LearnedSampleStore(LocalJsonBackend(path), remote)
    store.load()

    threads = [
        threading.Thread(target=store.insert, args=(_sample(f"s{i}"),)) for i in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert remote.max_active == 1
    assert len(store.snapshot()) == 8
    assert sorted(_mirror_ids(path)) == sorted(f"s{i}" for i in range(8))
    assert _mirror_ids(path) == [s.id for s in store.snapshot()]


def test_readers_never_see_an_in_flight_insert(tmp_path) -> None:
    gate = threading.Event()
    entered = threading.Event()

    class GatedRemote(FakeRemote):
        def insert(self, sample):
            entered.set()
            gate.wait(timeout=5)

    store = LearnedSampleStore(LocalJsonBackend(tmp_path / "bank.json"), GatedRemote())
    store.load()
    worker = threading.Thread(target=store.insert, args=(_sample("a"),))
    worker.start()
    assert entered.wait(timeout=5)
    assert store.snapshot() == ()
    gate.set()
    worker.join(timeout=5)
    assert [s.id for s in store.snapshot()] == ["a"]


def test_close_waits_for_in_flight_mutation(tmp_path) -> None:
    gate = threading.Event()
    entered = threading.Event()

    class GatedRemote(FakeRemote):
        def insert(self, sample):
            entered.set()
            gate.wait(timeout=5)

    store = LearnedSampleStore(LocalJsonBackend(tmp_path / "bank.json"), GatedRemote())
    store.load()
    worker = threading.Thread(target=store.insert, args=(_sample("a"),))
    worker.start()
    assert entered.wait(timeout=5)

    closer = threading.Thread(target=store.close)
    closer.start()
    closer.join(timeout=0.1)
    assert closer.is_alive()
    gate.set()
    worker.join(timeout=5)
    closer.join(timeout=5)

    assert store.closed
    assert [s.id for s in store.snapshot()] == ["a"]
    with pytest.raises(StoreClosed):
        store.insert(_sample("b"))
    with pytest.raises(StoreClosed):
        store.delete("a")
