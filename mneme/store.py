"""Learned sample store with remote-authoritative / local-mirror persistence.

The store is the single writer. Mutations (and the initial load) run one at a
time under ``_lock``; readers get an immutable tuple via :meth:`snapshot`,
swapped in only after a mutation reaches the local mirror, so a matching pass
sees either the state before a mutation or after it.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import List, Optional, Tuple

from common.errors import LocalStorageFailure, RemoteBackendError, StoreClosed
from mneme.backends import LocalJsonBackend, RemoteBackend, remote_from_config
from mneme.samples import LearnedSample

LOGGER = logging.getLogger(__name__)

Snapshot = Tuple[LearnedSample, ...]


class StoreState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class PersistenceMode(str, Enum):
    REMOTE_CONFIGURED = "remote"
    LOCAL_ONLY = "local"


class LearnedSampleStore:
    def __init__(self, local: LocalJsonBackend, remote: Optional[RemoteBackend] = None):
        self.local = local
        self.remote = remote
        self.mode = PersistenceMode.REMOTE_CONFIGURED if remote is not None else PersistenceMode.LOCAL_ONLY
        self._snapshot: Snapshot = ()
        self._state = StoreState.UNINITIALIZED
        self._closed = False
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: Optional[dict]) -> "LearnedSampleStore":
        cfg = cfg or {}
        local = LocalJsonBackend(cfg.get("local_path", "data/learned_samples.json"))
        store = cls(local, remote_from_config(cfg.get("remote")))
        LOGGER.info("Learned sample store mode: %s (mirror at %s)", store.mode.value, local.path)
        return store

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self.snapshot())

    def snapshot(self) -> Snapshot:
        """Current samples, newest first. Loads on first use; never raises."""

        if self._state is not StoreState.READY:
            try:
                self.load()
            except LocalStorageFailure as exc:
                LOGGER.error("Starting with an empty memory bank: %s", exc)
        return self._snapshot

    def get(self, sample_id: str) -> Optional[LearnedSample]:
        for sample in self.snapshot():
            if sample.id == sample_id:
                return sample
        return None

    def listing(self) -> List[dict]:
        return [s.listing() for s in self.snapshot()]

    def load(self) -> Snapshot:
        """Load once; raises :class:`LocalStorageFailure` after settling READY and empty."""

        with self._lock:
            self._load_locked()
            return self._snapshot

    def insert(self, sample: LearnedSample) -> Snapshot:
        with self._lock:
            self._check_open()
            self._ensure_loaded_locked()
            updated = (sample,) + tuple(s for s in self._snapshot if s.id != sample.id)
            if self.remote is not None:
                try:
                    self.remote.insert(sample)
                except RemoteBackendError as exc:
                    LOGGER.warning("Remote insert failed, keeping sample locally: %s", exc)
            self.local.write(updated)
            self._snapshot = updated
            LOGGER.info("Stored learned sample %s (%d in memory bank)", sample.id, len(updated))
            return updated

    def delete(self, sample_id: str) -> bool:
        """Remove ``sample_id``; returns False (and does nothing) if it is unknown."""

        with self._lock:
            self._check_open()
            self._ensure_loaded_locked()
            if not any(s.id == sample_id for s in self._snapshot):
                LOGGER.debug("Delete of unknown sample %s ignored", sample_id)
                return False
            updated = tuple(s for s in self._snapshot if s.id != sample_id)
            if self.remote is not None:
                try:
                    self.remote.delete(sample_id)
                except RemoteBackendError as exc:
                    LOGGER.warning("Remote delete failed, removing locally anyway: %s", exc)
            self.local.write(updated)
            self._snapshot = updated
            LOGGER.info("Deleted learned sample %s (%d left)", sample_id, len(updated))
            return True

    def close(self) -> None:
        """Wait for any in-flight mutation, then refuse further ones."""

        with self._lock:
            self._closed = True
        LOGGER.info("Learned sample store closed with %d samples", len(self._snapshot))

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosed("Learned sample store is closed")

    def _ensure_loaded_locked(self) -> None:
        if self._state is StoreState.READY:
            return
        try:
            self._load_locked()
        except LocalStorageFailure as exc:
            LOGGER.error("Starting with an empty memory bank: %s", exc)

    def _load_locked(self) -> None:
        if self._state is StoreState.READY:
            return
        self._state = StoreState.LOADING
        samples: Optional[List[LearnedSample]] = None
        source = None
        if self.remote is not None:
            try:
                samples = self.remote.get_all()
                source = self.remote.name
            except RemoteBackendError as exc:
                LOGGER.warning("Remote load failed, falling back to local mirror: %s", exc)

        if samples is None:
            try:
                samples = self.local.read()
                source = self.local.name
            except LocalStorageFailure:
                self._snapshot = ()
                self._state = StoreState.READY
                raise
        else:
            try:
                self.local.write(samples)
            except LocalStorageFailure as exc:
                LOGGER.warning("Could not refresh local mirror after remote load: %s", exc)

        self._snapshot = tuple(samples)
        self._state = StoreState.READY
        LOGGER.info("Loaded %d learned samples from %s", len(self._snapshot), source)
