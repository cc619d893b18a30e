"""Persistence backends for learned samples.

Two narrow contracts:

* remote (optional, authoritative when reachable): ``get_all``, ``insert``, ``delete``
* local (always present, mirror and fallback): ``read``, ``write``
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
from typing import List, Optional, Sequence

import requests

from common.errors import LocalStorageFailure, RemoteReadFailure, RemoteWriteFailure
from mneme.samples import LearnedSample

LOGGER = logging.getLogger(__name__)


class RemoteBackend:
    name = "remote"

    def get_all(self) -> List[LearnedSample]:
        raise NotImplementedError

    def insert(self, sample: LearnedSample) -> None:
        raise NotImplementedError

    def delete(self, sample_id: str) -> None:
        raise NotImplementedError


class SupabaseBackend(RemoteBackend):
    """Learned samples in a Supabase table, spoken to over its PostgREST API."""

    name = "supabase"

    def __init__(
        self,
        url: str,
        key: str,
        table: str = "learned_samples",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base = f"{url.rstrip('/')}/rest/v1/{table}"
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            }
        )

    def get_all(self) -> List[LearnedSample]:
        try:
            resp = self.session.get(
                self.base,
                params={"select": "*", "order": "timestamp.desc"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            rows = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise RemoteReadFailure(f"Supabase select failed: {exc}") from exc
        if not isinstance(rows, list):
            raise RemoteReadFailure(f"Supabase select returned {type(rows).__name__}, expected list")
        try:
            return [LearnedSample.from_dict(row) for row in rows]
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteReadFailure(f"Malformed sample row from Supabase: {exc}") from exc

    def insert(self, sample: LearnedSample) -> None:
        try:
            resp = self.session.post(
                self.base,
                data=json.dumps([sample.to_dict()]),
                headers={"Prefer": "return=minimal"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteWriteFailure(f"Supabase insert of {sample.id} failed: {exc}") from exc

    def delete(self, sample_id: str) -> None:
        try:
            resp = self.session.delete(
                self.base, params={"id": f"eq.{sample_id}"}, timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteWriteFailure(f"Supabase delete of {sample_id} failed: {exc}") from exc


def remote_from_config(cfg: Optional[dict]) -> Optional[RemoteBackend]:
    """Return a Supabase backend when a URL and key are configured, else ``None``."""

    cfg = cfg or {}
    url = cfg.get("url") or os.environ.get("SUPABASE_URL")
    key = cfg.get("key") or os.environ.get("SUPABASE_ANON_KEY")
    if not url or not str(url).startswith("http"):
        return None
    if not key:
        LOGGER.warning("Remote URL %s configured without a key; running local-only.", url)
        return None
    return SupabaseBackend(
        str(url),
        str(key),
        table=str(cfg.get("table", "learned_samples")),
        timeout=float(cfg.get("timeout", 10.0)),
    )


class LocalJsonBackend:
    """JSON file mirror, replaced atomically on every write."""

    name = "local"

    def __init__(self, path):
        self.path = pathlib.Path(path)

    def read(self) -> List[LearnedSample]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            return [LearnedSample.from_dict(row) for row in data]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise LocalStorageFailure(f"Cannot read local mirror {self.path}: {exc}") from exc

    def write(self, samples: Sequence[LearnedSample]) -> None:
        payload = [s.to_dict() for s in samples]
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", delete=False, dir=str(self.path.parent), suffix=".tmp"
            ) as tmp_fh:
                tmp_name = tmp_fh.name
                json.dump(payload, tmp_fh, separators=(",", ":"))
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise LocalStorageFailure(f"Cannot write local mirror {self.path}: {exc}") from exc
