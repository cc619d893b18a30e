from __future__ import annotations

import itertools
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

_counter = itertools.count()
_counter_lock = threading.Lock()


def new_sample_id(now_ms: Optional[int] = None) -> str:
    """``learned-<ms>-<n>``: unique within a process even inside one millisecond."""

    now_ms = int(time.time() * 1000) if now_ms is None else int(now_ms)
    with _counter_lock:
        seq = next(_counter)
    return f"learned-{now_ms}-{seq}"


@dataclass(frozen=True)
class LearnedSample:
    id: str
    embedding: Tuple[float, ...]
    thumbnail: str
    timestamp: int

    @classmethod
    def create(cls, embedding: Sequence[float], thumbnail: str) -> "LearnedSample":
        now_ms = int(time.time() * 1000)
        return cls(
            id=new_sample_id(now_ms),
            embedding=tuple(float(v) for v in embedding),
            thumbnail=thumbnail,
            timestamp=now_ms,
        )

    @property
    def dim(self) -> int:
        return len(self.embedding)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "embedding": list(self.embedding),
            "thumbnail": self.thumbnail,
            "timestamp": self.timestamp,
        }

    def listing(self) -> Dict[str, Any]:
        """Renderer-facing view: everything but the vector."""

        return {"id": self.id, "thumbnail": self.thumbnail, "timestamp": self.timestamp, "dim": self.dim}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LearnedSample":
        embedding = data["embedding"]
        if isinstance(embedding, str):
            # pgvector / text columns come back serialized
            embedding = json.loads(embedding)
        return cls(
            id=str(data["id"]),
            embedding=tuple(float(v) for v in embedding),
            thumbnail=str(data.get("thumbnail") or ""),
            timestamp=int(data.get("timestamp") or 0),
        )
