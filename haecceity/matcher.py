"""Cosine similarity of a query vector against a learned-sample snapshot."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence, Set, Tuple

import numpy as np

LOGGER = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.48

_warned_dims: Set[Tuple[int, int]] = set()
_warned_lock = threading.Lock()


def _warn_dimension_mismatch(query_dim: int, sample_dim: int) -> None:
    key = (query_dim, sample_dim)
    with _warned_lock:
        if key in _warned_dims:
            return
        _warned_dims.add(key)
    LOGGER.warning(
        "Embedding dimension mismatch: query has %d dims, stored sample has %d; "
        "treating as non-matching (was the embedder model swapped?)",
        query_dim,
        sample_dim,
    )


def cosine_similarity(a, b) -> float:
    """``dot(a, b) / (|a| * |b|)``; 0 for zero magnitude or differing lengths."""

    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.size != vb.size:
        _warn_dimension_mismatch(va.size, vb.size)
        return 0.0
    denom = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def best_match(query, snapshot: Sequence) -> Tuple[float, Optional[str]]:
    """Linear scan; return ``(best score, sample id)`` with scores floored at 0."""

    best_score = 0.0
    best_id: Optional[str] = None
    for sample in snapshot:
        score = cosine_similarity(query, sample.embedding)
        if score > best_score:
            best_score = score
            best_id = sample.id
    return best_score, best_id


def match(query, snapshot: Sequence) -> float:
    return best_match(query, snapshot)[0]


def is_promoted(score: float, threshold: float = DEFAULT_THRESHOLD) -> bool:
    return score > threshold
