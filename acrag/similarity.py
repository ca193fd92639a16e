"""
Exact cosine-similarity scoring and ranking.

Every query scores every stored record (brute-force scan). This is fine for
corpora in the thousands; an indexed nearest-neighbour structure would sit
behind the same RecordStore.search contract without touching callers.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

import numpy as np

from acrag.models import Record, SearchResult

LOG = logging.getLogger("acrag.similarity")

DEFAULT_THRESHOLD = 0.75
DEFAULT_TOP_K = 5

# Scores this close to +/-1 are rounding error on parallel vectors.
SNAP_TOLERANCE = 1e-12


def is_zero_vector(vector: Sequence[float]) -> bool:
    """True for an empty vector or one with no non-zero component."""
    return not any(vector)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine of the angle between two vectors, in [-1, 1].

    Vectors of unequal length score 0 (legacy or mixed-provider records).
    A zero-magnitude vector on either side also scores 0, so the zero-vector
    sentinel never matches anything. Scores within SNAP_TOLERANCE of -1 or 1
    are returned as exactly -1.0 or 1.0, so a vector scores 1.0 against itself.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(va, vb)) / (norm_a * norm_b)
    if abs(score - 1.0) <= SNAP_TOLERANCE:
        return 1.0
    if abs(score + 1.0) <= SNAP_TOLERANCE:
        return -1.0
    return max(-1.0, min(1.0, score))


def rank(
    query: Sequence[float],
    records: Iterable[Record],
    top_k: int = DEFAULT_TOP_K,
    threshold: float = DEFAULT_THRESHOLD,
) -> List[SearchResult]:
    """
    Score records against ``query`` and return the best ``top_k``.

    Scores below ``threshold`` are dropped (the bound is inclusive). The sort
    is stable, so equal scores keep the order in which ``records`` yielded them.
    """
    if top_k <= 0:
        return []

    scored = [SearchResult(record=r, score=cosine_similarity(query, r.embedding)) for r in records]
    kept = [s for s in scored if s.score >= threshold]
    kept.sort(key=lambda s: s.score, reverse=True)

    LOG.debug("Ranked %d records, %d above threshold %.2f", len(scored), len(kept), threshold)
    return kept[:top_k]
