"""
Embedding math helpers: component-wise averaging and clamped cosine similarity.

Both functions are total: empty, zero-norm or mismatched inputs produce
neutral results instead of raising.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

Vector = Sequence[float]


def average(vectors: Sequence[Vector]) -> List[float]:
    """Component-wise mean. ``[]`` maps to ``[]``; a single vector is returned unchanged."""
    if not vectors:
        return []
    if len(vectors) == 1:
        return [float(x) for x in vectors[0]]
    dim = len(vectors[0])
    usable = [v for v in vectors if len(v) == dim]
    matrix = np.asarray(usable, dtype=np.float64)
    return matrix.mean(axis=0).tolist()


def cosine_similarity(a: Optional[Vector], b: Optional[Vector]) -> float:
    """Cosine in [-1, 1]; zero norm, empty or mismatched vectors are defined as 0."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0 or nb == 0:
        return 0.0
    value = float(np.dot(va, vb) / (na * nb))
    return max(-1.0, min(1.0, value))


def mean_similarity_against(target: Vector, others: Sequence[Vector], default: float) -> float:
    """Average cosine of ``target`` against every vector of matching dimension."""
    if not target:
        return default
    comparable = [o for o in others if o is not None and len(o) == len(target)]
    if not comparable:
        return default
    return float(np.mean([cosine_similarity(target, o) for o in comparable]))
