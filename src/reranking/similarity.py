"""
Similarity primitives shared by MMR, auto-connect and clustering.
"""

from typing import AbstractSet, Sequence

import numpy as np


def jaccard_similarity(a: AbstractSet[str], b: AbstractSet[str]) -> float:
    """|a ∩ b| / |a ∪ b|; two empty sets are treated as dissimilar"""
    if not a or not b:
        return 0.0
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def jaccard_distance(a: AbstractSet[str], b: AbstractSet[str]) -> float:
    return 1.0 - jaccard_similarity(a, b)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)
