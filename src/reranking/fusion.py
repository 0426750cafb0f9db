"""
Weighted RRF (Reciprocal Rank Fusion) for combining the retrieval passes.

RRF is a simple and effective method for combining results from multiple ranking systems.
It doesn't require normalization of scores and is robust to outliers.

Formula:
    RRF(item, k=60) = Σ w_i / (k + r_i(item) + 1)

Where:
    k = constant (default: 60, from literature)
    w_i = weight of the i-th ranking (bm25 0.6, semantic 0.2, graph 0.2 by default)
    r_i = rank of item in i-th ranking (0-based)

Items absent from a ranking contribute nothing from it.

Reference: https://plg.uwaterloo.ca/~gvcormac/cormacksigir09-rrf.pdf
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..models import utcnow

Ranking = Sequence[Tuple[str, float]]


@dataclass
class FusedItem:
    """One item after fusion, with the raw score it got from every contributing pass"""
    item_id: str
    score: float
    sources: Dict[str, float] = field(default_factory=dict)
    ranks: Dict[str, int] = field(default_factory=dict)


def reciprocal_rank_fusion(
    rankings: Mapping[str, Ranking],
    weights: Optional[Mapping[str, float]] = None,
    k: int = 60,
) -> List[FusedItem]:
    """
    Combine multiple rankings using weighted Reciprocal Rank Fusion.

    Args:
        rankings: {pass name: [(item_id, score), ...]}, each ordered best first
        weights: {pass name: weight}; missing names weigh 1.0
        k: RRF constant (default: 60)
            Standard value from literature
            Prevents divide-by-zero and controls fusion behavior

    Returns:
        Fused items sorted by RRF score (descending). Ties keep the order in
        which items first appeared across the rankings.

    Example:
        >>> fused = reciprocal_rank_fusion(
        ...     {"bm25": [("a", 12.8), ("b", 10.1)], "semantic": [("b", 0.85)]},
        ...     weights={"bm25": 0.6, "semantic": 0.2},
        ... )
        >>> [item.item_id for item in fused]
        ['b', 'a']  # b appears in both lists
    """
    fused: Dict[str, FusedItem] = {}

    for name, ranking in rankings.items():
        weight = weights.get(name, 1.0) if weights else 1.0
        for rank, (item_id, score) in enumerate(ranking):
            entry = fused.get(item_id)
            if entry is None:
                entry = fused[item_id] = FusedItem(item_id=item_id, score=0.0)
            # Duplicate ids within one ranking count once, at their best rank
            if name in entry.sources:
                continue
            entry.score += weight / (k + rank + 1)
            entry.sources[name] = score
            entry.ranks[name] = rank

    # sorted() is stable, so equal scores keep first-appearance order
    return sorted(fused.values(), key=lambda item: item.score, reverse=True)


def apply_temporal_decay(
    fused: List[FusedItem],
    timestamps: Mapping[str, datetime],
    decay_factor: float,
    now: Optional[datetime] = None,
) -> List[FusedItem]:
    """
    Multiply each fused score by exp(-decay_factor * age_in_days) and re-sort.

    Runs after fusion and before the final ordering. A zero decay_factor is a
    no-op. Items without a timestamp keep their score; future timestamps count
    as age 0.
    """
    if decay_factor == 0 or not fused:
        return fused

    now = now or utcnow()
    for entry in fused:
        timestamp = timestamps.get(entry.item_id)
        if timestamp is None:
            continue
        age_days = max(0.0, (now - timestamp).total_seconds() / 86400.0)
        entry.score *= math.exp(-decay_factor * age_days)

    return sorted(fused, key=lambda item: item.score, reverse=True)
