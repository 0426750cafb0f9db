"""
Maximal Marginal Relevance (MMR) diversity reranker.

Greedily selects the candidate maximizing

    λ × relevance − (1 − λ) × max_similarity_to_selected

where similarity is Jaccard overlap of normalized token sets, so diversity
works without the embedding provider. Relevance is the fused score min-max
normalized to [0, 1], keeping it on the same scale as Jaccard.
"""

import logging
from typing import FrozenSet, List, Optional, Sequence

from ..bm25.tokenizer import token_set
from .base import BaseReranker, RerankResult
from .similarity import jaccard_similarity

logger = logging.getLogger(__name__)


def normalize_relevance(scores: Sequence[float]) -> List[float]:
    """Min-max normalize to [0, 1]; a constant list maps to all ones"""
    if not scores:
        return []
    low, high = min(scores), max(scores)
    if high == low:
        return [1.0] * len(scores)
    return [(s - low) / (high - low) for s in scores]


def diversity_score(token_sets: Sequence[FrozenSet[str]]) -> float:
    """
    Mean dissimilarity of results 2..n to the top result (0 for < 2 results).
    """
    if len(token_sets) < 2:
        return 0.0
    top = token_sets[0]
    rest = token_sets[1:]
    return sum(1.0 - jaccard_similarity(top, other) for other in rest) / len(rest)


class MMRReranker(BaseReranker):
    """Jaccard-based MMR reranker"""

    def __init__(self, diversity_lambda: float = 0.7, stemmer_language: Optional[str] = None):
        if not (0.0 <= diversity_lambda <= 1.0):
            raise ValueError(f"diversity_lambda must be within [0, 1], got {diversity_lambda}")
        self.diversity_lambda = diversity_lambda
        self.stemmer_language = stemmer_language

    async def rerank(
        self,
        query: str,
        documents: List[str],
        top_k: int = 5,
        relevance: Optional[List[float]] = None,
        diversity_lambda: Optional[float] = None,
    ) -> List[RerankResult]:
        if not documents or top_k <= 0:
            return []

        lam = self.diversity_lambda if diversity_lambda is None else diversity_lambda
        if relevance is None:
            # Rank-derived relevance: first document is the most relevant
            relevance = [1.0 / (i + 1) for i in range(len(documents))]
        if len(relevance) != len(documents):
            raise ValueError("relevance must be aligned with documents")

        normalized = normalize_relevance(relevance)
        tokens = [token_set(doc, self.stemmer_language) for doc in documents]

        selected: List[RerankResult] = []
        remaining = list(range(len(documents)))
        limit = min(top_k, len(documents))

        while remaining and len(selected) < limit:
            best_index = None
            best_value = float("-inf")
            for idx in remaining:
                redundancy = max(
                    (jaccard_similarity(tokens[idx], tokens[chosen.index]) for chosen in selected),
                    default=0.0,
                )
                value = lam * normalized[idx] - (1.0 - lam) * redundancy
                # Strict comparison: ties go to the earlier (better fused) candidate
                if value > best_value:
                    best_value = value
                    best_index = idx

            remaining.remove(best_index)
            selected.append(RerankResult(
                index=best_index,
                score=best_value,
                text=documents[best_index],
                relevance=normalized[best_index],
            ))

        logger.debug(f"MMR selected {len(selected)}/{len(documents)} candidates (λ={lam})")
        return selected

    def get_model_info(self) -> dict:
        return {
            "name": "mmr",
            "type": "diversity",
            "version": "jaccard",
            "parameters": {"lambda": self.diversity_lambda},
        }

    def __repr__(self):
        return f"MMRReranker(lambda={self.diversity_lambda})"
