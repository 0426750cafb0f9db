"""
Fusion and reranking for hybrid retrieval.

Usage:
    from src.reranking import reciprocal_rank_fusion, get_reranker

    fused = reciprocal_rank_fusion({"bm25": bm25_ranked, "semantic": vector_ranked},
                                   weights={"bm25": 0.6, "semantic": 0.2})
    reranker = get_reranker("mmr")
    if reranker:
        results = await reranker.rerank(query, texts, top_k=10, relevance=scores)
"""

from typing import Optional
from .base import BaseReranker, RerankResult
from .fusion import FusedItem, reciprocal_rank_fusion, apply_temporal_decay
from .mmr import MMRReranker, diversity_score, normalize_relevance
from .similarity import jaccard_similarity, cosine_similarity
from .factory import RerankingFactory


def get_reranker(reranker_type: Optional[str] = None, **kwargs) -> Optional[BaseReranker]:
    """
    Get configured reranker instance (factory convenience function).

    Returns None if reranking disabled via RERANKER_TYPE=none
    """
    return RerankingFactory.create(reranker_type, **kwargs)


__all__ = [
    'BaseReranker',
    'RerankResult',
    'FusedItem',
    'reciprocal_rank_fusion',
    'apply_temporal_decay',
    'MMRReranker',
    'diversity_score',
    'normalize_relevance',
    'jaccard_similarity',
    'cosine_similarity',
    'RerankingFactory',
    'get_reranker',
]
