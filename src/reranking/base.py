"""
Reranker interface for the post-fusion stage.

A reranker receives the fused candidates (best first) together with their
fused scores and picks the final ordered subset. Implementations must not
return an index twice and never more than top_k results.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class RerankResult:
    index: int              # Position in the candidate list passed to rerank()
    score: float            # Selection value (MMR objective for the diversity reranker)
    text: str
    relevance: float = 0.0  # Fused score after min-max normalization


class BaseReranker(ABC):
    """Selects and orders the final results from fused candidates"""

    @abstractmethod
    async def rerank(
        self,
        query: str,
        documents: List[str],
        top_k: int = 5,
        relevance: Optional[List[float]] = None,
        diversity_lambda: Optional[float] = None,
    ) -> List[RerankResult]:
        """
        Args:
            query: Search query text
            documents: Candidate texts, in fused order (best first)
            top_k: Max results
            relevance: Fused scores aligned with documents (None = rank-derived)
            diversity_lambda: Per-call override of the relevance/novelty trade-off

        Returns:
            RerankResults in selection order, min(top_k, len(documents)) long
        """
        pass

    @abstractmethod
    def get_model_info(self) -> dict:
        """Dict with keys: name, type, version, parameters"""
        pass

    def close(self):
        """Release resources held by the reranker (none by default)"""
        pass
