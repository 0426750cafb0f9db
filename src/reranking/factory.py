"""
Factory to create reranker instances based on configuration.
"""

from typing import Optional
import os
import logging

from .base import BaseReranker
from .mmr import MMRReranker

logger = logging.getLogger(__name__)


class RerankingFactory:
    """Factory to create reranker instances based on configuration."""

    VALID_TYPES = ("mmr", "none")

    @classmethod
    def create(
        cls,
        reranker_type: Optional[str] = None,
        diversity_lambda: float = 0.7,
        stemmer_language: Optional[str] = None,
    ) -> Optional[BaseReranker]:
        """
        Create reranker from an explicit type or the RERANKER_TYPE env var.

        Supported types:
            - mmr: Jaccard-based Maximal Marginal Relevance (default)
            - none: no reranking, results keep their fused order

        Returns:
            Reranker instance, or None if disabled

        Raises:
            ValueError: Unknown reranker type
        """
        reranker_type = (reranker_type or os.getenv("RERANKER_TYPE") or "mmr").lower()

        if reranker_type == "mmr":
            logger.info(f"Creating MMR reranker (lambda={diversity_lambda})")
            return MMRReranker(diversity_lambda=diversity_lambda, stemmer_language=stemmer_language)

        if reranker_type == "none":
            logger.info("Reranking disabled (RERANKER_TYPE=none)")
            return None

        raise ValueError(
            f"Unknown reranker type: {reranker_type}. "
            f"Valid options: {', '.join(cls.VALID_TYPES)}"
        )
