"""
Semantic scorer: embedding provider + vector backend.

Stateless adapter. Every failure on the way (provider error, backend error,
timeout) is raised as ProviderUnavailable so the caller can degrade to the
remaining signals.
"""

import asyncio
import logging
from typing import AbstractSet, List, Optional, Tuple

from .embeddings import BaseEmbedder
from .errors import ProviderUnavailable
from .vector_index import VectorBackend

logger = logging.getLogger(__name__)


class SemanticScorer:
    def __init__(self, embedder: Optional[BaseEmbedder], backend: VectorBackend, timeout: Optional[float] = None):
        """
        Args:
            embedder: Embedding provider (None = semantic pass disabled)
            backend: Vector-similarity backend
            timeout: Seconds allowed for search() as a whole (None = unbounded)
        """
        self.embedder = embedder
        self.backend = backend
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return self.embedder is not None

    async def embed(self, text: str) -> List[float]:
        if self.embedder is None:
            raise ProviderUnavailable("No embedding provider configured")
        try:
            return await self.embedder.embed(text)
        except ProviderUnavailable:
            raise
        except Exception as e:
            logger.warning(f"Embedding provider failed: {e}")
            raise ProviderUnavailable(f"Embedding provider error: {e}") from e

    async def similarity_search(
        self,
        query_vector: List[float],
        top_k: int,
        threshold: float = 0.0,
        restrict_to: Optional[AbstractSet[str]] = None,
        exclude: Optional[AbstractSet[str]] = None,
    ) -> List[Tuple[str, float]]:
        try:
            return await self.backend.similarity_search(
                query_vector, top_k, threshold, restrict_to=restrict_to, exclude=exclude
            )
        except ProviderUnavailable:
            raise
        except Exception as e:
            logger.warning(f"Vector backend search failed: {e}")
            raise ProviderUnavailable(f"Vector backend error: {e}") from e

    async def _search(self, query, top_k, threshold, restrict_to) -> List[Tuple[str, float]]:
        vector = await self.embed(query)
        return await self.similarity_search(vector, top_k, threshold, restrict_to=restrict_to)

    async def search(
        self,
        query: str,
        top_k: int,
        threshold: float = 0.0,
        restrict_to: Optional[AbstractSet[str]] = None,
    ) -> List[Tuple[str, float]]:
        """
        Embed the query and return [(item_id, similarity)] best first.

        Raises:
            ProviderUnavailable: Provider/backend failure or timeout
        """
        try:
            if self.timeout is None:
                return await self._search(query, top_k, threshold, restrict_to)
            return await asyncio.wait_for(
                self._search(query, top_k, threshold, restrict_to), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Semantic search timed out after {self.timeout}s")
            raise ProviderUnavailable(f"Semantic search timed out after {self.timeout}s") from e
