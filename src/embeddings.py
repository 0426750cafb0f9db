"""
Embedding providers for the semantic pass.

Design:
- Vertex AI text-embedding-005 through the Google Gen AI SDK by default
- Deterministic feature-hashing embedder for offline development and tests
- The SDK call is blocking, so it runs in a worker thread
- Every provider failure surfaces as ProviderUnavailable
"""

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

import numpy as np
from google import genai

from .bm25.tokenizer import tokenize
from .config import EngineConfig
from .errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class EmbeddingProvider(Enum):
    """Supported embedding providers"""
    VERTEX_AI = "vertex_ai"  # Google Vertex AI text-embedding-005
    HASHING = "hashing"      # Local deterministic feature hashing
    NONE = "none"            # Semantic pass disabled


class BaseEmbedder(ABC):
    """Text -> fixed-length vector"""

    dimension: int

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """
        Embed one text.

        Raises:
            ProviderUnavailable: Provider failed or returned nothing
        """
        pass


class GenAIEmbedder(BaseEmbedder):
    """Vertex AI embeddings via google-genai"""

    def __init__(self, genai_client: genai.Client, model: str = "text-embedding-005", dimension: int = 768):
        self.genai_client = genai_client
        self.model = model
        self.dimension = dimension

    def _embed_sync(self, text: str) -> List[float]:
        response = self.genai_client.models.embed_content(
            model=self.model,
            contents=text,
        )
        if not response.embeddings:
            raise ProviderUnavailable(f"{self.model} returned no embeddings")
        return list(response.embeddings[0].values)

    async def embed(self, text: str) -> List[float]:
        try:
            return await asyncio.to_thread(self._embed_sync, text)
        except ProviderUnavailable:
            raise
        except Exception as e:
            logger.warning(f"Embedding request failed ({self.model}): {e}")
            raise ProviderUnavailable(f"Embedding provider error: {e}") from e

    def __repr__(self):
        return f"GenAIEmbedder(model={self.model})"


class HashingEmbedder(BaseEmbedder):
    """
    Tiny local embedder based on stable feature hashing.

    - Deterministic across runs (sha256 instead of Python's salted hash)
    - Dense, L2-normalized numpy-backed vector
    - Texts sharing normalized tokens get high cosine similarity
    """

    def __init__(self, dimension: int = 256):
        self.dimension = dimension

    def _bucket(self, token: str) -> int:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        return int.from_bytes(digest[:8], "big", signed=False) % self.dimension

    def embed_sync(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in tokenize(text):
            vector[self._bucket(token)] += 1.0
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector.tolist()

    async def embed(self, text: str) -> List[float]:
        return self.embed_sync(text)

    def __repr__(self):
        return f"HashingEmbedder(dim={self.dimension})"


def create_embedder(config: EngineConfig, genai_client: Optional[genai.Client] = None) -> Optional[BaseEmbedder]:
    """
    Build the embedder selected by EMBEDDING_PROVIDER.

    Returns:
        Embedder, or None when the semantic pass is disabled

    Raises:
        ValueError: Unknown provider, or vertex_ai without a GCP project
    """
    try:
        provider = EmbeddingProvider(config.embedding_provider)
    except ValueError:
        valid = ", ".join(p.value for p in EmbeddingProvider)
        raise ValueError(f"Unknown embedding provider: {config.embedding_provider}. Valid options: {valid}")

    if provider == EmbeddingProvider.NONE:
        logger.info("Embedding provider disabled - semantic pass will be skipped")
        return None

    if provider == EmbeddingProvider.HASHING:
        logger.info("Using local hashing embedder")
        return HashingEmbedder()

    if genai_client is None:
        if not config.gcp_project_id:
            raise ValueError("GCP_PROJECT_ID environment variable is required for vertex_ai embeddings")
        genai_client = genai.Client(
            vertexai=True,
            project=config.gcp_project_id,
            location=config.gcp_location,
        )
    logger.info(f"Using Vertex AI embeddings: {config.embedding_model}")
    return GenAIEmbedder(genai_client, model=config.embedding_model)
