"""
Vector-similarity backends.

InMemoryVectorIndex keeps vectors in a numpy matrix and answers cosine
similarity queries with one matrix-vector product. PostgresRepository
(database.py) implements the same interface on top of pgvector.
"""

import logging
from abc import ABC, abstractmethod
from typing import AbstractSet, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class VectorBackend(ABC):
    """Stores item vectors and answers top-k cosine similarity queries"""

    @abstractmethod
    async def upsert(self, item_id: str, vector: List[float]) -> None:
        pass

    @abstractmethod
    async def get(self, item_id: str) -> Optional[List[float]]:
        pass

    @abstractmethod
    async def remove(self, item_id: str) -> None:
        pass

    @abstractmethod
    async def similarity_search(
        self,
        vector: List[float],
        k: int,
        threshold: float = 0.0,
        restrict_to: Optional[AbstractSet[str]] = None,
        exclude: Optional[AbstractSet[str]] = None,
    ) -> List[Tuple[str, float]]:
        """
        Top-k items by cosine similarity.

        Args:
            vector: Query vector
            k: Max results
            threshold: Minimum similarity (inclusive)
            restrict_to: Only consider these ids (None = all)
            exclude: Never return these ids

        Returns:
            [(item_id, similarity)] sorted by similarity descending
        """
        pass


class InMemoryVectorIndex(VectorBackend):
    """numpy-backed cosine similarity index"""

    def __init__(self):
        self._ids: List[str] = []
        self._positions: Dict[str, int] = {}
        self._matrix: Optional[np.ndarray] = None  # (n, dim), L2-normalized rows

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._positions

    @staticmethod
    def _unit(vector: List[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32)
        norm = float(np.linalg.norm(arr))
        return arr / norm if norm > 0 else arr

    async def upsert(self, item_id: str, vector: List[float]) -> None:
        row = self._unit(vector)
        if self._matrix is not None and row.shape[0] != self._matrix.shape[1]:
            raise ValueError(
                f"Vector dimension mismatch for {item_id}: {row.shape[0]} != {self._matrix.shape[1]}"
            )

        position = self._positions.get(item_id)
        if position is not None:
            self._matrix[position] = row
            return

        self._positions[item_id] = len(self._ids)
        self._ids.append(item_id)
        if self._matrix is None:
            self._matrix = row.reshape(1, -1)
        else:
            self._matrix = np.vstack([self._matrix, row])

    async def get(self, item_id: str) -> Optional[List[float]]:
        position = self._positions.get(item_id)
        if position is None:
            return None
        return self._matrix[position].tolist()

    async def remove(self, item_id: str) -> None:
        position = self._positions.pop(item_id, None)
        if position is None:
            return
        self._ids.pop(position)
        self._matrix = np.delete(self._matrix, position, axis=0)
        if not self._ids:
            self._matrix = None
        self._positions = {item_id: i for i, item_id in enumerate(self._ids)}

    async def similarity_search(
        self,
        vector: List[float],
        k: int,
        threshold: float = 0.0,
        restrict_to: Optional[AbstractSet[str]] = None,
        exclude: Optional[AbstractSet[str]] = None,
    ) -> List[Tuple[str, float]]:
        if self._matrix is None or k <= 0:
            return []

        query = self._unit(vector)
        if query.shape[0] != self._matrix.shape[1]:
            raise ValueError(f"Query dimension {query.shape[0]} != index dimension {self._matrix.shape[1]}")

        similarities = self._matrix @ query
        order = np.argsort(-similarities, kind="stable")

        results: List[Tuple[str, float]] = []
        for position in order:
            similarity = float(similarities[position])
            if similarity < threshold:
                break
            item_id = self._ids[position]
            if restrict_to is not None and item_id not in restrict_to:
                continue
            if exclude and item_id in exclude:
                continue
            results.append((item_id, similarity))
            if len(results) >= k:
                break
        return results
