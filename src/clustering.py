"""
Density-based clustering (DBSCAN) of graph nodes for topic discovery.

Distance:
- cosine over embeddings when every node has a vector ("auto"), or on request
- Jaccard over normalized token sets otherwise

A point's neighbourhood is every *other* point within eps. Points with fewer
than min_points neighbours are noise unless reachable from a core point, in
which case they join that cluster as border points. Noise is never forced
into the nearest cluster.

The distance matrix is built cooperatively and the fit runs in a worker
thread, so wrapping the analysis in a task makes it cancellable.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from sklearn.cluster import DBSCAN
from sklearn.metrics.pairwise import cosine_distances

from .graph.activation import ActivationGraph
from .models import Cluster
from .reranking.similarity import jaccard_distance
from .vector_index import VectorBackend

logger = logging.getLogger(__name__)

NOISE = -1
DISTANCE_KINDS = ("auto", "cosine", "jaccard")
MIN_TOPIC_LENGTH = 4
TOPICS_PER_CLUSTER = 3


@dataclass
class ClusterOptions:
    eps: float = 0.3
    min_points: int = 3
    distance_kind: str = "auto"  # auto | cosine | jaccard

    def __post_init__(self):
        if self.eps < 0:
            raise ValueError("eps must be >= 0")
        if self.min_points < 1:
            raise ValueError("min_points must be >= 1")
        if self.distance_kind not in DISTANCE_KINDS:
            raise ValueError(f"distance_kind must be one of {DISTANCE_KINDS}, got {self.distance_kind!r}")


class ClusterAnalyzer:
    def __init__(self, graph: ActivationGraph, vectors: Optional[VectorBackend] = None):
        self.graph = graph
        self.vectors = vectors

    async def _load_vectors(self, node_ids: List[str]) -> Optional[np.ndarray]:
        """Vectors for every node, or None if any is missing"""
        if self.vectors is None:
            return None
        rows = []
        for node_id in node_ids:
            vector = await self.vectors.get(node_id)
            if vector is None:
                return None
            rows.append(vector)
        return np.asarray(rows, dtype=np.float32)

    async def _jaccard_matrix(self, node_ids: List[str]) -> np.ndarray:
        n = len(node_ids)
        tokens = [self.graph.tokens(node_id) for node_id in node_ids]
        matrix = np.zeros((n, n), dtype=np.float32)
        for i in range(n):
            for j in range(i + 1, n):
                matrix[i, j] = matrix[j, i] = jaccard_distance(tokens[i], tokens[j])
            await asyncio.sleep(0)
        return matrix

    async def analyze(self, options: Optional[ClusterOptions] = None) -> List[Cluster]:
        """
        Run DBSCAN over all graph nodes.

        Returns:
            Clusters in discovery order (noise points are not reported)

        Raises:
            ValueError: distance_kind="cosine" but some node has no vector
        """
        options = options or ClusterOptions()
        node_ids = self.graph.node_ids
        if not node_ids:
            return []

        vectors = None
        if options.distance_kind in ("auto", "cosine"):
            vectors = await self._load_vectors(node_ids)
            if vectors is None and options.distance_kind == "cosine":
                raise ValueError("Cosine clustering requires a vector for every node")

        if vectors is not None:
            distance_kind = "cosine"
            distances = cosine_distances(vectors)
        else:
            distance_kind = "jaccard"
            distances = await self._jaccard_matrix(node_ids)

        # sklearn counts the point itself towards min_samples
        model = DBSCAN(eps=options.eps, min_samples=options.min_points + 1, metric="precomputed")
        labels = await asyncio.to_thread(model.fit_predict, distances)
        core = np.zeros(len(node_ids), dtype=bool)
        core[model.core_sample_indices_] = True
        neighbour_counts = (distances <= options.eps).sum(axis=1) - 1

        cluster_count = int(labels.max()) + 1
        clusters = [
            self._describe(cluster_id, node_ids, labels, core, neighbour_counts, vectors)
            for cluster_id in range(cluster_count)
        ]
        noise = int((labels == NOISE).sum())
        logger.info(
            f"DBSCAN ({distance_kind}, eps={options.eps}, min_points={options.min_points}): "
            f"{len(clusters)} clusters, {noise} noise points"
        )
        return clusters

    def _describe(self, cluster_id, node_ids, labels, core, neighbour_counts, vectors) -> Cluster:
        members = np.flatnonzero(labels == cluster_id)
        core_points = int(core[members].sum())

        kind_counts = Counter(self.graph.kind(node_ids[i]) for i in members)
        top = max(kind_counts.values())
        dominant_kinds = sorted(kind for kind, count in kind_counts.items() if count == top and kind)

        term_counts: Counter = Counter()
        for i in members:
            term_counts.update(t for t in self.graph.tokens(node_ids[i]) if len(t) >= MIN_TOPIC_LENGTH)
        topics = [term for term, _ in sorted(term_counts.items(), key=lambda kv: (-kv[1], kv[0]))]

        centroid = None
        if vectors is not None:
            centroid = vectors[members].mean(axis=0).tolist()

        return Cluster(
            cluster_id=cluster_id,
            member_ids=[node_ids[i] for i in members],
            core_points=core_points,
            border_points=len(members) - core_points,
            density=float(neighbour_counts[members].sum()) / len(members) / len(node_ids),
            dominant_kinds=dominant_kinds,
            topics=topics[:TOPICS_PER_CLUSTER],
            centroid=centroid,
        )
