"""
Unit tests for DBSCAN clustering of graph nodes.
"""

import asyncio
import math

import pytest

from src.clustering import ClusterAnalyzer, ClusterOptions
from src.graph import ActivationGraph
from src.models import ItemKind
from src.vector_index import InMemoryVectorIndex

from corpus_helpers import make_item

pytestmark = pytest.mark.unit


KUBERNETES = [
    "kubernetes deployment rollout",
    "kubernetes deployment rollback",
    "kubernetes deployment canary",
    "kubernetes deployment rollout canary",
]
COOKING = [
    "chocolate cake recipe",
    "chocolate cake frosting",
    "chocolate cake baking",
    "chocolate cake recipe baking",
]


def topic_graph(outlier=True):
    graph = ActivationGraph()
    for i, text in enumerate(KUBERNETES):
        graph.add_node(make_item(f"k{i}", text, kind=ItemKind.CODE))
    for i, text in enumerate(COOKING):
        graph.add_node(make_item(f"c{i}", text, kind=ItemKind.DOCUMENT))
    if outlier:
        graph.add_node(make_item("lonely", "quantum entanglement photons"))
    return graph


class TestClusterOptions:
    def test_validation(self):
        with pytest.raises(ValueError):
            ClusterOptions(eps=-0.1)
        with pytest.raises(ValueError):
            ClusterOptions(min_points=0)
        with pytest.raises(ValueError):
            ClusterOptions(distance_kind="euclidean")


class TestJaccardClustering:
    """Token-overlap DBSCAN (no vectors available)"""

    @pytest.mark.asyncio
    async def test_finds_topics_and_noise(self):
        analyzer = ClusterAnalyzer(topic_graph())

        clusters = await analyzer.analyze(ClusterOptions(eps=0.7, min_points=2))

        members = [set(c.member_ids) for c in clusters]
        assert {"k0", "k1", "k2", "k3"} in members
        assert {"c0", "c1", "c2", "c3"} in members
        assert all("lonely" not in m for m in members)

    @pytest.mark.asyncio
    async def test_cluster_description(self):
        analyzer = ClusterAnalyzer(topic_graph())
        clusters = await analyzer.analyze(ClusterOptions(eps=0.7, min_points=2))
        code = next(c for c in clusters if "k0" in c.member_ids)

        assert code.size == 4
        assert code.dominant_kinds == ["code"]
        assert code.topics[:2] == ["deployment", "kubernetes"]
        assert code.core_points + code.border_points == code.size
        assert 0.0 < code.density <= 1.0
        assert code.centroid is None

    @pytest.mark.asyncio
    async def test_high_min_points_is_all_noise(self):
        analyzer = ClusterAnalyzer(topic_graph())
        assert await analyzer.analyze(ClusterOptions(eps=0.7, min_points=10)) == []

    @pytest.mark.asyncio
    async def test_empty_graph(self):
        assert await ClusterAnalyzer(ActivationGraph()).analyze() == []


class TestCosineClustering:
    """Embedding-based DBSCAN"""

    async def _vectors(self, graph):
        vectors = InMemoryVectorIndex()
        axis = {"k": [1.0, 0.0, 0.0], "c": [0.0, 1.0, 0.0], "l": [0.0, 0.0, 1.0]}
        for node_id in graph.node_ids:
            base = list(axis[node_id[0]])
            base[2] += 0.01 * len(node_id)
            await vectors.upsert(node_id, base)
        return vectors

    @pytest.mark.asyncio
    async def test_auto_uses_cosine_when_all_vectors_present(self):
        graph = topic_graph()
        analyzer = ClusterAnalyzer(graph, await self._vectors(graph))

        clusters = await analyzer.analyze(ClusterOptions(eps=0.1, min_points=2))

        assert len(clusters) == 2
        assert all(c.centroid is not None and len(c.centroid) == 3 for c in clusters)

    @pytest.mark.asyncio
    async def test_cosine_requires_every_vector(self):
        graph = topic_graph()
        vectors = await self._vectors(graph)
        await vectors.remove("lonely")
        analyzer = ClusterAnalyzer(graph, vectors)

        with pytest.raises(ValueError, match="vector"):
            await analyzer.analyze(ClusterOptions(distance_kind="cosine"))

    @pytest.mark.asyncio
    async def test_auto_falls_back_to_jaccard(self):
        graph = topic_graph()
        vectors = await self._vectors(graph)
        await vectors.remove("lonely")
        analyzer = ClusterAnalyzer(graph, vectors)

        clusters = await analyzer.analyze(ClusterOptions(eps=0.7, min_points=2))
        assert len(clusters) == 2
        assert all(c.centroid is None for c in clusters)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_analysis_can_be_cancelled(self):
        graph = ActivationGraph()
        for i in range(200):
            graph.add_node(make_item(f"n{i}", f"shared token variant{i}"))
        task = asyncio.create_task(ClusterAnalyzer(graph).analyze(ClusterOptions(eps=0.9, min_points=2)))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestCoreAndBorderPoints:
    """A core point needs min_points *other* points within eps"""

    ANGLES = {"a": 0.0, "b": 0.05, "c": 0.1, "edge": 0.4, "far": 2.0}

    async def _analyzer(self, angles=None):
        graph = ActivationGraph()
        vectors = InMemoryVectorIndex()
        for node_id, angle in (angles or self.ANGLES).items():
            graph.add_node(make_item(node_id, f"point {node_id}"))
            await vectors.upsert(node_id, [math.cos(angle), math.sin(angle)])
        return ClusterAnalyzer(graph, vectors)

    @pytest.mark.asyncio
    async def test_border_point_joins_but_is_not_core(self):
        analyzer = await self._analyzer()

        clusters = await analyzer.analyze(ClusterOptions(eps=0.05, min_points=2))

        assert len(clusters) == 1
        cluster = clusters[0]
        assert set(cluster.member_ids) == {"a", "b", "c", "edge"}
        assert cluster.core_points == 3
        assert cluster.border_points == 1

    @pytest.mark.asyncio
    async def test_point_does_not_count_itself(self):
        analyzer = await self._analyzer({"a": 0.0, "b": 0.05, "far": 2.0})

        pairs = await analyzer.analyze(ClusterOptions(eps=0.05, min_points=1))
        assert [set(c.member_ids) for c in pairs] == [{"a", "b"}]

        # a and b each have a single neighbour
        assert await analyzer.analyze(ClusterOptions(eps=0.05, min_points=2)) == []
