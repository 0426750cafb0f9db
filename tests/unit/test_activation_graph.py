"""
Unit tests for the activation graph: spreading, decay, auto-connection and reads.
"""

import asyncio
import math
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from src.embeddings import HashingEmbedder
from src.errors import ItemNotFound, ProviderUnavailable
from src.graph import ActivationGraph, SpreadingWorker
from src.models import ActivationNode, Edge, ItemKind, utcnow
from src.semantic import SemanticScorer
from src.vector_index import InMemoryVectorIndex

from corpus_helpers import make_item

pytestmark = pytest.mark.unit


def add(graph, item_id, content="", activation=1.0, **kwargs):
    item = make_item(item_id, content or f"content of {item_id}", **kwargs)
    return graph.add_node(item, ActivationNode(item_id=item_id, activation_strength=activation,
                                               created_at=item.created_at))


async def semantic_graph(items):
    """Graph with a hashing-embedder semantic scorer and every item embedded"""
    embedder = HashingEmbedder()
    vectors = InMemoryVectorIndex()
    graph = ActivationGraph(semantic=SemanticScorer(embedder, vectors), read_boost=0.05)
    for item in items:
        graph.add_node(item)
        await vectors.upsert(item.id, await embedder.embed(item.text))
    return graph


class TestNodesAndEdges:
    """Test node registration and edge validation"""

    def test_new_node_starts_fully_active(self):
        graph = ActivationGraph()
        node = graph.add_node(make_item("a", "alpha"))
        assert node.activation_strength == 1.0
        assert "a" in graph
        assert len(graph) == 1

    def test_readding_keeps_state(self):
        graph = ActivationGraph()
        node = add(graph, "a", activation=0.3)
        again = graph.add_node(make_item("a", "alpha updated"))
        assert again is node
        assert again.activation_strength == 0.3
        assert "updated" in graph.tokens("a")

    def test_persisted_activation_clamped(self):
        graph = ActivationGraph()
        node = add(graph, "a", activation=3.0)
        assert node.activation_strength == 1.0

    def test_connect_bidirectional(self):
        graph = ActivationGraph()
        add(graph, "a")
        add(graph, "b")
        graph.connect("a", "b", 0.6)
        assert graph.get("a").connections["b"].strength == 0.6
        assert graph.get("b").connections["a"].strength == 0.6

    def test_connect_directed(self):
        graph = ActivationGraph()
        add(graph, "a")
        add(graph, "b")
        graph.connect("a", "b", 0.6, bidirectional=False)
        assert "a" not in graph.get("b").connections

    def test_connect_rejects_invalid(self):
        graph = ActivationGraph()
        add(graph, "a")
        add(graph, "b")
        with pytest.raises(ValueError):
            graph.connect("a", "a", 0.5)
        with pytest.raises(ValueError):
            graph.connect("a", "b", 1.5)
        with pytest.raises(ValueError):
            graph.connect("a", "b", float("nan"))
        with pytest.raises(ItemNotFound):
            graph.connect("a", "missing", 0.5)


class TestAccess:
    """Test direct access"""

    @pytest.mark.asyncio
    async def test_access_boosts_and_counts(self):
        graph = ActivationGraph()
        add(graph, "a", activation=0.5)
        activation = await graph.access("a", 0.2)
        node = graph.get("a")
        assert activation == pytest.approx(0.7)
        assert node.access_count == 1
        assert node.last_accessed is not None

    @pytest.mark.asyncio
    async def test_access_clamps_to_one(self):
        graph = ActivationGraph()
        add(graph, "a", activation=0.5)
        assert await graph.access("a", 10) == 1.0

    @pytest.mark.asyncio
    async def test_access_unknown(self):
        with pytest.raises(ItemNotFound):
            await ActivationGraph().access("nope")

    @pytest.mark.asyncio
    async def test_access_enqueues_spreading(self):
        graph = ActivationGraph(default_max_depth=3)
        add(graph, "a", activation=0.5)
        worker = MagicMock()
        graph.attach_worker(worker)

        await graph.access("a", 0.1)
        worker.enqueue.assert_called_once_with("a", 0.1, 3)


class TestSpread:
    """Test BFS spreading activation"""

    @pytest.mark.asyncio
    async def test_access_then_single_hop_spread(self):
        """boost × strength × 0.5 reaches the neighbour"""
        graph = ActivationGraph()
        worker = SpreadingWorker(graph)
        add(graph, "a", activation=0.5)
        add(graph, "b", activation=0.2)
        graph.connect("a", "b", 0.5)

        assert await graph.access("a", 0.4) == pytest.approx(0.9)
        job = worker.queue.get_nowait()
        assert (job.source_id, job.boost) == ("a", 0.4)
        assert graph.get("b").activation_strength == pytest.approx(0.2)

        delivered = await graph.spread("a", 0.4, max_depth=1)

        assert delivered == {"b": pytest.approx(0.1)}
        assert graph.get("b").activation_strength == pytest.approx(0.3)
        assert graph.get("a").activation_strength == pytest.approx(0.9)  # spread leaves the source alone

    @pytest.mark.asyncio
    async def test_multi_hop_attenuation(self):
        graph = ActivationGraph()
        for node_id in ("a", "b", "c"):
            add(graph, node_id, activation=0.0)
        graph.connect("a", "b", 1.0)
        graph.connect("b", "c", 0.5)

        delivered = await graph.spread("a", 0.8, max_depth=2)
        assert delivered["b"] == pytest.approx(0.4)
        assert delivered["c"] == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_depth_limit(self):
        graph = ActivationGraph()
        for node_id in ("a", "b", "c"):
            add(graph, node_id, activation=0.0)
        graph.connect("a", "b", 1.0)
        graph.connect("b", "c", 1.0)

        delivered = await graph.spread("a", 0.8, max_depth=1)
        assert set(delivered) == {"b"}
        assert graph.get("c").activation_strength == 0.0

    @pytest.mark.asyncio
    async def test_cycle_visits_each_node_once(self):
        graph = ActivationGraph()
        for node_id in ("a", "b", "c"):
            add(graph, node_id, activation=0.0)
        graph.connect("a", "b", 1.0)
        graph.connect("b", "c", 1.0)
        graph.connect("c", "a", 1.0)

        delivered = await graph.spread("a", 0.8, max_depth=5)

        assert set(delivered) == {"b", "c"}
        # Both are direct neighbours of a, so both get exactly one hop's worth
        assert graph.get("b").activation_strength == pytest.approx(0.4)
        assert graph.get("c").activation_strength == pytest.approx(0.4)
        assert graph.get("a").activation_strength == 0.0

    @pytest.mark.asyncio
    async def test_large_boost_stays_clamped(self):
        graph = ActivationGraph()
        add(graph, "a", activation=0.5)
        add(graph, "b", activation=0.9)
        graph.connect("a", "b", 1.0)

        await graph.spread("a", 10.0, max_depth=1)
        assert graph.get("b").activation_strength == 1.0

    @pytest.mark.asyncio
    async def test_malformed_edges_skipped(self, caplog):
        graph = ActivationGraph()
        for node_id in ("a", "b", "c"):
            add(graph, node_id, activation=0.0)
        graph.connect("a", "b", 1.0)
        source = graph.get("a")
        source.connections["ghost"] = Edge(target_id="ghost", strength=0.9)
        source.connections["c"] = Edge(target_id="c", strength=float("nan"))

        delivered = await graph.spread("a", 0.6, max_depth=1)

        assert set(delivered) == {"b"}
        assert graph.get("c").activation_strength == 0.0
        assert "malformed edge" in caplog.text

    @pytest.mark.asyncio
    async def test_concurrent_spreads_reinforce(self):
        graph = ActivationGraph()
        add(graph, "a", activation=0.0)
        add(graph, "b", activation=0.0)
        graph.connect("a", "b", 1.0)

        await asyncio.gather(*(graph.spread("a", 0.2, max_depth=1) for _ in range(3)))
        assert graph.get("b").activation_strength == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_unknown_source(self):
        with pytest.raises(ItemNotFound):
            await ActivationGraph().spread("nope", 0.5)


class TestDecay:
    """Test time-based decay toward base activation"""

    @pytest.mark.asyncio
    async def test_decay_formula(self):
        graph = ActivationGraph()
        node = add(graph, "a", activation=0.9)
        now = utcnow()
        node.last_decay = now - timedelta(hours=10)

        changed = await graph.decay_all(now=now)

        assert changed == 1
        expected = 0.1 + (0.9 - 0.1) * (1 - 0.05) ** 10
        assert node.activation_strength == pytest.approx(expected)
        assert node.last_decay == now

    @pytest.mark.asyncio
    async def test_decay_converges_to_base(self):
        graph = ActivationGraph()
        node = add(graph, "a", activation=1.0)
        now = utcnow()
        node.last_decay = now - timedelta(days=365)

        await graph.decay_all(now=now)
        assert node.activation_strength == pytest.approx(node.base_activation, abs=1e-6)

    @pytest.mark.asyncio
    async def test_decay_raises_below_base(self):
        graph = ActivationGraph()
        node = add(graph, "a", activation=0.0)
        now = utcnow()
        node.last_decay = now - timedelta(hours=5)

        await graph.decay_all(now=now)
        assert 0.0 < node.activation_strength < node.base_activation

    @pytest.mark.asyncio
    async def test_no_elapsed_time_no_change(self):
        graph = ActivationGraph()
        node = add(graph, "a", activation=0.7)
        assert await graph.decay_all(now=node.last_decay) == 0
        assert node.activation_strength == 0.7


class TestAutoConnect:
    """Test similarity-based edge creation"""

    @pytest.mark.asyncio
    async def test_connects_similar_nodes(self):
        items = [
            make_item("k1", "kubernetes deployment rollout strategy"),
            make_item("k2", "kubernetes deployment rollout strategy"),
            make_item("x", "chocolate cake recipe"),
        ]
        graph = await semantic_graph(items)

        edges = await graph.auto_connect("k1", similarity_threshold=0.75)

        assert [edge.target_id for edge in edges] == ["k2"]
        assert edges[0].type == "semantic"
        assert edges[0].strength == pytest.approx(1.0)
        assert "k1" in graph.get("k2").connections

    @pytest.mark.asyncio
    async def test_ties_prefer_recent_nodes(self):
        items = [
            make_item("src", "kubernetes deployment rollout strategy"),
            make_item("old", "kubernetes deployment rollout strategy", age_days=30),
            make_item("new", "kubernetes deployment rollout strategy", age_days=1),
        ]
        graph = await semantic_graph(items)

        edges = await graph.auto_connect("src", similarity_threshold=0.5, max_new_edges=1)
        assert [edge.target_id for edge in edges] == ["new"]

    @pytest.mark.asyncio
    async def test_respects_max_new_edges_and_existing(self):
        items = [make_item(f"n{i}", "kubernetes deployment rollout strategy", age_days=i) for i in range(5)]
        graph = await semantic_graph(items)
        graph.connect("n0", "n1", 0.3)

        edges = await graph.auto_connect("n0", similarity_threshold=0.5, max_new_edges=2)

        assert [edge.target_id for edge in edges] == ["n2", "n3"]
        assert graph.get("n0").connections["n1"].strength == 0.3

    @pytest.mark.asyncio
    async def test_directed(self):
        items = [make_item("a", "kubernetes pods"), make_item("b", "kubernetes pods")]
        graph = await semantic_graph(items)
        await graph.auto_connect("a", similarity_threshold=0.5, bidirectional=False)
        assert "b" in graph.get("a").connections
        assert "a" not in graph.get("b").connections

    @pytest.mark.asyncio
    async def test_node_without_vector(self):
        graph = await semantic_graph([make_item("a", "kubernetes pods")])
        graph.add_node(make_item("b", "kubernetes pods"))
        assert await graph.auto_connect("b") == []


class TestReads:
    """Test search, peek and graph_search"""

    @pytest.mark.asyncio
    async def test_search_ranks_by_similarity_then_activation(self):
        items = [
            make_item("a", "kubernetes deployment"),
            make_item("b", "kubernetes deployment"),
            make_item("c", "chocolate cake"),
        ]
        graph = await semantic_graph(items)
        graph.get("a").activation_strength = 0.2
        graph.get("b").activation_strength = 0.8

        hits = await graph.search("kubernetes deployment", similarity_threshold=0.7)

        assert [hit.item_id for hit in hits] == ["b", "a"]
        assert hits[0].similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_search_kind_filter(self):
        items = [
            make_item("a", "kubernetes deployment", kind=ItemKind.CODE),
            make_item("b", "kubernetes deployment", kind=ItemKind.DECISION),
        ]
        graph = await semantic_graph(items)
        hits = await graph.search("kubernetes deployment", kind_filter="decision")
        assert [hit.item_id for hit in hits] == ["b"]

    @pytest.mark.asyncio
    async def test_boost_on_read(self):
        graph = await semantic_graph([make_item("a", "kubernetes deployment")])
        graph.get("a").activation_strength = 0.5

        hits = await graph.search("kubernetes deployment", boost_on_read=True)

        assert hits[0].activation == pytest.approx(0.55)
        assert graph.get("a").activation_strength == pytest.approx(0.55)

    @pytest.mark.asyncio
    async def test_peek_is_idempotent(self):
        graph = await semantic_graph([make_item("a", "kubernetes deployment")])
        graph.get("a").activation_strength = 0.5

        first = await graph.peek("kubernetes deployment")
        second = await graph.peek("kubernetes deployment")

        assert [h.item_id for h in first] == [h.item_id for h in second] == ["a"]
        assert graph.get("a").activation_strength == 0.5

    @pytest.mark.asyncio
    async def test_search_without_semantic(self):
        with pytest.raises(ProviderUnavailable):
            await ActivationGraph().search("anything")

    def test_graph_search_seeds_and_propagation(self):
        graph = ActivationGraph()
        add(graph, "a", "kubernetes cluster upgrade", activation=1.0)
        add(graph, "b", "monitoring dashboards", activation=1.0)
        add(graph, "c", "chocolate cake", activation=1.0)
        graph.connect("a", "b", 0.8)

        ranked = dict(graph.graph_search(["kubernetes"]))

        assert ranked["a"] == pytest.approx(1.0)
        assert ranked["b"] == pytest.approx(0.4)
        assert "c" not in ranked

    def test_graph_search_activation_weighting(self):
        graph = ActivationGraph()
        add(graph, "hot", "kubernetes", activation=1.0)
        add(graph, "cold", "kubernetes", activation=0.0)

        ranked = graph.graph_search(["kubernetes"])

        assert ranked[0] == ("hot", pytest.approx(1.0))
        assert ranked[1] == ("cold", pytest.approx(0.5))

    def test_graph_search_does_not_mutate(self):
        graph = ActivationGraph()
        add(graph, "a", "kubernetes", activation=0.4)
        graph.graph_search(["kubernetes"])
        assert graph.get("a").activation_strength == 0.4

    def test_graph_search_kind_filter(self):
        graph = ActivationGraph()
        add(graph, "a", "kubernetes", kind=ItemKind.CODE)
        add(graph, "b", "kubernetes", kind=ItemKind.DESIGN)
        assert [pair[0] for pair in graph.graph_search(["kubernetes"], kind_filter="design")] == ["b"]

    def test_snapshot_order(self):
        graph = ActivationGraph()
        add(graph, "low", activation=0.1)
        add(graph, "high", activation=0.9)
        add(graph, "mid", activation=0.5)
        assert [n.item_id for n in graph.snapshot()] == ["high", "mid", "low"]
        assert [n.item_id for n in graph.snapshot(limit=1)] == ["high"]
        assert all(not math.isnan(n.activation_strength) for n in graph.snapshot())
