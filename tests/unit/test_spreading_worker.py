"""
Unit tests for the background spreading worker.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.graph import ActivationGraph, SpreadingWorker
from src.models import ActivationNode

from corpus_helpers import make_item

pytestmark = pytest.mark.unit


def chain_graph():
    """a - b, both at activation 0"""
    graph = ActivationGraph()
    for node_id in ("a", "b"):
        graph.add_node(make_item(node_id, f"node {node_id}"), ActivationNode(item_id=node_id, activation_strength=0.0))
    graph.connect("a", "b", 1.0)
    return graph


class TestSpreadingWorker:
    """Test batch draining, backpressure and failure isolation"""

    @pytest.mark.asyncio
    async def test_drains_at_most_batch_size(self):
        worker = SpreadingWorker(chain_graph(), batch_size=5)
        for _ in range(12):
            assert worker.enqueue("a", 0.01, 1)

        assert await worker.run_once() == 5
        assert worker.pending == 7
        assert await worker.run_once() == 5
        assert await worker.run_once() == 2
        assert await worker.run_once() == 0
        assert worker.processed == 12

    @pytest.mark.asyncio
    async def test_jobs_apply_spreading(self):
        graph = chain_graph()
        worker = SpreadingWorker(graph)
        worker.enqueue("a", 0.4, 1)

        await worker.run_once()
        assert graph.get("b").activation_strength == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_full_queue_drops_new_jobs(self, caplog):
        worker = SpreadingWorker(chain_graph(), queue_maxsize=2)
        assert worker.enqueue("a", 0.1, 1)
        assert worker.enqueue("a", 0.1, 1)
        assert not worker.enqueue("a", 0.1, 1)
        assert worker.dropped == 1
        assert worker.pending == 2
        assert "queue full" in caplog.text

    @pytest.mark.asyncio
    async def test_failing_job_does_not_abort_batch(self, caplog):
        graph = chain_graph()
        worker = SpreadingWorker(graph)
        worker.enqueue("missing", 0.4, 1)
        worker.enqueue("a", 0.4, 1)

        taken = await worker.run_once()

        assert taken == 2
        assert worker.failed == 1
        assert worker.processed == 1
        assert graph.get("b").activation_strength == pytest.approx(0.2)
        assert "failed" in caplog.text

    @pytest.mark.asyncio
    async def test_decay_every_n_ticks(self):
        graph = chain_graph()
        graph.decay_all = AsyncMock(return_value=0)
        worker = SpreadingWorker(graph, decay_every_ticks=3)

        for _ in range(7):
            await worker.run_once()
        assert graph.decay_all.await_count == 2

    @pytest.mark.asyncio
    async def test_decay_disabled(self):
        graph = chain_graph()
        graph.decay_all = AsyncMock(return_value=0)
        worker = SpreadingWorker(graph, decay_every_ticks=0)
        for _ in range(5):
            await worker.run_once()
        graph.decay_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_access_routes_to_worker(self):
        graph = chain_graph()
        worker = SpreadingWorker(graph)

        await graph.access("a", 0.2)

        assert worker.pending == 1
        job = worker.queue.get_nowait()
        assert (job.source_id, job.boost) == ("a", 0.2)

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        graph = chain_graph()
        worker = SpreadingWorker(graph, tick_interval=0.01)
        worker.start()
        assert worker.running
        worker.start()  # idempotent

        worker.enqueue("a", 0.4, 1)
        for _ in range(100):
            if worker.processed:
                break
            await asyncio.sleep(0.01)

        await worker.stop()
        assert not worker.running
        assert worker.processed == 1
        assert graph.get("b").activation_strength == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        worker = SpreadingWorker(chain_graph())
        await worker.stop()
        assert not worker.running
