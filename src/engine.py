"""
Hybrid cognitive retrieval engine.

One search = three independent passes run concurrently:
- bm25: lexical scoring against the current TermIndex snapshot
- semantic: embedding + vector similarity (bounded by a timeout)
- graph: token-seeded proximity over the activation graph

The ranked lists are fused with weighted RRF, optionally decayed by item age,
and diversified with MMR. A failing or timed-out pass is recorded in the
response signals and the search proceeds with the rest (degraded=True); only
when every attempted pass fails is AllSignalsUnavailable raised.

All mutable state (corpus cache, index snapshot, activation graph, worker)
is owned by the RetrievalEngine instance.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .bm25 import BM25Scorer, FuzzyExpander, TermIndex, token_set, tokenize
from .bm25 import build_index as build_term_index
from .clustering import ClusterAnalyzer, ClusterOptions
from .config import EngineConfig
from .database import InMemoryRepository, KnowledgeRepository
from .embeddings import BaseEmbedder
from .errors import AllSignalsUnavailable, IndexStale, InvalidQuery, ItemNotFound, ProviderUnavailable
from .graph import ActivationGraph, SpreadingWorker
from .models import (
    ActivationNode,
    Cluster,
    Item,
    ItemKind,
    RetrievalMethod,
    ScoredResult,
    SearchResponse,
    SignalStatus,
)
from .reranking import RerankingFactory, apply_temporal_decay, diversity_score, reciprocal_rank_fusion
from .semantic import SemanticScorer
from .vector_index import InMemoryVectorIndex, VectorBackend

logger = logging.getLogger(__name__)

BM25 = RetrievalMethod.BM25.value
SEMANTIC = RetrievalMethod.SEMANTIC.value
GRAPH = RetrievalMethod.GRAPH.value
PASS_ORDER = (BM25, SEMANTIC, GRAPH)

# Reinforcement after a boosting read: spread from the top result
READ_SPREAD_BOOST = 0.2
READ_SPREAD_DEPTH = 2
GRAPH_PASS_DEPTH = 2
NO_PROVIDER = "no embedding provider configured"


@dataclass
class SignalWeights:
    bm25: float = 0.6
    semantic: float = 0.2
    graph: float = 0.2

    def __post_init__(self):
        if min(self.bm25, self.semantic, self.graph) < 0:
            raise ValueError("Signal weights must be >= 0")
        if self.bm25 + self.semantic + self.graph <= 0:
            raise ValueError("At least one signal weight must be positive")

    def as_dict(self) -> Dict[str, float]:
        return {BM25: self.bm25, SEMANTIC: self.semantic, GRAPH: self.graph}


@dataclass
class SearchOptions:
    kind_filter: Optional[str] = None
    limit: int = 10
    similarity_threshold: float = 0.7
    weights: Optional[SignalWeights] = None  # None = configured defaults
    diversity_lambda: float = 0.7
    temporal_decay: float = 0.0
    boost_on_read: bool = False  # the only read that writes activation
    fuzzy: bool = False

    def __post_init__(self):
        if isinstance(self.kind_filter, ItemKind):
            self.kind_filter = self.kind_filter.value
        if self.kind_filter is not None:
            try:
                ItemKind(self.kind_filter)
            except ValueError:
                raise InvalidQuery(f"Unknown kind filter: {self.kind_filter}")
        if self.limit < 1:
            raise InvalidQuery("limit must be >= 1")
        if not (0.0 <= self.diversity_lambda <= 1.0):
            raise InvalidQuery("diversity_lambda must be within [0, 1]")
        if self.temporal_decay < 0:
            raise InvalidQuery("temporal_decay must be >= 0")


@dataclass
class PassResult:
    ranking: List[Tuple[str, float]]
    bm25_breakdown: Dict[str, Dict[str, float]] = field(default_factory=dict)


class RetrievalEngine:
    """
    Owns the corpus cache, TermIndex snapshot, activation graph and spreading worker.

    Usage:
        engine = RetrievalEngine(EngineConfig.from_env())
        await engine.load()
        engine.start()
        response = await engine.search("kubernetes deployment")
        await engine.stop()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        repository: Optional[KnowledgeRepository] = None,
        embedder: Optional[BaseEmbedder] = None,
        vectors: Optional[VectorBackend] = None,
    ):
        self.config = config or EngineConfig()
        self.repository = repository or InMemoryRepository()
        if vectors is None:
            vectors = self.repository if isinstance(self.repository, VectorBackend) else InMemoryVectorIndex()
        self.vectors = vectors

        self.semantic = SemanticScorer(embedder, vectors, timeout=self.config.semantic_timeout)
        self.scorer = BM25Scorer(k1=self.config.bm25_k1, b=self.config.bm25_b)
        self.fuzzy = FuzzyExpander()
        self.graph = ActivationGraph(
            semantic=self.semantic,
            read_boost=self.config.read_boost,
            default_max_depth=self.config.spread_max_depth,
            stemmer_language=self.config.stemmer_language,
        )
        self.worker = SpreadingWorker(
            self.graph,
            tick_interval=self.config.spread_tick_seconds,
            batch_size=self.config.spread_batch_size,
            queue_maxsize=self.config.spread_queue_maxsize,
            decay_every_ticks=self.config.decay_every_ticks,
        )
        self.reranker = RerankingFactory.create(
            self.config.reranker_type,
            stemmer_language=self.config.stemmer_language,
        )
        self.clusterer = ClusterAnalyzer(self.graph, vectors)
        self.default_weights = SignalWeights(
            bm25=self.config.weight_bm25,
            semantic=self.config.weight_semantic,
            graph=self.config.weight_graph,
        )

        self._items: Dict[str, Item] = {}
        self._index: Optional[TermIndex] = None
        self._rebuild_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def index(self) -> Optional[TermIndex]:
        return self._index

    @property
    def item_count(self) -> int:
        return len(self._items)

    async def load(self) -> TermIndex:
        """Load items and activation nodes from the repository and build the index"""
        items = await self.repository.list_items()
        nodes = {node.item_id: node for node in await self.repository.list_nodes()}
        for item in items:
            self._items[item.id] = item
            self.graph.add_node(item, nodes.get(item.id))
        logger.info(f"Loaded {len(items)} items ({len(nodes)} persisted activation nodes)")
        return self.build_index()

    def build_index(self, items: Optional[List[Item]] = None) -> TermIndex:
        """
        Build a fresh TermIndex and swap it in with one assignment.

        Args:
            items: Full corpus to index (replaces the cached corpus); None
                re-indexes the cached corpus
        """
        if items is not None:
            self._items = {item.id: item for item in items}
            for item in items:
                self.graph.add_node(item)

        index = build_term_index(self._items.values(), self.config.stemmer_language)
        self._index = index
        logger.info(f"BM25 index rebuilt: {index.document_count} docs, {index.vocabulary_size} terms")
        return index

    def _schedule_rebuild(self) -> None:
        # At most one pending rebuild; it reads the corpus when it runs
        if self._rebuild_task is not None and not self._rebuild_task.done():
            return
        self._rebuild_task = asyncio.create_task(self._rebuild())

    async def _rebuild(self) -> None:
        await asyncio.sleep(0)
        self.build_index()

    async def refresh(self) -> Optional[TermIndex]:
        """Wait for a scheduled rebuild (if any) and return the current index"""
        if self._rebuild_task is not None:
            await self._rebuild_task
            self._rebuild_task = None
        return self._index

    def start(self) -> None:
        """Start the background spreading loop"""
        self.worker.start()

    async def stop(self) -> None:
        """Stop the spreading loop and flush activation state to the repository"""
        await self.worker.stop()
        if self.reranker is not None:
            self.reranker.close()
        if self._rebuild_task is not None and not self._rebuild_task.done():
            await self._rebuild_task
        for node in self.graph.snapshot():
            await self.repository.save_node(node)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def index_item(self, item: Item) -> None:
        """
        Add or update an item.

        Stores it, creates its graph node (activation 1.0), embeds it,
        auto-connects it to similar nodes and schedules a re-index. An
        embedding failure only costs the item its vector.
        """
        await self.repository.save_item(item)
        self._items[item.id] = item
        node = self.graph.add_node(item)

        has_vector = False
        if self.semantic.available:
            try:
                vector = await asyncio.wait_for(self.semantic.embed(item.text), self.config.semantic_timeout)
                await self.vectors.upsert(item.id, vector)
                has_vector = True
            except asyncio.TimeoutError:
                logger.warning(
                    f"Embedding item {item.id} timed out after {self.config.semantic_timeout}s, continuing without vector"
                )
            except ProviderUnavailable as e:
                logger.warning(f"Could not embed item {item.id}, continuing without vector: {e}")

        touched = []
        if has_vector and self.config.auto_connect_enabled:
            try:
                edges = await self.graph.auto_connect(
                    item.id,
                    similarity_threshold=self.config.auto_connect_threshold,
                    max_new_edges=self.config.auto_connect_max_edges,
                )
                touched = [edge.target_id for edge in edges]
            except ProviderUnavailable as e:
                logger.warning(f"auto_connect failed for {item.id}: {e}")

        await self.repository.save_node(node)
        for target_id in touched:
            await self.repository.save_node(self.graph.get(target_id))

        self._schedule_rebuild()
        logger.debug(f"Indexed item {item.id} ({len(touched)} new connections)")

    async def access_item(self, item_id: str, boost: float = 0.1) -> float:
        """
        Record a direct access: bump counters, boost activation, queue spreading.

        Returns:
            New activation strength

        Raises:
            ItemNotFound: Unknown item
        """
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFound(item_id)

        updated = await self.repository.record_access(item_id)
        if updated is not None:
            self._items[item_id] = updated
        else:
            item.access_count += 1

        if item_id not in self.graph:
            self.graph.add_node(self._items[item_id])
        activation = await self.graph.access(item_id, boost)
        await self.repository.save_node(self.graph.get(item_id))
        return activation

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _kind_ids(self, kind_filter: Optional[str]):
        if kind_filter is None:
            return None
        return {item_id for item_id, item in self._items.items() if item.kind.value == kind_filter}

    async def _bm25_pass(self, index: TermIndex, terms: List[str], options: SearchOptions, limit: int) -> PassResult:
        query_terms, term_weights = terms, None
        if options.fuzzy:
            query_terms, term_weights = self.fuzzy.expand(terms, index.postings.keys())

        titles = {item_id: item.title for item_id, item in self._items.items() if item.title}
        scores = self.scorer.score(index, query_terms, term_weights=term_weights, titles=titles)

        allowed = self._kind_ids(options.kind_filter)
        ranking = sorted(
            (
                (item_id, entry.score) for item_id, entry in scores.items()
                if item_id in self._items and (allowed is None or item_id in allowed)
            ),
            key=lambda pair: pair[1],
            reverse=True,
        )[:limit]
        breakdown = {
            item_id: {term: c.score for term, c in scores[item_id].breakdown.items()}
            for item_id, _ in ranking
        }
        return PassResult(ranking=ranking, bm25_breakdown=breakdown)

    async def _semantic_pass(self, query: str, options: SearchOptions, limit: int) -> PassResult:
        matches = await self.semantic.search(
            query, limit, options.similarity_threshold, restrict_to=self._kind_ids(options.kind_filter)
        )
        return PassResult(ranking=[(item_id, score) for item_id, score in matches if item_id in self._items])

    async def _graph_pass(self, terms: List[str], options: SearchOptions, limit: int) -> PassResult:
        ranking = self.graph.graph_search(terms, options.kind_filter, limit, max_depth=GRAPH_PASS_DEPTH)
        return PassResult(ranking=[(item_id, score) for item_id, score in ranking if item_id in self._items])

    @staticmethod
    async def _timed(name: str, coro, timings: Dict[str, float]):
        start = time.perf_counter()
        try:
            return await coro
        finally:
            timings[name] = (time.perf_counter() - start) * 1000

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        """
        Hybrid search.

        Raises:
            InvalidQuery: Empty / whitespace-only query or invalid options
            AllSignalsUnavailable: No positively weighted pass produced a ranking
        """
        if query is None or not query.strip():
            raise InvalidQuery("Query must not be empty")
        options = options or SearchOptions()
        weights = (options.weights or self.default_weights).as_dict()

        index = self._index
        if index is None:
            stale = IndexStale("Search requested before any successful index build")
            logger.warning(str(stale))
            return SearchResponse(
                query=query,
                results=[],
                index_stale=True,
                signals={name: SignalStatus(status="skipped", error=str(stale)) for name in PASS_ORDER},
            )

        terms = tokenize(query, self.config.stemmer_language)
        candidate_limit = max(options.limit * 5, self.config.semantic_candidates)

        signals: Dict[str, SignalStatus] = {}
        errors: Dict[str, str] = {}
        attempted: Dict[str, object] = {}
        if weights[BM25] > 0:
            attempted[BM25] = self._bm25_pass(index, terms, options, candidate_limit)
        if weights[SEMANTIC] > 0 and self.semantic.available:
            attempted[SEMANTIC] = self._semantic_pass(query, options, candidate_limit)
        elif weights[SEMANTIC] > 0:
            signals[SEMANTIC] = SignalStatus(status="unavailable", error=NO_PROVIDER)
            errors[SEMANTIC] = NO_PROVIDER
        if weights[GRAPH] > 0:
            attempted[GRAPH] = self._graph_pass(terms, options, candidate_limit)
        for name in PASS_ORDER:
            if weights[name] <= 0:
                signals[name] = SignalStatus(status="skipped", error="weight is 0")

        timings: Dict[str, float] = {}
        outcomes = await asyncio.gather(
            *(self._timed(name, coro, timings) for name, coro in attempted.items()),
            return_exceptions=True,
        )

        rankings: Dict[str, List[Tuple[str, float]]] = {}
        breakdowns: Dict[str, Dict[str, float]] = {}
        for name, outcome in zip(attempted, outcomes):
            elapsed = timings.get(name, 0.0)
            if isinstance(outcome, ProviderUnavailable):
                logger.warning(f"{name} pass unavailable: {outcome}")
                signals[name] = SignalStatus(status="unavailable", elapsed_ms=elapsed, error=str(outcome))
                errors[name] = str(outcome)
            elif isinstance(outcome, Exception):
                logger.warning(f"{name} pass failed: {outcome!r}")
                signals[name] = SignalStatus(status="failed", elapsed_ms=elapsed, error=str(outcome))
                errors[name] = str(outcome) or type(outcome).__name__
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                signals[name] = SignalStatus(status="ok", count=len(outcome.ranking), elapsed_ms=elapsed)
                rankings[name] = outcome.ranking
                breakdowns.update(outcome.bm25_breakdown)

        if not rankings:
            raise AllSignalsUnavailable(errors)

        fused = reciprocal_rank_fusion(rankings, weights, k=self.config.rrf_k)
        fused = apply_temporal_decay(
            fused,
            {f.item_id: self._items[f.item_id].updated_at for f in fused},
            options.temporal_decay,
        )

        if self.reranker is not None and fused:
            candidates = fused[:candidate_limit]
            selection = await self.reranker.rerank(
                query,
                [self._items[f.item_id].text for f in candidates],
                top_k=options.limit,
                relevance=[f.score for f in candidates],
                diversity_lambda=options.diversity_lambda,
            )
            ordered = [candidates[r.index] for r in selection]
        else:
            ordered = fused[:options.limit]

        results = [
            ScoredResult(
                item=self._items[entry.item_id],
                combined_score=entry.score,
                rank_position=position,
                retrieval_methods=[name for name in PASS_ORDER if name in entry.sources],
                bm25_score=entry.sources.get(BM25),
                semantic_score=entry.sources.get(SEMANTIC),
                graph_score=entry.sources.get(GRAPH),
                bm25_breakdown=breakdowns.get(entry.item_id, {}),
            )
            for position, entry in enumerate(ordered, start=1)
        ]

        if options.boost_on_read and results:
            await self.graph.boost_nodes((r.item.id for r in results), self.config.read_boost)
            self.worker.enqueue(results[0].item.id, READ_SPREAD_BOOST, READ_SPREAD_DEPTH)

        degraded = any(s.status in ("unavailable", "failed") for s in signals.values())
        response = SearchResponse(
            query=query,
            results=results,
            degraded=degraded,
            signals=signals,
            diversity_score=diversity_score(
                [token_set(r.item.text, self.config.stemmer_language) for r in results]
            ),
        )
        logger.info(
            f"Search '{query[:50]}': {response.total} results "
            f"({', '.join(f'{n}={s.status}' for n, s in signals.items())})"
        )
        return response

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def cluster(self, options: Optional[ClusterOptions] = None) -> List[Cluster]:
        return await self.clusterer.analyze(options)

    def activation_snapshot(self, limit: Optional[int] = 20) -> List[ActivationNode]:
        return self.graph.snapshot(limit)
