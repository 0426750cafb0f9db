"""
Graph activation engine: spreading activation, decay and auto-connection.

Every graph-participating item has an ActivationNode whose activation_strength
lives in [0, 1]. It is boosted on direct access and by activation spreading
from neighbours, and decays continuously toward base_activation:

    a' = base + (a - base) × (1 - decay_rate) ** elapsed_hours

Spreading is a level-by-level BFS from the source. The signal carried to a
neighbour is the parent's carried signal × edge strength × 0.5, so hop h
delivers boost × Π strengths × 0.5^h. A node is visited at most once per
spread call; separate calls may reinforce the same node.

All mutations of a node happen under that node's asyncio.Lock.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, AbstractSet, Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..bm25.tokenizer import token_set
from ..errors import ItemNotFound, ProviderUnavailable
from ..models import ActivationNode, Edge, Item, utcnow

if TYPE_CHECKING:
    from ..semantic import SemanticScorer
    from .worker import SpreadingWorker

logger = logging.getLogger(__name__)

HOP_ATTENUATION = 0.5
MIN_SIGNAL = 1e-4  # Signals below this stop propagating


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass
class GraphHit:
    """Result of a similarity search over graph nodes"""
    item_id: str
    similarity: float
    activation: float


class ActivationGraph:
    """
    Owns activation nodes, their edges, and the per-node locks.

    The semantic scorer is only needed for auto_connect() and search()/peek();
    graph_search() works on token overlap and never calls the provider.
    """

    def __init__(
        self,
        semantic: Optional["SemanticScorer"] = None,
        read_boost: float = 0.05,
        default_max_depth: int = 3,
        stemmer_language: Optional[str] = None,
    ):
        self.semantic = semantic
        self.read_boost = read_boost
        self.default_max_depth = default_max_depth
        self.stemmer_language = stemmer_language
        self.worker: Optional["SpreadingWorker"] = None

        self._nodes: Dict[str, ActivationNode] = {}
        self._kinds: Dict[str, str] = {}
        self._tokens: Dict[str, FrozenSet[str]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Node management
    # ------------------------------------------------------------------

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def node_ids(self) -> List[str]:
        return list(self._nodes)

    def get(self, node_id: str) -> Optional[ActivationNode]:
        return self._nodes.get(node_id)

    def kind(self, node_id: str) -> Optional[str]:
        return self._kinds.get(node_id)

    def tokens(self, node_id: str) -> FrozenSet[str]:
        return self._tokens.get(node_id, frozenset())

    def _lock(self, node_id: str) -> asyncio.Lock:
        lock = self._locks.get(node_id)
        if lock is None:
            lock = self._locks[node_id] = asyncio.Lock()
        return lock

    def _require(self, node_id: str) -> ActivationNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise ItemNotFound(node_id)
        return node

    def attach_worker(self, worker: "SpreadingWorker") -> None:
        """Route spreading jobs from access() to a background worker"""
        self.worker = worker

    def add_node(self, item: Item, node: Optional[ActivationNode] = None) -> ActivationNode:
        """
        Register an item in the graph.

        A new item gets a fresh node at activation 1.0 unless a persisted node is
        passed in. Re-adding an existing item refreshes its kind and tokens but
        keeps its activation state.
        """
        self._kinds[item.id] = item.kind.value
        self._tokens[item.id] = token_set(item.text, self.stemmer_language)

        existing = self._nodes.get(item.id)
        if existing is not None:
            return existing

        if node is None:
            node = ActivationNode(
                item_id=item.id,
                propagation_depth=self.default_max_depth,
                created_at=item.created_at,
            )
        node.activation_strength = clamp(node.activation_strength)
        self._nodes[item.id] = node
        return node

    def connect(
        self,
        source_id: str,
        target_id: str,
        strength: float,
        edge_type: str = "related",
        bidirectional: bool = True,
    ) -> None:
        """Insert (or overwrite) an edge; both directions unless bidirectional=False"""
        if source_id == target_id:
            raise ValueError("Self-loops are not allowed")
        if not math.isfinite(strength) or not (0.0 <= strength <= 1.0):
            raise ValueError(f"Edge strength must be within [0, 1], got {strength}")
        source = self._require(source_id)
        target = self._require(target_id)

        source.connections[target_id] = Edge(target_id=target_id, strength=strength, type=edge_type)
        if bidirectional:
            target.connections[source_id] = Edge(target_id=source_id, strength=strength, type=edge_type)

    def _valid_edge(self, parent_id: str, edge: Edge, log: bool = True) -> bool:
        valid = (
            edge.target_id in self._nodes
            and isinstance(edge.strength, (int, float))
            and math.isfinite(edge.strength)
            and edge.strength >= 0
        )
        if not valid and log:
            logger.warning(
                f"Skipping malformed edge {parent_id} -> {edge.target_id} (strength={edge.strength!r})"
            )
        return valid

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _boost(self, node_id: str, amount: float) -> float:
        """Add amount to a node's activation (clamped); returns the new activation"""
        async with self._lock(node_id):
            node = self._nodes[node_id]
            node.activation_strength = clamp(node.activation_strength + amount)
            return node.activation_strength

    async def boost_nodes(self, node_ids: Iterable[str], amount: float) -> Dict[str, float]:
        """Add amount to each known node (no spreading); returns {node_id: new activation}"""
        return {
            node_id: await self._boost(node_id, amount)
            for node_id in dict.fromkeys(node_ids)
            if node_id in self._nodes
        }

    async def access(self, node_id: str, boost_amount: float = 0.1) -> float:
        """
        Direct access: bump counters, boost activation, queue a spreading job.

        Returns:
            New activation strength

        Raises:
            ItemNotFound: Unknown node
        """
        node = self._require(node_id)
        async with self._lock(node_id):
            node.access_count += 1
            node.last_accessed = utcnow()
            node.activation_strength = clamp(node.activation_strength + boost_amount)
            activation = node.activation_strength

        if self.worker is not None:
            self.worker.enqueue(node_id, boost_amount, min(node.propagation_depth, self.default_max_depth))
        return activation

    async def spread(self, source_id: str, boost: float, max_depth: Optional[int] = None) -> Dict[str, float]:
        """
        Spread activation outward from source_id.

        Nodes of one hop level are boosted concurrently once the previous level
        is done. The source itself is not boosted here (access() does that).

        Returns:
            {node_id: signal delivered to that node}

        Raises:
            ItemNotFound: Unknown source
        """
        source = self._require(source_id)
        if max_depth is None:
            max_depth = source.propagation_depth

        visited = {source_id}
        frontier: List[Tuple[str, float]] = [(source_id, boost)]
        delivered: Dict[str, float] = {}

        for _hop in range(max_depth):
            next_level: Dict[str, float] = {}
            for parent_id, signal in frontier:
                for edge in list(self._nodes[parent_id].connections.values()):
                    if not self._valid_edge(parent_id, edge):
                        continue
                    if edge.target_id in visited:
                        continue
                    carried = signal * edge.strength * HOP_ATTENUATION
                    if carried < MIN_SIGNAL:
                        continue
                    # Reached by several parents on the same level: strongest path wins
                    if carried > next_level.get(edge.target_id, 0.0):
                        next_level[edge.target_id] = carried

            if not next_level:
                break

            visited.update(next_level)
            await asyncio.gather(*(self._boost(node_id, amount) for node_id, amount in next_level.items()))
            delivered.update(next_level)
            frontier = list(next_level.items())

        logger.debug(f"Spread from {source_id} (boost={boost}, depth={max_depth}) reached {len(delivered)} nodes")
        return delivered

    async def decay_all(self, now: Optional[datetime] = None) -> int:
        """
        Apply time-based decay to every node.

        Returns:
            Number of nodes whose activation changed
        """
        now = now or utcnow()
        changed = 0
        for node_id in list(self._nodes):
            async with self._lock(node_id):
                node = self._nodes[node_id]
                hours = (now - node.last_decay).total_seconds() / 3600.0
                if hours <= 0:
                    continue
                before = node.activation_strength
                retained = (1.0 - node.decay_rate) ** hours
                node.activation_strength = clamp(
                    node.base_activation + (before - node.base_activation) * retained
                )
                node.last_decay = now
                if node.activation_strength != before:
                    changed += 1
        if changed:
            logger.debug(f"Decayed {changed} activation nodes")
        return changed

    async def auto_connect(
        self,
        node_id: str,
        similarity_threshold: float = 0.75,
        max_new_edges: int = 5,
        bidirectional: bool = True,
    ) -> List[Edge]:
        """
        Connect node_id to its most similar graph nodes.

        Candidates at or above the threshold are taken by similarity descending,
        ties going to the more recently created node, up to max_new_edges.
        Existing connections are not counted as new. Edge strength is the
        similarity, edge type "semantic".

        Returns:
            Newly created outgoing edges (empty when the node has no vector)

        Raises:
            ItemNotFound: Unknown node
            ProviderUnavailable: Vector backend failure
        """
        node = self._require(node_id)
        if self.semantic is None or max_new_edges <= 0:
            return []

        vector = await self.semantic.backend.get(node_id)
        if vector is None:
            logger.debug(f"auto_connect: {node_id} has no vector, skipping")
            return []

        others = set(self._nodes) - {node_id}
        if not others:
            return []

        candidates = await self.semantic.similarity_search(
            vector, len(others), similarity_threshold, restrict_to=others, exclude={node_id}
        )
        candidates = [
            (target_id, similarity) for target_id, similarity in candidates
            if target_id not in node.connections
        ]
        candidates.sort(key=lambda pair: (
            -round(pair[1], 6),
            -self._nodes[pair[0]].created_at.timestamp(),
        ))

        created: List[Edge] = []
        for target_id, similarity in candidates[:max_new_edges]:
            strength = clamp(similarity)
            async with self._lock(node_id):
                node.connections[target_id] = Edge(target_id=target_id, strength=strength, type="semantic")
            if bidirectional:
                async with self._lock(target_id):
                    self._nodes[target_id].connections[node_id] = Edge(
                        target_id=node_id, strength=strength, type="semantic"
                    )
            created.append(node.connections[target_id])

        if created:
            logger.info(f"auto_connect: {node_id} linked to {len(created)} nodes")
        return created

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _ids_of_kind(self, kind_filter: Optional[str]) -> AbstractSet[str]:
        if kind_filter is None:
            return set(self._nodes)
        return {node_id for node_id, kind in self._kinds.items() if kind == kind_filter}

    async def search(
        self,
        query: str,
        kind_filter: Optional[str] = None,
        limit: int = 10,
        similarity_threshold: float = 0.7,
        boost_on_read: bool = False,
    ) -> List[GraphHit]:
        """
        Semantic search over graph nodes, ranked by similarity then activation.

        With boost_on_read=True every returned node gets +read_boost activation.
        This is the only read that writes; use peek() for an idempotent read.

        Raises:
            ProviderUnavailable: No semantic scorer, or provider failure
        """
        if self.semantic is None:
            raise ProviderUnavailable("Graph search requires a semantic scorer")

        candidates = self._ids_of_kind(kind_filter)
        if not candidates or limit <= 0:
            return []

        matches = await self.semantic.search(query, len(candidates), similarity_threshold, restrict_to=candidates)
        hits = [
            GraphHit(item_id=item_id, similarity=similarity,
                     activation=self._nodes[item_id].activation_strength)
            for item_id, similarity in matches
            if item_id in self._nodes
        ]
        hits.sort(key=lambda hit: (-hit.similarity, -hit.activation))
        hits = hits[:limit]

        if boost_on_read and hits:
            for hit in hits:
                hit.activation = await self._boost(hit.item_id, self.read_boost)
            logger.debug(f"boost_on_read: +{self.read_boost} on {len(hits)} nodes")
        return hits

    async def peek(
        self,
        query: str,
        kind_filter: Optional[str] = None,
        limit: int = 10,
        similarity_threshold: float = 0.7,
    ) -> List[GraphHit]:
        """search() without any activation side effect"""
        return await self.search(query, kind_filter, limit, similarity_threshold, boost_on_read=False)

    def graph_search(
        self,
        query_terms: Iterable[str],
        kind_filter: Optional[str] = None,
        limit: int = 50,
        max_depth: int = 2,
    ) -> List[Tuple[str, float]]:
        """
        Token-seeded graph retrieval (no embedding provider involved).

        Seeds are nodes sharing terms with the query; seed proximity is the
        fraction of query terms they contain. Proximity propagates along edges
        (× strength × 0.5 per hop, best path wins) without touching activation.

        score = proximity × (0.5 + 0.5 × activation_strength)

        Returns:
            [(item_id, score)] best first; nodes with zero proximity are absent
        """
        terms = set(query_terms)
        if not terms or limit <= 0:
            return []

        proximity: Dict[str, float] = {}
        for node_id, tokens in self._tokens.items():
            overlap = len(terms & tokens)
            if overlap and node_id in self._nodes:
                proximity[node_id] = overlap / len(terms)

        frontier = dict(proximity)
        for _hop in range(max_depth):
            next_level: Dict[str, float] = {}
            for parent_id, value in frontier.items():
                for edge in self._nodes[parent_id].connections.values():
                    if not self._valid_edge(parent_id, edge, log=False):
                        continue
                    carried = value * edge.strength * HOP_ATTENUATION
                    if carried < MIN_SIGNAL:
                        continue
                    if carried > proximity.get(edge.target_id, 0.0) and carried > next_level.get(edge.target_id, 0.0):
                        next_level[edge.target_id] = carried
            if not next_level:
                break
            proximity.update(next_level)
            frontier = next_level

        scored = [
            (node_id, value * (0.5 + 0.5 * self._nodes[node_id].activation_strength))
            for node_id, value in proximity.items()
            if kind_filter is None or self._kinds.get(node_id) == kind_filter
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    def snapshot(self, limit: Optional[int] = None) -> List[ActivationNode]:
        """Nodes ordered by activation, strongest first"""
        nodes = sorted(self._nodes.values(), key=lambda n: n.activation_strength, reverse=True)
        return nodes[:limit] if limit is not None else nodes
