"""
Domain types for the cognitive retrieval engine.

Items are owned by the caller's data partition; the engine only reads them and
bumps access counters. Everything else here is either derived (activation
nodes, edges) or ephemeral (scored results, clusters, search responses).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Timezone-aware current time (all engine timestamps are UTC)"""
    return datetime.now(timezone.utc)


class ItemKind(Enum):
    """Category tag of a knowledge item"""
    QUESTION = "question"
    ANSWER = "answer"
    DECISION = "decision"
    INSIGHT = "insight"
    CODE = "code"
    DESIGN = "design"
    DOCUMENT = "document"
    CONVERSATION = "conversation"
    PROJECT = "project"
    MEMORY = "memory"
    CONNECTION = "connection"
    NOTE = "note"


class RetrievalMethod(Enum):
    """Retrieval passes that can contribute to a result"""
    BM25 = "bm25"
    SEMANTIC = "semantic"
    GRAPH = "graph"
    HYBRID = "hybrid"


@dataclass
class Item:
    """Unit of retrieval"""
    id: str
    content: str
    kind: ItemKind = ItemKind.NOTE
    title: Optional[str] = None
    relevance_score: float = 0.5
    access_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_accessed: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Searchable text (content + title)"""
        return f"{self.content} {self.title or ''}".strip()


@dataclass
class Edge:
    """Directed weighted connection between two activation nodes"""
    target_id: str
    strength: float
    type: str = "related"


@dataclass
class ActivationNode:
    """
    Activation state of one graph-participating item.

    activation_strength is kept within [0, 1]; decay pulls it toward
    base_activation at decay_rate (fraction of the gap lost per hour).
    """
    item_id: str
    activation_strength: float = 1.0
    base_activation: float = 0.1
    decay_rate: float = 0.05
    propagation_depth: int = 3
    access_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_accessed: Optional[datetime] = None
    last_decay: datetime = field(default_factory=utcnow)
    connections: Dict[str, Edge] = field(default_factory=dict)


@dataclass
class ScoredResult:
    """One ranked search hit (lives for a single search response)"""
    item: Item
    combined_score: float
    rank_position: int
    retrieval_methods: List[str]
    bm25_score: Optional[float] = None
    semantic_score: Optional[float] = None
    graph_score: Optional[float] = None
    bm25_breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def retrieval_method(self) -> str:
        """Single pass name, or 'hybrid' when several passes contributed"""
        if len(self.retrieval_methods) == 1:
            return self.retrieval_methods[0]
        return RetrievalMethod.HYBRID.value


@dataclass
class SignalStatus:
    """Outcome of one retrieval pass within a search"""
    status: str  # ok | unavailable | failed | skipped
    count: int = 0
    elapsed_ms: float = 0.0
    error: Optional[str] = None


@dataclass
class SearchResponse:
    query: str
    results: List[ScoredResult]
    degraded: bool = False
    index_stale: bool = False
    signals: Dict[str, SignalStatus] = field(default_factory=dict)
    diversity_score: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)


@dataclass
class Cluster:
    """Density-based grouping of graph nodes (recomputed on demand)"""
    cluster_id: int
    member_ids: List[str]
    core_points: int
    border_points: int
    density: float
    dominant_kinds: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    centroid: Optional[List[float]] = None

    @property
    def size(self) -> int:
        return len(self.member_ids)
