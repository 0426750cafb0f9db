"""
Persistence seam: knowledge items, activation nodes and edges, item vectors.

The engine talks to a narrow async repository interface. Two implementations:
- InMemoryRepository: process-local dicts (default, tests)
- PostgresRepository: PostgreSQL + pgvector, also usable as the VectorBackend
  for the semantic pass. Multi-cloud portable - works on GCP Cloud SQL,
  AWS RDS, Azure Database for PostgreSQL.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AbstractSet, Dict, List, Optional, Tuple

import asyncpg
from pgvector.asyncpg import register_vector

from .models import ActivationNode, Edge, Item, ItemKind, utcnow
from .vector_index import VectorBackend

logger = logging.getLogger(__name__)


class KnowledgeRepository(ABC):
    """Storage owned by the caller's data partition"""

    async def connect(self):
        """Open connections (no-op by default)"""
        pass

    async def disconnect(self):
        """Release connections (no-op by default)"""
        pass

    @abstractmethod
    async def list_items(self) -> List[Item]:
        pass

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[Item]:
        pass

    @abstractmethod
    async def save_item(self, item: Item) -> None:
        pass

    @abstractmethod
    async def record_access(self, item_id: str, accessed_at: Optional[datetime] = None) -> Optional[Item]:
        """
        Bump access_count and last_accessed.

        Returns:
            Updated item, or None if it doesn't exist
        """
        pass

    @abstractmethod
    async def list_nodes(self) -> List[ActivationNode]:
        pass

    @abstractmethod
    async def save_node(self, node: ActivationNode) -> None:
        """Upsert a node together with its full set of outgoing edges"""
        pass


class InMemoryRepository(KnowledgeRepository):
    """Process-local repository; stores copies so callers can't mutate state behind its back"""

    def __init__(self):
        self._items: Dict[str, Item] = {}
        self._nodes: Dict[str, ActivationNode] = {}

    async def list_items(self) -> List[Item]:
        return [copy.deepcopy(item) for item in self._items.values()]

    async def get_item(self, item_id: str) -> Optional[Item]:
        item = self._items.get(item_id)
        return copy.deepcopy(item) if item else None

    async def save_item(self, item: Item) -> None:
        self._items[item.id] = copy.deepcopy(item)

    async def record_access(self, item_id: str, accessed_at: Optional[datetime] = None) -> Optional[Item]:
        item = self._items.get(item_id)
        if item is None:
            return None
        item.access_count += 1
        item.last_accessed = accessed_at or utcnow()
        return copy.deepcopy(item)

    async def list_nodes(self) -> List[ActivationNode]:
        return [copy.deepcopy(node) for node in self._nodes.values()]

    async def save_node(self, node: ActivationNode) -> None:
        self._nodes[node.item_id] = copy.deepcopy(node)


def _row_to_item(row) -> Item:
    metadata = row["metadata"]
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    return Item(
        id=row["id"],
        content=row["content"],
        title=row["title"],
        kind=ItemKind(row["kind"]),
        relevance_score=row["relevance_score"],
        access_count=row["access_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_accessed=row["last_accessed"],
        metadata=metadata or {},
    )


class PostgresRepository(KnowledgeRepository, VectorBackend):
    """PostgreSQL + pgvector repository and vector backend"""

    def __init__(self, database_url: str, embedding_dimension: int = 768):
        self.pool: Optional[asyncpg.Pool] = None
        self.embedding_dimension = embedding_dimension
        # asyncpg doesn't understand 'postgresql+asyncpg://', only 'postgresql://'
        self.connection_string = database_url.replace("postgresql+asyncpg://", "postgresql://")

    async def connect(self):
        """Initialize connection pool and schema"""
        async def init_connection(conn):
            """Register vector type for each new connection in the pool"""
            await register_vector(conn)

        # Extension must exist before register_vector can find the type
        conn = await asyncpg.connect(self.connection_string)
        try:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        finally:
            await conn.close()

        self.pool = await asyncpg.create_pool(
            self.connection_string,
            min_size=1,
            max_size=10,
            init=init_connection,  # Register vector type for EVERY connection
        )
        await self.init_schema()
        logger.info(f"Connected to PostgreSQL: {self.connection_string.split('@')[-1]}")

    async def disconnect(self):
        """Close connection pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Disconnected from PostgreSQL")

    async def init_schema(self):
        """Create tables and indexes"""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS knowledge_items (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    title TEXT,
                    kind TEXT NOT NULL,
                    relevance_score DOUBLE PRECISION NOT NULL DEFAULT 0.5,
                    access_count INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    last_accessed TIMESTAMPTZ,
                    metadata JSONB DEFAULT '{}'
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS activation_nodes (
                    item_id TEXT PRIMARY KEY REFERENCES knowledge_items(id) ON DELETE CASCADE,
                    activation_strength DOUBLE PRECISION NOT NULL
                        CHECK (activation_strength >= 0 AND activation_strength <= 1),
                    base_activation DOUBLE PRECISION NOT NULL,
                    decay_rate DOUBLE PRECISION NOT NULL,
                    propagation_depth INTEGER NOT NULL,
                    access_count INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMPTZ NOT NULL,
                    last_accessed TIMESTAMPTZ,
                    last_decay TIMESTAMPTZ NOT NULL
                )
            """)

            # Directed; undirected links are stored as two rows
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS activation_edges (
                    source_id TEXT NOT NULL REFERENCES activation_nodes(item_id) ON DELETE CASCADE,
                    target_id TEXT NOT NULL REFERENCES activation_nodes(item_id) ON DELETE CASCADE,
                    strength DOUBLE PRECISION NOT NULL,
                    edge_type TEXT NOT NULL DEFAULT 'related',
                    PRIMARY KEY (source_id, target_id)
                )
            """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS item_embeddings (
                    item_id TEXT PRIMARY KEY REFERENCES knowledge_items(id) ON DELETE CASCADE,
                    embedding VECTOR({int(self.embedding_dimension)}) NOT NULL,
                    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # HNSW index for fast vector search
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS item_embeddings_hnsw_idx
                ON item_embeddings
                USING hnsw (embedding vector_cosine_ops)
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_items_kind
                ON knowledge_items (kind)
            """)

            logger.info("Database schema initialized (items + activation graph + embeddings)")

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def list_items(self) -> List[Item]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM knowledge_items ORDER BY created_at")
            return [_row_to_item(row) for row in rows]

    async def get_item(self, item_id: str) -> Optional[Item]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM knowledge_items WHERE id = $1", item_id)
            return _row_to_item(row) if row else None

    async def save_item(self, item: Item) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO knowledge_items
                    (id, content, title, kind, relevance_score, access_count,
                     created_at, updated_at, last_accessed, metadata)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                ON CONFLICT (id) DO UPDATE SET
                    content = EXCLUDED.content,
                    title = EXCLUDED.title,
                    kind = EXCLUDED.kind,
                    relevance_score = EXCLUDED.relevance_score,
                    updated_at = EXCLUDED.updated_at,
                    metadata = EXCLUDED.metadata
                """,
                item.id,
                item.content,
                item.title,
                item.kind.value,
                item.relevance_score,
                item.access_count,
                item.created_at,
                item.updated_at,
                item.last_accessed,
                json.dumps(item.metadata or {}),
            )

    async def record_access(self, item_id: str, accessed_at: Optional[datetime] = None) -> Optional[Item]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE knowledge_items
                SET access_count = access_count + 1, last_accessed = $2
                WHERE id = $1
                RETURNING *
                """,
                item_id,
                accessed_at or utcnow(),
            )
            return _row_to_item(row) if row else None

    # ------------------------------------------------------------------
    # Activation graph
    # ------------------------------------------------------------------

    async def list_nodes(self) -> List[ActivationNode]:
        async with self.pool.acquire() as conn:
            node_rows = await conn.fetch("SELECT * FROM activation_nodes")
            edge_rows = await conn.fetch("SELECT source_id, target_id, strength, edge_type FROM activation_edges")

        nodes = {
            row["item_id"]: ActivationNode(
                item_id=row["item_id"],
                activation_strength=row["activation_strength"],
                base_activation=row["base_activation"],
                decay_rate=row["decay_rate"],
                propagation_depth=row["propagation_depth"],
                access_count=row["access_count"],
                created_at=row["created_at"],
                last_accessed=row["last_accessed"],
                last_decay=row["last_decay"],
            )
            for row in node_rows
        }
        for row in edge_rows:
            source = nodes.get(row["source_id"])
            if source is not None:
                source.connections[row["target_id"]] = Edge(
                    target_id=row["target_id"],
                    strength=row["strength"],
                    type=row["edge_type"],
                )
        return list(nodes.values())

    async def save_node(self, node: ActivationNode) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO activation_nodes
                        (item_id, activation_strength, base_activation, decay_rate,
                         propagation_depth, access_count, created_at, last_accessed, last_decay)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    ON CONFLICT (item_id) DO UPDATE SET
                        activation_strength = EXCLUDED.activation_strength,
                        base_activation = EXCLUDED.base_activation,
                        decay_rate = EXCLUDED.decay_rate,
                        propagation_depth = EXCLUDED.propagation_depth,
                        access_count = EXCLUDED.access_count,
                        last_accessed = EXCLUDED.last_accessed,
                        last_decay = EXCLUDED.last_decay
                    """,
                    node.item_id,
                    node.activation_strength,
                    node.base_activation,
                    node.decay_rate,
                    node.propagation_depth,
                    node.access_count,
                    node.created_at,
                    node.last_accessed,
                    node.last_decay,
                )
                await conn.execute("DELETE FROM activation_edges WHERE source_id = $1", node.item_id)
                if node.connections:
                    await conn.executemany(
                        """
                        INSERT INTO activation_edges (source_id, target_id, strength, edge_type)
                        VALUES ($1, $2, $3, $4)
                        """,
                        [
                            (node.item_id, edge.target_id, edge.strength, edge.type)
                            for edge in node.connections.values()
                        ],
                    )

    # ------------------------------------------------------------------
    # VectorBackend
    # ------------------------------------------------------------------

    async def upsert(self, item_id: str, vector: List[float]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO item_embeddings (item_id, embedding)
                VALUES ($1, $2)
                ON CONFLICT (item_id) DO UPDATE
                    SET embedding = EXCLUDED.embedding, updated_at = CURRENT_TIMESTAMP
                """,
                item_id,
                vector,
            )

    async def get(self, item_id: str) -> Optional[List[float]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT embedding FROM item_embeddings WHERE item_id = $1", item_id)
            return [float(v) for v in row["embedding"]] if row else None

    async def remove(self, item_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute("DELETE FROM item_embeddings WHERE item_id = $1", item_id)

    async def similarity_search(
        self,
        vector: List[float],
        k: int,
        threshold: float = 0.0,
        restrict_to: Optional[AbstractSet[str]] = None,
        exclude: Optional[AbstractSet[str]] = None,
    ) -> List[Tuple[str, float]]:
        """Cosine similarity search; results below threshold are filtered out"""
        where_conditions = ["(1 - (embedding <=> $1::vector)) >= $3"]
        params = [vector, k, threshold]

        if restrict_to is not None:
            params.append(list(restrict_to))
            where_conditions.append(f"item_id = ANY(${len(params)}::text[])")
        if exclude:
            params.append(list(exclude))
            where_conditions.append(f"NOT (item_id = ANY(${len(params)}::text[]))")

        where_clause = " AND ".join(where_conditions)
        query = f"""
            SELECT
                item_id,
                1 - (embedding <=> $1::vector) as similarity
            FROM item_embeddings
            WHERE {where_clause}
            ORDER BY embedding <=> $1::vector
            LIMIT $2
        """

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
            return [(row["item_id"], float(row["similarity"])) for row in rows]
