"""
Cognitive Retrieval - FastAPI service around the hybrid retrieval engine

Exposes:
- Hybrid search (BM25 + semantic + graph activation, RRF fusion, MMR diversity)
- Item ingestion (graph node creation, embedding, auto-connect, re-indexing)
- Direct access feedback (activation boost + background spreading)
- Cluster analysis and activation snapshots for exploratory views

Architecture:
- Engine state lives in one RetrievalEngine created in the lifespan handler
- PostgreSQL + pgvector when DATABASE_URL is set, in-memory otherwise
- Vertex AI embeddings (text-embedding-005) or a local hashing embedder
- No authentication: the service sits behind a trusted gateway that scopes
  every call to one owner's data partition
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Literal, Optional
from pathlib import Path

# Load environment variables from .env.local (local dev) or .env (production)
from dotenv import load_dotenv

# Load .env.local first (highest priority), then .env as fallback
env_local = Path(__file__).parent.parent / ".env.local"
env_file = Path(__file__).parent.parent / ".env"

if env_local.exists():
    print(f"Loading environment from: {env_local}")
    load_dotenv(env_local, override=True)
elif env_file.exists():
    print(f"Loading environment from: {env_file}")
    load_dotenv(env_file, override=True)
else:
    print("WARNING: No .env.local or .env file found - using system environment variables only")

# Configure logging: console (brief) + file (detailed)
from src.logging_config import level_from_env, setup_logging

setup_logging(
    log_file="logs/cognitive-retrieval.log",
    console_level=level_from_env("LOG_LEVEL"),
    file_level=logging.DEBUG  # Always DEBUG in file for troubleshooting
)

logger = logging.getLogger(__name__)


from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .clustering import ClusterOptions
from .config import EngineConfig
from .database import InMemoryRepository, PostgresRepository
from .embeddings import create_embedder
from .engine import RetrievalEngine, SearchOptions, SignalWeights
from .errors import AllSignalsUnavailable, InvalidQuery, ItemNotFound
from .models import Item, ItemKind, ScoredResult, utcnow

# Version tracking
APP_VERSION = "0.1.0"
APP_START_TIME = utcnow()

# Global engine handle (created in lifespan)
engine: Optional[RetrievalEngine] = None


def build_engine(config: EngineConfig) -> RetrievalEngine:
    """Wire repository, embedder and engine from configuration"""
    embedder = create_embedder(config)
    if config.database_url:
        repository = PostgresRepository(
            config.database_url,
            embedding_dimension=embedder.dimension if embedder else 768,
        )
    else:
        logger.warning("DATABASE_URL not set - using in-memory repository (state is lost on restart)")
        repository = InMemoryRepository()
    return RetrievalEngine(config, repository=repository, embedder=embedder)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup resources"""
    global engine

    config = EngineConfig.from_env()
    logger.info(
        f"Starting engine (embeddings={config.embedding_provider}, reranker={config.reranker_type}, "
        f"weights={config.weight_bm25}/{config.weight_semantic}/{config.weight_graph})"
    )
    engine = build_engine(config)

    await engine.repository.connect()
    await engine.load()
    engine.start()
    logger.info("Engine ready")

    yield

    # Shutdown: flush activation state, release connections
    logger.info("Shutting down...")
    await engine.stop()
    await engine.repository.disconnect()
    engine = None


# FastAPI app
app = FastAPI(
    title="Cognitive Retrieval API",
    description="Hybrid retrieval: BM25 + semantic similarity + graph spreading activation",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_engine() -> RetrievalEngine:
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not initialized",
        )
    return engine


# Request/Response models
class HealthResponse(BaseModel):
    status: str
    version: str
    started_at: str
    uptime_seconds: float
    items: int
    indexed_documents: int
    graph_nodes: int
    pending_spreads: int
    semantic_available: bool


class WeightsModel(BaseModel):
    bm25: float = Field(default=0.6, ge=0.0)
    semantic: float = Field(default=0.2, ge=0.0)
    graph: float = Field(default=0.2, ge=0.0)


class SearchRequest(BaseModel):
    query: str = Field(..., description="Free-text query (empty or blank is rejected with 400)")
    kind_filter: Optional[ItemKind] = Field(default=None, description="Only return items of this kind")
    limit: int = Field(default=10, ge=1, le=100, description="Number of results")
    similarity_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum cosine similarity for the semantic pass"
    )
    weights: Optional[WeightsModel] = Field(default=None, description="RRF weight per signal (default: server config)")
    diversity_lambda: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="MMR trade-off: 1.0 = pure relevance, 0.0 = pure novelty"
    )
    temporal_decay: float = Field(default=0.0, ge=0.0, description="Per-day exponential decay of fused scores")
    boost_on_read: bool = Field(
        default=False,
        description="Boost activation of returned items (this read writes graph state)"
    )
    fuzzy: bool = Field(default=False, description="Expand unknown query terms by edit distance")

    model_config = {
        "json_schema_extra": {
            "example": {
                "query": "kubernetes deployment strategy",
                "limit": 10,
                "weights": {"bm25": 0.6, "semantic": 0.2, "graph": 0.2},
                "diversity_lambda": 0.7,
            }
        }
    }


class ScoredResultModel(BaseModel):
    id: str
    title: Optional[str]
    content: str
    kind: str
    combined_score: float
    rank_position: int
    retrieval_method: str
    retrieval_methods: List[str]
    bm25_score: Optional[float] = None
    semantic_score: Optional[float] = None
    graph_score: Optional[float] = None
    bm25_breakdown: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, result: ScoredResult) -> "ScoredResultModel":
        return cls(
            id=result.item.id,
            title=result.item.title,
            content=result.item.content,
            kind=result.item.kind.value,
            combined_score=result.combined_score,
            rank_position=result.rank_position,
            retrieval_method=result.retrieval_method,
            retrieval_methods=result.retrieval_methods,
            bm25_score=result.bm25_score,
            semantic_score=result.semantic_score,
            graph_score=result.graph_score,
            bm25_breakdown=result.bm25_breakdown,
        )


class SignalModel(BaseModel):
    status: str
    count: int
    elapsed_ms: float
    error: Optional[str] = None


class SearchResponseModel(BaseModel):
    query: str
    results: List[ScoredResultModel]
    total: int
    degraded: bool
    index_stale: bool
    diversity_score: float
    signals: Dict[str, SignalModel]


class ItemCreateRequest(BaseModel):
    id: Optional[str] = Field(default=None, description="Item id (generated when omitted)")
    content: str = Field(..., min_length=1)
    title: Optional[str] = None
    kind: ItemKind = ItemKind.NOTE
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)
    metadata: dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class ItemCreateResponse(BaseModel):
    id: str
    message: str


class AccessRequest(BaseModel):
    boost: float = Field(default=0.1, ge=0.0, le=1.0)


class AccessResponse(BaseModel):
    id: str
    activation_strength: float


class ClusterRequest(BaseModel):
    eps: float = Field(default=0.3, ge=0.0, le=1.0)
    min_points: int = Field(default=3, ge=1)
    distance_kind: Literal["auto", "cosine", "jaccard"] = "auto"


class ClusterModel(BaseModel):
    cluster_id: int
    size: int
    member_ids: List[str]
    core_points: int
    border_points: int
    density: float
    dominant_kinds: List[str]
    topics: List[str]
    centroid: Optional[List[float]] = None


class ClusterResponse(BaseModel):
    total: int
    clusters: List[ClusterModel]


class ActivationNodeModel(BaseModel):
    item_id: str
    activation_strength: float
    access_count: int
    connections: int
    last_accessed: Optional[datetime] = None


class ActivationResponse(BaseModel):
    total: int
    nodes: List[ActivationNodeModel]


# Routes
@app.get("/", response_model=dict)
async def root():
    """Root endpoint"""
    return {
        "service": "Cognitive Retrieval API",
        "version": APP_VERSION,
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health", response_model=HealthResponse)
async def health(engine: RetrievalEngine = Depends(get_engine)):
    """Health check endpoint"""
    uptime = (utcnow() - APP_START_TIME).total_seconds()
    index = engine.index

    return HealthResponse(
        status="healthy" if index is not None else "indexing",
        version=APP_VERSION,
        started_at=APP_START_TIME.isoformat(),
        uptime_seconds=round(uptime, 2),
        items=engine.item_count,
        indexed_documents=index.document_count if index else 0,
        graph_nodes=len(engine.graph),
        pending_spreads=engine.worker.pending,
        semantic_available=engine.semantic.available,
    )


@app.post("/v1/search", response_model=SearchResponseModel)
async def search(request: SearchRequest, engine: RetrievalEngine = Depends(get_engine)):
    """
    Hybrid search over the knowledge base.

    **Retrieval process:**
    1. BM25, semantic and graph passes run concurrently
    2. A failing/slow semantic provider degrades the search instead of failing it
    3. Weighted Reciprocal Rank Fusion (k=60)
    4. Optional temporal decay by item age
    5. MMR diversity reranking (Jaccard over normalized tokens)

    **Errors:**
    - 400: empty query or invalid options
    - 503: every retrieval signal failed
    """
    try:
        weights = None
        if request.weights is not None:
            weights = SignalWeights(**request.weights.model_dump())

        options = SearchOptions(
            kind_filter=request.kind_filter.value if request.kind_filter else None,
            limit=request.limit,
            similarity_threshold=request.similarity_threshold,
            weights=weights,
            diversity_lambda=request.diversity_lambda,
            temporal_decay=request.temporal_decay,
            boost_on_read=request.boost_on_read,
            fuzzy=request.fuzzy,
        )
        response = await engine.search(request.query, options)

        return SearchResponseModel(
            query=response.query,
            results=[ScoredResultModel.from_result(r) for r in response.results],
            total=response.total,
            degraded=response.degraded,
            index_stale=response.index_stale,
            diversity_score=response.diversity_score,
            signals={
                name: SignalModel(
                    status=signal.status,
                    count=signal.count,
                    elapsed_ms=round(signal.elapsed_ms, 2),
                    error=signal.error,
                )
                for name, signal in response.signals.items()
            },
        )

    except (InvalidQuery, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AllSignalsUnavailable as e:
        logger.error(f"Search failed, no signals available: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@app.post("/v1/items", response_model=ItemCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_item(request: ItemCreateRequest, engine: RetrievalEngine = Depends(get_engine)):
    """
    Index a knowledge item.

    Creates its graph node (activation 1.0), embeds it, auto-connects it to
    similar items and re-indexes. The item is searchable when this returns.
    """
    now = utcnow()
    item = Item(
        id=request.id or str(uuid.uuid4()),
        content=request.content,
        title=request.title,
        kind=request.kind,
        relevance_score=request.relevance_score,
        created_at=request.created_at or now,
        updated_at=now,
        metadata=request.metadata,
    )
    try:
        await engine.index_item(item)
        await engine.refresh()
    except Exception as e:
        logger.error(f"Failed to index item {item.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to index item: {str(e)}",
        )

    return ItemCreateResponse(id=item.id, message="Item indexed")


@app.post("/v1/items/{item_id}/access", response_model=AccessResponse)
async def access_item(
    item_id: str,
    request: Optional[AccessRequest] = None,
    engine: RetrievalEngine = Depends(get_engine),
):
    """Record a direct access: boosts activation and queues spreading to neighbours"""
    boost = request.boost if request else 0.1
    try:
        activation = await engine.access_item(item_id, boost=boost)
    except ItemNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return AccessResponse(id=item_id, activation_strength=activation)


@app.post("/v1/clusters", response_model=ClusterResponse)
async def clusters(request: Optional[ClusterRequest] = None, engine: RetrievalEngine = Depends(get_engine)):
    """DBSCAN over graph nodes (cosine over embeddings, or Jaccard over tokens)"""
    request = request or ClusterRequest()
    try:
        found = await engine.cluster(ClusterOptions(
            eps=request.eps,
            min_points=request.min_points,
            distance_kind=request.distance_kind,
        ))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ClusterResponse(
        total=len(found),
        clusters=[
            ClusterModel(
                cluster_id=c.cluster_id,
                size=c.size,
                member_ids=c.member_ids,
                core_points=c.core_points,
                border_points=c.border_points,
                density=c.density,
                dominant_kinds=c.dominant_kinds,
                topics=c.topics,
                centroid=c.centroid,
            )
            for c in found
        ],
    )


@app.get("/v1/activation", response_model=ActivationResponse)
async def activation(
    limit: int = Query(default=20, ge=1, le=1000),
    engine: RetrievalEngine = Depends(get_engine),
):
    """Most activated nodes, strongest first"""
    nodes = engine.activation_snapshot(limit)
    return ActivationResponse(
        total=len(nodes),
        nodes=[
            ActivationNodeModel(
                item_id=node.item_id,
                activation_strength=node.activation_strength,
                access_count=node.access_count,
                connections=len(node.connections),
                last_accessed=node.last_accessed,
            )
            for node in nodes
        ],
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler"""
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        },
    )


if __name__ == "__main__":
    import os
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        reload=True,  # Development only
    )
