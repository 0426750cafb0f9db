"""
Engine configuration from environment variables.

All settings have defaults so the engine runs without any env file; main.py
loads .env.local / .env before calling EngineConfig.from_env().
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    # BM25
    bm25_k1: float = 1.5
    bm25_b: float = 0.75
    stemmer_language: Optional[str] = None  # e.g. "english"; None = no stemming

    # Fusion
    rrf_k: int = 60
    weight_bm25: float = 0.6
    weight_semantic: float = 0.2
    weight_graph: float = 0.2
    reranker_type: str = "mmr"

    # Semantic pass
    semantic_timeout: float = 5.0
    semantic_candidates: int = 50

    # Graph / spreading activation
    spread_tick_seconds: float = 1.0
    spread_batch_size: int = 5
    spread_queue_maxsize: int = 1000
    spread_max_depth: int = 3
    decay_every_ticks: int = 60
    read_boost: float = 0.05
    auto_connect_enabled: bool = True
    auto_connect_threshold: float = 0.75
    auto_connect_max_edges: int = 5

    # Providers / persistence
    embedding_provider: str = "none"  # vertex_ai | hashing | none
    embedding_model: str = "text-embedding-005"
    database_url: Optional[str] = None
    gcp_project_id: Optional[str] = None
    gcp_location: str = "us-central1"

    def __post_init__(self):
        if self.bm25_k1 < 0:
            raise ValueError("BM25_K1 must be >= 0")
        if not (0.0 <= self.bm25_b <= 1.0):
            raise ValueError("BM25_B must be within [0, 1]")
        if self.rrf_k < 0:
            raise ValueError("RRF_K must be >= 0")
        if self.spread_batch_size < 1:
            raise ValueError("SPREAD_BATCH_SIZE must be >= 1")
        if self.semantic_timeout <= 0:
            raise ValueError("SEMANTIC_TIMEOUT_SECONDS must be > 0")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build configuration from environment variables (unset = default)"""
        defaults = cls()
        return cls(
            bm25_k1=_env_float("BM25_K1", defaults.bm25_k1),
            bm25_b=_env_float("BM25_B", defaults.bm25_b),
            stemmer_language=os.getenv("BM25_STEMMER_LANGUAGE") or None,
            rrf_k=_env_int("RRF_K", defaults.rrf_k),
            weight_bm25=_env_float("WEIGHT_BM25", defaults.weight_bm25),
            weight_semantic=_env_float("WEIGHT_SEMANTIC", defaults.weight_semantic),
            weight_graph=_env_float("WEIGHT_GRAPH", defaults.weight_graph),
            reranker_type=os.getenv("RERANKER_TYPE", defaults.reranker_type).lower(),
            semantic_timeout=_env_float("SEMANTIC_TIMEOUT_SECONDS", defaults.semantic_timeout),
            semantic_candidates=_env_int("SEMANTIC_CANDIDATES", defaults.semantic_candidates),
            spread_tick_seconds=_env_float("SPREAD_TICK_SECONDS", defaults.spread_tick_seconds),
            spread_batch_size=_env_int("SPREAD_BATCH_SIZE", defaults.spread_batch_size),
            spread_queue_maxsize=_env_int("SPREAD_QUEUE_MAXSIZE", defaults.spread_queue_maxsize),
            spread_max_depth=_env_int("SPREAD_MAX_DEPTH", defaults.spread_max_depth),
            decay_every_ticks=_env_int("DECAY_EVERY_TICKS", defaults.decay_every_ticks),
            read_boost=_env_float("READ_BOOST", defaults.read_boost),
            auto_connect_enabled=_env_bool("AUTO_CONNECT_ENABLED", defaults.auto_connect_enabled),
            auto_connect_threshold=_env_float("AUTO_CONNECT_THRESHOLD", defaults.auto_connect_threshold),
            auto_connect_max_edges=_env_int("AUTO_CONNECT_MAX_EDGES", defaults.auto_connect_max_edges),
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", defaults.embedding_provider).lower(),
            embedding_model=os.getenv("EMBEDDING_MODEL", defaults.embedding_model),
            database_url=os.getenv("DATABASE_URL") or None,
            gcp_project_id=os.getenv("GCP_PROJECT_ID") or None,
            gcp_location=os.getenv("GCP_LOCATION", defaults.gcp_location),
        )
