"""Unit test configuration - in-memory engine, deterministic embeddings, no network"""

from dataclasses import replace

import pytest

from corpus_helpers import PETS_CORPUS, make_item
from src.config import EngineConfig
from src.embeddings import HashingEmbedder
from src.engine import RetrievalEngine


@pytest.fixture(autouse=True)
def offline_env(monkeypatch):
    """Unit tests never talk to Postgres or Vertex AI, whatever .env.local says"""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("RERANKER_TYPE", raising=False)
    monkeypatch.setenv("EMBEDDING_PROVIDER", "hashing")
    monkeypatch.setenv("AUTO_CONNECT_ENABLED", "true")


@pytest.fixture
def pets_items():
    return [make_item(f"doc{i + 1}", text) for i, text in enumerate(PETS_CORPUS)]


@pytest.fixture
def config():
    """Engine config with fast ticks and no auto-connect noise"""
    return EngineConfig(
        spread_tick_seconds=0.01,
        auto_connect_enabled=False,
        semantic_timeout=0.5,
        semantic_candidates=20,
    )


@pytest.fixture
def hashing_engine(config):
    return RetrievalEngine(config, embedder=HashingEmbedder())


@pytest.fixture
def lexical_engine(config):
    """Lexical deployment: no embedding provider and the semantic pass weighted out"""
    return RetrievalEngine(replace(config, weight_semantic=0.0))
