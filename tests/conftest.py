"""Pytest configuration and fixtures."""

import os

import pytest

from nexusrag.config import Config
from tests.fakes.fake_services import (
    CORPUS,
    FakeEmbedder,
    InMemoryVectorStore,
    ScriptedChatModel,
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["QDRANT_URL"] = "http://localhost:6333"
    os.environ["OLLAMA_BASE_URL"] = "http://localhost:11434/v1"
    os.environ["OLLAMA_API_KEY"] = "test-ollama-key"


@pytest.fixture
def config():
    """Config with reranking disabled; tests inject a rerank service when needed."""
    return Config(use_reranker=False, rerank_timeout=5.0)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store(embedder):
    """Vector store seeded with the sample corpus."""
    vector_store = InMemoryVectorStore(embedder)
    for document_id, chunks in CORPUS.items():
        for chunk in chunks:
            vector_store.add(document_id, chunk)
    return vector_store


@pytest.fixture
def no_expansion_model():
    """Chat model whose output never parses as JSON."""
    return ScriptedChatModel(responder=lambda messages, options: "I cannot help with that.")
