"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from nexusrag.config import Config, get_config


def test_defaults():
    config = Config()
    assert config.retrieval_top_k == 5
    assert config.rerank_top_k == 5
    assert config.max_expansions == 3
    assert config.max_concurrent_searches == 4
    assert config.research_depth == 3
    assert config.max_research_depth == 5
    assert config.turn_budget == 8
    assert config.summary_char_budget == 6000
    assert config.llm_model == "deepseek-r1:8b"


def test_from_env(monkeypatch):
    monkeypatch.setenv("QDRANT_URL", "http://qdrant:6333/")
    monkeypatch.setenv("NEXUS_COLLECTION", "team_notes")
    monkeypatch.setenv("NEXUS_USE_RERANKER", "false")
    monkeypatch.setenv("NEXUS_TURN_BUDGET", "4")
    monkeypatch.setenv("NEXUS_RERANK_TIMEOUT", "2.5")

    config = get_config()

    assert config.qdrant_url == "http://qdrant:6333"
    assert config.collection_name == "team_notes"
    assert config.use_reranker is False
    assert config.turn_budget == 4
    assert config.rerank_timeout == 2.5
    assert config.ollama_api_key == "test-ollama-key"


def test_invalid_url_rejected():
    with pytest.raises(ValidationError):
        Config(ollama_base_url="localhost:11434")


def test_expansion_limit_enforced():
    with pytest.raises(ValidationError):
        Config(max_expansions=4)


def test_unknown_field_rejected():
    with pytest.raises(ValidationError):
        Config(not_a_setting=True)
