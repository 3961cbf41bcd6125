"""
Configuration management for NexusRAG.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class Config(BaseModel):
    """Configuration container for NexusRAG."""

    # Qdrant settings
    qdrant_url: str = Field(
        default="http://localhost:6333", description="Qdrant server URL"
    )
    qdrant_api_key: Optional[str] = Field(default=None, description="Qdrant API key")
    collection_name: str = Field(
        default="nexus_knowledge", description="Qdrant collection with knowledge chunks"
    )
    qdrant_timeout: float = Field(default=60.0, gt=0, description="Qdrant timeout (s)")

    # Generation service (Ollama OpenAI-compatible endpoint)
    ollama_base_url: str = Field(
        default="http://localhost:11434/v1", description="Generation endpoint"
    )
    ollama_api_key: Optional[str] = Field(
        default=None, description="API key for the generation endpoint"
    )
    llm_model: str = Field(default="deepseek-r1:8b", description="Chat model name")
    llm_timeout: float = Field(
        default=300.0, gt=0, description="Generation request timeout (s)"
    )

    # Model settings
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Embedding model name",
    )
    reranker_model: str = Field(
        default="cross-encoder/ms-marco-MiniLM-L-6-v2",
        description="Cross-encoder reranker model name",
    )
    reranker_device: Optional[str] = Field(
        default=None, description="Reranker device (cuda/cpu, auto if unset)"
    )
    use_reranker: bool = Field(default=True, description="Enable cross-encoder rerank")

    # Retrieval settings
    retrieval_top_k: int = Field(
        default=5, gt=0, description="Chunks fetched per vector store lookup"
    )
    rerank_top_k: int = Field(
        default=5, gt=0, description="Results kept after deep search reranking"
    )
    max_expansions: int = Field(
        default=3, ge=0, le=3, description="Alternative queries per deep search"
    )
    dedup_prefix_chars: int = Field(
        default=50, gt=0, description="Content prefix length used for deduplication"
    )
    max_concurrent_searches: int = Field(
        default=4, gt=0, description="Parallel embed+lookup operations"
    )
    rerank_timeout: float = Field(
        default=30.0, gt=0, description="Seconds to wait for the rerank worker"
    )
    compress_results: bool = Field(
        default=False, description="Compress deep search evidence shown to the model"
    )

    # Research settings
    research_depth: int = Field(
        default=3, ge=1, le=5, description="Default research sub-questions"
    )
    max_research_depth: int = Field(
        default=5, ge=1, le=5, description="Hard cap on research sub-questions"
    )

    # Agent settings
    turn_budget: int = Field(default=8, gt=0, description="Maximum loop turns")
    summary_char_budget: int = Field(
        default=6000, gt=0, description="Characters of a document sent for summary"
    )
    workspace_id: str = Field(default="default", description="Active workspace")

    # Generation settings
    temperature: float = Field(
        default=0.3, ge=0.0, le=2.0, description="Agent loop temperature"
    )
    max_tokens: int = Field(
        default=4096, gt=0, description="Maximum tokens in response"
    )

    @field_validator("ollama_base_url", "qdrant_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate service URLs."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got {v}")
        return v.rstrip("/")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Config":
        """Load configuration from environment variables."""
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        overrides = {}
        env_map = {
            "qdrant_url": "QDRANT_URL",
            "qdrant_api_key": "QDRANT_API_KEY",
            "collection_name": "NEXUS_COLLECTION",
            "qdrant_timeout": "QDRANT_TIMEOUT",
            "ollama_base_url": "OLLAMA_BASE_URL",
            "ollama_api_key": "OLLAMA_API_KEY",
            "llm_model": "NEXUS_LLM_MODEL",
            "llm_timeout": "NEXUS_LLM_TIMEOUT",
            "embedding_model": "NEXUS_EMBEDDING_MODEL",
            "reranker_model": "NEXUS_RERANKER_MODEL",
            "reranker_device": "NEXUS_RERANKER_DEVICE",
            "use_reranker": "NEXUS_USE_RERANKER",
            "rerank_timeout": "NEXUS_RERANK_TIMEOUT",
            "turn_budget": "NEXUS_TURN_BUDGET",
            "workspace_id": "NEXUS_WORKSPACE_ID",
        }
        for field_name, env_name in env_map.items():
            value = os.getenv(env_name)
            if value is not None and value != "":
                overrides[field_name] = value

        return cls(**overrides)

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"


def get_config(env_file: Optional[str] = None) -> Config:
    """Get configuration instance."""
    return Config.from_env(env_file)
