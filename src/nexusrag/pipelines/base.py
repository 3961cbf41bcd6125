"""
Base pipeline class for NexusRAG.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from nexusrag.components.generation import LLMGenerator
from nexusrag.components.protocols import ChatModel, TextEmbedder, VectorSearcher
from nexusrag.components.rerank_service import RerankService
from nexusrag.components.retrieval import VectorStore
from nexusrag.config import Config
from nexusrag.models import EmbeddingConfig, GenerationConfig, RerankerConfig

logger = logging.getLogger(__name__)


class BasePipeline(ABC):
    """
    Abstract base class for NexusRAG pipelines.

    Collaborators passed to the constructor are used as-is; any left out are
    built from ``config`` on first use.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        embedder: Optional[TextEmbedder] = None,
        vector_store: Optional[VectorSearcher] = None,
        generator: Optional[ChatModel] = None,
        rerank_service: Optional[RerankService] = None,
        verbose: bool = False,
    ):
        """Initialize base pipeline with shared collaborators."""
        self.config = config or Config.from_env()
        self.verbose = verbose

        # Lazy initialization
        self._embedder = embedder
        self._vector_store = vector_store
        self._generator = generator
        self._rerank_service = rerank_service
        self._owns_rerank_service = False

    @property
    def embedder(self) -> TextEmbedder:
        """Lazy load embedding model (vLLM or transformers)."""
        if self._embedder is None:
            # torch/vLLM are only imported when a real model is needed
            from nexusrag.components.embedding import EmbeddingModel

            logger.info(f"Loading embedding model: {self.config.embedding_model}")
            self._embedder = EmbeddingModel(
                EmbeddingConfig(model=self.config.embedding_model)
            )
        return self._embedder

    @property
    def vector_store(self) -> VectorSearcher:
        """Lazy connect to the Qdrant collection."""
        if self._vector_store is None:
            self._vector_store = VectorStore(
                collection_name=self.config.collection_name,
                url=self.config.qdrant_url,
                api_key=self.config.qdrant_api_key,
                top_k=self.config.retrieval_top_k,
                timeout=self.config.qdrant_timeout,
            )
        return self._vector_store

    @property
    def generator(self) -> ChatModel:
        """Lazy load LLM generator (Ollama OpenAI-compatible API)."""
        if self._generator is None:
            self._generator = LLMGenerator(
                GenerationConfig(
                    model=self.config.llm_model,
                    base_url=self.config.ollama_base_url,
                    api_key=self.config.ollama_api_key,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                    timeout=self.config.llm_timeout,
                )
            )
        return self._generator

    @property
    def rerank_service(self) -> Optional[RerankService]:
        """Lazy start the rerank worker; None when reranking is disabled."""
        if self._rerank_service is None and self.config.use_reranker:
            from nexusrag.components.reranking import CrossEncoderReranker

            backend = CrossEncoderReranker(
                RerankerConfig(
                    model=self.config.reranker_model,
                    device=self.config.reranker_device,
                )
            )
            self._rerank_service = RerankService(
                backend, timeout=self.config.rerank_timeout
            ).start()
            self._owns_rerank_service = True
        return self._rerank_service

    def close(self) -> None:
        """Stop workers this pipeline started."""
        if self._owns_rerank_service and self._rerank_service is not None:
            self._rerank_service.stop()
            self._rerank_service = None
            self._owns_rerank_service = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abstractmethod
    def run(self, query: str, **kwargs):
        """Run the pipeline. Must be implemented by subclasses."""
        pass
