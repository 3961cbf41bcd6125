"""
Embedding component for NexusRAG.
Turns queries and passages into dense vectors.

Two backends:
1. vLLM pooling runner (GPU, installed with the ``gpu`` extra)
2. transformers mean pooling (CPU or GPU, always available)

The backend is picked automatically unless one is requested.
"""

import logging
import os
from typing import List, Optional, Union

# Set spawn method for vLLM multiprocessing before torch import
os.environ.setdefault("VLLM_WORKER_MULTIPROC_METHOD", "spawn")

import numpy as np
import torch
from transformers import AutoModel, AutoTokenizer

from nexusrag.models import EmbeddingConfig

# Configure logging
logger = logging.getLogger(__name__)

# vLLM's platform detection queries GPUs at import time, so import it once here
_VLLM_IMPORT_ERROR: Optional[Exception] = None
try:
    import warnings

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=UserWarning, module="torch.cuda")
        from vllm import LLM as vLLM_LLM
    _VLLM_AVAILABLE = True
except Exception as e:
    _VLLM_AVAILABLE = False
    _VLLM_IMPORT_ERROR = e
    vLLM_LLM = None

BACKENDS = ("auto", "vllm", "transformers")


class EmbeddingModel:
    """Embedding model wrapper with vLLM and transformers backends."""

    def __init__(
        self,
        model: Union[str, EmbeddingConfig] = "sentence-transformers/all-MiniLM-L6-v2",
        backend: str = "auto",
        device: Optional[str] = None,
        gpu_memory_utilization: float = 0.3,
        max_model_len: int = 512,
        normalize: bool = True,
    ):
        """
        Initialize embedding model.

        Args:
            model: Model name or path, or EmbeddingConfig instance
            backend: "auto", "vllm" or "transformers"
            device: Device for the transformers backend (cuda/cpu)
            gpu_memory_utilization: Fraction of GPU memory for vLLM
            max_model_len: Maximum sequence length
            normalize: L2-normalize output vectors
        """
        # Handle Pydantic config or individual parameters
        if isinstance(model, EmbeddingConfig):
            config = model
            self.model_name = config.model
            gpu_memory_utilization = config.gpu_memory_utilization
            max_model_len = config.max_model_len
            normalize = config.normalize
        else:
            self.model_name = model

        if backend not in BACKENDS:
            raise ValueError(f"Unknown embedding backend '{backend}'. Use one of {BACKENDS}")

        self.normalize = normalize
        self.max_model_len = max_model_len

        if backend == "auto":
            backend = (
                "vllm" if _VLLM_AVAILABLE and torch.cuda.is_available() else "transformers"
            )
        self.backend = backend

        if self.backend == "vllm":
            self._init_vllm(gpu_memory_utilization, max_model_len)
        else:
            self._init_transformers(device)

    def _init_vllm(self, gpu_memory_utilization: float, max_model_len: int):
        """Initialize the vLLM pooling backend."""
        if not _VLLM_AVAILABLE:
            if _VLLM_IMPORT_ERROR is not None:
                logger.error(f"vLLM import failed at module level: {_VLLM_IMPORT_ERROR}")
                raise ImportError(
                    "vLLM backend requested but vLLM failed to import. "
                    f"Original error: {_VLLM_IMPORT_ERROR}"
                ) from _VLLM_IMPORT_ERROR
            raise ImportError(
                "vLLM backend requested. Install with: pip install nexusrag[gpu]"
            )

        # Validate gpu_memory_utilization
        if not 0.0 < gpu_memory_utilization <= 1.0:
            logger.warning(
                f"Invalid gpu_memory_utilization={gpu_memory_utilization}. "
                "Must be between 0 and 1. Using 0.3."
            )
            gpu_memory_utilization = 0.3

        try:
            logger.info(f"Initializing embedding model: {self.model_name}")
            logger.info(f"  Backend: vllm (pooling)")
            logger.info(f"  gpu_memory_utilization: {gpu_memory_utilization}")
            logger.info(f"  max_model_len: {max_model_len}")

            self.llm = vLLM_LLM(
                model=self.model_name,
                trust_remote_code=True,
                runner="pooling",
                gpu_memory_utilization=gpu_memory_utilization,
                max_model_len=max_model_len,
            )
            logger.info(f"Embedding model '{self.model_name}' loaded successfully")

        except torch.cuda.OutOfMemoryError as e:
            logger.error(
                f"GPU out of memory loading embedding model. "
                f"Try reducing gpu_memory_utilization (current: {gpu_memory_utilization})."
            )
            raise MemoryError(
                "GPU out of memory. Reduce gpu_memory_utilization or max_model_len."
            ) from e

        except Exception as e:
            error_msg = str(e).lower()
            if "not found" in error_msg or "does not exist" in error_msg:
                logger.error(f"Model '{self.model_name}' not found.")
                raise ValueError(f"Model '{self.model_name}' not found. Verify model name.") from e
            logger.error(f"Failed to initialize embedding model: {type(e).__name__}: {e}")
            raise RuntimeError(
                f"Failed to initialize embedding model: {type(e).__name__}: {e}"
            ) from e

    def _init_transformers(self, device: Optional[str]):
        """Initialize the transformers mean-pooling backend."""
        if device is None:
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        elif device not in ["cuda", "cpu"] and not device.startswith("cuda:"):
            logger.warning(f"Unknown device '{device}'. Falling back to auto-detection.")
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        else:
            self.device = device

        logger.info(f"Loading embedding model: {self.model_name}")
        logger.info(f"  Backend: transformers (mean pooling)")
        logger.info(f"  Device: {self.device}")

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(self.model_name)
            self.model = AutoModel.from_pretrained(self.model_name)
        except torch.cuda.OutOfMemoryError as e:
            logger.error("GPU out of memory loading embedding model")
            raise MemoryError("GPU out of memory loading embedding model") from e
        except Exception as e:
            if "not found" in str(e).lower():
                logger.error(f"Model '{self.model_name}' not found")
                raise ValueError(f"Model '{self.model_name}' not found") from e
            logger.error(f"Failed to load embedding model: {e}")
            raise

        self.model.eval()
        self.model = self.model.to(self.device)
        logger.info(f"Embedding model '{self.model_name}' loaded successfully")

    def _encode(self, texts: List[str]) -> List[np.ndarray]:
        if self.backend == "vllm":
            outputs = self.llm.encode(texts, pooling_task="embed")
            if not outputs:
                raise RuntimeError("Embedding model returned empty output")
            vectors = []
            for output in outputs:
                data = output.outputs.data
                if hasattr(data, "cpu"):
                    data = data.cpu()
                vectors.append(np.asarray(data, dtype=np.float32).flatten())
        else:
            inputs = self.tokenizer(
                texts,
                padding=True,
                truncation=True,
                max_length=self.max_model_len,
                return_tensors="pt",
            ).to(self.device)
            with torch.no_grad():
                hidden = self.model(**inputs).last_hidden_state
            mask = inputs["attention_mask"].unsqueeze(-1).to(hidden.dtype)
            pooled = (hidden * mask).sum(dim=1) / mask.sum(dim=1).clamp(min=1e-9)
            vectors = [row for row in pooled.float().cpu().numpy()]

        if self.normalize:
            normalized = []
            for vector in vectors:
                norm = np.linalg.norm(vector)
                normalized.append(vector / norm if norm > 0 else vector)
            vectors = normalized
        return vectors

    def embed_query(self, query: str) -> np.ndarray:
        """
        Embed a single query.

        Args:
            query: Query text

        Returns:
            Query embedding vector

        Raises:
            ValueError: If query is empty or invalid
            RuntimeError: If embedding fails
        """
        if not query or not isinstance(query, str):
            raise ValueError("Query must be a non-empty string")

        query = query.strip()
        if not query:
            raise ValueError("Query cannot be empty or whitespace only")

        try:
            embedding = self._encode([query])[0]
            if embedding.size == 0:
                raise RuntimeError("Generated embedding is empty")
            if np.isnan(embedding).any():
                logger.warning("Embedding contains NaN values")
            return embedding

        except torch.cuda.OutOfMemoryError as e:
            logger.error("GPU out of memory during embedding")
            raise MemoryError("GPU out of memory during embedding") from e

        except Exception as e:
            logger.error(f"Failed to embed query: {e}")
            raise RuntimeError(f"Embedding failed: {e}") from e

    def embed_queries(self, queries: List[str]) -> List[np.ndarray]:
        """Embed several texts in one batch (used when indexing chunks)."""
        if not queries:
            raise ValueError("Queries list cannot be empty")

        valid = [q.strip() for q in queries if isinstance(q, str) and q.strip()]
        if len(valid) != len(queries):
            raise ValueError("All texts to embed must be non-empty strings")

        try:
            return self._encode(valid)
        except torch.cuda.OutOfMemoryError as e:
            logger.error(f"GPU out of memory embedding {len(valid)} texts.")
            raise MemoryError("GPU out of memory during batch embedding") from e
        except Exception as e:
            logger.error(f"Failed to embed queries: {e}")
            raise RuntimeError(f"Batch embedding failed: {e}") from e
