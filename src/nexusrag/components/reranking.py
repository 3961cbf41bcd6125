"""
Reranking component for NexusRAG.

Cross-encoder scoring with transformers. Each (query, passage) pair is
scored jointly; logits are squashed to [0, 1] with a sigmoid so scores are
comparable with cosine similarities in the results shown to the model.
"""

import logging
from typing import List, Optional, Sequence, Union

import torch
from transformers import AutoModelForSequenceClassification, AutoTokenizer

from nexusrag.models import RerankerConfig

# Configure logging
logger = logging.getLogger(__name__)


class CrossEncoderReranker:
    """transformers cross-encoder reranker."""

    def __init__(
        self,
        model: Union[str, RerankerConfig] = "cross-encoder/ms-marco-MiniLM-L-6-v2",
        device: Optional[str] = None,
        batch_size: int = 32,
        max_length: int = 512,
    ):
        """
        Initialize reranker.

        Args:
            model: Reranker model name or RerankerConfig instance
            device: Device to use (cuda/cpu); auto-detected if None
            batch_size: Batch size for inference
            max_length: Maximum tokens per (query, passage) pair
        """
        # Handle Pydantic config or individual parameters
        if isinstance(model, RerankerConfig):
            config = model
            self.model_name = config.model
            device = config.device
            batch_size = config.batch_size
            max_length = config.max_length
        else:
            self.model_name = model

        if batch_size <= 0:
            logger.warning(f"Invalid batch_size={batch_size}. Using 32.")
            batch_size = 32
        self.batch_size = batch_size
        self.max_length = max_length

        # Set device
        if device is None:
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        elif device not in ["cuda", "cpu"] and not device.startswith("cuda:"):
            logger.warning(f"Unknown device '{device}'. Falling back to auto-detection.")
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        else:
            self.device = device

        logger.info(f"Loading reranker: {self.model_name}")
        logger.info(f"  Backend: transformers (cross-encoder)")
        logger.info(f"  Device: {self.device}")

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(self.model_name)
        except Exception as e:
            logger.error(f"Failed to load tokenizer for {self.model_name}: {e}")
            raise ValueError(f"Failed to load tokenizer: {e}") from e

        try:
            self.model = AutoModelForSequenceClassification.from_pretrained(
                self.model_name
            )
        except torch.cuda.OutOfMemoryError as e:
            logger.error("GPU out of memory loading reranker model")
            raise MemoryError("GPU out of memory loading reranker model") from e
        except Exception as e:
            if "not found" in str(e).lower():
                logger.error(f"Model '{self.model_name}' not found")
                raise ValueError(f"Model '{self.model_name}' not found") from e
            logger.error(f"Failed to load reranker model: {e}")
            raise

        self.model.eval()
        try:
            self.model = self.model.to(self.device)
        except torch.cuda.OutOfMemoryError as e:
            logger.error("GPU out of memory moving model to device")
            raise MemoryError("GPU out of memory") from e

        logger.info(f"Reranker '{self.model_name}' loaded successfully")

    def score(self, query: str, passages: Sequence[str]) -> List[float]:
        """
        Score passages against a query.

        Args:
            query: Query text
            passages: Passages to score

        Returns:
            One relevance score in [0, 1] per passage, in input order
        """
        if not passages:
            return []
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        pairs = [[query, passage or ""] for passage in passages]
        scores: List[float] = []
        try:
            for i in range(0, len(pairs), self.batch_size):
                batch_pairs = pairs[i : i + self.batch_size]
                inputs = self.tokenizer(
                    batch_pairs,
                    padding=True,
                    truncation=True,
                    return_tensors="pt",
                    max_length=self.max_length,
                ).to(self.device)

                with torch.no_grad():
                    logits = self.model(**inputs, return_dict=True).logits
                # single-logit heads score relevance directly; two-class heads use the positive class
                if logits.shape[-1] > 1:
                    logits = logits[:, -1]
                batch_scores = torch.sigmoid(logits.view(-1).float())
                scores.extend(batch_scores.cpu().tolist())
        except torch.cuda.OutOfMemoryError as e:
            logger.error(
                f"GPU out of memory reranking {len(pairs)} passages. "
                f"Try reducing batch_size (current: {self.batch_size})."
            )
            raise MemoryError("GPU out of memory during reranking") from e

        logger.debug(f"Scored {len(scores)} passages for query: {query[:50]}")
        return [float(s) for s in scores]
