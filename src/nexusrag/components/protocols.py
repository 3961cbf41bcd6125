"""Protocol definitions for the services the engine talks to.

Implement these protocols to plug in other embedding, vector store, rerank,
generation or task backends. Pipelines only depend on these shapes.
"""

from typing import List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from nexusrag.cancellation import CancellationToken
from nexusrag.models import (
    CandidateResult,
    ConversationMessage,
    GenerationOptions,
    TaskRequest,
)


@runtime_checkable
class TextEmbedder(Protocol):
    """Turns text into a fixed-length dense vector."""

    def embed_query(self, query: str) -> np.ndarray:
        ...


@runtime_checkable
class VectorSearcher(Protocol):
    """Answers top-K cosine similarity queries."""

    def search(
        self,
        query_embedding: np.ndarray,
        k: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[CandidateResult]:
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Returns the stored chunks of a knowledge item, in order."""

    def get_document_chunks(self, document_id: str) -> List[str]:
        ...


@runtime_checkable
class RerankBackend(Protocol):
    """Scores (query, passage) pairs jointly."""

    def score(self, query: str, passages: Sequence[str]) -> List[float]:
        ...


@runtime_checkable
class ChatModel(Protocol):
    """Generates text for a conversation."""

    def chat(
        self,
        messages: Sequence[ConversationMessage],
        options: Optional[GenerationOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Generate a completion for a conversation.

        Args:
            messages: Ordered conversation
            options: Temperature, max tokens and JSON mode
            cancel_token: Token checked before the call is made

        Returns:
            The generated text with reasoning tokens removed
        """
        ...


@runtime_checkable
class TaskStore(Protocol):
    """Creates workspace tasks, skipping duplicates."""

    def create_task(self, request: TaskRequest) -> bool:
        """Return True if inserted, False if a task with that title exists."""
        ...
