"""
Retrieval component for NexusRAG.
Vector similarity search and chunk storage in Qdrant.
"""

import logging
import os
import uuid
from typing import List, Optional, Sequence, Union

import numpy as np
from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointStruct,
    VectorParams,
)

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.models import CandidateResult, RetrievalConfig

# Configure logging
logger = logging.getLogger(__name__)

# Payload keys that may carry the passage text
TEXT_KEYS = ("content", "text", "chunk_text")

# Scroll page size when reading all chunks of a document
SCROLL_PAGE_SIZE = 256


def get_qdrant_client(
    url: Optional[str] = None,
    api_key: Optional[str] = None,
    timeout: Optional[float] = None,
) -> QdrantClient:
    """
    Get Qdrant client instance.

    Args:
        url: Qdrant server URL
        api_key: Qdrant API key
        timeout: Request timeout in seconds (default: 60.0)

    Returns:
        QdrantClient instance

    Raises:
        ConnectionError: If connection to Qdrant fails
        ValueError: If authentication fails
    """
    url = url or os.getenv("QDRANT_URL", "http://localhost:6333")
    api_key = api_key or os.getenv("QDRANT_API_KEY")
    timeout = timeout or float(os.getenv("QDRANT_TIMEOUT", "60.0"))

    logger.debug(f"Connecting to Qdrant at {url} (timeout: {timeout}s)")

    try:
        if api_key:
            return QdrantClient(url=url, api_key=api_key, timeout=int(timeout))
        return QdrantClient(url=url, timeout=int(timeout))
    except Exception as e:
        error_msg = str(e).lower()
        if "connection" in error_msg or "refused" in error_msg:
            logger.error(f"Failed to connect to Qdrant at {url}: {e}")
            raise ConnectionError(
                f"Cannot connect to Qdrant at {url}. Is the server running?"
            ) from e
        elif "unauthorized" in error_msg or "authentication" in error_msg:
            logger.error(f"Qdrant authentication failed: {e}")
            raise ValueError("Qdrant authentication failed. Check your API key.") from e
        else:
            logger.error(f"Failed to create Qdrant client: {e}")
            raise


def chunk_point_id(document_id: str, chunk_index: int) -> str:
    """Stable point id for a chunk, so re-indexing overwrites instead of duplicating."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{document_id}#{chunk_index}"))


class VectorStore:
    """Qdrant-backed knowledge chunk store."""

    def __init__(
        self,
        collection_name: Union[str, RetrievalConfig] = "nexus_knowledge",
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        top_k: int = 5,
        score_threshold: Optional[float] = None,
        timeout: Optional[float] = None,
        retry_count: int = 2,
        client: Optional[QdrantClient] = None,
    ):
        """
        Initialize vector store.

        Args:
            collection_name: Qdrant collection name, or RetrievalConfig instance
            url: Qdrant server URL
            api_key: Qdrant API key
            top_k: Default number of results per search
            score_threshold: Minimum similarity returned by Qdrant
            timeout: Request timeout in seconds
            retry_count: Retries on timeout/connection errors
            client: Pre-built client (skips connection setup)
        """
        # Handle Pydantic config or individual parameters
        if isinstance(collection_name, RetrievalConfig):
            config = collection_name
            collection_name = config.collection_name
            url = config.url or url
            api_key = config.api_key or api_key
            top_k = config.top_k
            score_threshold = config.score_threshold

        if not collection_name or not collection_name.strip():
            raise ValueError("collection_name is required")

        if top_k <= 0:
            logger.warning(f"Invalid top_k={top_k}. Using 5.")
            top_k = 5

        self.collection_name = collection_name
        self.url = url
        self.api_key = api_key
        self.top_k = top_k
        self.score_threshold = score_threshold
        self.timeout = timeout
        self.retry_count = max(0, retry_count)
        self.client = client or get_qdrant_client(url, api_key, timeout=timeout)

    def search(
        self,
        query_embedding: np.ndarray,
        k: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[CandidateResult]:
        """
        Top-k cosine similarity search.

        Args:
            query_embedding: Query embedding vector
            k: Number of results (defaults to top_k)
            cancel_token: Token checked before every attempt and during backoff

        Returns:
            Candidates ordered by similarity, highest first

        Raises:
            ValueError: If inputs are invalid, the collection is missing or
                the embedding dimension does not match
            ConnectionError: If Qdrant is unreachable after retries
            RuntimeError: If the query fails
            OperationCancelled: If the token is cancelled
        """
        if query_embedding is None:
            raise ValueError("query_embedding cannot be None")

        query_embedding = np.asarray(query_embedding, dtype=np.float32)
        if query_embedding.size == 0:
            raise ValueError("query_embedding cannot be empty")

        cancel_token = cancel_token or CancellationToken()
        limit = k or self.top_k
        query_vector = query_embedding.flatten().tolist()

        results = None
        for attempt in range(self.retry_count + 1):
            cancel_token.raise_if_cancelled("vector search")
            try:
                if hasattr(self.client, "query_points"):
                    response = self.client.query_points(
                        collection_name=self.collection_name,
                        query=query_vector,
                        limit=limit,
                        with_payload=True,
                        score_threshold=self.score_threshold,
                    )
                    results = response.points
                else:
                    results = self.client.search(
                        collection_name=self.collection_name,
                        query_vector=query_vector,
                        limit=limit,
                        with_payload=True,
                        score_threshold=self.score_threshold,
                    )
                break
            except Exception as e:
                error_msg = str(e).lower()
                error_type = type(e).__name__

                is_timeout = (
                    "timeout" in error_msg
                    or "timed out" in error_msg
                    or "ResponseHandlingException" in error_type
                )
                is_connection_error = (
                    "connection" in error_msg
                    or "refused" in error_msg
                    or "ConnectionError" in error_type
                )

                # Non-retryable errors
                if "not found" in error_msg or "doesn't exist" in error_msg:
                    logger.error(f"Collection '{self.collection_name}' not found in Qdrant")
                    raise ValueError(
                        f"Collection '{self.collection_name}' not found. "
                        "Index some documents first."
                    ) from e
                elif "dimension" in error_msg:
                    logger.error(f"Embedding dimension mismatch: {e}")
                    raise ValueError(
                        f"Embedding dimension mismatch. Query embedding has "
                        f"{len(query_vector)} dimensions. "
                        "Check that embedding model matches collection."
                    ) from e

                if (is_timeout or is_connection_error) and attempt < self.retry_count:
                    wait_time = (attempt + 1) * 2
                    logger.warning(
                        f"Qdrant query failed (attempt {attempt + 1}/{self.retry_count + 1}): "
                        f"{error_type}: {e}"
                    )
                    logger.info(f"Retrying in {wait_time}s...")
                    if cancel_token.wait(wait_time):
                        raise OperationCancelled("Vector search cancelled during backoff") from e
                    continue

                if is_timeout:
                    logger.error(
                        f"Qdrant query timed out after {attempt + 1} attempts: {e}"
                    )
                    raise RuntimeError(
                        f"Qdrant query timed out after {attempt + 1} attempts: {e}"
                    ) from e
                elif is_connection_error:
                    logger.error(
                        f"Lost connection to Qdrant after {attempt + 1} attempts: {e}"
                    )
                    raise ConnectionError(
                        f"Lost connection to Qdrant after {attempt + 1} attempts: {e}"
                    ) from e
                logger.error(f"Qdrant query failed: {e}")
                raise RuntimeError(f"Retrieval failed: {e}") from e

        if not results:
            logger.debug(f"No results found in collection '{self.collection_name}'")
            return []

        candidates = []
        missing_text_count = 0
        for point in results:
            payload = point.payload or {}
            content = next((payload[key] for key in TEXT_KEYS if payload.get(key)), "")
            if not content:
                missing_text_count += 1
            document_id = payload.get("document_id")
            candidates.append(
                CandidateResult(
                    id=str(point.id),
                    content=content,
                    similarity=float(point.score) if point.score is not None else 0.0,
                    document_id=str(document_id) if document_id is not None else None,
                )
            )

        if missing_text_count > 0:
            logger.warning(
                f"{missing_text_count}/{len(candidates)} retrieved chunks have no text. "
                f"Check payload structure (expected one of: {', '.join(TEXT_KEYS)})."
            )

        logger.debug(f"Retrieved {len(candidates)} chunks from '{self.collection_name}'")
        return candidates

    def get_document_chunks(self, document_id: str) -> List[str]:
        """
        Read every stored chunk of a document, in chunk order.

        Args:
            document_id: Knowledge item identifier

        Returns:
            Chunk texts ordered by chunk_index (empty if the document is unknown)
        """
        if not document_id or not str(document_id).strip():
            raise ValueError("document_id is required")

        scroll_filter = Filter(
            must=[FieldCondition(key="document_id", match=MatchValue(value=str(document_id)))]
        )

        points = []
        offset = None
        try:
            while True:
                page, offset = self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=scroll_filter,
                    limit=SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                )
                points.extend(page)
                if offset is None:
                    break
        except Exception as e:
            logger.error(f"Failed to read chunks of document {document_id}: {e}")
            raise RuntimeError(f"Failed to read document {document_id}: {e}") from e

        def chunk_index(point) -> int:
            return int((point.payload or {}).get("chunk_index", 0))

        chunks = []
        for point in sorted(points, key=chunk_index):
            payload = point.payload or {}
            content = next((payload[key] for key in TEXT_KEYS if payload.get(key)), "")
            if content:
                chunks.append(content)
        logger.debug(f"Loaded {len(chunks)} chunks for document {document_id}")
        return chunks

    def ensure_collection(self, vector_size: int) -> bool:
        """
        Create the collection with cosine distance if it does not exist.

        Returns:
            True if the collection was created
        """
        existing = [c.name for c in self.client.get_collections().collections]
        if self.collection_name in existing:
            return False

        logger.info(f"Creating collection '{self.collection_name}' (dim={vector_size})")
        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
        )
        return True

    def upsert_chunks(
        self,
        document_id: str,
        chunks: Sequence[str],
        embeddings: Sequence[np.ndarray],
        title: Optional[str] = None,
    ) -> int:
        """
        Store a document's chunks with their embeddings.

        Args:
            document_id: Knowledge item identifier
            chunks: Chunk texts in order
            embeddings: One vector per chunk
            title: Optional document title stored in the payload

        Returns:
            Number of points written
        """
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Got {len(embeddings)} embeddings for {len(chunks)} chunks"
            )
        if not chunks:
            return 0

        points = []
        for index, (chunk, embedding) in enumerate(zip(chunks, embeddings)):
            payload = {
                "document_id": str(document_id),
                "chunk_index": index,
                "content": chunk,
            }
            if title:
                payload["title"] = title
            points.append(
                PointStruct(
                    id=chunk_point_id(str(document_id), index),
                    vector=np.asarray(embedding, dtype=np.float32).flatten().tolist(),
                    payload=payload,
                )
            )

        try:
            self.client.upsert(collection_name=self.collection_name, points=points)
        except Exception as e:
            logger.error(f"Failed to upsert {len(points)} chunks of {document_id}: {e}")
            raise RuntimeError(f"Failed to store document {document_id}: {e}") from e

        logger.debug(f"Upserted {len(points)} chunks for document {document_id}")
        return len(points)
