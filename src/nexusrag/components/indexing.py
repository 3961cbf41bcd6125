"""
Indexing component for NexusRAG.
Splits knowledge items into overlapping word windows and stores them.
"""

import logging
from typing import List, Optional

from nexusrag.components.protocols import TextEmbedder

# Configure logging
logger = logging.getLogger(__name__)


def chunk_text(text: str, chunk_size: int = 500, overlap: int = 50) -> List[str]:
    """
    Split text into windows of ``chunk_size`` words overlapping by ``overlap`` words.

    A final window that would only repeat the previous overlap is not emitted.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")

    words = (text or "").split()
    if not words:
        return []

    step = chunk_size - overlap
    chunks = []
    for start in range(0, len(words), step):
        chunks.append(" ".join(words[start : start + chunk_size]))
        if start + chunk_size >= len(words):
            break
    return chunks


class DocumentIndexer:
    """Chunks, embeds and stores documents in the vector store."""

    def __init__(
        self,
        embedder: TextEmbedder,
        vector_store,
        chunk_size: int = 500,
        overlap: int = 50,
    ):
        """
        Initialize indexer.

        Args:
            embedder: Embedding model (``embed_queries`` used when available)
            vector_store: VectorStore with ``ensure_collection`` and ``upsert_chunks``
            chunk_size: Words per chunk
            overlap: Words shared by consecutive chunks
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunk_size = chunk_size
        self.overlap = overlap

    def _embed(self, chunks: List[str]):
        if hasattr(self.embedder, "embed_queries"):
            return self.embedder.embed_queries(chunks)
        return [self.embedder.embed_query(chunk) for chunk in chunks]

    def index_document(
        self, document_id: str, text: str, title: Optional[str] = None
    ) -> int:
        """
        Index one document.

        Args:
            document_id: Knowledge item identifier
            text: Full document text
            title: Optional title stored alongside every chunk

        Returns:
            Number of chunks stored
        """
        if not document_id or not str(document_id).strip():
            raise ValueError("document_id is required")

        chunks = chunk_text(text, self.chunk_size, self.overlap)
        if not chunks:
            logger.warning(f"Document {document_id} has no text, skipping")
            return 0

        embeddings = self._embed(chunks)
        if hasattr(self.vector_store, "ensure_collection"):
            self.vector_store.ensure_collection(len(embeddings[0]))

        stored = self.vector_store.upsert_chunks(document_id, chunks, embeddings, title)
        logger.info(f"Indexed document {document_id}: {stored} chunks")
        return stored
