"""
Building blocks for NexusRAG.

Components:
- parsing: Lenient JSON / tool-call extraction from model output
- expansion: Query expansion with the local chat model
- decomposition: Research topic decomposition into sub-questions
- generation: Chat completions through Ollama's OpenAI-compatible API
- retrieval: Vector search and chunk storage in Qdrant
- rerank_service: Worker thread around a cross-encoder backend
- indexing: Word-window chunking and document indexing
- tasks: Workspace task store

The model-backed modules (embedding: vLLM / transformers, reranking:
transformers cross-encoder) import torch and are imported directly.
"""

from nexusrag.components.parsing import (
    compress_context,
    extract_json_array,
    extract_json_object,
    extract_string_list,
    iter_balanced_spans,
    parse_tool_call,
    strip_thinking_tokens,
)
from nexusrag.components.expansion import QueryExpander
from nexusrag.components.decomposition import ResearchDecomposer, clamp_depth
from nexusrag.components.generation import LLMGenerator
from nexusrag.components.retrieval import VectorStore, get_qdrant_client
from nexusrag.components.rerank_service import RerankService
from nexusrag.components.indexing import DocumentIndexer, chunk_text
from nexusrag.components.tasks import InMemoryTaskStore

__all__ = [
    "compress_context",
    "extract_json_array",
    "extract_json_object",
    "extract_string_list",
    "iter_balanced_spans",
    "parse_tool_call",
    "strip_thinking_tokens",
    "QueryExpander",
    "ResearchDecomposer",
    "clamp_depth",
    "LLMGenerator",
    "VectorStore",
    "get_qdrant_client",
    "RerankService",
    "DocumentIndexer",
    "chunk_text",
    "InMemoryTaskStore",
]
