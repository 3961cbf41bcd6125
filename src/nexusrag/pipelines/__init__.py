"""
Pipeline implementations for NexusRAG.

Pipelines:
- DeepSearchPipeline: Expand → parallel Embed+Search → Dedup → Rerank
- ResearchPipeline: Decompose → Deep search per sub-question → Brief
"""

from nexusrag.pipelines.deep_search import DeepSearchPipeline
from nexusrag.pipelines.research import ResearchPipeline

__all__ = [
    "DeepSearchPipeline",
    "ResearchPipeline",
]
