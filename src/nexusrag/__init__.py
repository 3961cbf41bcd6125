"""
NexusRAG - Agentic retrieval and tool orchestration for a personal knowledge workspace.
"""

__version__ = "0.1.0"

from nexusrag.config import Config
from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.pipelines import DeepSearchPipeline, ResearchPipeline
from nexusrag.agent import AgentLoop, ToolExecutor

__all__ = [
    "Config",
    "CancellationToken",
    "OperationCancelled",
    "DeepSearchPipeline",
    "ResearchPipeline",
    "AgentLoop",
    "ToolExecutor",
    "__version__",
]
