"""
Tool definitions and dispatch for the NexusRAG agent loop.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from nexusrag.cancellation import CancellationToken
from nexusrag.components.parsing import compress_context
from nexusrag.components.protocols import ChatModel, DocumentStore, TaskStore
from nexusrag.models import (
    ConversationMessage,
    GenerationOptions,
    MessageRole,
    TaskPriority,
    TaskRequest,
    ToolInvocation,
)

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "Summarize the following document concisely. Use bullet points for key findings."
)


class ToolType(Enum):
    """Tools the agent can call."""

    SEARCH_KNOWLEDGE_BASE = "search_knowledge_base"
    DEEP_SEARCH = "deep_search"
    RESEARCH_TOPIC = "research_topic"
    CREATE_TASK = "create_task"
    SUMMARIZE_DOCUMENT = "summarize_document"


@dataclass
class ToolDefinition:
    """Definition of a tool offered to the model."""

    name: str
    description: str
    parameters: Dict[str, dict]
    required_params: List[str]


TOOL_DEFINITIONS: Dict[str, ToolDefinition] = {
    ToolType.SEARCH_KNOWLEDGE_BASE.value: ToolDefinition(
        name="search_knowledge_base",
        description=(
            "Quick semantic search of the knowledge base. Use for simple factual "
            "lookups. Returns top 5 results without re-ranking."
        ),
        parameters={
            "query": {"type": "string", "description": "The semantic search query."},
        },
        required_params=["query"],
    ),
    ToolType.DEEP_SEARCH.value: ToolDefinition(
        name="deep_search",
        description=(
            "Advanced search with query expansion and Cross-Encoder re-ranking. Use "
            "this for complex questions where precision matters. Generates multiple "
            "sub-queries, searches each, deduplicates, and re-ranks for maximum "
            "relevance."
        ),
        parameters={
            "query": {"type": "string", "description": "The main search query."},
        },
        required_params=["query"],
    ),
    ToolType.RESEARCH_TOPIC.value: ToolDefinition(
        name="research_topic",
        description=(
            "Multi-hop iterative research on a complex topic. Breaks the topic into "
            "sub-questions, deep-searches each sub-question, and compiles a "
            "structured research brief. Use for open-ended questions like 'What do "
            "we know about X?' or 'Summarize everything related to Y'."
        ),
        parameters={
            "topic": {
                "type": "string",
                "description": "The research topic or question.",
            },
            "depth": {
                "type": "number",
                "description": "Number of sub-questions to explore (1-5, default 3).",
            },
        },
        required_params=["topic"],
    ),
    ToolType.CREATE_TASK.value: ToolDefinition(
        name="create_task",
        description=(
            "Create a new task in the workspace. Use this when the user asks to add "
            "or remind them of a task."
        ),
        parameters={
            "title": {"type": "string", "description": "The concise title of the task."},
            "due_date": {
                "type": "string",
                "description": "The due date in ISO 8601 format (YYYY-MM-DD), if specified.",
            },
            "priority": {
                "type": "string",
                "enum": [p.value for p in TaskPriority],
                "description": "The priority of the task. Default is medium.",
            },
            "description": {
                "type": "string",
                "description": "Additional details or context for the task.",
            },
        },
        required_params=["title"],
    ),
    ToolType.SUMMARIZE_DOCUMENT.value: ToolDefinition(
        name="summarize_document",
        description="Summarize a specific document by its ID.",
        parameters={
            "document_id": {
                "type": "string",
                "description": "The ID of the document to summarize.",
            },
        },
        required_params=["document_id"],
    ),
}


def get_tool_schema() -> List[dict]:
    """JSON-schema style description of every tool."""
    return [
        {
            "name": tool_def.name,
            "description": tool_def.description,
            "parameters": {
                "type": "object",
                "properties": tool_def.parameters,
                "required": tool_def.required_params,
            },
        }
        for tool_def in TOOL_DEFINITIONS.values()
    ]


def render_tool_catalogue() -> str:
    """Tool catalogue embedded in the system prompt."""
    return json.dumps(get_tool_schema(), indent=2)


def get_tool_descriptions() -> str:
    """Human-readable tool list (CLI help)."""
    lines = ["Available tools:\n"]
    for name, tool_def in TOOL_DEFINITIONS.items():
        lines.append(f"- {name}: {tool_def.description}")
        if tool_def.required_params:
            lines.append(f"  Required: {', '.join(tool_def.required_params)}")
    return "\n".join(lines)


def _required_str(parameters: Dict[str, Any], name: str) -> str:
    value = parameters.get(name)
    if value is None or not str(value).strip():
        raise ValueError(f"Missing required parameter '{name}'")
    return str(value).strip()


def _optional_str(parameters: Dict[str, Any], name: str) -> Optional[str]:
    value = parameters.get(name)
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def _percent(score: float) -> str:
    return f"{score * 100:.0f}%"


class ToolExecutor:
    """Executes parsed tool invocations against the engine's collaborators."""

    def __init__(
        self,
        deep_search=None,
        research=None,
        task_store: Optional[TaskStore] = None,
        generator: Optional[ChatModel] = None,
        document_store: Optional[DocumentStore] = None,
        workspace_id: str = "default",
        summary_char_budget: int = 6000,
        compress_results: bool = False,
        summary_temperature: float = 0.2,
        summary_max_tokens: int = 4096,
    ):
        """
        Initialize tool executor.

        Args:
            deep_search: DeepSearchPipeline (``run`` and ``quick_search``)
            research: ResearchPipeline
            task_store: Store receiving create_task requests
            generator: Chat model used by summarize_document
            document_store: Source of document chunks for summarize_document
            workspace_id: Workspace that new tasks belong to
            summary_char_budget: Characters of a document sent for summary
            compress_results: Compress deep search passages to query-relevant sentences
        """
        self.deep_search = deep_search
        self.research = research
        self.task_store = task_store
        self.generator = generator
        self.document_store = document_store
        self.workspace_id = workspace_id
        self.summary_char_budget = summary_char_budget
        self.compress_results = compress_results
        self.summary_temperature = summary_temperature
        self.summary_max_tokens = summary_max_tokens

        self._handlers: Dict[str, Callable[[Dict[str, Any], CancellationToken], str]] = {
            ToolType.SEARCH_KNOWLEDGE_BASE.value: self._search_knowledge_base,
            ToolType.DEEP_SEARCH.value: self._deep_search,
            ToolType.RESEARCH_TOPIC.value: self._research_topic,
            ToolType.CREATE_TASK.value: self._create_task,
            ToolType.SUMMARIZE_DOCUMENT.value: self._summarize_document,
        }

    def known(self, tool: str) -> bool:
        return tool in self._handlers

    def execute(
        self,
        invocation: ToolInvocation,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Run one tool and return its textual result.

        Raises:
            ValueError: Unknown tool or missing/invalid parameters
            RuntimeError: If the collaborator a tool needs is not configured
        """
        handler = self._handlers.get(invocation.tool)
        if handler is None:
            raise ValueError(f"Unknown tool '{invocation.tool}'")
        cancel_token = cancel_token or CancellationToken()
        cancel_token.raise_if_cancelled(f"tool {invocation.tool}")
        logger.info(f"Executing tool: {invocation.tool}")
        return handler(invocation.parameters, cancel_token)

    @staticmethod
    def _require(collaborator, name: str):
        if collaborator is None:
            raise RuntimeError(f"{name} is not configured")
        return collaborator

    def _search_knowledge_base(
        self, parameters: Dict[str, Any], cancel_token: CancellationToken
    ) -> str:
        query = _required_str(parameters, "query")
        pipeline = self._require(self.deep_search, "Knowledge search")
        results = pipeline.quick_search(query, cancel_token=cancel_token)
        if not results:
            return "No relevant documents found."
        lines = [
            f"[{r.rank}] (similarity: {_percent(r.similarity)}) {r.content[:200]}..."
            for r in results[:5]
        ]
        return f"Found {len(results[:5])} results:\n" + "\n\n".join(lines)

    def _deep_search(
        self, parameters: Dict[str, Any], cancel_token: CancellationToken
    ) -> str:
        query = _required_str(parameters, "query")
        pipeline = self._require(self.deep_search, "Deep search")
        result = pipeline.run(query, cancel_token=cancel_token)
        if not result.results:
            return "No relevant documents found after deep search."
        lines = []
        for r in result.results:
            content = compress_context(r.content, query) if self.compress_results else r.content
            lines.append(f"[{r.rank}] (confidence: {_percent(r.score)}) {content[:300]}...")
        return (
            f"Deep Search found {len(result.results)} high-precision results:\n"
            + "\n\n".join(lines)
        )

    def _research_topic(
        self, parameters: Dict[str, Any], cancel_token: CancellationToken
    ) -> str:
        topic = _required_str(parameters, "topic")
        pipeline = self._require(self.research, "Research")
        brief = pipeline.run(topic, depth=parameters.get("depth"), cancel_token=cancel_token)
        return brief.render()

    def _create_task(
        self, parameters: Dict[str, Any], cancel_token: CancellationToken
    ) -> str:
        title = _required_str(parameters, "title")
        store = self._require(self.task_store, "Task store")

        priority = (_optional_str(parameters, "priority") or TaskPriority.MEDIUM.value).lower()
        if priority not in {p.value for p in TaskPriority}:
            logger.warning(f"Unknown task priority '{priority}', using medium")
            priority = TaskPriority.MEDIUM.value

        # pydantic validates the ISO due date (ValidationError is a ValueError)
        request = TaskRequest(
            workspace_id=self.workspace_id,
            title=title,
            due_date=_optional_str(parameters, "due_date"),
            priority=priority,
            description=_optional_str(parameters, "description"),
        )
        if store.create_task(request):
            return f'Task "{request.title}" created successfully.'
        return f'Task "{request.title}" skipped — already exists.'

    def _summarize_document(
        self, parameters: Dict[str, Any], cancel_token: CancellationToken
    ) -> str:
        document_id = _required_str(parameters, "document_id")
        store = self._require(self.document_store, "Document store")
        generator = self._require(self.generator, "Generator")

        chunks = store.get_document_chunks(document_id)
        if not chunks:
            return "No content found for this document."

        full_text = "\n\n".join(chunks)
        if len(full_text) > self.summary_char_budget:
            full_text = full_text[: self.summary_char_budget] + "..."

        messages = [
            ConversationMessage(role=MessageRole.SYSTEM, content=SUMMARY_SYSTEM_PROMPT),
            ConversationMessage(role=MessageRole.USER, content=full_text),
        ]
        summary = generator.chat(
            messages,
            GenerationOptions(
                temperature=self.summary_temperature, max_tokens=self.summary_max_tokens
            ),
            cancel_token,
        )
        return f"## Document Summary\n\n{summary}"
