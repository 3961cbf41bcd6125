"""
Pydantic models for NexusRAG data structures.
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ConversationMessage(BaseModel):
    """A single message in the running dialogue."""

    role: MessageRole = Field(description="Message author role")
    content: str = Field(default="", description="Message text")

    class Config:
        """Pydantic config."""

        frozen = True
        extra = "forbid"


class ToolInvocation(BaseModel):
    """A tool call parsed out of an assistant message."""

    tool: str = Field(description="Tool name")
    parameters: Dict[str, Any] = Field(
        default_factory=dict, description="Tool parameters"
    )

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"


class CandidateResult(BaseModel):
    """A passage returned by a single vector store lookup."""

    id: str = Field(description="Point identifier in the vector store")
    content: str = Field(default="", description="Passage text")
    similarity: float = Field(default=0.0, description="Cosine similarity in [0, 1]")
    rerank_score: Optional[float] = Field(
        default=None, description="Cross-encoder relevance score"
    )
    document_id: Optional[str] = Field(
        default=None, description="Knowledge item the passage belongs to"
    )
    source_query: Optional[str] = Field(
        default=None, description="Query (original or expanded) that found it"
    )

    @field_validator("similarity")
    @classmethod
    def clamp_similarity(cls, v: float) -> float:
        """Clamp cosine similarity into [0, 1]."""
        return min(1.0, max(0.0, float(v)))

    @property
    def score(self) -> float:
        """Score used for ranking: rerank score when present, else similarity."""
        return self.rerank_score if self.rerank_score is not None else self.similarity

    class Config:
        """Pydantic config."""

        extra = "allow"


class RankedResult(CandidateResult):
    """A candidate promoted into the final ranking."""

    rank: int = Field(ge=1, description="1-based final rank")


class DeepSearchResult(BaseModel):
    """Result from a deep search run."""

    query: str = Field(description="Original query")
    queries: List[str] = Field(
        default_factory=list, description="All queries searched (original first)"
    )
    n_candidates: int = Field(default=0, ge=0, description="Candidates before dedup")
    n_unique: int = Field(default=0, ge=0, description="Candidates after dedup")
    reranked: bool = Field(
        default=False, description="Whether cross-encoder scores were used"
    )
    results: List[RankedResult] = Field(
        default_factory=list, description="Final ranked results"
    )


class Finding(BaseModel):
    """Evidence gathered for one research sub-question."""

    question: str = Field(description="Sub-question")
    evidence: List[str] = Field(
        default_factory=list, description="Evidence snippets in rank order"
    )


class ResearchBrief(BaseModel):
    """Compiled findings for a research topic."""

    topic: str = Field(description="Research topic")
    findings: List[Finding] = Field(default_factory=list, description="Findings")

    def render(self) -> str:
        """Render the brief as a citation-numbered markdown document."""
        lines = [f"## Research Brief: {self.topic}", ""]
        for finding in self.findings:
            lines.append(f"### {finding.question}")
            if not finding.evidence:
                lines.append("- No relevant evidence found.")
            else:
                for i, snippet in enumerate(finding.evidence, start=1):
                    lines.append(f"- **[{i}]** {snippet}")
            lines.append("")
        return "\n".join(lines)


class GenerationOptions(BaseModel):
    """Per-call options for the generation service."""

    temperature: Optional[float] = Field(
        default=None, ge=0.0, le=2.0, description="Sampling temperature"
    )
    max_tokens: int = Field(default=4096, gt=0, description="Maximum tokens")
    json_mode: bool = Field(default=False, description="Request strict JSON output")

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"


class RerankRequest(BaseModel):
    """Message sent to the rerank worker."""

    request_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex, description="Request identifier"
    )
    query: str = Field(description="Query to score passages against")
    candidates: List[CandidateResult] = Field(
        default_factory=list, description="Passages to score"
    )


class RerankResponse(BaseModel):
    """Message returned by the rerank worker."""

    request_id: str = Field(description="Identifier of the answered request")
    results: List[CandidateResult] = Field(
        default_factory=list, description="Candidates with rerank_score set"
    )
    error: Optional[str] = Field(default=None, description="Worker-side error")


class TaskPriority(str, Enum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskRequest(BaseModel):
    """Parameters for creating a workspace task."""

    workspace_id: str = Field(description="Workspace identifier")
    title: str = Field(min_length=1, description="Concise task title")
    due_date: Optional[date] = Field(default=None, description="Due date")
    priority: TaskPriority = Field(
        default=TaskPriority.MEDIUM, description="Task priority"
    )
    description: Optional[str] = Field(default=None, description="Extra details")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title cannot be empty")
        return v


class Task(TaskRequest):
    """A stored task."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Task id")
    status: str = Field(default="todo", description="Task status")
    created_at: datetime = Field(
        default_factory=datetime.now, description="Creation time"
    )


class AgentState(str, Enum):
    """States of the tool-calling loop."""

    CONTINUING = "continuing"
    ANSWERED = "answered"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class TurnOutcome(BaseModel):
    """Outcome of a single loop turn."""

    state: AgentState = Field(description="State after the turn")
    content: str = Field(default="", description="Final answer or tool result")
    tool: Optional[str] = Field(default=None, description="Tool executed, if any")


class AgentResult(BaseModel):
    """Result from a tool-calling loop run."""

    query: str = Field(description="User query")
    answer: str = Field(description="Text returned to the caller")
    state: AgentState = Field(description="Terminal state")
    turns: int = Field(default=0, ge=0, description="Generation calls made")
    messages: List[ConversationMessage] = Field(
        default_factory=list, description="Full conversation"
    )
    error: Optional[str] = Field(default=None, description="Fatal error, if any")


class EmbeddingConfig(BaseModel):
    """Configuration for embedding model."""

    model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Embedding model name",
    )
    gpu_memory_utilization: float = Field(
        default=0.3, gt=0.0, le=1.0, description="GPU memory fraction"
    )
    max_model_len: int = Field(default=512, gt=0, description="Maximum sequence length")
    normalize: bool = Field(default=True, description="L2-normalize embeddings")

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"


class RerankerConfig(BaseModel):
    """Configuration for the cross-encoder reranker."""

    model: str = Field(
        default="cross-encoder/ms-marco-MiniLM-L-6-v2",
        description="Reranker model name",
    )
    device: Optional[str] = Field(default=None, description="Device (cuda/cpu)")
    batch_size: int = Field(default=32, gt=0, description="Batch size for inference")
    max_length: int = Field(default=512, gt=0, description="Maximum pair length")

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"


class GenerationConfig(BaseModel):
    """Configuration for the generation service."""

    model: str = Field(default="deepseek-r1:8b", description="Chat model name")
    base_url: str = Field(
        default="http://localhost:11434/v1",
        description="OpenAI-compatible endpoint (Ollama)",
    )
    api_key: Optional[str] = Field(default=None, description="API key")
    temperature: float = Field(
        default=0.6, ge=0.0, le=2.0, description="Default temperature"
    )
    max_tokens: int = Field(default=4096, gt=0, description="Default max tokens")
    timeout: float = Field(default=300.0, gt=0, description="Request timeout (s)")

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"


class RetrievalConfig(BaseModel):
    """Configuration for retrieval."""

    collection_name: str = Field(description="Qdrant collection name")
    url: Optional[str] = Field(default=None, description="Qdrant server URL")
    api_key: Optional[str] = Field(default=None, description="Qdrant API key")
    top_k: int = Field(default=5, gt=0, description="Number of results to return")
    score_threshold: Optional[float] = Field(
        default=None, description="Minimum score threshold"
    )

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"


class UsageInfo(BaseModel):
    """Token usage information."""

    prompt_tokens: int = Field(default=0, ge=0, description="Prompt tokens used")
    completion_tokens: int = Field(
        default=0, ge=0, description="Completion tokens used"
    )
    total_tokens: int = Field(default=0, ge=0, description="Total tokens used")

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"


class GenerationResult(BaseModel):
    """Result from one generation call."""

    answer: str = Field(description="Generated text (reasoning tokens stripped)")
    model: str = Field(description="Model used for generation")
    usage: UsageInfo = Field(description="Token usage information")

    class Config:
        """Pydantic config."""

        frozen = False
        extra = "forbid"
