"""
Agent layer for NexusRAG: tool catalogue, dispatch and the tool-calling loop.
"""

from nexusrag.agent.loop import AgentLoop, SYSTEM_PROMPT, build_system_prompt
from nexusrag.agent.tools import (
    TOOL_DEFINITIONS,
    ToolDefinition,
    ToolExecutor,
    ToolType,
    get_tool_descriptions,
    get_tool_schema,
    render_tool_catalogue,
)

__all__ = [
    "AgentLoop",
    "SYSTEM_PROMPT",
    "build_system_prompt",
    "TOOL_DEFINITIONS",
    "ToolDefinition",
    "ToolExecutor",
    "ToolType",
    "get_tool_descriptions",
    "get_tool_schema",
    "render_tool_catalogue",
]
