"""
Research decomposition component for NexusRAG.
Breaks a research topic into focused sub-questions.
"""

import logging
from typing import Any, List, Optional

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.parsing import extract_string_list
from nexusrag.components.protocols import ChatModel
from nexusrag.models import ConversationMessage, GenerationOptions, MessageRole

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 3
MIN_DEPTH = 1
MAX_DEPTH = 5

DECOMPOSITION_SYSTEM_PROMPT = (
    "You are a research assistant. Respond ONLY with a JSON array of sub-questions."
)

DECOMPOSITION_PROMPT = """Break down this research topic into {depth} specific sub-questions that would help build a comprehensive understanding:

Topic: "{topic}"

Respond ONLY with a JSON array of strings, nothing else:
["sub-question 1", "sub-question 2", ...]"""


def clamp_depth(
    depth: Any, default: int = DEFAULT_DEPTH, maximum: int = MAX_DEPTH
) -> int:
    """
    Normalize a requested research depth.

    Non-numeric values (including None) give ``default``; numbers are
    truncated to int and clamped into [1, maximum].
    """
    if isinstance(depth, bool):
        depth = None
    try:
        value = int(float(depth))
    except (TypeError, ValueError):
        value = default
    return max(MIN_DEPTH, min(maximum, value))


class ResearchDecomposer:
    """Decomposes a research topic into sub-questions."""

    def __init__(
        self,
        generator: ChatModel,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        max_depth: int = MAX_DEPTH,
    ):
        self.generator = generator
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_depth = max(MIN_DEPTH, min(MAX_DEPTH, max_depth))

    def decompose(
        self,
        topic: str,
        depth: Any = DEFAULT_DEPTH,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[str]:
        """
        Decompose a topic into at most ``depth`` sub-questions.

        Args:
            topic: Research topic
            depth: Requested number of sub-questions (clamped to 1-5)
            cancel_token: Token checked before the generator call

        Returns:
            Sub-questions, or ``[topic]`` when the model output is unusable
        """
        topic = (topic or "").strip()
        if not topic:
            raise ValueError("topic cannot be empty")

        depth = clamp_depth(depth, maximum=self.max_depth)
        messages = [
            ConversationMessage(
                role=MessageRole.SYSTEM, content=DECOMPOSITION_SYSTEM_PROMPT
            ),
            ConversationMessage(
                role=MessageRole.USER,
                content=DECOMPOSITION_PROMPT.format(depth=depth, topic=topic),
            ),
        ]
        options = GenerationOptions(
            temperature=self.temperature, max_tokens=self.max_tokens, json_mode=True
        )

        try:
            response = self.generator.chat(messages, options, cancel_token)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Decomposition failed, researching topic as-is: {e}")
            return [topic]

        questions = extract_string_list(response)
        if not questions:
            logger.warning("Decomposition returned no sub-questions, researching topic as-is")
            return [topic]

        logger.info(f"Decomposed topic into {len(questions[:depth])} sub-questions")
        return questions[:depth]
