"""
Query expansion component for NexusRAG.
Asks the generator for alternative phrasings of a search query.
"""

import logging
from typing import List, Optional

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.parsing import extract_string_list
from nexusrag.components.protocols import ChatModel
from nexusrag.models import ConversationMessage, GenerationOptions, MessageRole

# Configure logging
logger = logging.getLogger(__name__)

MAX_EXPANSIONS = 3

EXPANSION_SYSTEM_PROMPT = (
    "You are a helpful assistant that generates search queries. "
    "Respond ONLY with a JSON array."
)

EXPANSION_PROMPT = """Given the search query: "{query}"

Generate exactly 3 alternative search queries that would help find relevant information. Each query should approach the topic from a different angle or use different keywords.

Respond ONLY with a JSON array of strings, nothing else:
["query1", "query2", "query3"]"""


class QueryExpander:
    """Generates up to three alternative queries for deep search."""

    def __init__(
        self,
        generator: ChatModel,
        max_expansions: int = MAX_EXPANSIONS,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ):
        """
        Initialize query expander.

        Args:
            generator: Chat model used to produce expansions
            max_expansions: Maximum alternatives returned (0-3)
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response
        """
        self.generator = generator
        self.max_expansions = max(0, min(MAX_EXPANSIONS, max_expansions))
        self.temperature = temperature
        self.max_tokens = max_tokens

    def expand(
        self, query: str, cancel_token: Optional[CancellationToken] = None
    ) -> List[str]:
        """
        Expand a query into alternative phrasings.

        Args:
            query: Original search query
            cancel_token: Token checked before the generator call

        Returns:
            Up to ``max_expansions`` distinct alternatives, never including the
            original query. Empty on any generator or parse failure.
        """
        if not query or not query.strip() or self.max_expansions == 0:
            return []
        query = query.strip()

        messages = [
            ConversationMessage(role=MessageRole.SYSTEM, content=EXPANSION_SYSTEM_PROMPT),
            ConversationMessage(
                role=MessageRole.USER, content=EXPANSION_PROMPT.format(query=query)
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
            logger.warning(f"Query expansion failed, searching original query only: {e}")
            return []

        candidates = extract_string_list(response)
        if not candidates:
            logger.warning("Query expansion returned no parsable JSON array")
            return []

        seen = {query.lower()}
        expansions = []
        for candidate in candidates:
            key = candidate.lower()
            if key in seen:
                continue
            seen.add(key)
            expansions.append(candidate)
            if len(expansions) >= self.max_expansions:
                break

        logger.debug(f"Expanded '{query}' into {expansions}")
        return expansions
