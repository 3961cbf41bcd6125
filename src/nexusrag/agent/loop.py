"""
Tool-calling loop for NexusRAG.

Each turn the model either emits a JSON tool call, which is executed and fed
back as a ``tool`` message, or plain text, which is the final answer. The
loop stops after ``turn_budget`` generator calls at the latest.
"""

import logging
from typing import List, Optional, Sequence

from nexusrag.agent.tools import ToolExecutor, render_tool_catalogue
from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.parsing import parse_tool_call, strip_thinking_tokens
from nexusrag.components.protocols import ChatModel
from nexusrag.models import (
    AgentResult,
    AgentState,
    ConversationMessage,
    GenerationOptions,
    MessageRole,
    TurnOutcome,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are Nexus, an advanced AI workspace assistant running locally.
You have agentic research capabilities with retrieval-augmented generation over the user's knowledge base.

You have access to the following tools:

{catalogue}

INSTRUCTIONS:
1. If the user's request requires external data or actions, you MUST call a tool.
2. To call a tool, output a VALID JSON object in this format:

```json
{{
  "tool": "tool_name",
  "parameters": {{
    "key": "value"
  }}
}}
```

3. Do NOT output any other text when calling a tool. Just the JSON.
4. If no tool is needed, respond normally in plain text.
5. Always ground your answers in search results when available. Cite specific facts.
6. If search results are insufficient, say so honestly and suggest refinements.

TOOL SELECTION STRATEGY:
- For simple factual lookups, use "search_knowledge_base".
- For complex questions requiring precision, use "deep_search" (query expansion + cross-encoder re-ranking).
- For open-ended research or multi-faceted topics, use "research_topic" (iterative multi-hop search).
- PREFER "deep_search" over "search_knowledge_base" for any non-trivial question.
- If the user asks for notes, docs, or knowledge, always search first.

When you receive results from a tool, analyze them carefully. If they don't fully answer the question, you can call another tool with a refined query. You have up to {turn_budget} turns to reason.

RESPONSE STYLE:
- Be concise and direct.
- Use markdown formatting for readability.
- When presenting search results, organize them clearly with bullet points.
"""

EMPTY_ANSWER_MESSAGE = "I could not complete this request: the model returned an empty response."
EXHAUSTED_MESSAGE = (
    "I did not reach a final answer within {turn_budget} steps. "
    "Here is what I gathered so far:"
)
EXHAUSTED_EMPTY_MESSAGE = "I did not reach a final answer within {turn_budget} steps."
FAILED_MESSAGE = "Sorry, I encountered an error and could not complete this request."


def build_system_prompt(turn_budget: int = 8) -> str:
    return SYSTEM_PROMPT.format(catalogue=render_tool_catalogue(), turn_budget=turn_budget)


class AgentLoop:
    """Bounded-turn tool-calling conversation loop."""

    def __init__(
        self,
        generator: ChatModel,
        executor: ToolExecutor,
        turn_budget: int = 8,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ):
        """
        Initialize agent loop.

        Args:
            generator: Chat model driving the conversation
            executor: Dispatches parsed tool calls
            turn_budget: Maximum generator calls per run
            temperature: Sampling temperature for every turn
            max_tokens: Maximum tokens per turn
        """
        if turn_budget <= 0:
            raise ValueError("turn_budget must be positive")
        self.generator = generator
        self.executor = executor
        self.turn_budget = turn_budget
        self.options = GenerationOptions(temperature=temperature, max_tokens=max_tokens)

    def _step(
        self, messages: List[ConversationMessage], cancel_token: CancellationToken
    ) -> TurnOutcome:
        """Run one turn, appending to ``messages``."""
        response = self.generator.chat(messages, self.options, cancel_token)
        logger.debug(f"Model response (first 300 chars): {response[:300]!r}")

        invocation = parse_tool_call(response)
        if invocation is None or not self.executor.known(invocation.tool):
            if invocation is not None:
                logger.warning(f"Model called unknown tool '{invocation.tool}', treating as answer")
            answer = strip_thinking_tokens(response).strip() or EMPTY_ANSWER_MESSAGE
            messages.append(ConversationMessage(role=MessageRole.ASSISTANT, content=answer))
            return TurnOutcome(state=AgentState.ANSWERED, content=answer)

        messages.append(ConversationMessage(role=MessageRole.ASSISTANT, content=response))
        try:
            result = self.executor.execute(invocation, cancel_token)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Tool {invocation.tool} failed: {e}")
            result = f"Error executing tool {invocation.tool}: {e}"
        messages.append(ConversationMessage(role=MessageRole.TOOL, content=result))
        return TurnOutcome(state=AgentState.CONTINUING, content=result, tool=invocation.tool)

    def run(
        self,
        query: str,
        history: Optional[Sequence[ConversationMessage]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AgentResult:
        """
        Answer a user query, calling tools as the model requests.

        Args:
            query: User query
            history: Earlier user/assistant turns of the same conversation
            cancel_token: Token checked before every turn

        Returns:
            AgentResult in state answered, exhausted or failed; ``answer`` is
            never empty

        Raises:
            OperationCancelled: If the token is cancelled
        """
        if not query or not query.strip():
            raise ValueError("query cannot be empty")
        cancel_token = cancel_token or CancellationToken()

        messages = [
            ConversationMessage(
                role=MessageRole.SYSTEM, content=build_system_prompt(self.turn_budget)
            )
        ]
        for message in history or []:
            if message.role != MessageRole.SYSTEM:
                messages.append(message)
        messages.append(ConversationMessage(role=MessageRole.USER, content=query.strip()))

        turn = 0
        last_tool_result = ""
        while turn < self.turn_budget:
            cancel_token.raise_if_cancelled(f"turn {turn + 1}")
            turn += 1
            try:
                outcome = self._step(messages, cancel_token)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.error(f"Generation failed on turn {turn}: {e}")
                messages.append(
                    ConversationMessage(role=MessageRole.ASSISTANT, content=FAILED_MESSAGE)
                )
                return AgentResult(
                    query=query,
                    answer=FAILED_MESSAGE,
                    state=AgentState.FAILED,
                    turns=turn,
                    messages=messages,
                    error=str(e),
                )

            if outcome.state == AgentState.ANSWERED:
                logger.info(f"Answered after {turn} turns")
                return AgentResult(
                    query=query,
                    answer=outcome.content,
                    state=AgentState.ANSWERED,
                    turns=turn,
                    messages=messages,
                )
            last_tool_result = outcome.content
            logger.info(f"Turn {turn}/{self.turn_budget}: ran {outcome.tool}")

        logger.warning(f"Turn budget of {self.turn_budget} exhausted without an answer")
        if last_tool_result:
            answer = (
                EXHAUSTED_MESSAGE.format(turn_budget=self.turn_budget)
                + "\n\n"
                + last_tool_result
            )
        else:
            answer = EXHAUSTED_EMPTY_MESSAGE.format(turn_budget=self.turn_budget)
        return AgentResult(
            query=query,
            answer=answer,
            state=AgentState.EXHAUSTED,
            turns=turn,
            messages=messages,
        )
