"""
Generation component for NexusRAG.
Chat completions against a locally hosted model through Ollama's
OpenAI-compatible endpoint.

Reasoning models (DeepSeek R1 distills) emit <think> blocks; they are removed
before any caller sees the text.
"""

import logging
import os
from typing import List, Optional, Sequence, Union

from openai import (
    OpenAI,
    APIError,
    APIConnectionError,
    APITimeoutError,
    BadRequestError,
    RateLimitError,
    AuthenticationError,
)

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.parsing import strip_thinking_tokens
from nexusrag.models import (
    ConversationMessage,
    GenerationConfig,
    GenerationOptions,
    GenerationResult,
    MessageRole,
    UsageInfo,
)

# Configure logging
logger = logging.getLogger(__name__)

# Temperature used for JSON mode when the caller does not set one
JSON_MODE_TEMPERATURE = 0.15

# Prefix for tool results; chat templates of local models reject the tool role
# without an OpenAI tool_call_id, so tool output is sent as a system message.
TOOL_OUTPUT_PREFIX = "Tool Output: "


class LLMGenerator:
    """Chat generator backed by an OpenAI-compatible endpoint (Ollama)."""

    def __init__(
        self,
        model: Union[str, GenerationConfig] = "deepseek-r1:8b",
        base_url: str = "http://localhost:11434/v1",
        api_key: Optional[str] = None,
        temperature: float = 0.6,
        max_tokens: int = 4096,
        timeout: float = 300.0,
        retry_count: int = 2,
    ):
        """
        Initialize LLM generator.

        Args:
            model: Model name served by the endpoint, or GenerationConfig instance
            base_url: OpenAI-compatible base URL (Ollama: http://localhost:11434/v1)
            api_key: API key (Ollama ignores it but the SDK requires one)
            temperature: Default sampling temperature
            max_tokens: Default maximum tokens in response
            timeout: Request timeout in seconds
            retry_count: Retries on transient failures
        """
        # Handle Pydantic config or individual parameters
        if isinstance(model, GenerationConfig):
            config = model
            self.model = config.model
            base_url = config.base_url
            api_key = config.api_key or api_key
            self.temperature = config.temperature
            self.max_tokens = config.max_tokens
            timeout = config.timeout
        else:
            self.model = model
            self.temperature = temperature
            self.max_tokens = max_tokens

        self.base_url = base_url
        self.timeout = timeout
        self.retry_count = max(0, retry_count)
        self.usage = UsageInfo()

        api_key = api_key or os.getenv("OLLAMA_API_KEY") or "ollama"

        # Initialize client with error handling
        try:
            self.client = OpenAI(
                base_url=base_url, api_key=api_key, timeout=timeout, max_retries=0
            )
            logger.info(f"LLMGenerator initialized with model: {self.model} ({base_url})")
        except Exception as e:
            logger.error(f"Failed to initialize OpenAI client: {e}")
            raise

    @staticmethod
    def _to_api_messages(messages: Sequence[ConversationMessage]) -> List[dict]:
        """Convert conversation messages into chat completion payloads."""
        api_messages = []
        for message in messages:
            if message.role == MessageRole.TOOL:
                api_messages.append(
                    {
                        "role": MessageRole.SYSTEM.value,
                        "content": f"{TOOL_OUTPUT_PREFIX}{message.content}",
                    }
                )
            else:
                api_messages.append(
                    {"role": message.role.value, "content": message.content}
                )
        return api_messages

    def _create(
        self,
        api_messages: List[dict],
        options: GenerationOptions,
        cancel_token: CancellationToken,
    ):
        client = self.client
        remaining = cancel_token.remaining()
        if remaining is not None:
            # a request never outlives the caller's deadline
            client = self.client.with_options(timeout=min(self.timeout, remaining))

        temperature = options.temperature
        if temperature is None:
            temperature = JSON_MODE_TEMPERATURE if options.json_mode else self.temperature

        kwargs = dict(
            model=self.model,
            messages=api_messages,
            temperature=temperature,
            max_tokens=options.max_tokens or self.max_tokens,
            stream=False,
        )
        if not options.json_mode:
            return client.chat.completions.create(**kwargs)

        try:
            return client.chat.completions.create(
                response_format={"type": "json_object"}, **kwargs
            )
        except (TypeError, ValueError, BadRequestError) as e:
            # If response_format is not supported, try without it
            if "response_format" in str(e) or "json_object" in str(e):
                logger.debug("response_format not supported, retrying without it")
                return client.chat.completions.create(**kwargs)
            raise

    def complete(
        self,
        messages: Sequence[ConversationMessage],
        options: Optional[GenerationOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> GenerationResult:
        """
        Run one chat completion.

        Args:
            messages: Conversation to send
            options: Per-call generation options
            cancel_token: Token checked before every attempt; its deadline caps the request timeout

        Returns:
            GenerationResult with reasoning tokens stripped from the answer

        Raises:
            ValueError: If messages are empty, auth fails or the model is unknown
            ConnectionError: If the endpoint cannot be reached after retries
            OperationCancelled: If the token is cancelled
        """
        if not messages:
            raise ValueError("Messages cannot be empty")

        options = options or GenerationOptions(max_tokens=self.max_tokens)
        cancel_token = cancel_token or CancellationToken()
        api_messages = self._to_api_messages(messages)

        # Attempt API call with retries
        last_error = None
        for attempt in range(self.retry_count + 1):
            cancel_token.raise_if_cancelled("generation")
            try:
                response = self._create(api_messages, options, cancel_token)

                # Validate response
                if not response.choices:
                    raise RuntimeError("API returned empty choices")

                raw = response.choices[0].message.content
                if raw is None:
                    logger.warning("API returned None for message content")
                    raw = ""
                logger.debug(f"Raw model output (first 500 chars): {raw[:500]}")

                usage = UsageInfo(
                    prompt_tokens=getattr(response.usage, "prompt_tokens", 0) or 0,
                    completion_tokens=getattr(response.usage, "completion_tokens", 0)
                    or 0,
                    total_tokens=getattr(response.usage, "total_tokens", 0) or 0,
                )
                self.usage = UsageInfo(
                    prompt_tokens=self.usage.prompt_tokens + usage.prompt_tokens,
                    completion_tokens=self.usage.completion_tokens
                    + usage.completion_tokens,
                    total_tokens=self.usage.total_tokens + usage.total_tokens,
                )

                return GenerationResult(
                    answer=strip_thinking_tokens(raw),
                    model=self.model,
                    usage=usage,
                )

            except AuthenticationError as e:
                logger.error(f"Generation endpoint authentication failed: {e}")
                raise ValueError(
                    "Generation endpoint authentication failed. Check your API key."
                ) from e

            except RateLimitError as e:
                logger.warning(
                    f"Rate limit hit (attempt {attempt + 1}/{self.retry_count + 1}): {e}"
                )
                last_error = e
                if attempt < self.retry_count:
                    wait_time = 2**attempt  # Exponential backoff
                    logger.info(f"Waiting {wait_time}s before retry...")
                    if cancel_token.wait(wait_time):
                        raise OperationCancelled("Generation cancelled during backoff")
                    continue
                raise

            except (APIConnectionError, APITimeoutError) as e:
                logger.error(f"Failed to reach generation endpoint {self.base_url}: {e}")
                last_error = e
                if attempt < self.retry_count:
                    continue
                raise ConnectionError(
                    f"Failed to reach generation endpoint {self.base_url}: {e}"
                ) from e

            except APIError as e:
                logger.error(f"Generation API error: {e}")
                # Check for model-specific errors
                if "model" in str(e).lower() and "not found" in str(e).lower():
                    raise ValueError(
                        f"Model '{self.model}' not found. Pull it with: ollama pull {self.model}"
                    ) from e
                last_error = e
                if attempt < self.retry_count:
                    continue
                raise

        # Should not reach here, but just in case
        if last_error:
            raise last_error
        raise RuntimeError("Generation failed for unknown reason")

    def chat(
        self,
        messages: Sequence[ConversationMessage],
        options: Optional[GenerationOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """Run one chat completion and return only the text."""
        return self.complete(messages, options, cancel_token).answer
