"""Tests for the LLM generator (OpenAI client mocked)."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from openai import APIConnectionError

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.generation import LLMGenerator
from nexusrag.models import (
    ConversationMessage,
    GenerationConfig,
    GenerationOptions,
    MessageRole,
)


def completion(content, prompt_tokens=3, completion_tokens=4):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


@pytest.fixture
def generator():
    gen = LLMGenerator(GenerationConfig(model="deepseek-r1:8b"), retry_count=0)
    gen.client = MagicMock()
    return gen


def messages(*pairs):
    return [ConversationMessage(role=role, content=content) for role, content in pairs]


def test_complete_strips_reasoning_and_tracks_usage(generator):
    generator.client.chat.completions.create.return_value = completion(
        "<think>Let me think.</think>\nThe answer is 42."
    )
    result = generator.complete(messages((MessageRole.USER, "What is it?")))

    assert result.answer == "The answer is 42."
    assert result.model == "deepseek-r1:8b"
    assert result.usage.total_tokens == 7

    generator.chat(messages((MessageRole.USER, "Again?")))
    assert generator.usage.total_tokens == 14


def test_tool_messages_sent_as_system(generator):
    generator.client.chat.completions.create.return_value = completion("ok")
    generator.chat(
        messages(
            (MessageRole.SYSTEM, "You are Nexus."),
            (MessageRole.USER, "Search"),
            (MessageRole.TOOL, "Found 1 results:"),
        )
    )
    sent = generator.client.chat.completions.create.call_args.kwargs["messages"]
    assert sent[2] == {"role": "system", "content": "Tool Output: Found 1 results:"}
    assert sent[1] == {"role": "user", "content": "Search"}


def test_options_are_forwarded(generator):
    generator.client.chat.completions.create.return_value = completion("ok")
    generator.chat(
        messages((MessageRole.USER, "hi")),
        GenerationOptions(temperature=0.3, max_tokens=128),
    )
    kwargs = generator.client.chat.completions.create.call_args.kwargs
    assert kwargs["temperature"] == 0.3
    assert kwargs["max_tokens"] == 128
    assert "response_format" not in kwargs


def test_json_mode_requests_json_object(generator):
    generator.client.chat.completions.create.return_value = completion('["a"]')
    generator.chat(messages((MessageRole.USER, "list")), GenerationOptions(json_mode=True))

    kwargs = generator.client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["temperature"] == 0.15


def test_json_mode_falls_back_without_response_format(generator):
    create = generator.client.chat.completions.create
    create.side_effect = [TypeError("unexpected keyword argument 'response_format'"), completion('["a"]')]

    answer = generator.chat(messages((MessageRole.USER, "list")), GenerationOptions(json_mode=True))

    assert answer == '["a"]'
    assert create.call_count == 2
    assert "response_format" not in create.call_args.kwargs


def test_connection_error_is_mapped(generator):
    request = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")
    generator.client.chat.completions.create.side_effect = APIConnectionError(request=request)

    with pytest.raises(ConnectionError):
        generator.chat(messages((MessageRole.USER, "hi")))


def test_connection_error_retried_before_failing():
    gen = LLMGenerator("deepseek-r1:8b", retry_count=2)
    gen.client = MagicMock()
    request = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")
    gen.client.chat.completions.create.side_effect = [
        APIConnectionError(request=request),
        completion("recovered"),
    ]
    assert gen.chat(messages((MessageRole.USER, "hi"))) == "recovered"


def test_cancelled_token_skips_request(generator):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        generator.chat(messages((MessageRole.USER, "hi")), cancel_token=token)
    generator.client.chat.completions.create.assert_not_called()


def test_empty_messages_rejected(generator):
    with pytest.raises(ValueError):
        generator.chat([])


def test_none_content_becomes_empty_string(generator):
    generator.client.chat.completions.create.return_value = completion(None)
    assert generator.chat(messages((MessageRole.USER, "hi"))) == ""


def test_request_timeout_capped_by_deadline(generator):
    scoped = generator.client.with_options.return_value
    scoped.chat.completions.create.return_value = completion("ok")

    answer = generator.chat(
        messages((MessageRole.USER, "hi")), cancel_token=CancellationToken(timeout=20.0)
    )

    assert answer == "ok"
    timeout = generator.client.with_options.call_args.kwargs["timeout"]
    assert 0 < timeout <= 20.0
    generator.client.chat.completions.create.assert_not_called()


def test_request_without_deadline_uses_client_timeout(generator):
    generator.client.chat.completions.create.return_value = completion("ok")
    generator.chat(messages((MessageRole.USER, "hi")))
    generator.client.with_options.assert_not_called()
