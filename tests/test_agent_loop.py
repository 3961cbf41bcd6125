"""Tests for the tool-calling agent loop."""

import json

import pytest

from nexusrag.agent.loop import (
    EMPTY_ANSWER_MESSAGE,
    FAILED_MESSAGE,
    AgentLoop,
    build_system_prompt,
)
from nexusrag.agent.tools import TOOL_DEFINITIONS, ToolExecutor
from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.tasks import InMemoryTaskStore
from nexusrag.models import AgentState, ConversationMessage, MessageRole
from nexusrag.pipelines.deep_search import DeepSearchPipeline
from tests.fakes.fake_services import ScriptedChatModel

SEARCH_CALL = json.dumps(
    {"tool": "search_knowledge_base", "parameters": {"query": "roadmap basics"}}
)


@pytest.fixture
def executor(config, embedder, store, no_expansion_model):
    deep_search = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=no_expansion_model
    )
    return ToolExecutor(
        deep_search=deep_search,
        task_store=InMemoryTaskStore(),
        document_store=store,
        workspace_id="ws",
    )


# --- termination ---


def test_plain_text_is_final_answer(executor):
    model = ScriptedChatModel(["The roadmap lists quarterly goals."])
    result = AgentLoop(model, executor).run("What is on the roadmap?")

    assert result.state == AgentState.ANSWERED
    assert result.answer == "The roadmap lists quarterly goals."
    assert result.turns == 1
    assert result.messages[-1].role == MessageRole.ASSISTANT


def test_tool_call_then_answer(executor):
    model = ScriptedChatModel([SEARCH_CALL, "The roadmap has quarterly goals [1]."])
    result = AgentLoop(model, executor).run("What is on the roadmap?")

    assert result.state == AgentState.ANSWERED
    assert result.turns == 2
    roles = [m.role for m in result.messages]
    assert roles == [
        MessageRole.SYSTEM,
        MessageRole.USER,
        MessageRole.ASSISTANT,
        MessageRole.TOOL,
        MessageRole.ASSISTANT,
    ]
    assert result.messages[3].content.startswith("Found 5 results:")
    # the second turn sees the tool output
    second_turn = model.calls[1]["messages"]
    assert second_turn[-1].role == MessageRole.TOOL


def test_always_calling_tools_exhausts_turn_budget(executor):
    model = ScriptedChatModel(responder=lambda messages, options: SEARCH_CALL)
    result = AgentLoop(model, executor, turn_budget=8).run("What is on the roadmap?")

    assert result.state == AgentState.EXHAUSTED
    assert result.turns == 8
    assert len(model.calls) == 8
    assert result.answer.startswith("I did not reach a final answer within 8 steps.")
    assert "Found 5 results:" in result.answer


def test_unknown_tool_is_treated_as_answer(executor):
    response = json.dumps({"tool": "launch_rocket", "parameters": {}})
    model = ScriptedChatModel([response])
    result = AgentLoop(model, executor).run("Launch it")

    assert result.state == AgentState.ANSWERED
    assert result.answer == response
    assert len(model.calls) == 1


def test_empty_response_gets_fallback_answer(executor):
    model = ScriptedChatModel(["<think>nothing to say</think>   "])
    result = AgentLoop(model, executor).run("Hello?")

    assert result.state == AgentState.ANSWERED
    assert result.answer == EMPTY_ANSWER_MESSAGE


def test_generator_failure_ends_in_failed_state(executor):
    def responder(messages, options):
        raise ConnectionError("Ollama is not running")

    result = AgentLoop(ScriptedChatModel(responder=responder), executor).run("Hello?")

    assert result.state == AgentState.FAILED
    assert result.answer == FAILED_MESSAGE
    assert "Ollama is not running" in result.error
    assert result.turns == 1


def test_tool_error_is_fed_back_to_model(executor):
    bad_call = json.dumps({"tool": "deep_search", "parameters": {}})
    model = ScriptedChatModel([bad_call, "I need a query to search."])
    result = AgentLoop(model, executor).run("Search please")

    assert result.state == AgentState.ANSWERED
    tool_message = result.messages[3]
    assert tool_message.role == MessageRole.TOOL
    assert tool_message.content.startswith("Error executing tool deep_search:")
    assert "Missing required parameter 'query'" in tool_message.content


def test_create_task_through_loop(executor):
    call = json.dumps(
        {"tool": "create_task", "parameters": {"title": "Review roadmap", "priority": "high"}}
    )
    model = ScriptedChatModel([call, call, "Done."])
    result = AgentLoop(model, executor).run("Remind me to review the roadmap")

    tool_messages = [m.content for m in result.messages if m.role == MessageRole.TOOL]
    assert tool_messages == [
        'Task "Review roadmap" created successfully.',
        'Task "Review roadmap" skipped — already exists.',
    ]
    assert len(executor.task_store.list_tasks("ws")) == 1


# --- conversation ---


def test_history_is_included_without_system_messages(executor):
    model = ScriptedChatModel(["Sure."])
    history = [
        ConversationMessage(role=MessageRole.SYSTEM, content="old system prompt"),
        ConversationMessage(role=MessageRole.USER, content="Hi"),
        ConversationMessage(role=MessageRole.ASSISTANT, content="Hello!"),
    ]
    AgentLoop(model, executor).run("Thanks", history=history)

    sent = model.calls[0]["messages"]
    assert [m.role for m in sent] == [
        MessageRole.SYSTEM,
        MessageRole.USER,
        MessageRole.ASSISTANT,
        MessageRole.USER,
    ]
    assert sent[0].content != "old system prompt"
    assert sent[-1].content == "Thanks"


def test_system_prompt_lists_tools_and_budget():
    prompt = build_system_prompt(turn_budget=6)
    for name in TOOL_DEFINITIONS:
        assert f'"name": "{name}"' in prompt
    assert "You have up to 6 turns to reason." in prompt
    assert '"tool": "tool_name"' in prompt


def test_cancelled_token_stops_loop(executor):
    token = CancellationToken()
    token.cancel("user pressed stop")
    model = ScriptedChatModel(["unused"])
    with pytest.raises(OperationCancelled):
        AgentLoop(model, executor).run("Hello?", cancel_token=token)
    assert model.calls == []


def test_invalid_turn_budget_rejected(executor):
    with pytest.raises(ValueError):
        AgentLoop(ScriptedChatModel(), executor, turn_budget=0)
