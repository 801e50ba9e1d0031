"""Tests for multi-turn tool calling conversations."""
import json

import pytest

from nanna_agent.domain.orchestration.core.errors import StateError
from nanna_agent.domain.orchestration.core.tool_session import ToolCallingSession
from nanna_agent.domain.tool.builtin_tools import create_default_registry
from nanna_agent.infrastructure.model.types import (
    ChatMessage, ChatResponse, Choice, FinishReason, FunctionCall, MessageRole, ToolCall,
)

pytestmark = pytest.mark.asyncio


def calls(*pairs) -> ChatResponse:
    tool_calls = [
        ToolCall(id=f"call_{i}", function=FunctionCall(name=name, arguments=arguments))
        for i, (name, arguments) in enumerate(pairs)
    ]
    return ChatResponse(choices=[
        Choice(message=ChatMessage.assistant_with_tools(tool_calls), finish_reason=FinishReason.TOOL_CALLS)
    ])


async def test_tool_results_are_fed_back(make_judge):
    judge = make_judge([calls(("calculate", {"operation": "multiply", "a": 6, "b": 7})), "The answer is 42."])
    session = ToolCallingSession(judge, create_default_registry())

    reply = await session.send("What is 6 times 7?")

    assert reply == "The answer is 42."
    assert session.last_reply() == "The answer is 42."

    roles = [m.role for m in session.history]
    assert roles == [MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT, MessageRole.TOOL, MessageRole.ASSISTANT]

    tool_message = session.history[3]
    assert tool_message.tool_call_id == "call_0"
    assert json.loads(tool_message.content)["result"] == 42

    # The second request carries the tool output
    second_request = judge.provider.requests[1]
    assert second_request.messages[-1].role == MessageRole.TOOL
    assert [t.function.name for t in second_request.tools] == ["calculate", "echo"]


async def test_tool_errors_are_reported_to_model(make_judge):
    judge = make_judge([
        calls(("missing_tool", {}), ("calculate", {"operation": "divide", "a": 1, "b": 0})),
        "Sorry, that did not work.",
    ])
    session = ToolCallingSession(judge, create_default_registry())

    await session.send("Divide 1 by 0")

    tool_messages = [m for m in session.history if m.role == MessageRole.TOOL]
    assert tool_messages[0].content == "Error: Tool not found: missing_tool"
    assert tool_messages[1].content == "Error: Division by zero"


async def test_runaway_tool_calls_stop(make_judge):
    judge = make_judge([calls(("echo", {"message": "again"}))])
    session = ToolCallingSession(judge, create_default_registry(), max_tool_rounds=2)

    with pytest.raises(StateError):
        await session.send("Loop forever")
    assert len(judge.provider.requests) == 3


async def test_empty_response_is_an_error(make_judge):
    session = ToolCallingSession(make_judge([ChatResponse()]), create_default_registry())
    with pytest.raises(StateError):
        await session.send("hello")


async def test_history_persists_across_turns(make_judge):
    session = ToolCallingSession(make_judge(["first", "second"]), create_default_registry())

    await session.send("one")
    await session.send("two")

    assert [m.content for m in session.history if m.role == MessageRole.USER] == ["one", "two"]
    assert session.last_reply() == "second"
