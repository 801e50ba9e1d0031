"""Tests for the LangChain-backed model provider."""
import asyncio
from typing import Any, Dict, List

import httpx
import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel, GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.outputs import ChatGeneration, ChatResult

from nanna_agent.infrastructure.judge.model_judge import ModelJudge
from nanna_agent.infrastructure.model.errors import (
    AuthenticationError, InvalidModelConfigError, ModelNetworkError, ModelNotFoundError, ModelTimeoutError,
    RateLimitError, ServiceUnavailableError, UnknownModelError,
)
from nanna_agent.infrastructure.model.langchain_provider import (
    LangChainChatProvider, classify_backend_error, from_langchain_reply, to_langchain_messages,
)
from nanna_agent.infrastructure.model.types import (
    ChatMessage, ChatRequest, FinishReason, FunctionCall, FunctionDefinition, ModelConfig, ToolCall,
    ToolChoice, ToolChoiceMode, ToolDefinition,
)


class RefusingChatModel(BaseChatModel):
    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise ConnectionRefusedError("connection refused")

    @property
    def _llm_type(self) -> str:
        return "refusing"


class BrokenChatModel(BaseChatModel):
    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise ValueError("malformed reply")

    @property
    def _llm_type(self) -> str:
        return "broken"


class SleepyChatModel(BaseChatModel):
    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise NotImplementedError

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs):
        await asyncio.sleep(1)
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content="late"))])

    @property
    def _llm_type(self) -> str:
        return "sleepy"


BACKEND_URL = "http://localhost:11434/api/chat"


def http_status_error(status: int, headers: Dict[str, str] = None) -> httpx.HTTPStatusError:
    req = httpx.Request("POST", BACKEND_URL)
    response = httpx.Response(status, headers=headers, request=req)
    return httpx.HTTPStatusError(f"HTTP {status}", request=req, response=response)


class ClientConnectionError(Exception):
    """Stands in for an SDK error that wraps the transport failure"""


class ClientStatusError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class FailingChatModel(BaseChatModel):
    error: Any = None
    calls: int = 0

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        self.calls += 1
        raise self.error

    @property
    def _llm_type(self) -> str:
        return "failing"


class WrappingChatModel(BaseChatModel):
    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        try:
            raise httpx.ConnectError("connection refused", request=httpx.Request("POST", BACKEND_URL))
        except httpx.ConnectError as e:
            raise ClientConnectionError("Connection error.") from e

    @property
    def _llm_type(self) -> str:
        return "wrapping"


class RecordingChatModel(BaseChatModel):
    bound_tool_choice: List[Any] = []
    call_kwargs: List[Dict[str, Any]] = []

    def bind_tools(self, tools, *, tool_choice=None, **kwargs):
        self.bound_tool_choice.append(tool_choice)
        return self.bind(tools=tools, **kwargs)

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        self.call_kwargs.append(kwargs)
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content="ok"))])

    @property
    def _llm_type(self) -> str:
        return "recording"


def request(*messages, tools=None) -> ChatRequest:
    chat_request = ChatRequest(model="fake", messages=list(messages) or [ChatMessage.user("hi")])
    if tools:
        chat_request = chat_request.with_tools(tools)
    return chat_request


@pytest.mark.asyncio
async def test_chat_returns_text_reply():
    provider = LangChainChatProvider(FakeListChatModel(responses=["PROCEED with the plan"]))

    response = await provider.chat(request(ChatMessage.system("Be brief"), ChatMessage.user("Decide")))

    assert response.first_content() == "PROCEED with the plan"
    assert response.choices[0].finish_reason == FinishReason.STOP
    assert response.tool_calls() == []


@pytest.mark.asyncio
async def test_chat_returns_tool_calls_without_bind_support():
    reply = AIMessage(content="", tool_calls=[{"name": "echo", "args": {"message": "hi"}, "id": "call_a"}])
    provider = LangChainChatProvider(GenericFakeChatModel(messages=iter([reply])))
    echo = ToolDefinition(function=FunctionDefinition(name="echo", description="Echo a message"))

    response = await provider.chat(request(tools=[echo]))

    calls = response.tool_calls()
    assert [(c.id, c.function.name, c.function.arguments) for c in calls] == [("call_a", "echo", {"message": "hi"})]
    assert response.choices[0].finish_reason == FinishReason.TOOL_CALLS


@pytest.mark.asyncio
async def test_connection_errors_map_to_network_error():
    provider = LangChainChatProvider(RefusingChatModel())
    with pytest.raises(ModelNetworkError) as excinfo:
        await provider.chat(request())
    assert excinfo.value.retryable


@pytest.mark.asyncio
async def test_other_errors_map_to_unknown_error():
    provider = LangChainChatProvider(BrokenChatModel())
    with pytest.raises(UnknownModelError):
        await provider.chat(request())


@pytest.mark.asyncio
async def test_slow_model_times_out():
    provider = LangChainChatProvider(SleepyChatModel(), ModelConfig(timeout_seconds=0.01))
    with pytest.raises(ModelTimeoutError):
        await provider.health_check()


@pytest.mark.asyncio
async def test_list_models_and_name():
    provider = LangChainChatProvider(FakeListChatModel(responses=["pong"]), ModelConfig(model_name="qwen3:0.6b"))

    assert [m.name for m in await provider.list_models()] == ["qwen3:0.6b"]
    assert provider.provider_name() == "langchain:fake-list-chat-model"
    await provider.health_check()


def test_invalid_config_rejected():
    with pytest.raises(InvalidModelConfigError):
        LangChainChatProvider(FakeListChatModel(responses=["x"]), ModelConfig(temperature=3.0))
    with pytest.raises(InvalidModelConfigError):
        ModelConfig(model_name="").validate_config()


def test_to_langchain_messages():
    call = ToolCall(id="call_1", function=FunctionCall(name="calculate", arguments={"operation": "add", "a": 1, "b": 2}))
    converted = to_langchain_messages([
        ChatMessage.system("sys"),
        ChatMessage.user("add 1 and 2"),
        ChatMessage.assistant_with_tools([call]),
        ChatMessage.tool_response("call_1", '{"result": 3}'),
        ChatMessage.assistant("3"),
    ])

    assert [type(m) for m in converted] == [SystemMessage, HumanMessage, AIMessage, ToolMessage, AIMessage]
    assert converted[2].tool_calls[0]["name"] == "calculate"
    assert converted[2].tool_calls[0]["args"] == {"operation": "add", "a": 1, "b": 2}
    assert converted[3].tool_call_id == "call_1"


def test_from_langchain_reply_reads_usage_and_finish_reason():
    reply = AIMessage(
        content="partial",
        usage_metadata={"input_tokens": 3, "output_tokens": 2, "total_tokens": 5},
        response_metadata={"done_reason": "length"},
    )

    response = from_langchain_reply(reply)

    assert response.usage.total_tokens == 5
    assert response.choices[0].finish_reason == FinishReason.LENGTH


def test_from_langchain_reply_unknown_finish_reason():
    response = from_langchain_reply(AIMessage(content="x", response_metadata={"finish_reason": "eos"}))
    assert response.choices[0].finish_reason == FinishReason.STOP


@pytest.mark.parametrize("error, expected", [
    (httpx.ConnectError("refused", request=httpx.Request("POST", BACKEND_URL)), ModelNetworkError),
    (httpx.ReadTimeout("slow", request=httpx.Request("POST", BACKEND_URL)), ModelTimeoutError),
    (http_status_error(401), AuthenticationError),
    (http_status_error(403), AuthenticationError),
    (http_status_error(404), ModelNotFoundError),
    (http_status_error(429), RateLimitError),
    (http_status_error(503), ServiceUnavailableError),
    (ClientStatusError("Internal server error", 500), ServiceUnavailableError),
    (http_status_error(400), UnknownModelError),
])
def test_classify_backend_error(error, expected):
    assert type(classify_backend_error(error, "qwen3:0.6b")) is expected


def test_rate_limit_carries_retry_after():
    error = classify_backend_error(http_status_error(429, {"retry-after": "3"}), "qwen3:0.6b")

    assert isinstance(error, RateLimitError)
    assert error.retry_after == 3.0
    assert error.retryable


def test_not_found_names_the_model():
    error = classify_backend_error(http_status_error(404), "qwen3:0.6b")
    assert error.model_name == "qwen3:0.6b"


@pytest.mark.asyncio
async def test_wrapped_transport_error_maps_to_network_error():
    provider = LangChainChatProvider(WrappingChatModel())
    with pytest.raises(ModelNetworkError):
        await provider.chat(request())


@pytest.mark.asyncio
async def test_judge_retries_transport_failures(fast_judge_config):
    model = FailingChatModel(error=httpx.ConnectError("refused", request=httpx.Request("POST", BACKEND_URL)))
    judge = ModelJudge(LangChainChatProvider(model), "qwen3:0.6b", fast_judge_config)

    with pytest.raises(ModelNetworkError):
        await judge.complete("hello")
    assert model.calls == 3


@pytest.mark.asyncio
async def test_judge_does_not_retry_rejected_credentials(fast_judge_config):
    model = FailingChatModel(error=http_status_error(401))
    judge = ModelJudge(LangChainChatProvider(model), "qwen3:0.6b", fast_judge_config)

    with pytest.raises(AuthenticationError):
        await judge.complete("hello")
    assert model.calls == 1


@pytest.mark.asyncio
async def test_chat_forwards_tool_choice_and_config_temperature():
    model = RecordingChatModel(bound_tool_choice=[], call_kwargs=[])
    provider = LangChainChatProvider(model, ModelConfig(temperature=0.2, max_tokens=64))
    echo = ToolDefinition(function=FunctionDefinition(name="echo", description="Echo a message"))

    await provider.chat(request().with_tools([echo], ToolChoice.specific("echo")))
    await provider.chat(request().with_tools([echo], ToolChoice(mode=ToolChoiceMode.REQUIRED)))
    await provider.chat(request().with_temperature(0.9))

    assert model.bound_tool_choice == ["echo", "any"]
    assert [kwargs["temperature"] for kwargs in model.call_kwargs] == [0.2, 0.2, 0.9]
    assert all(kwargs["max_tokens"] == 64 for kwargs in model.call_kwargs)
