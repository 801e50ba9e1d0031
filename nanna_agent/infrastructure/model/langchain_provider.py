from typing import Dict, Any, List, Optional
import asyncio
import time
import httpx
import structlog

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, AIMessage, HumanMessage, SystemMessage, ToolMessage

from nanna_agent.infrastructure.model.provider import ModelProvider
from nanna_agent.infrastructure.model.types import (
    ChatMessage, ChatRequest, ChatResponse, Choice, FinishReason, FunctionCall,
    MessageRole, ModelConfig, ModelInfo, ToolCall, ToolChoice, ToolChoiceMode, Usage,
)
from nanna_agent.infrastructure.model.errors import (
    AuthenticationError, ModelError, ModelNetworkError, ModelNotFoundError, ModelTimeoutError,
    RateLimitError, ServiceUnavailableError, UnknownModelError,
)

logger = structlog.get_logger(__name__)


class LangChainChatProvider(ModelProvider):
    """Model provider backed by any LangChain chat model"""

    def __init__(self, model: BaseChatModel, config: Optional[ModelConfig] = None):
        self.model = model
        self.config = config or ModelConfig()
        self.config.validate_config()

    def provider_name(self) -> str:
        llm_type = getattr(self.model, "_llm_type", type(self.model).__name__)
        return f"langchain:{llm_type}"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        runnable = self.model
        if request.tools:
            tools = [tool.model_dump() for tool in request.tools]
            try:
                if request.tool_choice is not None:
                    runnable = self.model.bind_tools(tools, tool_choice=langchain_tool_choice(request.tool_choice))
                else:
                    runnable = self.model.bind_tools(tools)
            except NotImplementedError:
                logger.warning("Chat model does not support tools", provider=self.provider_name())

        bind_kwargs: Dict[str, Any] = {
            "temperature": request.temperature if request.temperature is not None else self.config.temperature,
        }
        max_tokens = request.max_tokens if request.max_tokens is not None else self.config.max_tokens
        if max_tokens is not None:
            bind_kwargs["max_tokens"] = max_tokens
        runnable = runnable.bind(**bind_kwargs)

        started = time.perf_counter()
        reply = await self._invoke(runnable, to_langchain_messages(request.messages))
        logger.debug(
            "Chat completed",
            provider=self.provider_name(),
            model=request.model,
            duration_ms=(time.perf_counter() - started) * 1000
        )

        if not isinstance(reply, AIMessage):
            reply = AIMessage(content=str(reply.content))
        return from_langchain_reply(reply)

    async def list_models(self) -> List[ModelInfo]:
        return [ModelInfo(name=self.config.model_name)]

    async def health_check(self) -> None:
        await self._invoke(self.model, [HumanMessage(content="ping")])

    async def _invoke(self, runnable: Any, messages: List[BaseMessage]) -> BaseMessage:
        try:
            return await asyncio.wait_for(runnable.ainvoke(messages), timeout=self.config.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ModelTimeoutError(f"Model did not reply within {self.config.timeout_seconds}s") from e
        except ModelError:
            raise
        except Exception as e:
            error = classify_backend_error(e, self.config.model_name)
            logger.warning(
                "Model backend call failed",
                provider=self.provider_name(),
                error_type=type(error).__name__,
                retryable=error.retryable
            )
            raise error from e


def langchain_tool_choice(choice: ToolChoice) -> str:
    """Map a tool choice onto the value LangChain's bind_tools accepts"""

    if choice.mode == ToolChoiceMode.SPECIFIC:
        return choice.function_name
    if choice.mode == ToolChoiceMode.REQUIRED:
        return "any"
    return choice.mode.value


def _status_code(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(getattr(error, "response", None), "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after(error: BaseException) -> Optional[float]:
    headers = getattr(getattr(error, "response", None), "headers", None) or {}
    try:
        return float(headers.get("retry-after"))
    except (TypeError, ValueError):
        return None


def _from_status(error: BaseException, status: int, model_name: str) -> Optional[ModelError]:
    if status in (401, 403):
        return AuthenticationError(f"Backend rejected credentials (HTTP {status}): {error}")
    if status == 404:
        return ModelNotFoundError(model_name)
    if status == 429:
        return RateLimitError(f"Backend rate limited the call: {error}", retry_after=_retry_after(error))
    if 500 <= status < 600:
        return ServiceUnavailableError(f"Backend unavailable (HTTP {status}): {error}")
    return None


def classify_backend_error(error: BaseException, model_name: str) -> ModelError:
    """Map an exception raised under a chat model to a ModelError.

    Client libraries wrap their HTTP transport, so the cause chain is
    walked until an HTTP status, an httpx transport failure or an OS level
    connection error is found.
    """

    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))

        status = _status_code(current)
        if status is not None:
            mapped = _from_status(current, status, model_name)
            if mapped is not None:
                return mapped
        if isinstance(current, (httpx.TimeoutException, asyncio.TimeoutError)):
            return ModelTimeoutError(f"Model backend timed out: {error}")
        if isinstance(current, (httpx.TransportError, ConnectionError, OSError)):
            return ModelNetworkError(f"Connection to model backend failed: {error}")

        current = current.__cause__ or current.__context__

    return UnknownModelError(f"Model call failed: {error}")


def to_langchain_messages(messages: List[ChatMessage]) -> List[BaseMessage]:
    """Convert chat messages to LangChain messages"""

    converted: List[BaseMessage] = []
    for message in messages:
        content = message.content or ""
        if message.role == MessageRole.SYSTEM:
            converted.append(SystemMessage(content=content))
        elif message.role == MessageRole.USER:
            converted.append(HumanMessage(content=content))
        elif message.role == MessageRole.TOOL:
            converted.append(ToolMessage(content=content, tool_call_id=message.tool_call_id or ""))
        else:
            tool_calls = [
                {"name": call.function.name, "args": call.function.arguments, "id": call.id}
                for call in message.tool_calls or []
            ]
            converted.append(AIMessage(content=content, tool_calls=tool_calls))
    return converted


def from_langchain_reply(reply: AIMessage) -> ChatResponse:
    """Convert a LangChain AI message to a chat response"""

    tool_calls = [
        ToolCall(
            id=call.get("id") or f"call_{i}",
            function=FunctionCall(name=call["name"], arguments=call.get("args") or {}),
        )
        for i, call in enumerate(reply.tool_calls)
    ]

    content = reply.content if isinstance(reply.content, str) else str(reply.content)
    if tool_calls:
        message = ChatMessage.assistant_with_tools(tool_calls, content=content or None)
        finish_reason = FinishReason.TOOL_CALLS
    else:
        message = ChatMessage.assistant(content)
        finish_reason = _finish_reason(reply.response_metadata or {})

    usage = None
    if reply.usage_metadata:
        usage = Usage(
            prompt_tokens=reply.usage_metadata.get("input_tokens", 0),
            completion_tokens=reply.usage_metadata.get("output_tokens", 0),
            total_tokens=reply.usage_metadata.get("total_tokens", 0),
        )

    return ChatResponse(choices=[Choice(message=message, finish_reason=finish_reason)], usage=usage)


def _finish_reason(metadata: Dict[str, Any]) -> FinishReason:
    raw = metadata.get("finish_reason") or metadata.get("done_reason") or "stop"
    try:
        return FinishReason(raw)
    except ValueError:
        return FinishReason.STOP
