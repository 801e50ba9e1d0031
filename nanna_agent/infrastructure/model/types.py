from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from enum import Enum

from nanna_agent.infrastructure.model.errors import InvalidModelConfigError


class MessageRole(str, Enum):
    """Chat message author"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FunctionCall(BaseModel):
    """Function name and JSON arguments requested by the model"""
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolCall(BaseModel):
    """A single tool invocation requested by the model"""
    id: str
    function: FunctionCall


class ChatMessage(BaseModel):
    """Message exchanged with a chat model"""
    role: MessageRole
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.ASSISTANT, content=content)

    @classmethod
    def assistant_with_tools(cls, tool_calls: List[ToolCall], content: Optional[str] = None) -> "ChatMessage":
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls)

    @classmethod
    def tool_response(cls, tool_call_id: str, content: str) -> "ChatMessage":
        return cls(role=MessageRole.TOOL, content=content, tool_call_id=tool_call_id)


class FunctionDefinition(BaseModel):
    """Callable description advertised to the model"""
    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolDefinition(BaseModel):
    """Tool advertised to the model"""
    type: str = "function"
    function: FunctionDefinition


class ToolChoiceMode(str, Enum):
    AUTO = "auto"
    NONE = "none"
    REQUIRED = "required"
    SPECIFIC = "specific"


class ToolChoice(BaseModel):
    """How the model may pick tools"""
    mode: ToolChoiceMode = Field(default=ToolChoiceMode.AUTO)
    function_name: Optional[str] = None

    @model_validator(mode="after")
    def _check_function(self) -> "ToolChoice":
        if self.mode == ToolChoiceMode.SPECIFIC and not self.function_name:
            raise ValueError("A specific tool choice needs a function name")
        return self

    @classmethod
    def specific(cls, function_name: str) -> "ToolChoice":
        return cls(mode=ToolChoiceMode.SPECIFIC, function_name=function_name)


class ChatRequest(BaseModel):
    """Request sent to a model backend"""
    model: str
    messages: List[ChatMessage]
    tools: Optional[List[ToolDefinition]] = None
    tool_choice: Optional[ToolChoice] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def with_tools(self, tools: List[ToolDefinition], tool_choice: Optional[ToolChoice] = None) -> "ChatRequest":
        return self.model_copy(update={"tools": tools, "tool_choice": tool_choice or ToolChoice()})

    def with_temperature(self, temperature: float) -> "ChatRequest":
        return self.model_copy(update={"temperature": temperature})

    def with_max_tokens(self, max_tokens: int) -> "ChatRequest":
        return self.model_copy(update={"max_tokens": max_tokens})


class FinishReason(str, Enum):
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"


class Choice(BaseModel):
    message: ChatMessage
    finish_reason: Optional[FinishReason] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    """Model reply"""
    choices: List[Choice] = Field(default_factory=list)
    usage: Optional[Usage] = None

    def first_content(self) -> str:
        """Text of the first choice, empty if absent"""

        if not self.choices:
            return ""
        return self.choices[0].message.content or ""

    def tool_calls(self) -> List[ToolCall]:
        if not self.choices:
            return []
        return self.choices[0].message.tool_calls or []


class ModelInfo(BaseModel):
    """A model available from a backend"""
    name: str
    size: Optional[int] = None
    digest: Optional[str] = None
    modified_at: Optional[datetime] = None


class ModelConfig(BaseModel):
    """Generation settings for a provider"""
    model_config = ConfigDict(protected_namespaces=())

    model_name: str = "qwen3:0.6b"
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    timeout_seconds: float = 30.0
    context_length: int = 110000

    def validate_config(self) -> None:
        """Raise InvalidModelConfigError when a setting is out of range"""

        if not self.model_name:
            raise InvalidModelConfigError("Model name cannot be empty")
        if not 0.0 <= self.temperature <= 2.0:
            raise InvalidModelConfigError("Temperature must be between 0.0 and 2.0")
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise InvalidModelConfigError("Max tokens must be greater than 0")
        if self.timeout_seconds <= 0:
            raise InvalidModelConfigError("Timeout must be greater than 0")
        if self.context_length <= 0:
            raise InvalidModelConfigError("Context length must be greater than 0")
