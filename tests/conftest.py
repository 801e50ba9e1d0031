"""Shared fixtures: a scripted model backend and fast judge settings."""
from typing import List, Union

import pytest

from nanna_agent.domain.entities.store import InMemoryEntityStore
from nanna_agent.infrastructure.judge.config import JudgeConfig
from nanna_agent.infrastructure.judge.model_judge import ModelJudge
from nanna_agent.infrastructure.model.errors import ModelError
from nanna_agent.infrastructure.model.provider import ModelProvider
from nanna_agent.infrastructure.model.types import (
    ChatMessage, ChatRequest, ChatResponse, Choice, FinishReason, ModelInfo,
)
from nanna_agent.infrastructure.observability.logging import metrics

Reply = Union[str, ChatResponse, ModelError]


def text_response(content: str) -> ChatResponse:
    return ChatResponse(choices=[Choice(message=ChatMessage.assistant(content), finish_reason=FinishReason.STOP)])


class ScriptedProvider(ModelProvider):
    """Replays queued replies; the last one repeats once the queue runs dry"""

    def __init__(self, replies: List[Reply], health_errors: List[ModelError] = None):
        self.replies = list(replies)
        self.health_errors = list(health_errors or [])
        self.requests: List[ChatRequest] = []
        self.health_checks = 0

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, ModelError):
            raise reply
        if isinstance(reply, str):
            return text_response(reply)
        return reply

    async def list_models(self) -> List[ModelInfo]:
        return [ModelInfo(name="scripted")]

    async def health_check(self) -> None:
        self.health_checks += 1
        if self.health_errors:
            raise self.health_errors.pop(0)

    def provider_name(self) -> str:
        return "scripted"


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def fast_judge_config():
    """No backoff so retry tests stay instant"""
    return JudgeConfig(max_retries=2, base_delay_ms=0, max_delay_ms=0, consistency_pause_ms=0)


@pytest.fixture
def make_judge(fast_judge_config):
    def _make(replies: List[Reply], **provider_kwargs) -> ModelJudge:
        provider = ScriptedProvider(replies, **provider_kwargs)
        return ModelJudge(provider, "scripted-model", fast_judge_config)
    return _make
