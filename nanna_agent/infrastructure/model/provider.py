from typing import List
from abc import ABC, abstractmethod

from nanna_agent.infrastructure.model.types import ChatRequest, ChatResponse, ModelInfo


class ModelProvider(ABC):
    """Client interface for a chat model backend"""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send a chat request and return the reply"""
        pass

    @abstractmethod
    async def list_models(self) -> List[ModelInfo]:
        """List models served by the backend"""
        pass

    @abstractmethod
    async def health_check(self) -> None:
        """Raise a ModelError when the backend is not usable"""
        pass

    @abstractmethod
    def provider_name(self) -> str:
        pass
