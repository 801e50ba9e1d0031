from typing import List, Optional
import json
import structlog

from nanna_agent.domain.models.agent_state import DEFAULT_SYSTEM_PROMPT
from nanna_agent.domain.orchestration.core.errors import StateError
from nanna_agent.domain.tool.tool_registry import ToolError, ToolRegistry
from nanna_agent.infrastructure.judge.model_judge import ModelJudge
from nanna_agent.infrastructure.model.types import ChatMessage, ChatRequest, FinishReason, MessageRole, ToolCall

logger = structlog.get_logger(__name__)


class ToolCallingSession:
    """Conversation in which the model may call registered tools"""

    def __init__(
        self,
        judge: ModelJudge,
        registry: ToolRegistry,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_tool_rounds: int = 5
    ):
        self.judge = judge
        self.registry = registry
        self.max_tool_rounds = max_tool_rounds
        self.history: List[ChatMessage] = [ChatMessage.system(system_prompt)]

    async def send(self, user_message: str) -> str:
        """Send a user message and return the model's final answer"""

        self.history.append(ChatMessage.user(user_message))
        definitions = self.registry.get_definitions()

        for round_number in range(self.max_tool_rounds + 1):
            request = ChatRequest(model=self.judge.model_name, messages=list(self.history))
            if definitions:
                request = request.with_tools(definitions)

            response = await self.judge.chat(request, "tool_session")
            if not response.choices:
                raise StateError("Model returned no choices")

            choice = response.choices[0]
            calls = choice.message.tool_calls or []

            if not calls:
                content = choice.message.content or ""
                self.history.append(ChatMessage.assistant(content))
                return content

            if choice.finish_reason != FinishReason.TOOL_CALLS:
                logger.warning("Tool calls without tool_calls finish reason", finish_reason=choice.finish_reason)

            logger.info("Model requested tools", round=round_number, tools=[c.function.name for c in calls])
            self.history.append(ChatMessage.assistant_with_tools(calls, content=choice.message.content))
            for call in calls:
                self.history.append(ChatMessage.tool_response(call.id, await self._execute(call)))

        raise StateError(f"Tool calling did not finish within {self.max_tool_rounds} rounds")

    async def _execute(self, call: ToolCall) -> str:
        try:
            output = await self.registry.execute(call.function.name, call.function.arguments)
        except ToolError as e:
            logger.warning("Tool call failed", tool_name=call.function.name, error=str(e))
            return f"Error: {e}"
        return json.dumps(output, default=str)

    def last_reply(self) -> Optional[str]:
        for message in reversed(self.history):
            if message.role == MessageRole.ASSISTANT and message.content:
                return message.content
        return None
