from typing import Dict, List, Any, Optional
from abc import ABC, abstractmethod
import time
import structlog

from nanna_agent.infrastructure.model.types import FunctionDefinition, ToolDefinition
from nanna_agent.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)


class ToolError(Exception):
    """Base class for tool failures"""


class InvalidToolArgumentsError(ToolError):
    """Arguments do not match the tool's schema"""


class ToolExecutionError(ToolError):
    """The tool ran and failed"""


class ToolNotFoundError(ToolError):
    """No tool is registered under the requested name"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool not found: {name}")


class Tool(ABC):
    """A named callable the model may request"""

    name: str = ""
    description: str = ""

    @property
    def parameters(self) -> Dict[str, Any]:
        """JSON schema of the tool arguments"""
        return {"type": "object", "properties": {}}

    def definition(self) -> ToolDefinition:
        return ToolDefinition(function=FunctionDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        ))

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        pass


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self):
        self.tools: Dict[str, Tool] = {}

    def register(self, tool: Tool):
        """Register a tool, replacing any tool with the same name"""

        if tool.name in self.tools:
            logger.warning("Replacing registered tool", tool_name=tool.name)
        self.tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def list_tools(self) -> List[str]:
        return sorted(self.tools)

    def get_definitions(self) -> List[ToolDefinition]:
        return [self.tools[name].definition() for name in self.list_tools()]

    def search_tools(self, query: str) -> List[Tool]:
        """Search tools by name or description"""

        query_lower = query.lower()
        return [
            tool for tool in self.tools.values()
            if query_lower in tool.name.lower() or query_lower in tool.description.lower()
        ]

    async def execute(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a registered tool by name"""

        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        started = time.perf_counter()
        try:
            output = await tool.execute(arguments)
        except ToolError as e:
            agent_logger.log_tool_execution(
                name,
                arguments,
                duration_ms=(time.perf_counter() - started) * 1000,
                success=False,
                error=str(e)
            )
            raise

        agent_logger.log_tool_execution(
            name,
            arguments,
            output=output,
            duration_ms=(time.perf_counter() - started) * 1000
        )
        return output
