from typing import Dict, Any, List, Optional
from datetime import datetime

from nanna_agent.domain.tool.tool_registry import Tool, ToolRegistry, InvalidToolArgumentsError, ToolExecutionError
from nanna_agent.domain.entities.store import EntityStore
from nanna_agent.domain.context.rag import query_entities


class EchoTool(Tool):
    """Returns its input unchanged"""

    name = "echo"
    description = "Echo back the provided message"

    @property
    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Text to echo back"}
            },
            "required": ["message"],
        }

    async def execute(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        message = arguments.get("message")
        if not isinstance(message, str):
            raise InvalidToolArgumentsError("'message' must be a string")

        return {
            "echoed": message,
            "timestamp": datetime.utcnow().isoformat(),
        }


class CalculatorTool(Tool):
    """Basic arithmetic on two numbers"""

    name = "calculate"
    description = "Perform basic arithmetic: add, subtract, multiply or divide two numbers"

    OPERATIONS = ("add", "subtract", "multiply", "divide")

    @property
    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "operation": {"type": "string", "enum": list(self.OPERATIONS)},
                "a": {"type": "number", "description": "First operand"},
                "b": {"type": "number", "description": "Second operand"},
            },
            "required": ["operation", "a", "b"],
        }

    async def execute(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        operation = arguments.get("operation")
        a = arguments.get("a")
        b = arguments.get("b")

        if operation not in self.OPERATIONS:
            raise InvalidToolArgumentsError(f"Unknown operation: {operation}")
        # bool is an int subclass
        if any(not isinstance(v, (int, float)) or isinstance(v, bool) for v in (a, b)):
            raise InvalidToolArgumentsError("'a' and 'b' must be numbers")

        if operation == "add":
            result = a + b
        elif operation == "subtract":
            result = a - b
        elif operation == "multiply":
            result = a * b
        else:
            if b == 0:
                raise ToolExecutionError("Division by zero")
            result = a / b

        return {
            "operation": operation,
            "operands": [a, b],
            "result": result,
        }


class EntitySearchTool(Tool):
    """Retrieval over the agent's entity store"""

    name = "search_entities"
    description = "Find workspace entities relevant to a free-text query"

    def __init__(self, store: EntityStore, default_limit: int = 5):
        self.store = store
        self.default_limit = default_limit

    @property
    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to look for"},
                "limit": {"type": "integer", "description": "Maximum number of results"},
            },
            "required": ["query"],
        }

    async def execute(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        query = arguments.get("query")
        if not isinstance(query, str):
            raise InvalidToolArgumentsError("'query' must be a string")

        limit = arguments.get("limit", self.default_limit)
        if not isinstance(limit, int) or limit < 0:
            raise InvalidToolArgumentsError("'limit' must be a non-negative integer")

        results = await query_entities(self.store, query, limit)
        return {
            "query": query,
            "results": [r.model_dump(mode="json") for r in results],
        }


def create_default_registry(store: Optional[EntityStore] = None) -> ToolRegistry:
    """Registry with the built-in tools"""

    registry = ToolRegistry()
    tools: List[Tool] = [EchoTool(), CalculatorTool()]
    if store is not None:
        tools.append(EntitySearchTool(store))

    for tool in tools:
        registry.register(tool)
    return registry
