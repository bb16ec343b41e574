import inspect
import logging
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ToolExecutionResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None


class ToolRegistry(Protocol):
    """What the dispatcher needs from a tool registry."""

    def get_tool_definitions(self, tool_ids: list[str]) -> list[dict[str, Any]]:
        ...

    async def execute_tool(self, name: str, params: dict[str, Any]) -> ToolExecutionResult:
        ...


class Tool(BaseModel):
    # Define as fields but exclude from serialization
    func: Callable = Field(exclude=True)
    name: str = Field(exclude=True)
    description: str = Field(default="", exclude=True)
    model_config = {"arbitrary_types_allowed": True}

    def __init__(self, func: Callable, name: str | None = None, description: str | None = None):
        super().__init__(
            func=func,
            name=name or func.__name__,
            description=description if description is not None else (inspect.getdoc(func) or ""),
        )

    def model_dump(self, **kwargs):
        """Override to return the tool definition instead of internal attributes"""
        return self.get_schema()

    def normalize_to_json_type(self, annotation: Any) -> str:
        type_mapping = {
            'str': 'string',
            'int': 'integer',
            'float': 'number',
            'bool': 'boolean',
            'NoneType': 'null',
            'dict': 'object',
            'list': 'array',
            'tuple': 'array',  # closest equivalent
            'set': 'array',    # closest equivalent
        }
        return type_mapping.get(getattr(annotation, "__name__", ""), 'string')

    def parse_properties(self) -> dict[str, dict[str, str]]:
        signature = inspect.signature(self.func)
        return {
            param_name: {
                "type": self.normalize_to_json_type(param.annotation),
                "description": "",
            }
            for param_name, param in signature.parameters.items()
        }

    def get_required_params(self) -> list[str]:
        signature = inspect.signature(self.func)
        return [
            name
            for name, param in signature.parameters.items()
            if param.default is inspect.Parameter.empty
        ]

    def get_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.parse_properties(),
                    "required": self.get_required_params(),
                },
            }
        }

    async def __call__(self, **kwargs) -> Any:
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(func: Callable) -> Tool:
    """Decorator turning a plain or async function into a :class:`Tool`."""
    return Tool(func)


class LocalToolRegistry:
    """In-process registry of :class:`Tool` objects keyed by name.

    Satisfies :class:`ToolRegistry`.  Tool ids and tool names are the
    same thing here.
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, t: Tool) -> None:
        self._tools[t.name] = t

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def get_tool_definitions(self, tool_ids: list[str]) -> list[dict[str, Any]]:
        return [
            self._tools[tool_id].model_dump()
            for tool_id in tool_ids
            if tool_id in self._tools
        ]

    async def execute_tool(self, name: str, params: dict[str, Any]) -> ToolExecutionResult:
        t = self._tools.get(name)
        if t is None:
            return ToolExecutionResult(success=False, error=f"Tool not found: {name}")
        try:
            data = await t(**params)
        except Exception as e:
            logger.error(f"Error executing tool {name}: {e}")
            return ToolExecutionResult(success=False, error=str(e) or type(e).__name__)
        return ToolExecutionResult(success=True, data=data)
