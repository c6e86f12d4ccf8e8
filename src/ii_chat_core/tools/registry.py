"""
Tool registry for managing available tools.

The core treats the registry as a capability interface: it lists
declarations for the backend and executes a named tool, nothing more.
Schemas are forwarded as-is and failed calls are never retried here.
"""

from typing import Any, Union

import structlog

from ..errors import ToolExecutionError
from ..llm.base import ToolDefinition
from .base import BaseTool, Tool, ToolResult

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools."""

    def __init__(self):
        self._tools: dict[str, Union[BaseTool, Tool]] = {}

    def register(self, tool: Union[BaseTool, Tool]) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        logger.info("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Union[BaseTool, Tool, None]:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def list_declarations(self) -> list[ToolDefinition]:
        """Get all tool declarations for the LLM."""
        return [tool.declaration() for tool in self._tools.values()]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        cancel: Any = None,
    ) -> ToolResult:
        """Execute a tool by name.

        Raises:
            ToolExecutionError: The tool is unknown, raised, or reported failure.
        """
        tool = self.get(name)
        if tool is None:
            raise ToolExecutionError(f"Tool {name} not found", tool_name=name)

        logger.info("Executing tool", tool_name=name, arguments=arguments)
        try:
            result = await tool.execute(cancel=cancel, **arguments)
        except ToolExecutionError:
            raise
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            raise ToolExecutionError(str(e), tool_name=name) from e

        logger.info("Tool executed", tool_name=name, success=result.success)
        if not result.success:
            raise ToolExecutionError(result.error or f"Tool {name} failed", tool_name=name)
        return result
