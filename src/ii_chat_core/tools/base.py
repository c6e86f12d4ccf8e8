"""
Tool contracts the conversation core dispatches against.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from ..llm.base import ToolDefinition


@dataclass
class ToolResult:
    """Result from a tool execution.

    `output` is what the model sees; `display` is the caller-facing text.
    """

    success: bool
    output: Any = ""
    display: str | None = None
    error: str | None = None


@dataclass
class ToolParameter:
    """One argument of a function tool."""

    name: str
    param_type: str  # JSON Schema type
    description: str
    required: bool = True
    enum: list[str] | None = None


@dataclass
class Tool:
    """
    Tool built from a coroutine function.

    With `cancellable` set, the handler also receives the caller's
    CancellationToken as `cancel`.
    """

    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)
    handler: Callable[..., Coroutine[Any, Any, ToolResult]] | None = None
    cancellable: bool = False

    def get_parameters_schema(self) -> dict[str, Any]:
        properties = {}
        for param in self.parameters:
            prop = {"type": param.param_type, "description": param.description}
            if param.enum:
                prop["enum"] = param.enum
            properties[param.name] = prop

        return {
            "type": "object",
            "properties": properties,
            "required": [p.name for p in self.parameters if p.required],
        }

    def declaration(self) -> ToolDefinition:
        return ToolDefinition(self.name, self.description, self.get_parameters_schema())

    async def execute(self, cancel: Any = None, **kwargs: Any) -> ToolResult:
        if self.handler is None:
            raise NotImplementedError(f"Tool {self.name} has no handler")
        if self.cancellable:
            return await self.handler(cancel=cancel, **kwargs)
        return await self.handler(**kwargs)


class BaseTool(ABC):
    """Base class for class-based tools that declare their own schema."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema object for the arguments, forwarded to backends as-is."""
        pass

    def declaration(self) -> ToolDefinition:
        return ToolDefinition(self.name, self.description, self.parameters)

    @abstractmethod
    async def execute(self, cancel: Any = None, **kwargs: Any) -> ToolResult:
        """Execute the tool with given arguments.

        `cancel` is the caller's CancellationToken; long-running tools
        should check it between steps.
        """
        pass
