"""
Tests for tools module.
"""

import pytest

from ii_chat_core.errors import ToolExecutionError
from ii_chat_core.tools import BaseTool, Tool, ToolParameter, ToolRegistry, ToolResult


class EchoTool(BaseTool):
    """Class-based tool used to exercise the registry."""

    def __init__(self):
        self.seen_cancel = "unset"

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the given text back"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {"text": {"type": "string", "description": "Text to echo"}},
            "required": ["text"],
        }

    async def execute(self, cancel=None, **kwargs) -> ToolResult:
        self.seen_cancel = cancel
        return ToolResult(success=True, output=kwargs["text"])


def test_tool_result_success():
    """Test successful tool result."""
    result = ToolResult(success=True, output="Test output", display="1 line")

    assert result.success is True
    assert result.output == "Test output"
    assert result.display == "1 line"
    assert result.error is None


def test_tool_result_failure():
    """Test failed tool result."""
    result = ToolResult(success=False, output="", error="Something went wrong")

    assert result.success is False
    assert result.error == "Something went wrong"


def test_function_tool_schema():
    """Test converting function tool parameters to JSON Schema."""
    async def handler(path: str, limit: int = 10) -> ToolResult:
        return ToolResult(success=True)

    tool = Tool(
        name="list_files",
        description="List files",
        parameters=[
            ToolParameter("path", "string", "Directory"),
            ToolParameter("limit", "integer", "Max entries", required=False),
            ToolParameter("order", "string", "Sort order", required=False, enum=["name", "mtime"]),
        ],
        handler=handler,
    )

    schema = tool.get_parameters_schema()

    assert schema["type"] == "object"
    assert schema["required"] == ["path"]
    assert schema["properties"]["limit"] == {"type": "integer", "description": "Max entries"}
    assert schema["properties"]["order"]["enum"] == ["name", "mtime"]

    declaration = tool.declaration()
    assert declaration.name == "list_files"
    assert declaration.parameters == schema


def test_registry_declarations():
    """Test listing declarations for the LLM."""
    registry = ToolRegistry()
    registry.register(EchoTool())

    declarations = registry.list_declarations()

    assert registry.list_tools() == ["echo"]
    assert declarations[0].name == "echo"
    assert declarations[0].parameters["required"] == ["text"]

    registry.unregister("echo")
    assert registry.list_declarations() == []


@pytest.mark.asyncio
async def test_registry_execute_passes_cancel_token():
    registry = ToolRegistry()
    tool = EchoTool()
    registry.register(tool)
    token = object()

    result = await registry.execute("echo", {"text": "hi"}, token)

    assert result.output == "hi"
    assert tool.seen_cancel is token


@pytest.mark.asyncio
async def test_registry_unknown_tool():
    registry = ToolRegistry()

    with pytest.raises(ToolExecutionError, match="Tool nope not found"):
        await registry.execute("nope", {})


@pytest.mark.asyncio
async def test_registry_wraps_tool_exceptions():
    async def handler() -> ToolResult:
        raise ValueError("bad input")

    registry = ToolRegistry()
    registry.register(Tool("fails", "Always fails", [], handler))

    with pytest.raises(ToolExecutionError) as excinfo:
        await registry.execute("fails", {})

    assert excinfo.value.message == "bad input"
    assert excinfo.value.tool_name == "fails"


@pytest.mark.asyncio
async def test_registry_unsuccessful_result():
    async def handler() -> ToolResult:
        return ToolResult(success=False, error="permission denied")

    registry = ToolRegistry()
    registry.register(Tool("denied", "Denied", [], handler))

    with pytest.raises(ToolExecutionError, match="permission denied"):
        await registry.execute("denied", {})


@pytest.mark.asyncio
async def test_cancellable_tool_receives_token():
    seen = []

    async def handler(path: str, cancel=None) -> ToolResult:
        seen.append((path, cancel))
        return ToolResult(success=True, output=path)

    registry = ToolRegistry()
    registry.register(Tool("read", "Read a file", [ToolParameter("path", "string", "File")], handler, cancellable=True))
    token = object()

    await registry.execute("read", {"path": "a.py"}, token)

    assert seen == [("a.py", token)]
