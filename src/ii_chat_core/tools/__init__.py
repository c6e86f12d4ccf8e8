"""
Tool registry interface used by the orchestrator.

Concrete tools (file access, shell, ...) live outside the core and are
registered by the embedding application.
"""

from .base import BaseTool, Tool, ToolParameter, ToolResult
from .registry import ToolRegistry

__all__ = [
    "BaseTool",
    "Tool",
    "ToolParameter",
    "ToolResult",
    "ToolRegistry",
]
