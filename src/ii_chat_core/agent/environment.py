"""
System prompt and the environment preamble that opens every transcript.
"""

import sys
from datetime import datetime
from pathlib import Path

import structlog

from ..config import Settings
from ..errors import ToolExecutionError
from ..llm.base import Message
from ..tools.registry import ToolRegistry
from .cancellation import CancellationToken

logger = structlog.get_logger()

PREAMBLE_ACK = "Got it. Thanks for the context!"
MAX_LISTED_ENTRIES = 50
FULL_CONTEXT_TOOL = "read_many_files"

CORE_SYSTEM_PROMPT = """You are an interactive assistant that helps the user with software engineering tasks in their workspace.

Guidelines:
1. Be accurate and concise; prefer doing over describing
2. Use the available tools to inspect files and run commands instead of guessing
3. Read a tool's result before deciding the next step; if a tool fails, adapt rather than repeating the same call
4. Explain destructive actions before you take them
5. When the task is complete, say so plainly and stop requesting tools"""


def get_core_system_prompt(user_memory: str = "") -> str:
    """Build the system instruction sent with every content request."""
    memory = user_memory.strip()
    if not memory:
        return CORE_SYSTEM_PROMPT
    return f"{CORE_SYSTEM_PROMPT}\n\n---\n\n{memory}"


def folder_listing(path: str | Path, max_entries: int = MAX_LISTED_ENTRIES) -> str:
    """Summarize the top level of the working directory."""
    root = Path(path)
    try:
        entries = sorted(root.iterdir(), key=lambda p: (not p.is_dir(), p.name))
    except OSError as e:
        logger.warning("Could not list working directory", path=str(root), error=str(e))
        return ""

    lines = [f"Showing up to {max_entries} items in {root.resolve()}:"]
    for entry in entries[:max_entries]:
        lines.append(f"  {entry.name}/" if entry.is_dir() else f"  {entry.name}")
    if len(entries) > max_entries:
        lines.append(f"  ... {len(entries) - max_entries} more")
    return "\n".join(lines)


async def build_environment_context(
    settings: Settings,
    tool_registry: ToolRegistry,
    cancel: CancellationToken | None = None,
    log=None,
) -> str:
    """Describe the session's situation to the model."""
    log = log or logger
    today = datetime.now().strftime("%A, %B %d, %Y")
    parts = [
        "This is II-Chat-Core. We are setting up the context for our chat.",
        f"Today's date is {today}.",
        f"My operating system is: {sys.platform}",
        f"I'm currently working in the directory: {Path(settings.working_dir).resolve()}",
    ]

    listing = folder_listing(settings.working_dir)
    if listing:
        parts.append(listing)

    if settings.user_memory.strip():
        parts.append(settings.user_memory.strip())

    if settings.full_context:
        if tool_registry.get(FULL_CONTEXT_TOOL) is None:
            log.warning("Full context requested, but read_many_files tool not found")
        else:
            try:
                result = await tool_registry.execute(
                    FULL_CONTEXT_TOOL,
                    {"paths": ["**/*"], "useDefaultExcludes": True},
                    cancel,
                )
                if result.output:
                    parts.append(f"\n--- Full File Context ---\n{result.output}")
                else:
                    log.warning("Full context requested, but read_many_files returned no content")
            except ToolExecutionError as e:
                log.error("Error reading full file context", error=e.message)
                parts.append("\n--- Error reading full file context ---")

    return "\n".join(parts)


def preamble_messages(context: str) -> list[Message]:
    """The opening user/model pair that grounds the conversation."""
    return [Message.user(context), Message.model(PREAMBLE_ACK)]
