"""
Caller-visible events.

Every provider produces the same ordered event vocabulary. A normal turn
ends when the event iterator is exhausted; UserCancelled and Error are
terminal, and at most one of them ends a caller invocation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union


class EventType(str, Enum):
    CONTENT = "content"
    TOOL_CALL_REQUEST = "tool_call_request"
    TOOL_CALL_RESPONSE = "tool_call_response"
    CHAT_COMPRESSED = "chat_compressed"
    USER_CANCELLED = "user_cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class ContentEvent:
    text: str
    type: ClassVar[EventType] = EventType.CONTENT


@dataclass(frozen=True)
class ToolCallRequestEvent:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    type: ClassVar[EventType] = EventType.TOOL_CALL_REQUEST


@dataclass(frozen=True)
class ToolCallResponseEvent:
    id: str
    result_display: str | None = None
    error: str | None = None
    type: ClassVar[EventType] = EventType.TOOL_CALL_RESPONSE


@dataclass(frozen=True)
class ChatCompressedEvent:
    original_token_count: int
    new_token_count: int
    type: ClassVar[EventType] = EventType.CHAT_COMPRESSED


@dataclass(frozen=True)
class UserCancelledEvent:
    type: ClassVar[EventType] = EventType.USER_CANCELLED


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    kind: str = "api"
    type: ClassVar[EventType] = EventType.ERROR


AgentEvent = Union[
    ContentEvent,
    ToolCallRequestEvent,
    ToolCallResponseEvent,
    ChatCompressedEvent,
    UserCancelledEvent,
    ErrorEvent,
]

TERMINAL_EVENTS = (UserCancelledEvent, ErrorEvent)
