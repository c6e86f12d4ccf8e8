"""
Agent module - the conversation loop.

Includes:
- ConversationOrchestrator: Session state, budgets, compression, next-speaker
- Turn: One streamed backend request plus its tool dispatch
- Transcript: Validated message history
- Events: What a session reports back to its caller
"""

from .cancellation import CancellationToken
from .compression import CompressionRecord, compress_transcript
from .core import ConversationOrchestrator
from .events import (
    AgentEvent,
    ChatCompressedEvent,
    ContentEvent,
    ErrorEvent,
    EventType,
    ToolCallRequestEvent,
    ToolCallResponseEvent,
    UserCancelledEvent,
)
from .retry import RetryOptions, with_retry
from .transcript import Transcript, TranscriptIntegrityError
from .turn import Turn, TurnState

__all__ = [
    "CancellationToken",
    "CompressionRecord",
    "compress_transcript",
    "ConversationOrchestrator",
    "AgentEvent",
    "ChatCompressedEvent",
    "ContentEvent",
    "ErrorEvent",
    "EventType",
    "ToolCallRequestEvent",
    "ToolCallResponseEvent",
    "UserCancelledEvent",
    "RetryOptions",
    "with_retry",
    "Transcript",
    "TranscriptIntegrityError",
    "Turn",
    "TurnState",
]
