"""
The conversation transcript.

Ordered, append-only during a turn, and replaced wholesale only by
compression or an explicit reset. Every tool result must answer a tool
call that a model message made earlier in the same transcript.
"""

from typing import Iterable, Sequence

from ..llm.base import Message, TextPart, ToolCallPart, ToolResultPart, estimate_tokens


class TranscriptIntegrityError(ValueError):
    """A message would break tool call / tool result pairing."""


class Transcript:
    """Conversation history owned by the orchestrator."""

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = []
        self._call_ids: set[str] = set()
        self.compression_count = 0
        if messages:
            self.replace(messages)

    def _check(self, message: Message, known_ids: set[str]) -> None:
        if message.role not in ("user", "model"):
            raise TranscriptIntegrityError(f"Unknown role: {message.role!r}")
        for part in message.parts:
            if isinstance(part, ToolCallPart):
                if message.role != "model":
                    raise TranscriptIntegrityError("Tool calls must be authored by the model")
                if not part.id:
                    raise TranscriptIntegrityError(f"Tool call '{part.name}' has no id")
                known_ids.add(part.id)
            elif isinstance(part, ToolResultPart):
                if part.tool_call_id not in known_ids:
                    raise TranscriptIntegrityError(
                        f"Tool result references unknown call id {part.tool_call_id!r}"
                    )

    def append(self, message: Message) -> None:
        """Append a message, enforcing referential integrity."""
        known = set(self._call_ids)
        self._check(message, known)
        self._messages.append(Message(role=message.role, parts=list(message.parts)))
        self._call_ids = known

    def add_user_message(self, content: str) -> None:
        """Add a user message."""
        self.append(Message.user(content))

    def add_model_message(self, content: str, tool_calls: Sequence[ToolCallPart] = ()) -> None:
        """Add a model message."""
        parts = [TextPart(content)] if content else []
        parts.extend(tool_calls)
        self.append(Message(role="model", parts=parts))

    def add_tool_results(self, results: Sequence[ToolResultPart]) -> None:
        """Add tool results as one user message."""
        self.append(Message(role="user", parts=list(results)))

    def replace(self, messages: Iterable[Message]) -> None:
        """Atomically replace the whole history. Nothing changes if validation fails."""
        new_messages = [Message(role=m.role, parts=list(m.parts)) for m in messages]
        known: set[str] = set()
        for message in new_messages:
            self._check(message, known)
        self._messages = new_messages
        self._call_ids = known

    def clear(self) -> None:
        self._messages = []
        self._call_ids = set()

    def snapshot(self, curated: bool = False) -> list[Message]:
        """Copy of the history for a single backend call.

        Curated snapshots drop model messages with no content.
        """
        return [
            Message(role=m.role, parts=list(m.parts))
            for m in self._messages
            if not (curated and m.role == "model" and m.is_empty)
        ]

    def estimate_tokens(self) -> int:
        return estimate_tokens(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    @property
    def message_count(self) -> int:
        """Get the number of messages."""
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self.snapshot())
