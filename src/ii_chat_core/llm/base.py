"""
Base classes for LLM providers.

Defines the provider-agnostic message model (messages made of text,
tool-call and tool-result parts), the normalized streaming chunk
vocabulary, and the adapter contract every backend implements.
"""

import json
import math
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Literal, Sequence, Union

import structlog

from ..errors import UnsupportedOperation
from .models import token_limit

# Advisory heuristic for backends without a counting endpoint
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TextPart:
    """Plain text contributed by the user or the model."""

    text: str


@dataclass(frozen=True)
class ToolCallPart:
    """A tool invocation requested by the model."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultPart:
    """The outcome of a tool invocation, sent back to the model."""

    tool_call_id: str
    name: str
    result: Any = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def payload(self) -> dict[str, Any]:
        """The result-or-error payload as sent to the backend."""
        if self.error is not None:
            return {"error": self.error}
        return {"result": self.result}


Part = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass
class Message:
    """One turn's contribution to the conversation."""

    role: Literal["user", "model"]
    parts: list[Part] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", parts=[TextPart(text)])

    @classmethod
    def model(cls, text: str) -> "Message":
        return cls(role="model", parts=[TextPart(text)])

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]

    @property
    def is_empty(self) -> bool:
        """True when the message carries nothing a backend would accept."""
        for part in self.parts:
            if not isinstance(part, TextPart) or part.text:
                return False
        return True


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM, not yet resolved."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_part(self) -> ToolCallPart:
        return ToolCallPart(id=self.id, name=self.name, args=dict(self.args))


class FinishReason(str, Enum):
    """Why the backend stopped generating."""

    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    OTHER = "other"


@dataclass
class GenerationConfig:
    """Per-request generation settings. Unset values use adapter defaults."""

    temperature: float | None = None
    max_output_tokens: int | None = None
    top_p: float | None = None
    system_instruction: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    response_schema: dict[str, Any] | None = None


@dataclass
class LLMRequest:
    """A single backend call: the full message list plus its configuration."""

    messages: Sequence[Message]
    config: GenerationConfig = field(default_factory=GenerationConfig)
    model: str | None = None


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    finish_reason: FinishReason = FinishReason.OTHER
    raw_response: Any = None

    def to_message(self) -> Message:
        parts: list[Part] = []
        if self.content:
            parts.append(TextPart(self.content))
        parts.extend(tc.to_part() for tc in self.tool_calls)
        return Message(role="model", parts=parts)


# Streaming chunk vocabulary


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallArgsDelta:
    id: str
    delta: str


@dataclass(frozen=True)
class ToolCallComplete:
    call: ToolCall


@dataclass(frozen=True)
class Done:
    finish_reason: FinishReason
    input_tokens: int = 0
    output_tokens: int = 0


StreamChunk = Union[TextDelta, ToolCallStart, ToolCallArgsDelta, ToolCallComplete, Done]


@dataclass
class UsageCounters:
    """Cumulative, advisory usage for one adapter instance."""

    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0


def make_tool_call_id(name: str) -> str:
    """Last-resort id for a tool call the backend did not label."""
    return f"{name}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


def _part_chars(part: Part) -> int:
    if isinstance(part, TextPart):
        return len(part.text)
    if isinstance(part, ToolCallPart):
        return len(part.name) + len(json.dumps(part.args, default=str))
    return len(json.dumps(part.payload, default=str))


def estimate_tokens(messages: Sequence[Message]) -> int:
    """Estimate token count with a fixed characters-per-token ratio."""
    total_chars = sum(_part_chars(p) for m in messages for p in m.parts)
    return math.ceil(total_chars / CHARS_PER_TOKEN)


class BaseLLM(ABC):
    """Base class for LLM providers.

    An adapter normalizes one backend's wire contract into the shared
    message and chunk vocabulary. It never mutates the messages it is
    given; callers pass a snapshot of the transcript on every call.
    """

    # Whether generate() honours GenerationConfig.response_schema
    supports_json: bool = False
    fallback_model: str = ""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.0,
        top_p: float = 1.0,
        logger: Any = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.usage = UsageCounters()
        self.logger = logger or structlog.get_logger(provider=self.provider_name)

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate a complete response from the LLM."""
        pass

    @abstractmethod
    def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """Stream a response as normalized chunks.

        The iterator is one-shot and ends with a Done chunk.
        """
        pass

    async def count_tokens(self, messages: Sequence[Message], model: str | None = None) -> int:
        """Count (or estimate) the tokens in a message list."""
        return estimate_tokens(messages)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Produce one embedding vector per input text."""
        raise UnsupportedOperation(
            f"{self.provider_name} does not support embeddings",
            provider=self.provider_name,
        )

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    @property
    def context_limit(self) -> int:
        """Context window of the active model, in tokens."""
        return token_limit(self.model)

    def _resolve(self, request: LLMRequest) -> tuple[str, GenerationConfig]:
        """Fill unset generation settings from adapter defaults."""
        cfg = request.config
        resolved = GenerationConfig(
            temperature=self.temperature if cfg.temperature is None else cfg.temperature,
            max_output_tokens=cfg.max_output_tokens or self.max_tokens,
            top_p=self.top_p if cfg.top_p is None else cfg.top_p,
            system_instruction=cfg.system_instruction,
            tools=list(cfg.tools),
            response_schema=cfg.response_schema,
        )
        return request.model or self.model, resolved

    def _record_usage(self, input_tokens: int, output_tokens: int) -> None:
        self.usage.requests += 1
        self.usage.input_tokens += input_tokens or 0
        self.usage.output_tokens += output_tokens or 0
