"""
Shared fixtures: a scripted adapter and fast settings.
"""

import json
from typing import Any, Callable

import pytest

from ii_chat_core.config import Settings
from ii_chat_core.llm.base import (
    BaseLLM,
    Done,
    FinishReason,
    LLMRequest,
    LLMResponse,
    TextDelta,
    ToolCall,
    ToolCallComplete,
    ToolCallStart,
)
from ii_chat_core.tools import ToolRegistry


def text_turn(text: str) -> list:
    return [TextDelta(text), Done(FinishReason.STOP)]


def tool_turn(*calls: tuple[str, dict[str, Any], str], text: str = "") -> list:
    """Chunks for a turn requesting `(name, args, call_id)` tool calls."""
    chunks: list = [TextDelta(text)] if text else []
    for name, args, call_id in calls:
        chunks.append(ToolCallStart(id=call_id, name=name))
        chunks.append(ToolCallComplete(ToolCall(id=call_id, name=name, args=args)))
    chunks.append(Done(FinishReason.TOOL_CALLS))
    return chunks


class ScriptedLLM(BaseLLM):
    """Adapter that replays canned turns instead of calling a backend.

    Each streamed turn is a list of chunks; an Exception in the list is
    raised when reached, and an Exception in place of the list is raised
    before the first chunk. `generate` replays `responses`: dicts are
    serialized as JSON, strings become the response text.
    """

    fallback_model = "scripted-flash"

    def __init__(
        self,
        turns: list | None = None,
        responses: list | None = None,
        token_counts: list[int] | None = None,
        supports_json: bool = False,
        context_limit: int = 1_000_000,
        default_turn: Callable[[int], list] | None = None,
        model: str = "scripted-pro",
    ):
        super().__init__(api_key="test-key", model=model)
        self.turns = list(turns or [])
        self.responses = list(responses or [])
        self.token_counts = list(token_counts or [])
        self.supports_json = supports_json
        self._context_limit = context_limit
        self.default_turn = default_turn
        self.stream_requests: list[LLMRequest] = []
        self.generate_requests: list[LLMRequest] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    @property
    def context_limit(self) -> int:
        return self._context_limit

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.generate_requests.append(request)
        if not self.responses:
            raise AssertionError("No scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            return LLMResponse(content=json.dumps(item), model=request.model or self.model)
        if isinstance(item, str):
            return LLMResponse(content=item, model=request.model or self.model)
        return item

    async def stream(self, request: LLMRequest):
        self.stream_requests.append(request)
        if self.turns:
            script = self.turns.pop(0)
        elif self.default_turn is not None:
            script = self.default_turn(len(self.stream_requests))
        else:
            raise AssertionError("No scripted turn left")

        if isinstance(script, Exception):
            raise script
        for chunk in script:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    async def count_tokens(self, messages, model=None) -> int:
        if self.token_counts:
            return self.token_counts.pop(0)
        return await super().count_tokens(messages, model)


@pytest.fixture
def settings(tmp_path):
    """Settings with instant retries and an empty working directory."""
    return Settings(
        _env_file=None,
        working_dir=str(tmp_path),
        next_speaker_check=False,
        retry_max_attempts=3,
        retry_base_delay=0.001,
        retry_max_delay=0.002,
    )


@pytest.fixture
def registry():
    return ToolRegistry()
