"""
Anthropic Claude LLM provider.

Claude keeps no conversation state between calls, so every request
rebuilds the full message list from the transcript snapshot. The
Messages API also requires strict user/assistant alternation and
tool_result blocks that answer the preceding tool_use blocks, which
the conversion below takes care of.
"""

import json
from typing import Any, AsyncIterator, Sequence

import anthropic

from ..errors import (
    AuthenticationError,
    BackendError,
    MalformedResponse,
    RateLimitError,
    TransportError,
    UnsupportedOperation,
)
from .base import (
    BaseLLM,
    Done,
    FinishReason,
    LLMRequest,
    LLMResponse,
    Message,
    StreamChunk,
    TextDelta,
    TextPart,
    ToolCall,
    ToolCallArgsDelta,
    ToolCallComplete,
    ToolCallPart,
    ToolCallStart,
    ToolDefinition,
    make_tool_call_id,
)
from .models import CLAUDE_HAIKU_MODEL, DEFAULT_CLAUDE_MODEL, map_claude_model, token_limit

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_use": FinishReason.TOOL_CALLS,
}


class ClaudeLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    fallback_model = CLAUDE_HAIKU_MODEL

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_CLAUDE_MODEL,
        base_url: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.0,
        top_p: float = 1.0,
        logger: Any = None,
        client: Any = None,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature, top_p, logger)
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "claude"

    @property
    def context_limit(self) -> int:
        """Context window of the Claude model the configured name maps to."""
        return token_limit(map_claude_model(self.model))

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert transcript messages to Anthropic format.

        Empty messages are dropped and consecutive same-role messages are
        merged, since the API rejects both.
        """
        converted: list[dict[str, Any]] = []
        # tool name -> ids of tool_use blocks still waiting for a result
        unresolved: dict[str, list[str]] = {}

        for msg_index, msg in enumerate(messages):
            blocks: list[dict[str, Any]] = []

            for part_index, part in enumerate(msg.parts):
                if isinstance(part, TextPart):
                    if part.text:
                        blocks.append({"type": "text", "text": part.text})
                elif isinstance(part, ToolCallPart):
                    tool_use_id = part.id or f"toolu_{msg_index:04d}_{part_index:02d}"
                    unresolved.setdefault(part.name, []).append(tool_use_id)
                    blocks.append({
                        "type": "tool_use",
                        "id": tool_use_id,
                        "name": part.name,
                        "input": dict(part.args),
                    })
                else:
                    waiting = unresolved.get(part.name, [])
                    tool_use_id = part.tool_call_id
                    if tool_use_id in waiting:
                        waiting.remove(tool_use_id)
                    elif not tool_use_id and waiting:
                        tool_use_id = waiting.pop()
                    block: dict[str, Any] = {
                        "type": "tool_result",
                        "tool_use_id": tool_use_id,
                        "content": json.dumps(part.payload, default=str),
                    }
                    if part.is_error:
                        block["is_error"] = True
                    blocks.append(block)

            if not blocks:
                continue

            role = "assistant" if msg.role == "model" else "user"
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})

        # tool_result blocks must lead the user message that carries them
        for item in converted:
            if item["role"] == "user":
                item["content"].sort(key=lambda b: b["type"] != "tool_result")

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        converted = []
        for tool in tools:
            schema = dict(tool.parameters) if tool.parameters else {}
            schema.setdefault("type", "object")
            converted.append({
                "name": tool.name,
                "description": tool.description,
                "input_schema": schema,
            })
        return converted

    def _build_kwargs(self, request: LLMRequest) -> dict[str, Any]:
        model, config = self._resolve(request)

        if config.response_schema is not None:
            raise UnsupportedOperation(
                "Claude does not support schema-constrained JSON generation",
                provider=self.provider_name,
            )

        kwargs: dict[str, Any] = {
            "model": map_claude_model(model),
            "max_tokens": config.max_output_tokens,
            "temperature": config.temperature,
            "messages": self._convert_messages(request.messages),
        }

        if config.system_instruction:
            kwargs["system"] = config.system_instruction

        if config.tools:
            kwargs["tools"] = self._convert_tools(config.tools)

        return kwargs

    def _translate_error(self, error: Exception) -> BackendError:
        """Map an Anthropic SDK exception onto the shared taxonomy."""
        message = f"Claude API error: {error}"
        if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return AuthenticationError(message, provider=self.provider_name)
        if isinstance(error, anthropic.RateLimitError):
            return RateLimitError(message, provider=self.provider_name)
        if isinstance(error, anthropic.APIConnectionError):
            return TransportError(message, provider=self.provider_name)
        if isinstance(error, anthropic.APIStatusError):
            if error.status_code >= 500:
                return TransportError(
                    message,
                    provider=self.provider_name,
                    details={"status_code": error.status_code},
                )
            return BackendError(
                message,
                provider=self.provider_name,
                details={"status_code": error.status_code},
            )
        return BackendError(message, provider=self.provider_name)

    @staticmethod
    def _finish_reason(stop_reason: str | None) -> FinishReason:
        return _STOP_REASONS.get(stop_reason or "", FinishReason.OTHER)

    def _parse_tool_input(self, name: str, raw: str) -> dict[str, Any]:
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedResponse(
                f"Invalid JSON arguments for tool '{name}': {e}",
                provider=self.provider_name,
            ) from e
        if not isinstance(parsed, dict):
            raise MalformedResponse(
                f"Arguments for tool '{name}' are not an object",
                provider=self.provider_name,
            )
        return parsed

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate a response from Claude."""
        kwargs = self._build_kwargs(request)
        self.logger.debug(
            "Claude request",
            model=kwargs["model"],
            messages=len(kwargs["messages"]),
            tools=len(kwargs.get("tools", [])),
        )

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            self.logger.error("Anthropic API error", error=str(e))
            raise self._translate_error(e) from e

        content = ""
        tool_calls = []

        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id or make_tool_call_id(block.name),
                    name=block.name,
                    args=dict(block.input) if isinstance(block.input, dict) else {},
                ))

        self._record_usage(response.usage.input_tokens, response.usage.output_tokens)
        self.logger.debug(
            "Claude response",
            stop_reason=response.stop_reason,
            tool_calls=len(tool_calls),
            output_tokens=response.usage.output_tokens,
        )

        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            finish_reason=self._finish_reason(response.stop_reason),
            raw_response=response,
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """Stream a response from Claude as normalized chunks."""
        kwargs = self._build_kwargs(request)
        self.logger.debug(
            "Claude stream request",
            model=kwargs["model"],
            messages=len(kwargs["messages"]),
        )

        try:
            events = await self.client.messages.create(**kwargs, stream=True)
        except anthropic.APIError as e:
            self.logger.error("Anthropic streaming error", error=str(e))
            raise self._translate_error(e) from e

        # content block index -> tool_use being assembled
        open_tools: dict[int, dict[str, Any]] = {}
        input_tokens = 0
        output_tokens = 0
        stop_reason = None
        chunk_count = 0

        try:
            async for event in events:
                event_type = event.type

                if event_type == "message_start":
                    usage = getattr(event.message, "usage", None)
                    input_tokens = getattr(usage, "input_tokens", 0) or 0

                elif event_type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        tool_id = block.id or make_tool_call_id(block.name)
                        open_tools[event.index] = {"id": tool_id, "name": block.name, "json": []}
                        chunk_count += 1
                        yield ToolCallStart(id=tool_id, name=block.name)

                elif event_type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta" and delta.text:
                        chunk_count += 1
                        yield TextDelta(delta.text)
                    elif delta.type == "input_json_delta":
                        pending = open_tools.get(event.index)
                        if pending is not None and delta.partial_json:
                            pending["json"].append(delta.partial_json)
                            yield ToolCallArgsDelta(id=pending["id"], delta=delta.partial_json)

                elif event_type == "content_block_stop":
                    pending = open_tools.pop(event.index, None)
                    if pending is not None:
                        args = self._parse_tool_input(pending["name"], "".join(pending["json"]))
                        yield ToolCallComplete(ToolCall(id=pending["id"], name=pending["name"], args=args))

                elif event_type == "message_delta":
                    stop_reason = event.delta.stop_reason
                    usage = getattr(event, "usage", None)
                    output_tokens = getattr(usage, "output_tokens", 0) or 0

        except anthropic.APIError as e:
            self.logger.error("Anthropic streaming error", error=str(e))
            raise self._translate_error(e) from e
        finally:
            await events.close()

        if open_tools:
            raise MalformedResponse(
                "Stream ended with unterminated tool_use blocks",
                provider=self.provider_name,
            )

        self._record_usage(input_tokens, output_tokens)
        self.logger.debug("Claude stream complete", chunks=chunk_count, stop_reason=stop_reason)
        yield Done(
            finish_reason=self._finish_reason(stop_reason),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
