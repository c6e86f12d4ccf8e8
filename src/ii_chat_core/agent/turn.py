"""
A single turn: one backend request, its streamed response, and the
dispatch of any tool calls the model asked for.

States: SENDING -> STREAMING -> COLLECTING_TOOL_CALLS -> DONE, or
AWAITING_TOOL_RESULTS when the model requested tools. The turn never
touches the transcript; the orchestrator appends `model_message` and
`tool_results` once the turn hands them over.
"""

import json
from enum import Enum
from typing import Any, AsyncIterator

import structlog

from ..errors import BackendError, MalformedResponse, OperationCancelled, ToolExecutionError
from ..llm.base import (
    BaseLLM,
    Done,
    FinishReason,
    LLMRequest,
    Message,
    Part,
    StreamChunk,
    TextDelta,
    TextPart,
    ToolCall,
    ToolCallComplete,
    ToolCallStart,
    ToolResultPart,
)
from ..tools.registry import ToolRegistry
from .cancellation import CancellationToken
from .events import (
    AgentEvent,
    ContentEvent,
    ErrorEvent,
    ToolCallRequestEvent,
    ToolCallResponseEvent,
    UserCancelledEvent,
)
from .retry import PersistentFailureHook, RetryOptions, with_retry

logger = structlog.get_logger()

CANCELLED_TOOL_MESSAGE = "Tool call cancelled by user."
EMPTY_TOOL_RESULT = "Tool executed successfully"


class TurnState(str, Enum):
    SENDING = "sending"
    STREAMING = "streaming"
    COLLECTING_TOOL_CALLS = "collecting_tool_calls"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    DONE = "done"


def tool_result_content(output: Any) -> Any:
    """Shape a tool's output into the result sent back to the model."""
    if isinstance(output, list):
        if not output:
            return EMPTY_TOOL_RESULT
        pieces = []
        for item in output:
            if isinstance(item, str):
                pieces.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                pieces.append(item["text"])
            else:
                pieces.append(json.dumps(item, default=str))
        return "\n".join(pieces)
    if output is None or output == "":
        return EMPTY_TOOL_RESULT
    return output


async def _close(chunks: AsyncIterator[StreamChunk]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


class Turn:
    """Runs one request/response cycle against the active adapter."""

    def __init__(
        self,
        llm: BaseLLM,
        request: LLMRequest,
        retry_options: RetryOptions | None = None,
        on_persistent_failure: PersistentFailureHook | None = None,
        log: Any = None,
    ) -> None:
        self.llm = llm
        self.request = request
        self.retry_options = retry_options
        self.on_persistent_failure = on_persistent_failure
        self.log = log or logger

        self.state = TurnState.SENDING
        self.pending_tool_calls: list[ToolCall] = []
        self.tool_results: list[ToolResultPart] = []
        self.model_message: Message | None = None
        self.finish_reason: FinishReason | None = None
        self.error: BackendError | None = None
        self.cancelled = False
        self._text: list[str] = []
        self._open_calls: dict[str, str] = {}

    async def _open_stream(self) -> tuple[StreamChunk | None, AsyncIterator[StreamChunk]]:
        """Start the stream and wait for its first chunk.

        Failures up to this point are safe to retry: nothing has reached
        the caller yet.
        """
        chunks = self.llm.stream(self.request)
        try:
            first = await chunks.__anext__()
        except StopAsyncIteration:
            return None, chunks
        except BaseException:
            await _close(chunks)
            raise
        return first, chunks

    def _consume(self, chunk: StreamChunk) -> AgentEvent | None:
        if isinstance(chunk, TextDelta):
            if chunk.text:
                self._text.append(chunk.text)
                return ContentEvent(chunk.text)
        elif isinstance(chunk, ToolCallStart):
            self._open_calls[chunk.id] = chunk.name
        elif isinstance(chunk, ToolCallComplete):
            call = chunk.call
            self._open_calls.pop(call.id, None)
            self.pending_tool_calls.append(call)
            return ToolCallRequestEvent(id=call.id, name=call.name, args=dict(call.args))
        elif isinstance(chunk, Done):
            self.finish_reason = chunk.finish_reason
        return None

    def _fail(self, error: BackendError) -> ErrorEvent:
        self.error = error
        self.state = TurnState.DONE
        self.log.error("Turn failed", kind=error.kind, error=error.message)
        return ErrorEvent(message=error.message, kind=error.kind)

    def _cancel(self) -> UserCancelledEvent:
        self.cancelled = True
        self.state = TurnState.DONE
        self.log.info("Turn cancelled", state=self.state.value)
        return UserCancelledEvent()

    async def run(self, cancel: CancellationToken | None = None) -> AsyncIterator[AgentEvent]:
        """Send the request and stream the response.

        Text is forwarded as it arrives; tool calls are collected into
        `pending_tool_calls` but not executed.
        """
        self.state = TurnState.SENDING
        try:
            chunk, chunks = await with_retry(
                self._open_stream,
                self.retry_options,
                on_persistent_failure=self.on_persistent_failure,
                cancel=cancel,
                log=self.log,
            )
        except OperationCancelled:
            yield self._cancel()
            return
        except BackendError as e:
            yield self._fail(e)
            return

        self.state = TurnState.STREAMING
        try:
            while chunk is not None:
                if cancel is not None and cancel.cancelled:
                    yield self._cancel()
                    return

                event = self._consume(chunk)
                if event is not None:
                    yield event

                try:
                    chunk = await chunks.__anext__()
                except StopAsyncIteration:
                    chunk = None
        except BackendError as e:
            yield self._fail(e)
            return
        finally:
            await _close(chunks)

        self.state = TurnState.COLLECTING_TOOL_CALLS
        if self._open_calls:
            yield self._fail(MalformedResponse(
                f"Stream ended before tool calls completed: {sorted(self._open_calls.values())}",
                provider=self.llm.provider_name,
            ))
            return

        text = "".join(self._text)
        if not text and not self.pending_tool_calls:
            self.log.warning("Model returned an empty turn", finish_reason=self.finish_reason)
            self.state = TurnState.DONE
            return

        parts: list[Part] = [TextPart(text)] if text else []
        parts.extend(call.to_part() for call in self.pending_tool_calls)
        self.model_message = Message(role="model", parts=parts)

        if self.pending_tool_calls:
            self.state = TurnState.AWAITING_TOOL_RESULTS
        else:
            self.state = TurnState.DONE

    async def dispatch_tools(
        self,
        registry: ToolRegistry,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Execute the collected tool calls one at a time, in request order.

        Each call is isolated: a failure becomes an error result. Once the
        token fires, no further call is dispatched and the remaining calls
        get a cancellation error so every request still has a result and a
        response event.
        """
        for index, call in enumerate(self.pending_tool_calls):
            if cancel is not None and cancel.cancelled:
                for skipped in self.pending_tool_calls[index:]:
                    self.tool_results.append(ToolResultPart(
                        tool_call_id=skipped.id,
                        name=skipped.name,
                        error=CANCELLED_TOOL_MESSAGE,
                    ))
                    yield ToolCallResponseEvent(id=skipped.id, error=CANCELLED_TOOL_MESSAGE)
                yield self._cancel()
                return

            try:
                result = await registry.execute(call.name, call.args, cancel)
            except ToolExecutionError as e:
                self.log.warning("Tool call failed", tool=call.name, call_id=call.id, error=e.message)
                self.tool_results.append(ToolResultPart(
                    tool_call_id=call.id,
                    name=call.name,
                    error=e.message,
                ))
                yield ToolCallResponseEvent(id=call.id, error=e.message)
                continue

            content = tool_result_content(result.output)
            self.tool_results.append(ToolResultPart(
                tool_call_id=call.id,
                name=call.name,
                result=content,
            ))
            display = result.display if result.display is not None else str(content)
            yield ToolCallResponseEvent(id=call.id, result_display=display)

        self.state = TurnState.DONE
