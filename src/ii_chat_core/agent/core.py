"""
Conversation orchestrator.

This is the brain of the system. It:
1. Seeds every session with an environment preamble
2. Runs turns against the active backend, dispatching tool calls in between
3. Compresses the transcript when it nears the model's context limit
4. Lets the model continue unprompted when it says it is not done
5. Turns backend failures into events instead of exceptions
"""

import inspect
import json
import uuid
from dataclasses import replace
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence, Union

import structlog

from ..config import Settings, get_settings
from ..errors import (
    AuthenticationError,
    BackendError,
    MalformedResponse,
    OperationCancelled,
    RateLimitError,
    UnsupportedOperation,
)
from ..llm import BaseLLM, GenerationConfig, LLMRequest, LLMResponse, Message, Part, create_llm
from ..tools import ToolRegistry
from .cancellation import CancellationToken
from .compression import CompressionRecord, compress_transcript
from .environment import build_environment_context, get_core_system_prompt, preamble_messages
from .events import AgentEvent, ChatCompressedEvent, ErrorEvent, UserCancelledEvent
from .next_speaker import check_next_speaker
from .retry import RetryOptions, with_retry
from .transcript import Transcript
from .turn import Turn

CONTINUE_PROMPT = "Please continue."

# (current_model, fallback_model) -> accept?
FallbackHandler = Callable[[str, str], Union[bool, Awaitable[bool]]]


class ConversationOrchestrator:
    """Drives one chat session against a single backend adapter.

    Not safe for concurrent use: one `send_message_stream` at a time.
    """

    def __init__(
        self,
        llm: BaseLLM | None = None,
        tool_registry: ToolRegistry | None = None,
        settings: Settings | None = None,
        logger: Any = None,
        fallback_handler: FallbackHandler | None = None,
        session_id: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm or create_llm(settings=self.settings)
        self.tool_registry = tool_registry or ToolRegistry()
        self.fallback_handler = fallback_handler
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.log = (logger or structlog.get_logger()).bind(
            session_id=self.session_id,
            provider=self.llm.provider_name,
            model=self.llm.model,
        )

        self.retry_options = RetryOptions(
            max_attempts=self.settings.retry_max_attempts,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
        )
        self.system_prompt = get_core_system_prompt(self.settings.user_memory)

        self.transcript = Transcript()
        self._preamble: Message | None = None
        self._remaining_session_turns = self.settings.max_session_turns
        self._fatal_error: AuthenticationError | None = None
        self._busy = False

    @property
    def model(self) -> str:
        return self.llm.model

    @property
    def remaining_session_turns(self) -> int:
        return self._remaining_session_turns

    @property
    def initialized(self) -> bool:
        return self._preamble is not None

    async def initialize(self, cancel: CancellationToken | None = None) -> None:
        """Build the environment preamble and seed the transcript with it."""
        context = await build_environment_context(self.settings, self.tool_registry, cancel, self.log)
        messages = preamble_messages(context)
        self._preamble = messages[0]
        self.transcript.replace(messages)
        self.log.info("Session initialized", tools=self.tool_registry.list_tools())

    async def reset(self, cancel: CancellationToken | None = None) -> None:
        """Start over: fresh preamble, full budgets, fatal state cleared."""
        self.transcript.clear()
        self.transcript.compression_count = 0
        self._remaining_session_turns = self.settings.max_session_turns
        self._fatal_error = None
        await self.initialize(cancel)
        self.log.info("Session reset")

    # History access

    def get_history(self, curated: bool = False) -> list[Message]:
        return self.transcript.snapshot(curated=curated)

    def set_history(self, messages: Sequence[Message]) -> None:
        self.transcript.replace(messages)

    def add_history(self, message: Message) -> None:
        self.transcript.append(message)

    # Backend helpers

    def _content_config(self) -> GenerationConfig:
        return GenerationConfig(
            system_instruction=self.system_prompt,
            tools=self.tool_registry.list_declarations(),
        )

    async def _handle_fallback(self, error: RateLimitError) -> str | None:
        """Offer the caller a cheaper model after persistent rate limiting."""
        if self.settings.auth_type != "login" or self.fallback_handler is None:
            return None

        current = self.llm.model
        fallback = self.llm.fallback_model
        if not fallback or current == fallback:
            return None

        try:
            accepted = self.fallback_handler(current, fallback)
            if inspect.isawaitable(accepted):
                accepted = await accepted
        except Exception as e:
            self.log.warning("Fallback handler failed", error=str(e))
            return None

        if not accepted:
            return None

        self.llm.model = fallback
        self.log = self.log.bind(model=fallback)
        self.log.warning("Switched to fallback model", previous=current, model=fallback, error=error.message)
        return fallback

    async def _retry(self, call, cancel: CancellationToken | None = None):
        return await with_retry(
            call,
            self.retry_options,
            on_persistent_failure=self._handle_fallback,
            cancel=cancel,
            log=self.log,
        )

    async def try_compress(
        self,
        force: bool = False,
        cancel: CancellationToken | None = None,
    ) -> CompressionRecord | None:
        """Compress the transcript if it is near the context limit.

        Failures are logged and leave the transcript as it was.
        """
        if self._preamble is None:
            await self.initialize(cancel)
        try:
            return await compress_transcript(
                self.llm,
                self.transcript,
                self._preamble,
                force=force,
                threshold=self.settings.compression_threshold,
                retry_options=self.retry_options,
                on_persistent_failure=self._handle_fallback,
                cancel=cancel,
                log=self.log,
            )
        except BackendError as e:
            self.log.warning("Compression failed, continuing uncompressed", kind=e.kind, error=e.message)
        except OperationCancelled:
            self.log.info("Compression cancelled")
        return None

    async def generate_json(
        self,
        contents: Sequence[Message],
        schema: dict[str, Any],
        cancel: CancellationToken | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        """One schema-constrained completion, parsed into a dict."""
        if not self.llm.supports_json:
            raise UnsupportedOperation(
                f"{self.llm.provider_name} does not support JSON generation",
                provider=self.llm.provider_name,
            )

        request = LLMRequest(
            messages=list(contents),
            config=GenerationConfig(
                temperature=0.0,
                top_p=1.0,
                system_instruction=self.system_prompt,
                response_schema=schema,
            ),
            model=model or self.llm.fallback_model or None,
        )
        response = await self._retry(lambda: self.llm.generate(request), cancel)

        text = response.content.strip()
        if not text:
            raise MalformedResponse("API returned an empty response for generate_json.", provider=self.llm.provider_name)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedResponse(
                f"Failed to parse API response as JSON: {e}",
                provider=self.llm.provider_name,
                details={"response": text[:500]},
            ) from e
        if not isinstance(parsed, dict):
            raise MalformedResponse("Expected a JSON object", provider=self.llm.provider_name)
        return parsed

    async def generate_content(
        self,
        contents: Sequence[Message],
        config: GenerationConfig | None = None,
        cancel: CancellationToken | None = None,
    ) -> LLMResponse:
        """One non-streaming completion outside the transcript."""
        config = config or GenerationConfig()
        if config.system_instruction is None:
            config = replace(config, system_instruction=self.system_prompt)
        request = LLMRequest(messages=list(contents), config=config)
        return await self._retry(lambda: self.llm.generate(request), cancel)

    async def generate_embedding(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self.llm.embed(texts)

    # Turn loop

    def _user_message(self, message: Union[str, Sequence[Part]]) -> Message:
        if isinstance(message, str):
            return Message.user(message)
        return Message(role="user", parts=list(message))

    async def send_message_stream(
        self,
        message: Union[str, Sequence[Part]],
        cancel: CancellationToken | None = None,
        force_compress: bool = False,
    ) -> AsyncIterator[AgentEvent]:
        """Send a user message and stream the session's events.

        The stream ends normally once the model hands the floor back to the
        user or a budget runs out. UserCancelled and Error are terminal and
        at most one of them is emitted.
        """
        if self._busy:
            raise RuntimeError("A message is already being processed in this session")
        self._busy = True
        try:
            async for event in self._run(message, cancel or CancellationToken(), force_compress):
                yield event
        finally:
            self._busy = False

    async def _compress_event(self, cancel: CancellationToken, force: bool = False) -> ChatCompressedEvent | None:
        record = await self.try_compress(force, cancel)
        if record is None:
            return None
        return ChatCompressedEvent(
            original_token_count=record.original_token_count,
            new_token_count=record.new_token_count,
        )

    async def _run(
        self,
        message: Union[str, Sequence[Part]],
        cancel: CancellationToken,
        force_compress: bool,
    ) -> AsyncIterator[AgentEvent]:
        if self._fatal_error is not None:
            yield ErrorEvent(message=self._fatal_error.message, kind=self._fatal_error.kind)
            return

        if self._preamble is None:
            await self.initialize(cancel)

        compressed = await self._compress_event(cancel, force_compress)
        if compressed is not None:
            yield compressed

        if cancel.cancelled:
            yield UserCancelledEvent()
            return

        self.transcript.append(self._user_message(message))
        tool_budget = self.settings.max_tool_iterations
        after_tools = False

        while True:
            if self._remaining_session_turns <= 0:
                self.log.warning("Session turn limit reached", max_session_turns=self.settings.max_session_turns)
                return
            if tool_budget <= 0:
                self.log.warning("Tool iteration limit reached", max_tool_iterations=self.settings.max_tool_iterations)
                return
            if cancel.cancelled:
                yield UserCancelledEvent()
                return

            if after_tools:
                # A snapshot folds the tool exchange away, so the model needs a prompt to resume
                after_tools = False
                compressed = await self._compress_event(cancel)
                if compressed is not None:
                    yield compressed
                    self.transcript.add_user_message(CONTINUE_PROMPT)

            self._remaining_session_turns -= 1
            tool_budget -= 1

            request = LLMRequest(messages=self.transcript.snapshot(), config=self._content_config())
            turn = Turn(
                self.llm,
                request,
                retry_options=self.retry_options,
                on_persistent_failure=self._handle_fallback,
                log=self.log,
            )
            async for event in turn.run(cancel):
                yield event

            if turn.error is not None:
                if isinstance(turn.error, AuthenticationError):
                    self._fatal_error = turn.error
                    self.log.error("Authentication failed, session halted")
                return
            if turn.cancelled:
                return

            if turn.model_message is None:
                return
            self.transcript.append(turn.model_message)

            if turn.pending_tool_calls:
                async for event in turn.dispatch_tools(self.tool_registry, cancel):
                    yield event
                self.transcript.add_tool_results(turn.tool_results)
                if turn.cancelled:
                    return
                after_tools = True
                continue

            if not (self.settings.next_speaker_check and self.llm.supports_json):
                return

            try:
                verdict = await check_next_speaker(
                    self.transcript.snapshot(),
                    self.generate_json,
                    cancel,
                    self.log,
                )
            except OperationCancelled:
                yield UserCancelledEvent()
                return

            if verdict is None or verdict["next_speaker"] != "model":
                return

            self.log.info("Model continues unprompted", reasoning=verdict["reasoning"])
            compressed = await self._compress_event(cancel)
            if compressed is not None:
                yield compressed
            self.transcript.add_user_message(CONTINUE_PROMPT)

    async def send_message(
        self,
        message: Union[str, Sequence[Part]],
        cancel: CancellationToken | None = None,
    ) -> list[AgentEvent]:
        """Collect every event for one user message."""
        return [event async for event in self.send_message_stream(message, cancel)]
