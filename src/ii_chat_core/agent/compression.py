"""
Transcript compression.

When the transcript approaches the active model's context limit, the
model is asked for a structured state snapshot of the conversation so
far. The transcript is then replaced by exactly two messages: the
environment preamble and the snapshot.

Key points:
- Never fires on an empty transcript
- Fires when forced, or when the token count reaches the threshold
  fraction of the model's context limit
- Token counts go through the active adapter (native or estimated)
- Every backend call runs under the retry policy
"""

from dataclasses import dataclass
from typing import Any

import structlog

from ..errors import MalformedResponse
from ..llm.base import BaseLLM, GenerationConfig, LLMRequest, Message
from .cancellation import CancellationToken
from .retry import PersistentFailureHook, RetryOptions, with_retry
from .transcript import Transcript

logger = structlog.get_logger()

DEFAULT_COMPRESSION_THRESHOLD = 0.7  # Compress at 70% of the context limit

COMPRESSION_REQUEST = "First, reason in your scratchpad. Then, generate the <state_snapshot>."

COMPRESSION_PROMPT = """You are the component that summarizes internal chat history into a given structure.

When the conversation history grows too large, you will be invoked to distill the entire history into a concise, structured XML snapshot. This snapshot is CRITICAL, as it will become the agent's *only* memory of the past. The agent will resume its work based solely on this snapshot. All crucial details, plans, errors, and user directives MUST be preserved.

First, you will think through the entire history in a private <scratchpad>. Review the user's overall goal, the agent's actions, tool outputs, file modifications, and any unresolved questions. Identify every piece of information that is essential for future actions.

After your reasoning is complete, generate the final <state_snapshot> XML object. Be incredibly dense with information. Omit any irrelevant conversational filler.

The structure MUST be as follows:

<state_snapshot>
    <overall_goal>
        <!-- A single, concise sentence describing the user's high-level objective. -->
    </overall_goal>

    <key_knowledge>
        <!-- Crucial facts, conventions, and constraints the agent must remember. Use bullet points. -->
    </key_knowledge>

    <file_system_state>
        <!-- Files that have been created, read, modified, or deleted, with the relevant detail. -->
    </file_system_state>

    <recent_actions>
        <!-- A summary of the last few significant agent actions and their outcomes. -->
    </recent_actions>

    <current_plan>
        <!-- The agent's step-by-step plan, marking completed steps. -->
    </current_plan>
</state_snapshot>"""


@dataclass(frozen=True)
class CompressionRecord:
    """Token counts before and after one compression."""

    original_token_count: int
    new_token_count: int


def should_compress(
    token_count: int,
    context_limit: int,
    threshold: float = DEFAULT_COMPRESSION_THRESHOLD,
    force: bool = False,
) -> bool:
    """Decide whether a transcript of `token_count` tokens needs compressing."""
    return force or token_count >= threshold * context_limit


async def compress_transcript(
    llm: BaseLLM,
    transcript: Transcript,
    preamble: Message,
    force: bool = False,
    threshold: float = DEFAULT_COMPRESSION_THRESHOLD,
    retry_options: RetryOptions | None = None,
    on_persistent_failure: PersistentFailureHook | None = None,
    cancel: CancellationToken | None = None,
    log: Any = None,
) -> CompressionRecord | None:
    """Compress the transcript in place if it is large enough.

    Args:
        llm: Active adapter, used for counting and for the snapshot call
        transcript: History to compress; replaced only on success
        preamble: The synthetic user message that precedes the snapshot
        force: Compress regardless of the token count

    Returns:
        A CompressionRecord when compression happened, otherwise None.

    Raises:
        BackendError: A backend call failed; the transcript is untouched.
    """
    log = log or logger
    history = transcript.snapshot(curated=True)

    # Regardless of `force`, don't do anything if the history is empty.
    if not history:
        return None

    async def retried(call):
        return await with_retry(
            call,
            retry_options,
            on_persistent_failure=on_persistent_failure,
            cancel=cancel,
            log=log,
        )

    original_token_count = await retried(lambda: llm.count_tokens(history))
    context_limit = llm.context_limit

    if not should_compress(original_token_count, context_limit, threshold, force):
        return None

    log.info(
        "Starting transcript compression",
        message_count=len(history),
        token_count=original_token_count,
        context_limit=context_limit,
        forced=force,
    )

    request = LLMRequest(
        messages=history + [Message.user(COMPRESSION_REQUEST)],
        config=GenerationConfig(system_instruction=COMPRESSION_PROMPT),
    )
    response = await retried(lambda: llm.generate(request))

    summary = response.content.strip()
    if not summary:
        raise MalformedResponse(
            "Compression returned an empty state snapshot",
            provider=llm.provider_name,
        )

    compressed = [preamble, Message.model(summary)]
    new_token_count = await retried(lambda: llm.count_tokens(compressed))

    transcript.replace(compressed)
    transcript.compression_count += 1

    record = CompressionRecord(
        original_token_count=original_token_count,
        new_token_count=new_token_count,
    )
    log.info(
        "Compression complete",
        original_tokens=record.original_token_count,
        new_tokens=record.new_token_count,
        compression_count=transcript.compression_count,
    )
    return record
