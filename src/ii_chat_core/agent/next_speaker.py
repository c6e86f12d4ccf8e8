"""
Decide who should speak after the model finishes a turn without tool calls.

Needs a schema-constrained JSON completion, so it only runs on adapters
that advertise `supports_json`.
"""

from typing import Any, Awaitable, Callable, Literal, Sequence, TypedDict

import structlog

from ..errors import BackendError
from ..llm.base import Message
from .cancellation import CancellationToken

logger = structlog.get_logger()

CHECK_PROMPT = """Analyze *only* the content and structure of your immediately preceding response (your last turn in the conversation history). Based *strictly* on that response, determine who should logically speak next: the 'user' or the 'model' (you).

**Decision Rules (apply in order):**
1. **Model Continues:** If your last response explicitly states an immediate next action *you* intend to take (e.g., "Next, I will...", "Now I'll process...", "Moving on to analyze..."), OR if the response seems clearly incomplete (cut off mid-thought without a natural conclusion), then the **'model'** should speak next.
2. **Question to User:** If your last response ends with a direct question specifically addressed *to the user*, then the **'user'** should speak next.
3. **Waiting for User:** If your last response completed a thought, statement, or task *and* does not meet the criteria for Rule 1 or Rule 2, it implies a pause expecting user input. In this case, the **'user'** should speak next.

Respond *only* in JSON format according to the provided schema."""

RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "reasoning": {
            "type": "string",
            "description": "Brief explanation justifying the 'next_speaker' choice based *strictly* on the applicable rule and the content/structure of the preceding turn.",
        },
        "next_speaker": {
            "type": "string",
            "enum": ["user", "model"],
            "description": "Who should speak next based *only* on the preceding turn and the decision rules.",
        },
    },
    "required": ["reasoning", "next_speaker"],
}


class NextSpeakerResponse(TypedDict):
    reasoning: str
    next_speaker: Literal["user", "model"]


JsonCall = Callable[[Sequence[Message], dict[str, Any], CancellationToken | None], Awaitable[dict[str, Any]]]


async def check_next_speaker(
    history: Sequence[Message],
    generate_json: JsonCall,
    cancel: CancellationToken | None = None,
    log: Any = None,
) -> NextSpeakerResponse | None:
    """Ask the model whether it intends to keep going.

    `history` is the full transcript: the shortcut rules look at its last
    message as stored, and the JSON query sees it with empty model
    messages dropped. Returns None when the history is empty or the
    check fails, which callers treat as "the user speaks next".
    """
    log = log or logger
    if not history:
        return None

    last = history[-1]
    if last.role == "user" and last.tool_results:
        return {
            "reasoning": "The last message was a tool result, so the model should take the next turn to process it.",
            "next_speaker": "model",
        }
    if last.role == "model" and last.is_empty:
        return {
            "reasoning": "The last message was a filler model message with no content, so the model should speak next.",
            "next_speaker": "model",
        }
    if last.role != "model":
        return None

    curated = [m for m in history if not (m.role == "model" and m.is_empty)]
    contents = curated + [Message.user(CHECK_PROMPT)]
    try:
        parsed = await generate_json(contents, RESPONSE_SCHEMA, cancel)
    except BackendError as e:
        log.warning("Next speaker check failed", error=e.message)
        return None

    next_speaker = parsed.get("next_speaker") if isinstance(parsed, dict) else None
    if next_speaker not in ("user", "model"):
        log.warning("Next speaker check returned an invalid answer", response=parsed)
        return None

    return {"reasoning": str(parsed.get("reasoning", "")), "next_speaker": next_speaker}
