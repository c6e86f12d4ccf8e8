"""
Tests for transcript compression.
"""

import pytest

from conftest import ScriptedLLM
from ii_chat_core.agent.compression import (
    COMPRESSION_PROMPT,
    COMPRESSION_REQUEST,
    compress_transcript,
    should_compress,
)
from ii_chat_core.agent.transcript import Transcript
from ii_chat_core.errors import MalformedResponse
from ii_chat_core.llm.base import Message

SNAPSHOT = "<state_snapshot><overall_goal>Refactor the parser</overall_goal></state_snapshot>"


def build_transcript() -> tuple[Transcript, Message]:
    preamble = Message.user("environment context")
    transcript = Transcript([
        preamble,
        Message.model("Got it."),
        Message.user("Please refactor the parser."),
        Message.model("Done with step one."),
    ])
    return transcript, preamble


def test_should_compress():
    assert should_compress(700, 1000, 0.7)
    assert not should_compress(699, 1000, 0.7)
    assert should_compress(1, 1000, 0.7, force=True)


@pytest.mark.asyncio
async def test_empty_transcript_is_never_compressed():
    llm = ScriptedLLM(responses=[SNAPSHOT])

    record = await compress_transcript(llm, Transcript(), Message.user("ctx"), force=True)

    assert record is None
    assert llm.generate_requests == []


@pytest.mark.asyncio
async def test_below_threshold_is_left_alone():
    llm = ScriptedLLM(responses=[SNAPSHOT], token_counts=[100], context_limit=1000)
    transcript, preamble = build_transcript()

    record = await compress_transcript(llm, transcript, preamble)

    assert record is None
    assert len(transcript) == 4
    assert llm.generate_requests == []


@pytest.mark.asyncio
async def test_compresses_to_preamble_and_snapshot():
    llm = ScriptedLLM(responses=[SNAPSHOT], token_counts=[800, 40], context_limit=1000)
    transcript, preamble = build_transcript()

    record = await compress_transcript(llm, transcript, preamble)

    assert record.original_token_count == 800
    assert record.new_token_count == 40
    assert record.new_token_count < record.original_token_count

    history = transcript.snapshot()
    assert len(history) == 2
    assert history[0] == preamble
    assert history[1].role == "model"
    assert history[1].text == SNAPSHOT
    assert transcript.compression_count == 1

    request = llm.generate_requests[0]
    assert request.config.system_instruction == COMPRESSION_PROMPT
    assert request.messages[-1].text == COMPRESSION_REQUEST
    assert len(request.messages) == 5


@pytest.mark.asyncio
async def test_forced_compression_ignores_threshold():
    llm = ScriptedLLM(responses=[SNAPSHOT], token_counts=[10, 5], context_limit=1000)
    transcript, preamble = build_transcript()

    record = await compress_transcript(llm, transcript, preamble, force=True)

    assert record is not None
    assert len(transcript) == 2


@pytest.mark.asyncio
async def test_empty_summary_leaves_transcript_untouched():
    llm = ScriptedLLM(responses=["   "], token_counts=[900], context_limit=1000)
    transcript, preamble = build_transcript()

    with pytest.raises(MalformedResponse):
        await compress_transcript(llm, transcript, preamble)

    assert len(transcript) == 4
    assert transcript.compression_count == 0


@pytest.mark.asyncio
async def test_compression_reduces_estimated_tokens():
    """With the character estimate, a short snapshot lowers token pressure."""
    llm = ScriptedLLM(responses=[SNAPSHOT], context_limit=2000)
    preamble = Message.user("environment context")
    transcript = Transcript([preamble, Message.model("Got it.")])
    for i in range(20):
        transcript.add_user_message(f"Step {i}: " + "details " * 40)
        transcript.add_model_message("Acknowledged. " * 20)
    before = transcript.estimate_tokens()

    record = await compress_transcript(llm, transcript, preamble)

    assert record.original_token_count == before
    assert record.new_token_count == transcript.estimate_tokens()
    assert record.new_token_count <= record.original_token_count
