"""
Tests for the next-speaker check.
"""

from unittest.mock import AsyncMock

import pytest

from ii_chat_core.agent.next_speaker import CHECK_PROMPT, RESPONSE_SCHEMA, check_next_speaker
from ii_chat_core.errors import TransportError
from ii_chat_core.llm.base import Message, ToolCallPart, ToolResultPart


@pytest.mark.asyncio
async def test_empty_history():
    generate_json = AsyncMock()

    assert await check_next_speaker([], generate_json) is None
    generate_json.assert_not_called()


@pytest.mark.asyncio
async def test_pending_tool_result_goes_to_model():
    history = [
        Message(role="model", parts=[ToolCallPart(id="c1", name="ls")]),
        Message(role="user", parts=[ToolResultPart(tool_call_id="c1", name="ls", result="a")]),
    ]
    generate_json = AsyncMock()

    result = await check_next_speaker(history, generate_json)

    assert result["next_speaker"] == "model"
    generate_json.assert_not_called()


@pytest.mark.asyncio
async def test_empty_model_message_goes_to_model():
    result = await check_next_speaker([Message.user("hi"), Message.model("")], AsyncMock())

    assert result["next_speaker"] == "model"


@pytest.mark.asyncio
async def test_last_message_from_user():
    generate_json = AsyncMock()

    assert await check_next_speaker([Message.user("hi")], generate_json) is None
    generate_json.assert_not_called()


@pytest.mark.asyncio
async def test_asks_the_model():
    generate_json = AsyncMock(return_value={"reasoning": "Asked a question", "next_speaker": "user"})
    history = [Message.user("hi"), Message.model("Which file should I open?")]

    result = await check_next_speaker(history, generate_json)

    assert result == {"reasoning": "Asked a question", "next_speaker": "user"}
    contents, schema, cancel = generate_json.call_args.args
    assert contents[-1].text == CHECK_PROMPT
    assert len(contents) == 3
    assert schema is RESPONSE_SCHEMA
    assert cancel is None


@pytest.mark.asyncio
async def test_invalid_answer():
    generate_json = AsyncMock(return_value={"next_speaker": "nobody"})

    assert await check_next_speaker([Message.model("ok")], generate_json) is None


@pytest.mark.asyncio
async def test_backend_failure():
    generate_json = AsyncMock(side_effect=TransportError("offline"))

    assert await check_next_speaker([Message.model("ok")], generate_json) is None


@pytest.mark.asyncio
async def test_query_drops_empty_model_messages():
    generate_json = AsyncMock(return_value={"reasoning": "Done", "next_speaker": "user"})
    history = [
        Message.user("hi"),
        Message.model(""),
        Message.user("still there?"),
        Message.model("Yes."),
    ]

    await check_next_speaker(history, generate_json)

    contents = generate_json.call_args.args[0]
    assert [m.text for m in contents[:-1]] == ["hi", "still there?", "Yes."]
