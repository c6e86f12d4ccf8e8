"""
Tests for the Gemini adapter. The google-generativeai module is replaced
with a MagicMock so no network calls are made.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from ii_chat_core import errors
from ii_chat_core.llm.base import (
    Done,
    FinishReason,
    GenerationConfig,
    LLMRequest,
    Message,
    TextDelta,
    ToolCallComplete,
    ToolCallPart,
    ToolCallStart,
    ToolDefinition,
    ToolResultPart,
)
from ii_chat_core.llm.google import GeminiLLM


def text_part(text):
    return SimpleNamespace(text=text, function_call=None)


def call_part(name, args):
    return SimpleNamespace(text="", function_call=SimpleNamespace(name=name, args=args))


def response(*parts, finish="STOP", usage=(0, 0)):
    return SimpleNamespace(
        candidates=[SimpleNamespace(
            finish_reason=SimpleNamespace(name=finish),
            content=SimpleNamespace(parts=list(parts)),
        )],
        usage_metadata=SimpleNamespace(prompt_token_count=usage[0], candidates_token_count=usage[1]),
    )


class FakeStreamResponse:
    def __init__(self, chunks):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


@pytest.fixture
def genai():
    module = MagicMock()
    module.GenerativeModel.return_value.generate_content_async = AsyncMock()
    return module


@pytest.fixture
def llm(genai):
    return GeminiLLM(api_key="test-key", client=genai)


def test_convert_messages(llm):
    messages = [
        Message.user("list files"),
        Message(role="model", parts=[ToolCallPart(id="c1", name="list_files", args={"path": "."})]),
        Message(role="user", parts=[ToolResultPart(tool_call_id="c1", name="list_files", result="a.txt")]),
        Message.model(""),
    ]

    contents = llm._convert_messages(messages)

    assert contents == [
        {"role": "user", "parts": [{"text": "list files"}]},
        {"role": "model", "parts": [{"function_call": {"name": "list_files", "args": {"path": "."}}}]},
        {"role": "user", "parts": [{"function_response": {"name": "list_files", "response": {"result": "a.txt"}}}]},
    ]


def test_convert_tools_cleans_schema(llm):
    tool = ToolDefinition(
        name="read_file",
        description="Read a file",
        parameters={
            "$schema": "http://json-schema.org/draft-07/schema#",
            "type": "object",
            "additionalProperties": False,
            "properties": {"path": {"type": "string", "minLength": 1, "description": "File path"}},
            "required": ["path"],
        },
    )

    declarations = llm._convert_tools([tool])[0]["function_declarations"]

    assert declarations[0]["parameters"] == {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "File path"}},
        "required": ["path"],
    }


@pytest.mark.asyncio
async def test_generate(llm, genai):
    model = genai.GenerativeModel.return_value
    model.generate_content_async.return_value = response(text_part("Hello"), usage=(3, 2))

    result = await llm.generate(LLMRequest(
        messages=[Message.user("hi")],
        config=GenerationConfig(system_instruction="Be brief."),
    ))

    assert result.content == "Hello"
    assert result.finish_reason == FinishReason.STOP
    assert result.input_tokens == 3
    kwargs = genai.GenerativeModel.call_args.kwargs
    assert kwargs["model_name"] == "gemini-2.5-pro"
    assert kwargs["system_instruction"] == "Be brief."
    assert "response_mime_type" not in kwargs["generation_config"]


@pytest.mark.asyncio
async def test_generate_json_mode(llm, genai):
    model = genai.GenerativeModel.return_value
    model.generate_content_async.return_value = response(text_part('{"next_speaker": "user"}'))

    await llm.generate(LLMRequest(
        messages=[Message.user("who speaks?")],
        config=GenerationConfig(response_schema={"type": "object", "properties": {}}),
        model="gemini-2.5-flash",
    ))

    kwargs = genai.GenerativeModel.call_args.kwargs
    assert kwargs["model_name"] == "gemini-2.5-flash"
    assert kwargs["generation_config"]["response_mime_type"] == "application/json"


@pytest.mark.asyncio
async def test_generate_tool_call_gets_an_id(llm, genai):
    model = genai.GenerativeModel.return_value
    model.generate_content_async.return_value = response(call_part("list_files", {"path": "src"}))

    result = await llm.generate(LLMRequest(messages=[Message.user("ls src")]))

    call = result.tool_calls[0]
    assert call.name == "list_files"
    assert call.args == {"path": "src"}
    assert call.id.startswith("list_files-")
    assert result.finish_reason == FinishReason.TOOL_CALLS


@pytest.mark.asyncio
async def test_stream(llm, genai):
    model = genai.GenerativeModel.return_value
    model.generate_content_async.return_value = FakeStreamResponse([
        response(text_part("Checking "), finish=None),
        response(text_part("now."), call_part("list_files", {}), usage=(10, 4)),
    ])

    chunks = [c async for c in llm.stream(LLMRequest(messages=[Message.user("ls")]))]

    assert chunks[0] == TextDelta("Checking ")
    assert chunks[1] == TextDelta("now.")
    assert isinstance(chunks[2], ToolCallStart)
    assert isinstance(chunks[3], ToolCallComplete)
    assert chunks[3].call.id == chunks[2].id
    assert chunks[4] == Done(FinishReason.TOOL_CALLS, input_tokens=10, output_tokens=4)
    assert model.generate_content_async.call_args.kwargs["stream"] is True


@pytest.mark.parametrize(
    "sdk_error, expected",
    [
        (google_exceptions.ResourceExhausted("quota"), errors.RateLimitError),
        (google_exceptions.Unauthenticated("no key"), errors.AuthenticationError),
        (google_exceptions.PermissionDenied("forbidden"), errors.AuthenticationError),
        (google_exceptions.ServiceUnavailable("down"), errors.TransportError),
        (google_exceptions.InvalidArgument("bad"), errors.BackendError),
    ],
)
@pytest.mark.asyncio
async def test_errors_are_translated(llm, genai, sdk_error, expected):
    genai.GenerativeModel.return_value.generate_content_async.side_effect = sdk_error

    with pytest.raises(expected) as excinfo:
        await llm.generate(LLMRequest(messages=[Message.user("hi")]))

    assert type(excinfo.value) is expected
    assert excinfo.value.provider == "gemini"


@pytest.mark.asyncio
async def test_count_tokens(llm, genai):
    genai.GenerativeModel.return_value.count_tokens_async = AsyncMock(return_value=SimpleNamespace(total_tokens=42))

    assert await llm.count_tokens([Message.user("hello")]) == 42
    assert await llm.count_tokens([]) == 0


@pytest.mark.asyncio
async def test_embed(llm, genai):
    genai.embed_content_async = AsyncMock(return_value={"embedding": [[0.1, 0.2], [0.3, 0.4]]})

    vectors = await llm.embed(["a", "b"])

    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    assert genai.embed_content_async.call_args.kwargs["model"] == "models/gemini-embedding-001"
    assert await llm.embed([]) == []


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"embedding": [[0.1]]},
        {"embedding": [[0.1], []]},
    ],
)
@pytest.mark.asyncio
async def test_embed_validation(llm, genai, payload):
    genai.embed_content_async = AsyncMock(return_value=payload)

    with pytest.raises(errors.MalformedResponse):
        await llm.embed(["a", "b"])
