"""
Native Google Gemini LLM provider.

Uses the google-generativeai SDK directly, giving access to Gemini's
native function calling, token counting, embeddings and
schema-constrained JSON output.
"""

from collections.abc import Mapping
from typing import Any, AsyncIterator, Sequence

from ..errors import (
    AuthenticationError,
    BackendError,
    MalformedResponse,
    RateLimitError,
    TransportError,
)
from .base import (
    BaseLLM,
    Done,
    FinishReason,
    GenerationConfig,
    LLMRequest,
    LLMResponse,
    Message,
    StreamChunk,
    TextDelta,
    TextPart,
    ToolCall,
    ToolCallComplete,
    ToolCallPart,
    ToolCallStart,
    ToolDefinition,
    make_tool_call_id,
)
from .models import (
    DEFAULT_GEMINI_EMBEDDING_MODEL,
    DEFAULT_GEMINI_FLASH_MODEL,
    DEFAULT_GEMINI_MODEL,
)

# Keys the Gemini Schema type understands; anything else is rejected
_SCHEMA_KEYS = {"type", "format", "description", "nullable", "enum", "items", "properties", "required"}


def _to_plain(value: Any) -> Any:
    """Convert proto map/repeated composites into plain dicts and lists."""
    if isinstance(value, (str, bytes)):
        return value
    if isinstance(value, Mapping) or hasattr(value, "items"):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)) or hasattr(value, "__iter__"):
        return [_to_plain(v) for v in value]
    return value


def _clean_schema(schema: Any) -> Any:
    """Strip JSON Schema keywords that Gemini function declarations reject."""
    if not isinstance(schema, dict):
        return schema
    cleaned: dict[str, Any] = {}
    for key, value in schema.items():
        if key not in _SCHEMA_KEYS:
            continue
        if key == "properties":
            cleaned[key] = {name: _clean_schema(prop) for name, prop in value.items()}
        elif key == "items":
            cleaned[key] = _clean_schema(value)
        else:
            cleaned[key] = value
    return cleaned


class GeminiLLM(BaseLLM):
    """Native Google Gemini LLM provider."""

    supports_json = True
    fallback_model = DEFAULT_GEMINI_FLASH_MODEL

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        base_url: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.0,
        top_p: float = 1.0,
        logger: Any = None,
        embedding_model: str = DEFAULT_GEMINI_EMBEDDING_MODEL,
        client: Any = None,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature, top_p, logger)
        self.embedding_model = embedding_model
        self._client = client

    def _get_client(self):
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                import google.generativeai as genai
            except ImportError:
                raise ImportError(
                    "google-generativeai not installed. "
                    "Run: pip install google-generativeai"
                )
            genai.configure(api_key=self.api_key)
            self._client = genai
        return self._client

    @property
    def provider_name(self) -> str:
        return "gemini"

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert transcript messages to Gemini contents.

        Gemini uses 'user' and 'model' roles natively; function responses
        are matched to calls by name.
        """
        converted = []

        for msg in messages:
            parts: list[dict[str, Any]] = []
            for part in msg.parts:
                if isinstance(part, TextPart):
                    if part.text:
                        parts.append({"text": part.text})
                elif isinstance(part, ToolCallPart):
                    parts.append({
                        "function_call": {
                            "name": part.name,
                            "args": dict(part.args),
                        }
                    })
                else:
                    parts.append({
                        "function_response": {
                            "name": part.name,
                            "response": part.payload,
                        }
                    })

            if parts:
                converted.append({"role": msg.role, "parts": parts})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Gemini function declarations."""
        function_declarations = []

        for tool in tools:
            declaration: dict[str, Any] = {
                "name": tool.name,
                "description": tool.description,
            }
            params = _clean_schema(tool.parameters or {})
            if params.get("properties"):
                declaration["parameters"] = params
            function_declarations.append(declaration)

        return [{"function_declarations": function_declarations}]

    def _build_model(self, model_name: str, config: GenerationConfig):
        genai = self._get_client()

        generation_config: dict[str, Any] = {
            "max_output_tokens": config.max_output_tokens,
            "temperature": config.temperature,
            "top_p": config.top_p,
        }
        if config.response_schema is not None:
            generation_config["response_mime_type"] = "application/json"
            generation_config["response_schema"] = _clean_schema(config.response_schema)

        model_kwargs: dict[str, Any] = {
            "model_name": model_name,
            "generation_config": generation_config,
        }

        if config.system_instruction:
            model_kwargs["system_instruction"] = config.system_instruction

        if config.tools:
            model_kwargs["tools"] = self._convert_tools(config.tools)

        return genai.GenerativeModel(**model_kwargs)

    def _translate_error(self, error: Exception) -> BackendError:
        """Map a google-api-core exception onto the shared taxonomy."""
        from google.api_core import exceptions as google_exceptions

        message = f"Gemini API error: {error}"
        if isinstance(error, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
            return RateLimitError(message, provider=self.provider_name)
        if isinstance(error, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
            return AuthenticationError(message, provider=self.provider_name)
        if isinstance(
            error,
            (
                google_exceptions.ServiceUnavailable,
                google_exceptions.InternalServerError,
                google_exceptions.DeadlineExceeded,
                google_exceptions.RetryError,
                ConnectionError,
                TimeoutError,
            ),
        ):
            return TransportError(message, provider=self.provider_name)
        return BackendError(message, provider=self.provider_name)

    @staticmethod
    def _finish_reason(raw: Any, has_tool_calls: bool) -> FinishReason:
        name = getattr(raw, "name", raw)
        if has_tool_calls:
            return FinishReason.TOOL_CALLS
        if name == "STOP":
            return FinishReason.STOP
        return FinishReason.OTHER

    @staticmethod
    def _usage(response: Any) -> tuple[int, int]:
        metadata = getattr(response, "usage_metadata", None)
        if not metadata:
            return 0, 0
        return (
            getattr(metadata, "prompt_token_count", 0) or 0,
            getattr(metadata, "candidates_token_count", 0) or 0,
        )

    def _split_parts(self, response: Any) -> tuple[list[str], list[ToolCall], Any]:
        """Pull text, function calls and finish reason out of one response."""
        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        finish = None

        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return texts, tool_calls, finish

        candidate = candidates[0]
        finish = getattr(candidate, "finish_reason", None)
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            fc = getattr(part, "function_call", None)
            if fc and fc.name:
                tool_calls.append(ToolCall(
                    id=getattr(fc, "id", "") or make_tool_call_id(fc.name),
                    name=fc.name,
                    args=_to_plain(fc.args) if fc.args else {},
                ))
            elif getattr(part, "text", ""):
                texts.append(part.text)

        return texts, tool_calls, finish

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate a response from Gemini."""
        model_name, config = self._resolve(request)
        model = self._build_model(model_name, config)
        contents = self._convert_messages(request.messages)
        self.logger.debug("Gemini request", model=model_name, contents=len(contents))

        try:
            response = await model.generate_content_async(contents)
        except Exception as e:
            self.logger.error("Gemini API error", error=str(e))
            raise self._translate_error(e) from e

        texts, tool_calls, finish = self._split_parts(response)
        input_tokens, output_tokens = self._usage(response)
        self._record_usage(input_tokens, output_tokens)

        return LLMResponse(
            content="".join(texts),
            tool_calls=tool_calls,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model_name,
            finish_reason=self._finish_reason(finish, bool(tool_calls)),
            raw_response=response,
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """Stream a response from Gemini as normalized chunks."""
        model_name, config = self._resolve(request)
        model = self._build_model(model_name, config)
        contents = self._convert_messages(request.messages)
        self.logger.debug("Gemini stream request", model=model_name, contents=len(contents))

        try:
            response = await model.generate_content_async(contents, stream=True)
        except Exception as e:
            self.logger.error("Gemini streaming error", error=str(e))
            raise self._translate_error(e) from e

        finish = None
        saw_tool_call = False
        input_tokens = output_tokens = 0
        chunks = response.__aiter__()

        while True:
            try:
                chunk = await chunks.__anext__()
            except StopAsyncIteration:
                break
            except Exception as e:
                self.logger.error("Gemini streaming error", error=str(e))
                raise self._translate_error(e) from e

            texts, tool_calls, chunk_finish = self._split_parts(chunk)
            if chunk_finish:
                finish = chunk_finish
            chunk_in, chunk_out = self._usage(chunk)
            if chunk_in or chunk_out:
                input_tokens, output_tokens = chunk_in, chunk_out

            for text in texts:
                yield TextDelta(text)
            for call in tool_calls:
                saw_tool_call = True
                yield ToolCallStart(id=call.id, name=call.name)
                yield ToolCallComplete(call)

        self._record_usage(input_tokens, output_tokens)
        yield Done(
            finish_reason=self._finish_reason(finish, saw_tool_call),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def count_tokens(self, messages: Sequence[Message], model: str | None = None) -> int:
        """Count tokens with Gemini's native counting endpoint."""
        contents = self._convert_messages(messages)
        if not contents:
            return 0

        genai = self._get_client()
        counter = genai.GenerativeModel(model_name=model or self.model)
        try:
            result = await counter.count_tokens_async(contents)
        except Exception as e:
            self.logger.error("Gemini token count error", error=str(e))
            raise self._translate_error(e) from e

        return result.total_tokens

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed each text with the configured embedding model."""
        if not texts:
            return []

        genai = self._get_client()
        try:
            result = await genai.embed_content_async(
                model=f"models/{self.embedding_model}",
                content=texts,
            )
        except Exception as e:
            self.logger.error("Gemini embedding error", error=str(e))
            raise self._translate_error(e) from e

        embeddings = result.get("embedding") if isinstance(result, Mapping) else None
        if not embeddings:
            raise MalformedResponse("No embeddings found in API response.", provider=self.provider_name)
        if len(embeddings) != len(texts):
            raise MalformedResponse(
                f"API returned a mismatched number of embeddings. "
                f"Expected {len(texts)}, got {len(embeddings)}.",
                provider=self.provider_name,
            )

        vectors = []
        for index, values in enumerate(embeddings):
            if not values:
                raise MalformedResponse(
                    f"API returned an empty embedding for input text at index {index}",
                    provider=self.provider_name,
                )
            vectors.append(list(values))
        return vectors
