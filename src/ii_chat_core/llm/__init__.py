"""
LLM module for multi-provider model support.

Providers:
- Google Gemini (native SDK; multi-turn chat, JSON schema, token counting, embeddings)
- Anthropic Claude (native SDK; full message list resent on every call)
"""

from .base import (
    BaseLLM,
    Done,
    FinishReason,
    GenerationConfig,
    LLMRequest,
    LLMResponse,
    Message,
    Part,
    StreamChunk,
    TextDelta,
    TextPart,
    ToolCall,
    ToolCallArgsDelta,
    ToolCallComplete,
    ToolCallPart,
    ToolCallStart,
    ToolDefinition,
    ToolResultPart,
    estimate_tokens,
)
from .anthropic import ClaudeLLM
from .google import GeminiLLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "Done",
    "FinishReason",
    "GenerationConfig",
    "LLMRequest",
    "LLMResponse",
    "Message",
    "Part",
    "StreamChunk",
    "TextDelta",
    "TextPart",
    "ToolCall",
    "ToolCallArgsDelta",
    "ToolCallComplete",
    "ToolCallPart",
    "ToolCallStart",
    "ToolDefinition",
    "ToolResultPart",
    "estimate_tokens",
    "ClaudeLLM",
    "GeminiLLM",
    "create_llm",
]
