"""
LLM factory for creating provider instances.

Supports: Google Gemini (native SDK) and Anthropic Claude (native SDK).
"""

from typing import TYPE_CHECKING, Any

from .anthropic import ClaudeLLM
from .base import BaseLLM
from .google import GeminiLLM

if TYPE_CHECKING:
    from ..config import LLMConfig, Settings


def create_llm(
    config: "LLMConfig | None" = None,
    settings: "Settings | None" = None,
    logger: Any = None,
) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - gemini -> GeminiLLM (native google-generativeai SDK)
    - claude -> ClaudeLLM (native Anthropic SDK)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    provider = config.provider

    if provider == "gemini":
        return GeminiLLM(
            api_key=config.api_key,
            model=config.model,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            top_p=config.top_p,
            embedding_model=config.embedding_model,
            logger=logger,
        )
    elif provider == "claude":
        return ClaudeLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            top_p=config.top_p,
            logger=logger,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
