"""
Configuration management for II-Chat-Core

Uses pydantic-settings for environment variable parsing and validation.
The orchestrator receives a Settings instance at construction and never
reads the environment itself.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .llm.models import (
    DEFAULT_CLAUDE_MODEL,
    DEFAULT_GEMINI_EMBEDDING_MODEL,
    DEFAULT_GEMINI_MODEL,
)

Provider = Literal["gemini", "claude"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Provider = "gemini"
    model: str = DEFAULT_GEMINI_MODEL
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 8192
    temperature: float = 0.0
    top_p: float = 1.0
    embedding_model: str = DEFAULT_GEMINI_EMBEDDING_MODEL


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "II-Chat-Core"
    debug: bool = False
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # Provider selection
    default_provider: Provider = "gemini"
    default_model: str = Field(default="", description="Override the provider's default model")
    auth_type: Literal["api_key", "login"] = Field(
        default="api_key",
        description="How credentials were obtained; model fallback only applies to 'login'",
    )

    # LLM Providers (API Keys)
    gemini_api_key: str = Field(default="", description="Google AI API key for Gemini")
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    anthropic_base_url: str | None = Field(default=None, description="Alternate Anthropic endpoint")

    # Generation defaults
    max_tokens: int = 8192
    temperature: float = 0.0
    top_p: float = 1.0
    embedding_model: str = DEFAULT_GEMINI_EMBEDDING_MODEL

    # Turn budgets
    max_session_turns: int = Field(default=100, description="Backend requests allowed per session")
    max_tool_iterations: int = Field(default=10, description="Backend requests allowed per user message")
    next_speaker_check: bool = Field(default=True, description="Let the model continue unprompted")

    # Compression
    compression_threshold: float = Field(
        default=0.7,
        description="Fraction of the model context limit that triggers compression",
    )

    # Retry policy
    retry_max_attempts: int = Field(default=5, description="Attempts before giving up on a backend call")
    retry_base_delay: float = Field(default=5.0, description="Initial backoff delay in seconds")
    retry_max_delay: float = Field(default=30.0, description="Upper bound for a single backoff delay")

    # Environment preamble
    working_dir: str = Field(default=".", description="Directory reported to the model")
    full_context: bool = Field(default=False, description="Send every workspace file in the preamble")
    user_memory: str = Field(default="", description="Extra context appended to the system prompt")

    @field_validator("compression_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("compression_threshold must be in (0, 1]")
        return v

    @field_validator("max_session_turns", "max_tool_iterations", "retry_max_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "gemini": self.gemini_api_key,
            "claude": self.anthropic_api_key,
        }

        model_map = {
            "gemini": DEFAULT_GEMINI_MODEL,
            "claude": DEFAULT_CLAUDE_MODEL,
        }

        base_url_map = {
            "gemini": None,
            "claude": self.anthropic_base_url,
        }

        return LLMConfig(
            provider=provider,  # type: ignore
            model=self.default_model or model_map.get(provider, DEFAULT_GEMINI_MODEL),
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
            embedding_model=self.embedding_model,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
