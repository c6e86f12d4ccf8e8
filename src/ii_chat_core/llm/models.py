"""
Model identifiers and context limits.
"""

DEFAULT_GEMINI_MODEL = "gemini-2.5-pro"
DEFAULT_GEMINI_FLASH_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_EMBEDDING_MODEL = "gemini-embedding-001"

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-20250514"
CLAUDE_HAIKU_MODEL = "claude-3-5-haiku-20241022"

DEFAULT_TOKEN_LIMIT = 1_048_576

# Gemini names configured against Claude are mapped to the closest tier
GEMINI_TO_CLAUDE = {
    "gemini-2.5-pro": DEFAULT_CLAUDE_MODEL,
    "gemini-2.5-flash": CLAUDE_HAIKU_MODEL,
    "gemini-pro": DEFAULT_CLAUDE_MODEL,
    "gemini-flash": CLAUDE_HAIKU_MODEL,
}


def token_limit(model: str) -> int:
    """Get the context window size for a model."""
    if model.startswith("claude-"):
        return 200_000
    if model.startswith("gemini-1.5-pro"):
        return 2_097_152
    if model.startswith(("gemini-1.5-flash", "gemini-2.5", "gemini-2.0")):
        return 1_048_576
    return DEFAULT_TOKEN_LIMIT


def map_claude_model(model: str) -> str:
    """Map a configured model name onto a Claude model identifier."""
    if model.startswith("claude-"):
        return model
    if model in GEMINI_TO_CLAUDE:
        return GEMINI_TO_CLAUDE[model]
    if "flash" in model:
        return CLAUDE_HAIKU_MODEL
    return DEFAULT_CLAUDE_MODEL
