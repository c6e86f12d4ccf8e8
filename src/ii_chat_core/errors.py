"""
Error taxonomy shared by the provider adapters and the orchestrator.

Adapters translate SDK-specific exceptions into these types at their
boundary so the rest of the core never inspects a provider's own errors.
"""

from typing import Any


class BackendError(Exception):
    """Base error for failures reported by an LLM backend.

    Attributes:
        kind: Categorized error kind for programmatic handling
        message: Human-readable error message
        provider: The provider that raised the error (gemini, claude)
        retryable: Whether the retry policy may try the call again
        details: Additional error context
    """

    kind: str = "api"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for logging."""
        return {
            "kind": self.kind,
            "message": self.message,
            "provider": self.provider,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.provider}:{self.kind}: {self.message})"


class AuthenticationError(BackendError):
    """Credentials were rejected. Fatal to the session."""

    kind = "auth"


class RateLimitError(BackendError):
    """The backend throttled the request (HTTP 429 / quota exhausted)."""

    kind = "rate_limit"
    retryable = True


class TransportError(BackendError):
    """Network-level failure, timeout, or transient server error."""

    kind = "transport"
    retryable = True


class MalformedResponse(BackendError):
    """The backend returned data the normalizer cannot interpret."""

    kind = "malformed"


class UnsupportedOperation(BackendError):
    """The backend does not offer the requested capability."""

    kind = "unsupported"


class ToolExecutionError(Exception):
    """A tool failed or could not be found."""

    def __init__(self, message: str, tool_name: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name


class OperationCancelled(Exception):
    """The caller's cancellation token fired while waiting."""
