"""
Retry policy for backend calls.

Wraps a single call with bounded exponential backoff. Rate limiting and
transport failures are retried; everything else propagates at once.
When rate limiting persists, an optional hook may switch to another
model before one final attempt.
"""

import asyncio
import inspect
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from ..errors import BackendError, RateLimitError
from .cancellation import CancellationToken

logger = structlog.get_logger()

T = TypeVar("T")

# Called with the last RateLimitError; returns the model to fall back to, or None
PersistentFailureHook = Callable[[RateLimitError], Awaitable[str | None] | str | None]


@dataclass
class RetryOptions:
    """Backoff settings for with_retry()."""

    max_attempts: int = 5
    base_delay: float = 5.0
    max_delay: float = 30.0
    jitter: float = 0.3  # +/- fraction applied to each delay


def backoff_delay(attempt: int, options: RetryOptions) -> float:
    """Delay in seconds after the given failed attempt (1-indexed).

    The jitter stays below the doubling step, so successive delays
    never decrease.
    """
    delay = options.base_delay * (2 ** (attempt - 1))
    delay *= 1 + random.uniform(-options.jitter, options.jitter)
    return min(delay, options.max_delay)


async def _default_sleep(delay: float, cancel: CancellationToken | None) -> None:
    if cancel is not None:
        await cancel.sleep(delay)
    else:
        await asyncio.sleep(delay)


async def with_retry(
    call: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    on_persistent_failure: PersistentFailureHook | None = None,
    cancel: CancellationToken | None = None,
    sleep: Callable[[float, CancellationToken | None], Awaitable[None]] = _default_sleep,
    log: Any = None,
) -> T:
    """Execute `call`, retrying retryable backend errors with backoff.

    Args:
        call: Zero-argument coroutine factory; invoked once per attempt
        options: Attempt count and delay settings
        on_persistent_failure: Hook invoked once when rate limiting outlasts
            every attempt; a truthy return grants one final attempt
        cancel: Token observed during backoff delays
        sleep: Delay function, replaceable in tests
        log: Logger to use instead of the module logger

    Returns:
        The result of the first successful attempt.
    """
    options = options or RetryOptions()
    log = log or logger
    attempt = 0

    while True:
        attempt += 1
        try:
            return await call()
        except BackendError as e:
            if not e.retryable:
                raise

            if attempt >= options.max_attempts:
                if isinstance(e, RateLimitError) and on_persistent_failure is not None:
                    fallback = on_persistent_failure(e)
                    if inspect.isawaitable(fallback):
                        fallback = await fallback
                    if fallback:
                        log.warning(
                            "Persistent rate limiting, final attempt with fallback model",
                            model=fallback,
                            attempts=attempt,
                        )
                        return await call()
                log.error("Backend call failed after retries", attempts=attempt, error=e.message)
                raise

            delay = backoff_delay(attempt, options)
            log.warning(
                "Retrying backend call",
                attempt=attempt,
                max_attempts=options.max_attempts,
                delay=round(delay, 2),
                kind=e.kind,
                error=e.message,
            )
            await sleep(delay, cancel)
