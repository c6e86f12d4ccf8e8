"""
Cooperative cancellation shared by every suspension point of a call.
"""

import asyncio

from ..errors import OperationCancelled


class CancellationToken:
    """A one-shot abort signal.

    Cancellation is cooperative: holders check `cancelled` between
    awaits, and `sleep()` returns early when the token fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")

    async def sleep(self, delay: float) -> None:
        """Wait for `delay` seconds, raising OperationCancelled if the token fires first."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()
