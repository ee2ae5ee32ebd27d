"""Cooperative cancellation token.

claude-code-provider runtime module v0.1.0

A token is created by the caller and attached to a request. Cancelling it
removes a queued request from the slot pool, or terminates the running
process group of an admitted one. The token is single-shot: once cancelled
it stays cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

__all__ = [
    "CancellationToken",
]

logger = logging.getLogger(__name__)

CancelCallback = Callable[[str | None], None]


class CancellationToken:
    """Single-shot cancellation signal shared between caller and runtime.

    Callbacks run synchronously inside ``cancel()`` on the event loop thread.
    A callback registered after cancellation runs immediately.

    Example:
        token = CancellationToken()
        stream = await model.stream(prompt, cancellation=token)
        ...
        token.cancel("user pressed stop")
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[CancelCallback] = []
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Cancel the token.

        Args:
            reason: Optional human readable reason

        Returns:
            True if this call cancelled the token, False if it was already cancelled
        """
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        logger.debug(f"Cancellation requested reason={reason!r}")

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

        if self._event is not None:
            self._event.set()
        return True

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Register a callback fired on cancellation.

        Args:
            callback: Called with the cancellation reason

        Returns:
            A function that unregisters the callback (no-op after firing)
        """
        if self._cancelled:
            callback(self._reason)
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return remove

    async def wait(self) -> str | None:
        """Wait until the token is cancelled and return the reason."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()
        return self._reason

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled}, reason={self._reason!r})"
