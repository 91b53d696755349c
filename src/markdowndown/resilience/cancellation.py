"""Caller-supplied cancellation and deadlines."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional


class CancellationToken:
    """
    Cooperative cancellation with an optional deadline.

    The retry executor checks the token before every attempt and wakes
    from backoff sleeps as soon as it is cancelled.

    Example:
        token = CancellationToken.with_timeout(30)
        doc = await orchestrator.convert_url(url, token=token)

        # elsewhere
        token.cancel()
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            deadline: Absolute time (in ``clock`` units) after which the
                token counts as cancelled
            clock: Monotonic clock used to evaluate the deadline
        """
        self._deadline = deadline
        self._clock = clock
        self._event = asyncio.Event()

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> CancellationToken:
        return cls(deadline=clock() + seconds, clock=clock)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancel_requested(self) -> bool:
        """True if ``cancel()`` was called."""
        return self._event.is_set()

    @property
    def deadline_passed(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def cancelled(self) -> bool:
        """True if cancelled explicitly or the deadline has passed."""
        return self.cancel_requested or self.deadline_passed

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait up to ``timeout`` seconds (forever if None) for ``cancel()``.

        Returns:
            True if the token was cancelled during (or before) the wait
        """
        if self.cancel_requested:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True
