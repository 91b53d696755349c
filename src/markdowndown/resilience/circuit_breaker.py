"""Per-endpoint circuit breaker."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlsplit

from ..errors import MarkdownError
from ..models.document import ContentSourceTag

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    """Mutable state for one circuit key."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: Optional[float] = None
    trial_in_flight: bool = False
    last_error: Optional[MarkdownError] = None


@dataclass(frozen=True)
class CircuitDecision:
    """Outcome of ``CircuitBreaker.before_call``."""

    allowed: bool
    reason: Optional[str] = None
    last_error: Optional[MarkdownError] = None
    retry_in: Optional[float] = None
    trial: bool = False

    @staticmethod
    def allow(trial: bool = False) -> CircuitDecision:
        return CircuitDecision(allowed=True, trial=trial)

    @staticmethod
    def deny(
        reason: str,
        last_error: Optional[MarkdownError] = None,
        retry_in: Optional[float] = None,
    ) -> CircuitDecision:
        return CircuitDecision(allowed=False, reason=reason, last_error=last_error, retry_in=retry_in)


def circuit_key(tag: ContentSourceTag, url: str) -> str:
    """
    Key a URL to its circuit.

    HTML pages get one circuit per host; every other source shares one
    circuit per tag since they all hit the same remote service.
    """
    if tag == ContentSourceTag.HTML:
        host = (urlsplit(url).hostname or "").lower()
        return f"{tag.value}:{host}"
    return tag.value


class CircuitBreaker:
    """
    Tracks consecutive failures per key and short-circuits failing services.

    State machine:
        CLOSED --failure x threshold--> OPEN
        OPEN --cooldown elapsed--> HALF_OPEN (exactly one trial attempt allowed)
        HALF_OPEN --success--> CLOSED
        HALF_OPEN --failure--> OPEN (cooldown restarts)

    The caller holding the trial (``CircuitDecision.trial``) must end it with
    ``record_result`` or ``release``, whatever way the call finishes.

    State changes are serialized with an asyncio.Lock. The check in
    ``before_call`` and the update in ``record_result`` are separate critical
    sections, so concurrent callers may let one extra attempt through past
    the threshold.

    Example:
        breaker = CircuitBreaker(failure_threshold=5, cooldown=60.0)

        decision = await breaker.before_call("github_issue")
        if decision.allowed:
            try:
                result = await call_service()
            except MarkdownError as e:
                await breaker.record_result("github_issue", success=False, error=e)
                raise
            except BaseException:
                if decision.trial:
                    await breaker.release("github_issue")
                raise
            await breaker.record_result("github_issue", success=True)
    """

    DEFAULT_FAILURE_THRESHOLD = 5
    DEFAULT_COOLDOWN = 60.0

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            failure_threshold: Consecutive failures that open a circuit
            cooldown: Seconds an open circuit waits before allowing a trial
            clock: Monotonic clock, injectable for tests
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if cooldown < 0:
            raise ValueError("cooldown must not be negative")
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._circuits: dict[str, CircuitStats] = {}
        self._lock = asyncio.Lock()

    def _stats(self, key: str) -> CircuitStats:
        stats = self._circuits.get(key)
        if stats is None:
            stats = self._circuits[key] = CircuitStats()
        return stats

    async def before_call(self, key: str, *, continuation: bool = False) -> CircuitDecision:
        """
        Decide whether a call for ``key`` may go ahead.

        Args:
            key: Circuit key (see ``circuit_key``)
            continuation: True when a call that was already admitted asks
                again before a retry. Only a closed circuit lets it through;
                a continuation never becomes the half-open trial.

        Returns:
            CircuitDecision.allow() or CircuitDecision.deny(reason). An
            allowed decision with ``trial`` set holds the half-open trial.
        """
        async with self._lock:
            stats = self._stats(key)

            if stats.state == CircuitState.CLOSED:
                return CircuitDecision.allow()

            if stats.state == CircuitState.HALF_OPEN:
                if not stats.trial_in_flight and not continuation:
                    stats.trial_in_flight = True
                    return CircuitDecision.allow(trial=True)
                return CircuitDecision.deny(
                    f"circuit '{key}' is half-open and a trial call is in progress",
                    last_error=stats.last_error,
                )

            # OPEN
            elapsed = self._clock() - (stats.opened_at or 0.0)
            if elapsed >= self.cooldown and not continuation:
                stats.state = CircuitState.HALF_OPEN
                stats.trial_in_flight = True
                logger.info(f"Circuit '{key}' half-open after {elapsed:.1f}s, allowing one trial call")
                return CircuitDecision.allow(trial=True)

            return CircuitDecision.deny(
                f"circuit '{key}' is open after {stats.consecutive_failures} consecutive failures",
                last_error=stats.last_error,
                retry_in=max(0.0, self.cooldown - elapsed),
            )

    async def record_result(
        self,
        key: str,
        success: bool,
        error: Optional[MarkdownError] = None,
    ) -> None:
        """
        Record the outcome of a call admitted by ``before_call``.

        Args:
            key: Circuit key
            success: Whether the call succeeded
            error: The failure, kept (as a copy) for fast-fail responses
                while open
        """
        async with self._lock:
            stats = self._stats(key)
            stats.trial_in_flight = False

            if success:
                if stats.state != CircuitState.CLOSED:
                    logger.info(f"Circuit '{key}' closed after successful call")
                stats.state = CircuitState.CLOSED
                stats.consecutive_failures = 0
                stats.opened_at = None
                stats.last_error = None
                return

            stats.consecutive_failures += 1
            if error is not None:
                # Later annotations on the caller's error must not leak in here
                stats.last_error = error.copy()

            if stats.state == CircuitState.HALF_OPEN:
                stats.state = CircuitState.OPEN
                stats.opened_at = self._clock()
                logger.warning(f"Circuit '{key}' re-opened: trial call failed")
            elif stats.state == CircuitState.CLOSED and stats.consecutive_failures >= self.failure_threshold:
                stats.state = CircuitState.OPEN
                stats.opened_at = self._clock()
                logger.warning(
                    f"Circuit '{key}' opened after {stats.consecutive_failures} consecutive failures"
                )

    async def release(self, key: str) -> None:
        """
        Give back a half-open trial without recording an outcome.

        Used when the admitted call ended with an error that says nothing
        about the service's health (bad credentials, unparseable content).
        """
        async with self._lock:
            stats = self._stats(key)
            stats.trial_in_flight = False

    def state(self, key: str) -> CircuitState:
        """Current state for ``key`` (a snapshot, not locked)."""
        stats = self._circuits.get(key)
        return stats.state if stats else CircuitState.CLOSED

    def failure_count(self, key: str) -> int:
        stats = self._circuits.get(key)
        return stats.consecutive_failures if stats else 0

    async def reset(self, key: Optional[str] = None) -> None:
        """Forget the state for ``key``, or for every key."""
        async with self._lock:
            if key is None:
                self._circuits.clear()
            else:
                self._circuits.pop(key, None)

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        return {
            "circuits_tracked": len(self._circuits),
            "open": sum(1 for s in self._circuits.values() if s.state == CircuitState.OPEN),
            "half_open": sum(1 for s in self._circuits.values() if s.state == CircuitState.HALF_OPEN),
        }
