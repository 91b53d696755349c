"""Retry with exponential backoff around fallible async operations."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import (
    BackoffClass,
    ErrorContext,
    MarkdownError,
    NetworkError,
    NetworkErrorKind,
    RetryDecision,
    retry_decision,
    translate_exception,
    trips_breaker,
)
from ..models.document import ContentSourceTag
from ..models.events import ConversionEvent, EventEmitter, EventType
from .cancellation import CancellationToken
from .circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base: float, max_delay: Optional[float] = None) -> float:
    """
    Compute the backoff before retrying after ``attempt`` failed.

    Args:
        attempt: 1-based number of the attempt that just failed
        base: Base delay in seconds
        max_delay: Optional cap on the result

    Returns:
        ``base * 2 ** (attempt - 1)``, capped at ``max_delay``

    Example:
        >>> [backoff_delay(n, 1.0) for n in (1, 2, 3)]
        [1.0, 2.0, 4.0]
    """
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    delay = base * (2 ** (attempt - 1))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


class RetryExecutor:
    """
    Runs an operation up to ``max_attempts`` times.

    Only errors classified as retryable are retried; anything else is raised
    after the first failure. Attempts after the first ask the circuit
    breaker for permission, and a denial aborts with the breaker's reason.
    When the budget runs out the last error is raised unchanged and a
    single breaker failure is recorded.

    Sleep, clock and random source are injectable so tests never wait.

    Example:
        executor = RetryExecutor(breaker, max_attempts=3, base_delay=1.0)
        text = await executor.execute(
            lambda: client.fetch_text(url),
            key="html:example.com",
            url=url,
        )
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: Optional[float] = 30.0,
        jitter: float = 0.5,
        total_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.breaker = breaker
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.total_timeout = total_timeout
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    def compute_delay(self, attempt: int, error: MarkdownError, decision: RetryDecision) -> float:
        """Delay before the next attempt; server Retry-After wins when rate limited."""
        if decision.backoff_class == BackoffClass.RATE_LIMITED and error.retry_after is not None:
            return error.retry_after
        delay = backoff_delay(attempt, self.base_delay, self.max_delay)
        if self.jitter > 0:
            delay += self._rng.uniform(0, self.jitter)
        return delay

    def _timeout_error(self, url: str, source_tag: Optional[ContentSourceTag]) -> NetworkError:
        return NetworkError(
            NetworkErrorKind.TIMEOUT,
            ErrorContext(url=url, operation="convert", source_tag=source_tag, note="overall deadline exceeded"),
        )

    @staticmethod
    def _token_error(
        token: Optional[CancellationToken],
        url: str,
        source_tag: Optional[ContentSourceTag],
    ) -> Optional[NetworkError]:
        if token is None:
            return None
        if token.cancel_requested:
            return NetworkError(
                NetworkErrorKind.CANCELLED,
                ErrorContext(url=url, operation="convert", source_tag=source_tag, note="cancelled by caller"),
            )
        if token.deadline_passed:
            return NetworkError(
                NetworkErrorKind.TIMEOUT,
                ErrorContext(url=url, operation="convert", source_tag=source_tag, note="caller deadline passed"),
            )
        return None

    async def _release(self, key: str, trial: bool) -> None:
        # Only the holder of the half-open trial may hand it back
        if trial:
            await self.breaker.release(key)

    async def _fail(self, key: str, error: MarkdownError, trial: bool) -> None:
        if trips_breaker(error):
            await self.breaker.record_result(key, success=False, error=error)
        elif trial:
            await self.breaker.release(key)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        key: str,
        classify: Callable[[MarkdownError], RetryDecision] = retry_decision,
        max_attempts: Optional[int] = None,
        token: Optional[CancellationToken] = None,
        emit: Optional[EventEmitter] = None,
        url: str = "",
        source_tag: Optional[ContentSourceTag] = None,
        trial: bool = False,
    ) -> T:
        """
        Run ``operation`` with retries.

        The caller is expected to have passed ``breaker.before_call(key)``
        for the first attempt and to record the success itself. Failures
        are recorded here.

        A half-open trial (``trial=True``) gets exactly one attempt, and its
        slot is handed back on every exit that records no outcome, task
        cancellation included.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            key: Circuit breaker key
            classify: Maps an error to a RetryDecision
            max_attempts: Overrides the executor's default for this call
            token: Cancellation token checked before attempts and during sleeps
            emit: Optional event callback
            url: URL for error context and events
            source_tag: Source tag for error context and events
            trial: True if ``before_call`` admitted this call as the
                half-open trial

        Returns:
            Whatever ``operation`` returns

        Raises:
            MarkdownError: The last error, the breaker's denial, or a
                timeout/cancellation error
        """
        if not trial:
            return await self._execute(operation, key, classify, max_attempts, token, emit, url, source_tag, False)
        try:
            return await self._execute(operation, key, classify, 1, token, emit, url, source_tag, True)
        except BaseException as e:
            if not isinstance(e, MarkdownError):
                # Cancelled or interrupted mid-trial
                await self.breaker.release(key)
            raise

    async def _execute(
        self,
        operation: Callable[[], Awaitable[T]],
        key: str,
        classify: Callable[[MarkdownError], RetryDecision],
        max_attempts: Optional[int],
        token: Optional[CancellationToken],
        emit: Optional[EventEmitter],
        url: str,
        source_tag: Optional[ContentSourceTag],
        trial: bool,
    ) -> T:
        attempts = max_attempts or self.max_attempts
        started = self._clock()
        deadline = started + self.total_timeout if self.total_timeout is not None else None

        def remaining() -> Optional[float]:
            if deadline is None:
                return None
            return deadline - self._clock()

        def notify(event_type: EventType, **kwargs) -> None:
            if emit:
                emit(ConversionEvent(type=event_type, url=url, source_tag=source_tag, **kwargs))

        attempt = 0
        while True:
            attempt += 1
            cancelled = self._token_error(token, url, source_tag)
            if cancelled is not None:
                await self._release(key, trial)
                raise cancelled

            if attempt > 1:
                decision = await self.breaker.before_call(key, continuation=True)
                if not decision.allowed:
                    error = NetworkError(
                        NetworkErrorKind.CIRCUIT_OPEN,
                        ErrorContext(url=url, operation="convert", source_tag=source_tag, note=decision.reason),
                    )
                    notify(EventType.CIRCUIT_OPEN, message=decision.reason, attempt=attempt)
                    raise error

            left = remaining()
            if left is not None and left <= 0:
                await self._release(key, trial)
                raise self._timeout_error(url, source_tag)

            notify(EventType.ATTEMPT_STARTED, attempt=attempt, max_attempts=attempts)
            try:
                if left is None:
                    return await operation()
                return await asyncio.wait_for(operation(), timeout=left)
            except asyncio.TimeoutError as e:
                left = remaining()
                if left is not None and left <= 0:
                    await self._release(key, trial)
                    raise self._timeout_error(url, source_tag) from e
                error = translate_exception(e, url, "convert", source_tag)
            except MarkdownError as e:
                error = e.with_context(url, "convert", source_tag)
            except Exception as e:
                error = translate_exception(e, url, "convert", source_tag)

            notify(
                EventType.ATTEMPT_FAILED,
                attempt=attempt,
                max_attempts=attempts,
                error=str(error),
            )

            decision = classify(error)
            if not decision.retryable:
                logger.debug(f"Not retrying {url}: {error.kind.value}.{error.sub_kind_label}")
                await self._fail(key, error, trial)
                raise error

            if attempt >= attempts:
                logger.debug(f"Giving up on {url} after {attempt} attempts")
                await self.breaker.record_result(key, success=False, error=error)
                raise error

            delay = self.compute_delay(attempt, error, decision)
            left = remaining()
            if left is not None and delay >= left:
                # The ceiling would expire mid-backoff
                logger.debug(f"Backoff of {delay:.1f}s for {url} exceeds the overall deadline")
                await self._release(key, trial)
                raise self._timeout_error(url, source_tag)

            logger.warning(
                f"Attempt {attempt}/{attempts} for {url} failed "
                f"({error.kind.value}.{error.sub_kind_label}), retrying in {delay:.1f}s"
            )
            notify(
                EventType.RETRY_SCHEDULED,
                attempt=attempt,
                max_attempts=attempts,
                delay=delay,
                error=str(error),
            )
            await self._wait(delay, token)

    async def _wait(self, delay: float, token: Optional[CancellationToken]) -> None:
        if token is None:
            await self._sleep(delay)
            return
        if token.cancelled:
            return
        remaining = token.remaining()
        if remaining is not None:
            delay = min(delay, remaining)

        # Whichever finishes first: the backoff sleep or a cancel()
        sleeper = asyncio.ensure_future(self._sleep(delay))
        cancel_wait = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({sleeper, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            cancel_wait.cancel()
            await asyncio.gather(sleeper, cancel_wait, return_exceptions=True)
