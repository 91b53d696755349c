"""Retry, circuit breaking and cancellation for conversions."""

from .cancellation import CancellationToken
from .circuit_breaker import CircuitBreaker, CircuitDecision, CircuitState, circuit_key
from .retry import RetryExecutor, backoff_delay

__all__ = [
    "CancellationToken",
    "CircuitBreaker",
    "CircuitDecision",
    "CircuitState",
    "RetryExecutor",
    "backoff_delay",
    "circuit_key",
]
