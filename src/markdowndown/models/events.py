"""Event types emitted while converting URLs."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from .document import ContentSourceTag


class EventType(str, Enum):
    """Types of events emitted during a conversion."""

    CONVERSION_STARTED = "conversion_started"
    URL_CLASSIFIED = "url_classified"
    ATTEMPT_STARTED = "attempt_started"
    ATTEMPT_FAILED = "attempt_failed"
    RETRY_SCHEDULED = "retry_scheduled"
    CIRCUIT_OPEN = "circuit_open"
    FALLBACK_STARTED = "fallback_started"
    FALLBACK_FAILED = "fallback_failed"
    CONVERSION_COMPLETED = "conversion_completed"
    CONVERSION_FAILED = "conversion_failed"


@dataclass
class ConversionEvent:
    """
    Event emitted during a conversion.

    Example:
        def on_event(event: ConversionEvent) -> None:
            if event.type == EventType.RETRY_SCHEDULED:
                print(f"retry {event.attempt} in {event.delay:.1f}s")

        await orchestrator.convert_url(url, emit=on_event)
    """

    type: EventType

    # Timestamp (always UTC)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    url: Optional[str] = None
    source_tag: Optional[ContentSourceTag] = None
    message: Optional[str] = None
    error: Optional[str] = None

    attempt: Optional[int] = None
    max_attempts: Optional[int] = None
    delay: Optional[float] = None
    fallback_tag: Optional[ContentSourceTag] = None

    @property
    def is_error(self) -> bool:
        """Check if this is an error event."""
        return self.type in (
            EventType.ATTEMPT_FAILED,
            EventType.FALLBACK_FAILED,
            EventType.CONVERSION_FAILED,
        )


# Type alias for event emitter function
EventEmitter = Callable[[ConversionEvent], None]


@dataclass
class ConversionStats:
    """Cumulative statistics over the lifetime of an orchestrator."""

    conversions_started: int = 0
    conversions_succeeded: int = 0
    conversions_failed: int = 0
    attempts: int = 0
    retries: int = 0
    fallbacks_attempted: int = 0
    fallbacks_succeeded: int = 0
    circuit_rejections: int = 0

    @property
    def success_rate(self) -> float:
        """Success rate as a percentage."""
        total = self.conversions_succeeded + self.conversions_failed
        if total == 0:
            return 0.0
        return (self.conversions_succeeded / total) * 100

    def to_dict(self) -> dict:
        """Convert stats to dictionary for serialization."""
        return {
            "conversions_started": self.conversions_started,
            "conversions_succeeded": self.conversions_succeeded,
            "conversions_failed": self.conversions_failed,
            "attempts": self.attempts,
            "retries": self.retries,
            "fallbacks_attempted": self.fallbacks_attempted,
            "fallbacks_succeeded": self.fallbacks_succeeded,
            "circuit_rejections": self.circuit_rejections,
            "success_rate": round(self.success_rate, 1),
        }
