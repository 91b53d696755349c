"""Markdowndown configuration, document and event models."""

from .config import (
    AuthConfig,
    ByteSize,
    CircuitBreakerConfig,
    ConverterConfig,
    FallbackConfig,
    FallbackRule,
    HttpConfig,
    MarkdownDownConfig,
    OutputConfig,
    RetryConfig,
)
from .document import ContentSourceTag, Document
from .events import ConversionEvent, ConversionStats, EventEmitter, EventType

__all__ = [
    # Config
    "AuthConfig",
    "ByteSize",
    "CircuitBreakerConfig",
    "ConverterConfig",
    "FallbackConfig",
    "FallbackRule",
    "HttpConfig",
    "MarkdownDownConfig",
    "OutputConfig",
    "RetryConfig",
    # Documents
    "ContentSourceTag",
    "Document",
    # Events
    "ConversionEvent",
    "ConversionStats",
    "EventEmitter",
    "EventType",
]
