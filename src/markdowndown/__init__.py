"""
markdowndown - Convert URLs to markdown with retries, circuit breaking and fallback.

Usage:
    from markdowndown import convert_url, MarkdownDownConfig

    doc = await convert_url("https://github.com/acme/widgets/issues/42")
    print(doc.render())

    # or, with a long-lived client
    async with AsyncHttpClient() as client:
        orchestrator = ConversionOrchestrator.from_config(MarkdownDownConfig(), client)
        results = await orchestrator.convert_many(urls)
"""

__version__ = "0.1.0"

import asyncio
from typing import Optional

from .converters import ConverterPort, ConverterRegistry
from .detection import Classification, ClassificationRule, UrlClassifier, classify
from .errors import (
    AuthenticationError,
    AuthErrorKind,
    ConfigurationError,
    ConfigurationErrorKind,
    ContentError,
    ContentErrorKind,
    ConverterError,
    ConverterErrorKind,
    ErrorContext,
    ErrorKind,
    MarkdownError,
    NetworkError,
    NetworkErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from .fallback import FallbackPolicy
from .http import AsyncHttpClient
from .models.config import AuthConfig, MarkdownDownConfig
from .models.document import ContentSourceTag, Document
from .models.events import ConversionEvent, ConversionStats, EventType
from .orchestrator import ConversionOrchestrator, ConversionResult, convert_url
from .resilience import CancellationToken, CircuitBreaker, RetryExecutor


def convert_url_blocking(
    url: str,
    config: Optional[MarkdownDownConfig] = None,
    credentials: Optional[AuthConfig] = None,
) -> Document:
    """
    Synchronous wrapper around ``convert_url``.

    Must not be called from inside a running event loop.
    """
    return asyncio.run(convert_url(url, config=config, credentials=credentials))


__all__ = [
    "__version__",
    # Core
    "ConversionOrchestrator",
    "ConversionResult",
    "convert_url",
    "convert_url_blocking",
    "classify",
    # Classification
    "Classification",
    "ClassificationRule",
    "UrlClassifier",
    # Converters
    "ConverterPort",
    "ConverterRegistry",
    "AsyncHttpClient",
    # Resilience
    "CancellationToken",
    "CircuitBreaker",
    "FallbackPolicy",
    "RetryExecutor",
    # Models
    "AuthConfig",
    "ContentSourceTag",
    "Document",
    "MarkdownDownConfig",
    # Events
    "ConversionEvent",
    "ConversionStats",
    "EventType",
    # Errors
    "MarkdownError",
    "ErrorContext",
    "ErrorKind",
    "ValidationError",
    "ValidationErrorKind",
    "NetworkError",
    "NetworkErrorKind",
    "AuthenticationError",
    "AuthErrorKind",
    "ContentError",
    "ContentErrorKind",
    "ConverterError",
    "ConverterErrorKind",
    "ConfigurationError",
    "ConfigurationErrorKind",
]
