"""Structured error taxonomy for markdowndown.

Every failure that leaves the orchestrator is a ``MarkdownError`` subclass
carrying a category (``ErrorKind``), a sub-kind, and an ``ErrorContext``.
Raw library exceptions (aiohttp, asyncio timeouts, decoding errors) are
translated exactly once, at the boundary where they are caught, by
``translate_exception`` or ``error_from_status``.
"""

from __future__ import annotations

import asyncio
import json
import socket
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

import aiohttp

from .models.document import ContentSourceTag

if TYPE_CHECKING:
    from .fallback import FallbackPolicy


class ErrorKind(str, Enum):
    """Top-level error categories."""

    VALIDATION = "validation"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    CONTENT = "content"
    CONVERTER = "converter"
    CONFIGURATION = "configuration"


class ValidationErrorKind(str, Enum):
    INVALID_URL = "invalid_url"
    INVALID_FORMAT = "invalid_format"
    MISSING_PARAMETER = "missing_parameter"


class NetworkErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"
    DNS_FAILURE = "dns_failure"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CIRCUIT_OPEN = "circuit_open"
    CANCELLED = "cancelled"


class AuthErrorKind(str, Enum):
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    PERMISSION_DENIED = "permission_denied"
    TOKEN_EXPIRED = "token_expired"


class ContentErrorKind(str, Enum):
    EMPTY_CONTENT = "empty_content"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PARSING_FAILED = "parsing_failed"


class ConverterErrorKind(str, Enum):
    EXTERNAL_TOOL_FAILED = "external_tool_failed"
    PROCESSING_ERROR = "processing_error"
    UNSUPPORTED_OPERATION = "unsupported_operation"


class ConfigurationErrorKind(str, Enum):
    MISSING_DEPENDENCY = "missing_dependency"
    INVALID_CONFIG = "invalid_config"
    INVALID_VALUE = "invalid_value"


SubKind = Union[
    ValidationErrorKind,
    NetworkErrorKind,
    AuthErrorKind,
    ContentErrorKind,
    ConverterErrorKind,
    ConfigurationErrorKind,
]


@dataclass(frozen=True)
class ErrorContext:
    """
    Where and when an error happened.

    Attributes:
        url: URL (or local path) being processed
        operation: What was being done ("classify", "convert", "fetch", ...)
        source_tag: Content source of the URL, when known
        timestamp: When the error was created (UTC)
        note: Free-form detail, e.g. the HTTP status or a fallback remark
    """

    url: str
    operation: str = ""
    source_tag: Optional[ContentSourceTag] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    note: Optional[str] = None

    def with_note(self, note: str) -> ErrorContext:
        """Return a copy with ``note`` appended to any existing note."""
        combined = f"{self.note}; {note}" if self.note else note
        return replace(self, note=combined)

    def completed(
        self,
        operation: str,
        source_tag: Optional[ContentSourceTag],
    ) -> ErrorContext:
        """Return a copy with empty operation/source_tag filled in."""
        return replace(
            self,
            operation=self.operation or operation,
            source_tag=self.source_tag or source_tag,
        )


class BackoffClass(str, Enum):
    """How long to wait before the next attempt."""

    NONE = "none"
    STANDARD = "standard"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class RetryDecision:
    """Whether an error is worth another attempt, and how to back off."""

    retryable: bool
    backoff_class: BackoffClass = BackoffClass.NONE


_NO_RETRY = RetryDecision(retryable=False)


class MarkdownError(Exception):
    """
    Base class for all markdowndown errors.

    Subclasses fix ``kind``; instances carry the sub-kind and context.

    Example:
        try:
            doc = await orchestrator.convert_url(url)
        except MarkdownError as e:
            print(e)
            for suggestion in e.suggestions():
                print(f"  - {suggestion}")
    """

    kind: ErrorKind

    def __init__(
        self,
        sub_kind: SubKind,
        context: Optional[ErrorContext] = None,
        *,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        self.sub_kind = sub_kind
        self.context = context
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(self._describe())

    @property
    def sub_kind_label(self) -> str:
        """Sub-kind name, with the status code for server errors."""
        if self.status_code is not None and self.sub_kind == NetworkErrorKind.SERVER_ERROR:
            return f"{self.sub_kind.value}({self.status_code})"
        return self.sub_kind.value

    def _describe(self) -> str:
        text = f"{self.kind.value.capitalize()} error ({self.sub_kind_label})"
        if self.message:
            text += f": {self.message}"
        if self.context is not None:
            text += f" [{self.context.url}]"
            if self.context.note:
                text += f" ({self.context.note})"
        return text

    def __str__(self) -> str:
        return self._describe()

    def with_context(
        self,
        url: str,
        operation: str,
        source_tag: Optional[ContentSourceTag] = None,
    ) -> MarkdownError:
        """Attach or complete the context in place. Returns self."""
        if self.context is None:
            self.context = ErrorContext(url=url, operation=operation, source_tag=source_tag)
        else:
            self.context = self.context.completed(operation, source_tag)
        return self

    def copy(self) -> MarkdownError:
        """Return an independent error of the same type, kind and context."""
        duplicate = type(self)(
            self.sub_kind,
            self.context,
            message=self.message,
            status_code=self.status_code,
            retry_after=self.retry_after,
        )
        duplicate.__cause__ = self.__cause__
        return duplicate

    def annotate(self, note: str) -> MarkdownError:
        """Append a note to the context in place. Returns self."""
        if self.context is None:
            raise ValueError("Cannot annotate an error without context")
        self.context = self.context.with_note(note)
        return self

    def retry_decision(self) -> RetryDecision:
        return retry_decision(self)

    def is_retryable(self) -> bool:
        """True if another attempt may succeed."""
        return retry_decision(self).retryable

    def is_recoverable(self, policy: Optional[FallbackPolicy] = None) -> bool:
        """True if the fallback table offers another converter for this error."""
        from .fallback import FallbackPolicy

        if self.context is None or self.context.source_tag is None:
            return False
        policy = policy or FallbackPolicy.default()
        return policy.fallback_for(self.context.source_tag, self.kind) is not None

    def suggestions(self) -> list[str]:
        """Human-readable remedies, looked up from ``(kind, sub_kind)``."""
        return list(SUGGESTIONS.get((self.kind, self.sub_kind), ()))


class ValidationError(MarkdownError):
    kind = ErrorKind.VALIDATION


class NetworkError(MarkdownError):
    kind = ErrorKind.NETWORK


class AuthenticationError(MarkdownError):
    kind = ErrorKind.AUTHENTICATION


class ContentError(MarkdownError):
    kind = ErrorKind.CONTENT


class ConverterError(MarkdownError):
    kind = ErrorKind.CONVERTER


class ConfigurationError(MarkdownError):
    kind = ErrorKind.CONFIGURATION


def retry_decision(error: MarkdownError) -> RetryDecision:
    """
    Classify an error for the retry executor.

    Retryable: network timeouts, connection failures, rate limiting and
    5xx/429 server errors. Everything else is returned to the caller at once.
    """
    if error.kind != ErrorKind.NETWORK:
        return _NO_RETRY

    if error.sub_kind in (NetworkErrorKind.TIMEOUT, NetworkErrorKind.CONNECTION_FAILED):
        return RetryDecision(retryable=True, backoff_class=BackoffClass.STANDARD)
    if error.sub_kind == NetworkErrorKind.RATE_LIMITED:
        return RetryDecision(retryable=True, backoff_class=BackoffClass.RATE_LIMITED)
    if error.sub_kind == NetworkErrorKind.SERVER_ERROR and error.status_code is not None:
        if error.status_code == 429:
            return RetryDecision(retryable=True, backoff_class=BackoffClass.RATE_LIMITED)
        if error.status_code >= 500:
            return RetryDecision(retryable=True, backoff_class=BackoffClass.STANDARD)
    return _NO_RETRY


def trips_breaker(error: MarkdownError) -> bool:
    """True if the error says the remote service itself is unhealthy."""
    if error.kind != ErrorKind.NETWORK:
        return False
    if error.sub_kind in (NetworkErrorKind.CIRCUIT_OPEN, NetworkErrorKind.CANCELLED):
        return False
    if error.sub_kind == NetworkErrorKind.SERVER_ERROR:
        return error.status_code is None or error.status_code >= 500 or error.status_code == 429
    return True


SUGGESTIONS: dict[tuple[ErrorKind, SubKind], tuple[str, ...]] = {
    (ErrorKind.VALIDATION, ValidationErrorKind.INVALID_URL): (
        "Use a complete URL starting with http:// or https://",
        "For local files use a path such as ./notes.md or file:///path/to/file.md",
        "Remove spaces and stray characters from the URL",
    ),
    (ErrorKind.VALIDATION, ValidationErrorKind.INVALID_FORMAT): (
        "Check that the URL points at a supported document",
        "Verify the local path exists and is a regular file",
    ),
    (ErrorKind.VALIDATION, ValidationErrorKind.MISSING_PARAMETER): (
        "Check the URL contains the document or issue identifier",
    ),
    (ErrorKind.NETWORK, NetworkErrorKind.TIMEOUT): (
        "Check your internet connection",
        "Increase the request timeout",
        "Try again later; the server may be slow",
    ),
    (ErrorKind.NETWORK, NetworkErrorKind.CONNECTION_FAILED): (
        "Check your internet connection",
        "Check proxy settings",
        "Verify the server is reachable",
    ),
    (ErrorKind.NETWORK, NetworkErrorKind.DNS_FAILURE): (
        "Check the domain name for typos",
        "Check your DNS settings and internet connection",
    ),
    (ErrorKind.NETWORK, NetworkErrorKind.RATE_LIMITED): (
        "Wait before retrying; the server is rate limiting requests",
        "Configure an authentication token to get a higher rate limit",
    ),
    (ErrorKind.NETWORK, NetworkErrorKind.SERVER_ERROR): (
        "Verify the URL points to an existing resource",
        "Try again later if the server reported an internal error",
    ),
    (ErrorKind.NETWORK, NetworkErrorKind.CIRCUIT_OPEN): (
        "The service failed repeatedly; wait for the cooldown before retrying",
        "Check the service status page",
    ),
    (ErrorKind.NETWORK, NetworkErrorKind.CANCELLED): (
        "The conversion was cancelled or ran past its deadline",
    ),
    (ErrorKind.AUTHENTICATION, AuthErrorKind.MISSING_TOKEN): (
        "Provide an authentication token for this service",
        "Set GITHUB_TOKEN, OFFICE365_TOKEN or GOOGLE_API_KEY as appropriate",
    ),
    (ErrorKind.AUTHENTICATION, AuthErrorKind.INVALID_TOKEN): (
        "Set a valid authentication token",
        "Check the token has not been revoked",
    ),
    (ErrorKind.AUTHENTICATION, AuthErrorKind.PERMISSION_DENIED): (
        "Check the token has permission to read this resource",
        "Ask the document owner to share it with you",
    ),
    (ErrorKind.AUTHENTICATION, AuthErrorKind.TOKEN_EXPIRED): (
        "Refresh or regenerate your authentication token",
    ),
    (ErrorKind.CONTENT, ContentErrorKind.EMPTY_CONTENT): (
        "Check the document is not empty",
        "Verify the document is publicly accessible",
    ),
    (ErrorKind.CONTENT, ContentErrorKind.UNSUPPORTED_FORMAT): (
        "Check the content format is supported",
        "Export the document to HTML or markdown first",
    ),
    (ErrorKind.CONTENT, ContentErrorKind.PARSING_FAILED): (
        "Check the content format; the response could not be parsed",
        "Try converting the page as plain HTML",
    ),
    (ErrorKind.CONVERTER, ConverterErrorKind.EXTERNAL_TOOL_FAILED): (
        "Check the external conversion tool is installed and on PATH",
    ),
    (ErrorKind.CONVERTER, ConverterErrorKind.PROCESSING_ERROR): (
        "Retry the conversion; if it keeps failing, report the URL as a bug",
    ),
    (ErrorKind.CONVERTER, ConverterErrorKind.UNSUPPORTED_OPERATION): (
        "This source does not support the requested operation",
    ),
    (ErrorKind.CONFIGURATION, ConfigurationErrorKind.MISSING_DEPENDENCY): (
        "Register a converter for this source type",
    ),
    (ErrorKind.CONFIGURATION, ConfigurationErrorKind.INVALID_CONFIG): (
        "Check the configuration file against the documented options",
    ),
    (ErrorKind.CONFIGURATION, ConfigurationErrorKind.INVALID_VALUE): (
        "Check configuration values are within their allowed ranges",
    ),
}


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def error_from_status(
    status: int,
    url: str,
    operation: str = "fetch",
    *,
    source_tag: Optional[ContentSourceTag] = None,
    retry_after: Optional[float] = None,
    credentials_sent: bool = False,
) -> MarkdownError:
    """Map a non-2xx HTTP status to an error."""
    context = ErrorContext(
        url=url,
        operation=operation,
        source_tag=source_tag,
        note=f"HTTP status {status}",
    )
    if status == 401:
        sub_kind = AuthErrorKind.INVALID_TOKEN if credentials_sent else AuthErrorKind.MISSING_TOKEN
        return AuthenticationError(sub_kind, context, status_code=status)
    if status == 403:
        return AuthenticationError(AuthErrorKind.PERMISSION_DENIED, context, status_code=status)
    if status == 429:
        return NetworkError(
            NetworkErrorKind.RATE_LIMITED,
            context,
            status_code=status,
            retry_after=retry_after,
        )
    return NetworkError(NetworkErrorKind.SERVER_ERROR, context, status_code=status)


def translate_exception(
    exc: BaseException,
    url: str,
    operation: str,
    source_tag: Optional[ContentSourceTag] = None,
) -> MarkdownError:
    """
    Translate a raw exception into exactly one ``MarkdownError``.

    Already-typed errors only get their context completed. Anything not
    recognised becomes ``ConverterError(PROCESSING_ERROR)``.
    """
    if isinstance(exc, MarkdownError):
        return exc.with_context(url, operation, source_tag)

    context = ErrorContext(url=url, operation=operation, source_tag=source_tag, note=repr(exc))

    # aiohttp.ServerTimeoutError is also an asyncio.TimeoutError
    if isinstance(exc, asyncio.TimeoutError):
        return NetworkError(NetworkErrorKind.TIMEOUT, context)
    if isinstance(exc, aiohttp.ClientResponseError):
        retry_after = parse_retry_after(exc.headers.get("Retry-After")) if exc.headers else None
        return error_from_status(
            exc.status,
            url,
            operation,
            source_tag=source_tag,
            retry_after=retry_after,
        )
    if isinstance(exc, aiohttp.ClientConnectorError):
        if isinstance(exc.os_error, socket.gaierror):
            return NetworkError(NetworkErrorKind.DNS_FAILURE, context)
        return NetworkError(NetworkErrorKind.CONNECTION_FAILED, context)
    if isinstance(exc, (aiohttp.ClientError, ConnectionError)):
        return NetworkError(NetworkErrorKind.CONNECTION_FAILED, context)
    if isinstance(exc, (UnicodeDecodeError, json.JSONDecodeError)):
        return ContentError(ContentErrorKind.PARSING_FAILED, context)
    return ConverterError(ConverterErrorKind.PROCESSING_ERROR, context)
