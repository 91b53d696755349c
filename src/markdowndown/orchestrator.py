"""Conversion orchestration: classify, dispatch, retry, fall back."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from .converters.protocols import ConverterPort
from .converters.registry import ConverterRegistry
from .detection import Classification, UrlClassifier
from .errors import (
    ConfigurationError,
    ConfigurationErrorKind,
    ErrorContext,
    MarkdownError,
    NetworkError,
    NetworkErrorKind,
)
from .fallback import FallbackPolicy
from .http.client import AsyncHttpClient
from .http.protocols import Transport
from .models.config import AuthConfig, MarkdownDownConfig
from .models.document import ContentSourceTag, Document
from .models.events import ConversionEvent, ConversionStats, EventEmitter, EventType
from .resilience.cancellation import CancellationToken
from .resilience.circuit_breaker import CircuitBreaker, circuit_key
from .resilience.retry import RetryExecutor

logger = logging.getLogger(__name__)

# Failures that say "stop now" rather than "this converter could not do it"
_NO_FALLBACK_SUB_KINDS = (NetworkErrorKind.CIRCUIT_OPEN, NetworkErrorKind.CANCELLED)


@dataclass
class ConversionResult:
    """Outcome of one URL in a batch: exactly one of document/error is set."""

    url: str
    document: Optional[Document] = None
    error: Optional[MarkdownError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConversionOrchestrator:
    """
    Converts URLs to markdown Documents.

    Pipeline per URL:
        1. Classify the URL (ValidationError is terminal)
        2. Look up the converter for the tag
        3. Fail fast if the circuit for the tag/host is open
        4. Run the converter through the RetryExecutor
        5. Record success and return the Document untouched
        6. On failure, try the fallback converter once; if that fails too,
           raise the original error with a note about the fallback

    The circuit breaker is the only state shared between concurrent calls.

    Example:
        async with AsyncHttpClient() as client:
            orchestrator = ConversionOrchestrator.from_config(config, client)
            doc = await orchestrator.convert_url(
                "https://github.com/acme/widgets/issues/42"
            )
            print(doc.render())
    """

    def __init__(
        self,
        registry: ConverterRegistry,
        classifier: Optional[UrlClassifier] = None,
        executor: Optional[RetryExecutor] = None,
        fallback: Optional[FallbackPolicy] = None,
        credentials: Optional[AuthConfig] = None,
    ):
        """
        Args:
            registry: Converters by source tag
            classifier: URL classifier (default ruleset if None)
            executor: Retry executor; its breaker is the orchestrator's breaker
            fallback: Fallback table (specialized -> HTML if None)
            credentials: Default credentials when a call passes none
        """
        self.registry = registry
        self.classifier = classifier or UrlClassifier()
        self.executor = executor or RetryExecutor(CircuitBreaker())
        self.fallback = fallback if fallback is not None else FallbackPolicy.default()
        self.credentials = credentials
        self._stats = ConversionStats()

    @classmethod
    def from_config(cls, config: MarkdownDownConfig, transport: Transport) -> ConversionOrchestrator:
        """Wire up the built-in converters and policies from ``config``."""
        breaker = CircuitBreaker(
            failure_threshold=config.circuit_breaker.failure_threshold,
            cooldown=config.circuit_breaker.cooldown,
        )
        executor = RetryExecutor(
            breaker,
            max_attempts=config.retry.max_attempts,
            base_delay=config.retry.base_delay,
            max_delay=config.retry.max_delay,
            jitter=config.retry.jitter,
            total_timeout=config.retry.total_timeout,
        )
        return cls(
            registry=ConverterRegistry.default(transport, config),
            executor=executor,
            fallback=FallbackPolicy.from_config(config.fallback),
            credentials=config.auth,
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self.executor.breaker

    @property
    def stats(self) -> ConversionStats:
        """Cumulative statistics for this orchestrator."""
        return self._stats

    def classify(self, url: str) -> Classification:
        """Classify ``url`` without converting it. Raises ValidationError."""
        return self.classifier.classify(url)

    def _emitter(self, emit: Optional[EventEmitter]) -> EventEmitter:
        def notify(event: ConversionEvent) -> None:
            if event.type == EventType.ATTEMPT_STARTED:
                self._stats.attempts += 1
            elif event.type == EventType.RETRY_SCHEDULED:
                self._stats.retries += 1
            if emit:
                emit(event)

        return notify

    async def convert_url(
        self,
        url: str,
        credentials: Optional[AuthConfig] = None,
        token: Optional[CancellationToken] = None,
        emit: Optional[EventEmitter] = None,
    ) -> Document:
        """
        Convert one URL (or local path) to a Document.

        Args:
            url: Raw URL or local file path
            credentials: Tokens for this call (defaults to the orchestrator's)
            token: Cancellation token / deadline
            emit: Optional event callback

        Returns:
            The converter's Document, unmodified

        Raises:
            MarkdownError: The terminal failure, with url, operation and
                source tag filled in
        """
        notify = self._emitter(emit)
        self._stats.conversions_started += 1
        notify(ConversionEvent(type=EventType.CONVERSION_STARTED, url=url))

        try:
            document = await self._convert(url, credentials or self.credentials, token, notify)
        except MarkdownError as e:
            self._stats.conversions_failed += 1
            logger.error(f"Conversion failed: {e}")
            notify(
                ConversionEvent(
                    type=EventType.CONVERSION_FAILED,
                    url=url,
                    source_tag=e.context.source_tag if e.context else None,
                    error=str(e),
                )
            )
            raise

        self._stats.conversions_succeeded += 1
        logger.info(f"Converted {url} with {document.exporter}")
        notify(
            ConversionEvent(
                type=EventType.CONVERSION_COMPLETED,
                url=url,
                source_tag=document.source_tag,
            )
        )
        return document

    async def _convert(
        self,
        url: str,
        credentials: Optional[AuthConfig],
        token: Optional[CancellationToken],
        notify: EventEmitter,
    ) -> Document:
        tag, normalized = self.classifier.classify(url)
        logger.debug(f"Classified {url} as {tag.value}")
        notify(ConversionEvent(type=EventType.URL_CLASSIFIED, url=normalized, source_tag=tag))

        converter = self._converter_for(tag, normalized)
        key = circuit_key(tag, normalized)

        decision = await self.breaker.before_call(key)
        if not decision.allowed:
            self._stats.circuit_rejections += 1
            notify(
                ConversionEvent(
                    type=EventType.CIRCUIT_OPEN,
                    url=normalized,
                    source_tag=tag,
                    message=decision.reason,
                )
            )
            error = NetworkError(
                NetworkErrorKind.CIRCUIT_OPEN,
                ErrorContext(url=normalized, operation="convert", source_tag=tag, note=decision.reason),
            )
            if decision.last_error is not None:
                error.annotate(f"last failure: {decision.last_error.kind.value}.{decision.last_error.sub_kind_label}")
            raise error

        try:
            document = await self.executor.execute(
                lambda: converter.convert(normalized, credentials),
                key=key,
                token=token,
                emit=notify,
                url=normalized,
                source_tag=tag,
                trial=decision.trial,
            )
        except MarkdownError as error:
            error.with_context(normalized, "convert", tag)
            return await self._recover(error, tag, normalized, credentials, token, notify)

        await self.breaker.record_result(key, success=True)
        return document

    def _converter_for(self, tag: ContentSourceTag, url: str) -> ConverterPort:
        converter = self.registry.get(tag)
        if converter is None:
            raise ConfigurationError(
                ConfigurationErrorKind.MISSING_DEPENDENCY,
                ErrorContext(url=url, operation="dispatch", source_tag=tag),
                message=f"No converter registered for {tag.value}",
            )
        return converter

    async def _recover(
        self,
        error: MarkdownError,
        tag: ContentSourceTag,
        url: str,
        credentials: Optional[AuthConfig],
        token: Optional[CancellationToken],
        notify: EventEmitter,
    ) -> Document:
        """Try the fallback converter once, or re-raise ``error``."""
        target = self.fallback.fallback_for(tag, error.kind)
        if target is None or error.sub_kind in _NO_FALLBACK_SUB_KINDS:
            raise error
        if token is not None and token.cancelled:
            raise error

        fallback_converter = self.registry.get(target)
        if fallback_converter is None:
            logger.debug(f"No converter registered for fallback target {target.value}")
            raise error

        key = circuit_key(target, url)
        decision = await self.breaker.before_call(key)
        if not decision.allowed:
            self._stats.circuit_rejections += 1
            raise error.annotate(f"fallback to {target.value} skipped: {decision.reason}")

        self._stats.fallbacks_attempted += 1
        logger.warning(
            f"{tag.value} conversion of {url} failed ({error.kind.value}.{error.sub_kind_label}), "
            f"falling back to {target.value}"
        )
        notify(
            ConversionEvent(
                type=EventType.FALLBACK_STARTED,
                url=url,
                source_tag=tag,
                fallback_tag=target,
                error=str(error),
            )
        )

        try:
            document = await self.executor.execute(
                lambda: fallback_converter.convert(url, credentials),
                key=key,
                max_attempts=1,
                token=token,
                emit=notify,
                url=url,
                source_tag=target,
                trial=decision.trial,
            )
        except MarkdownError as fallback_error:
            notify(
                ConversionEvent(
                    type=EventType.FALLBACK_FAILED,
                    url=url,
                    source_tag=tag,
                    fallback_tag=target,
                    error=str(fallback_error),
                )
            )
            raise error.annotate(
                f"fallback to {target.value} attempted: "
                f"{fallback_error.kind.value}.{fallback_error.sub_kind_label}"
            ) from fallback_error

        await self.breaker.record_result(key, success=True)
        self._stats.fallbacks_succeeded += 1
        return document

    async def convert_many(
        self,
        urls: Iterable[str],
        max_concurrent: int = 5,
        credentials: Optional[AuthConfig] = None,
        token: Optional[CancellationToken] = None,
        emit: Optional[EventEmitter] = None,
    ) -> list[ConversionResult]:
        """
        Convert several URLs concurrently.

        Each URL is independent: one failure does not affect the others.

        Returns:
            One ConversionResult per input URL, in input order
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        semaphore = asyncio.Semaphore(max_concurrent)

        async def run(url: str) -> ConversionResult:
            async with semaphore:
                try:
                    document = await self.convert_url(url, credentials, token, emit)
                except MarkdownError as e:
                    return ConversionResult(url=url, error=e)
                return ConversionResult(url=url, document=document)

        return list(await asyncio.gather(*(run(url) for url in urls)))


async def convert_url(
    url: str,
    config: Optional[MarkdownDownConfig] = None,
    credentials: Optional[AuthConfig] = None,
    token: Optional[CancellationToken] = None,
) -> Document:
    """
    Convert a single URL with a throwaway HTTP client.

    Example:
        doc = await convert_url("https://docs.google.com/document/d/abc123/edit")
    """
    config = config or MarkdownDownConfig()
    async with AsyncHttpClient.from_config(config.http) as client:
        orchestrator = ConversionOrchestrator.from_config(config, client)
        return await orchestrator.convert_url(url, credentials=credentials, token=token)
