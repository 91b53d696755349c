"""Tests for the conversion orchestrator."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from markdowndown.converters import ConverterRegistry
from markdowndown.errors import (
    AuthenticationError,
    AuthErrorKind,
    ConfigurationError,
    ConfigurationErrorKind,
    ContentError,
    ContentErrorKind,
    ErrorContext,
    NetworkError,
    NetworkErrorKind,
    ValidationError,
)
from markdowndown.fallback import FallbackPolicy
from markdowndown.models.config import AuthConfig, MarkdownDownConfig
from markdowndown.models.document import ContentSourceTag, Document
from markdowndown.models.events import EventType
from markdowndown.orchestrator import ConversionOrchestrator, ConversionResult
from markdowndown.resilience import CancellationToken, CircuitBreaker, CircuitState, RetryExecutor

ISSUE_URL = "https://github.com/acme/widgets/issues/42"
DOC_URL = "https://docs.google.com/document/d/abc123/edit"


class FakeConverter:
    """Converter whose results are scripted with an AsyncMock side effect."""

    def __init__(self, name, side_effect=None):
        self.name = name
        self.convert = AsyncMock(side_effect=side_effect)


def document(url, tag, content="# Converted\n"):
    return Document(content=content, source_url=url, source_tag=tag, exporter=tag.value)


def server_error(status=503):
    return NetworkError(
        NetworkErrorKind.SERVER_ERROR,
        ErrorContext(url=ISSUE_URL, operation="fetch", note=f"HTTP status {status}"),
        status_code=status,
    )


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=5, cooldown=60, clock=clock)


@pytest.fixture
def executor(breaker, clock, sleep):
    return RetryExecutor(breaker, max_attempts=3, base_delay=1.0, jitter=0, sleep=sleep, clock=clock)


@pytest.fixture
def github():
    return FakeConverter("github_issue")


@pytest.fixture
def html():
    return FakeConverter("html")


@pytest.fixture
def registry(github, html):
    registry = ConverterRegistry()
    registry.register(ContentSourceTag.GITHUB_ISSUE, github)
    registry.register(ContentSourceTag.HTML, html)
    return registry


@pytest.fixture
def orchestrator(registry, executor):
    return ConversionOrchestrator(registry, executor=executor)


class TestConvertUrl:
    """Dispatch and success path."""

    @pytest.mark.asyncio
    async def test_dispatches_by_tag(self, orchestrator, github, html):
        expected = document(ISSUE_URL, ContentSourceTag.GITHUB_ISSUE)
        github.convert.side_effect = [expected]

        result = await orchestrator.convert_url(ISSUE_URL)

        assert result is expected
        github.convert.assert_awaited_once_with(ISSUE_URL, None)
        html.convert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_document_untouched(self, orchestrator, github):
        expected = document(ISSUE_URL, ContentSourceTag.GITHUB_ISSUE, content="  raw  \n\n")
        github.convert.side_effect = [expected]

        result = await orchestrator.convert_url(ISSUE_URL)
        assert result.content == "  raw  \n\n"
        assert result.frontmatter is None

    @pytest.mark.asyncio
    async def test_passes_normalized_url(self, orchestrator, html):
        html.convert.side_effect = lambda url, credentials: document(url, ContentSourceTag.HTML)
        await orchestrator.convert_url("https://Example.com/page?utm_source=x")
        html.convert.assert_awaited_once_with("https://example.com/page", None)

    @pytest.mark.asyncio
    async def test_default_credentials(self, registry, executor, github):
        credentials = AuthConfig(github_token="ghp_default")
        orchestrator = ConversionOrchestrator(registry, executor=executor, credentials=credentials)
        github.convert.side_effect = [document(ISSUE_URL, ContentSourceTag.GITHUB_ISSUE)]

        await orchestrator.convert_url(ISSUE_URL)
        github.convert.assert_awaited_once_with(ISSUE_URL, credentials)

    @pytest.mark.asyncio
    async def test_call_credentials_win(self, registry, executor, github):
        orchestrator = ConversionOrchestrator(
            registry, executor=executor, credentials=AuthConfig(github_token="ghp_default")
        )
        override = AuthConfig(github_token="ghp_override")
        github.convert.side_effect = [document(ISSUE_URL, ContentSourceTag.GITHUB_ISSUE)]

        await orchestrator.convert_url(ISSUE_URL, credentials=override)
        github.convert.assert_awaited_once_with(ISSUE_URL, override)

    @pytest.mark.asyncio
    async def test_invalid_url(self, orchestrator, github, html):
        with pytest.raises(ValidationError):
            await orchestrator.convert_url("not a url")
        github.convert.assert_not_awaited()
        html.convert.assert_not_awaited()
        assert orchestrator.stats.conversions_failed == 1

    @pytest.mark.asyncio
    async def test_missing_converter(self, orchestrator):
        with pytest.raises(ConfigurationError) as exc_info:
            await orchestrator.convert_url(DOC_URL)
        error = exc_info.value
        assert error.sub_kind == ConfigurationErrorKind.MISSING_DEPENDENCY
        assert error.context.operation == "dispatch"
        assert error.context.source_tag == ContentSourceTag.GOOGLE_DOCS

    @pytest.mark.asyncio
    async def test_success_closes_half_open_circuit(self, orchestrator, breaker, clock, github):
        for _ in range(5):
            await breaker.record_result("github_issue", success=False)
        clock.advance(60)
        github.convert.side_effect = [document(ISSUE_URL, ContentSourceTag.GITHUB_ISSUE)]

        await orchestrator.convert_url(ISSUE_URL)
        assert breaker.state("github_issue") == CircuitState.CLOSED

    def test_classify(self, orchestrator):
        tag, normalized = orchestrator.classify(ISSUE_URL)
        assert tag == ContentSourceTag.GITHUB_ISSUE
        assert normalized == ISSUE_URL


class TestRetriesAndCircuit:
    """Retries and circuit breaking through the orchestrator."""

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, registry, executor, breaker, github):
        orchestrator = ConversionOrchestrator(registry, executor=executor, fallback=FallbackPolicy.disabled())
        github.convert.side_effect = server_error()

        with pytest.raises(NetworkError) as exc_info:
            await orchestrator.convert_url(ISSUE_URL)

        assert exc_info.value.status_code == 503
        assert github.convert.await_count == 3
        assert breaker.failure_count("github_issue") == 1
        assert orchestrator.stats.attempts == 3
        assert orchestrator.stats.retries == 2

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, registry, clock, sleep, github):
        breaker = CircuitBreaker(failure_threshold=1, cooldown=60, clock=clock)
        executor = RetryExecutor(breaker, max_attempts=1, sleep=sleep, clock=clock)
        orchestrator = ConversionOrchestrator(registry, executor=executor, fallback=FallbackPolicy.disabled())
        github.convert.side_effect = server_error()

        with pytest.raises(NetworkError):
            await orchestrator.convert_url(ISSUE_URL)
        assert github.convert.await_count == 1

        with pytest.raises(NetworkError) as exc_info:
            await orchestrator.convert_url(ISSUE_URL)

        error = exc_info.value
        assert error.sub_kind == NetworkErrorKind.CIRCUIT_OPEN
        assert "last failure: network.server_error(503)" in error.context.note
        assert github.convert.await_count == 1
        assert orchestrator.stats.circuit_rejections == 1

    @pytest.mark.asyncio
    async def test_open_circuit_emits_event(self, registry, clock, sleep, github):
        breaker = CircuitBreaker(failure_threshold=1, cooldown=60, clock=clock)
        await breaker.record_result("github_issue", success=False)
        executor = RetryExecutor(breaker, sleep=sleep, clock=clock)
        orchestrator = ConversionOrchestrator(registry, executor=executor)
        events = []

        with pytest.raises(NetworkError):
            await orchestrator.convert_url(ISSUE_URL, emit=events.append)

        assert EventType.CIRCUIT_OPEN in [e.type for e in events]
        assert EventType.FALLBACK_STARTED not in [e.type for e in events]

    @pytest.mark.asyncio
    async def test_half_open_trial_gets_one_attempt(self, registry, executor, breaker, clock, github):
        orchestrator = ConversionOrchestrator(registry, executor=executor, fallback=FallbackPolicy.disabled())
        for _ in range(5):
            await breaker.record_result("github_issue", success=False)
        clock.advance(60)
        github.convert.side_effect = server_error()

        with pytest.raises(NetworkError):
            await orchestrator.convert_url(ISSUE_URL)

        assert github.convert.await_count == 1
        assert breaker.state("github_issue") == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_cancelled_trial_does_not_block_circuit(self, orchestrator, breaker, clock, github):
        for _ in range(5):
            await breaker.record_result("github_issue", success=False)
        clock.advance(60)
        started = asyncio.Event()

        async def hang(url, credentials):
            started.set()
            await asyncio.Event().wait()

        github.convert.side_effect = hang
        task = asyncio.create_task(orchestrator.convert_url(ISSUE_URL))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        github.convert.side_effect = [document(ISSUE_URL, ContentSourceTag.GITHUB_ISSUE)]
        await orchestrator.convert_url(ISSUE_URL)
        assert breaker.state("github_issue") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_fallback_trial_does_not_block_circuit(self, orchestrator, breaker, clock, github, html):
        for _ in range(5):
            await breaker.record_result("html:github.com", success=False)
        clock.advance(60)
        started = asyncio.Event()

        async def hang(url, credentials):
            started.set()
            await asyncio.Event().wait()

        github.convert.side_effect = ContentError(ContentErrorKind.PARSING_FAILED)
        html.convert.side_effect = hang
        task = asyncio.create_task(orchestrator.convert_url(ISSUE_URL))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        decision = await breaker.before_call("html:github.com")
        assert decision.allowed
        assert decision.trial

    @pytest.mark.asyncio
    async def test_fallback_note_not_stored_in_circuit(self, registry, clock, sleep, github, html):
        breaker = CircuitBreaker(failure_threshold=1, cooldown=60, clock=clock)
        executor = RetryExecutor(breaker, max_attempts=1, sleep=sleep, clock=clock)
        orchestrator = ConversionOrchestrator(registry, executor=executor)
        github.convert.side_effect = server_error()
        html.convert.side_effect = ContentError(ContentErrorKind.EMPTY_CONTENT)

        with pytest.raises(NetworkError) as exc_info:
            await orchestrator.convert_url(ISSUE_URL)
        assert "fallback to html attempted" in exc_info.value.context.note

        stored = (await breaker.before_call("github_issue")).last_error
        assert stored.status_code == 503
        assert "fallback" not in stored.context.note

    @pytest.mark.asyncio
    async def test_html_hosts_have_separate_circuits(self, registry, clock, sleep, html):
        breaker = CircuitBreaker(failure_threshold=1, cooldown=60, clock=clock)
        executor = RetryExecutor(breaker, max_attempts=1, sleep=sleep, clock=clock)
        orchestrator = ConversionOrchestrator(registry, executor=executor)
        html.convert.side_effect = [server_error(), document("https://b.example/", ContentSourceTag.HTML)]

        with pytest.raises(NetworkError):
            await orchestrator.convert_url("https://a.example/")
        await orchestrator.convert_url("https://b.example/")

        assert breaker.state("html:a.example") == CircuitState.OPEN
        assert breaker.state("html:b.example") == CircuitState.CLOSED


class TestFallback:
    """Fallback from specialized converters to HTML."""

    @pytest.mark.asyncio
    async def test_parsing_failure_falls_back_to_html(self, orchestrator, github, html):
        github.convert.side_effect = ContentError(ContentErrorKind.PARSING_FAILED)
        fallback_doc = document(ISSUE_URL, ContentSourceTag.HTML)
        html.convert.side_effect = [fallback_doc]
        events = []

        result = await orchestrator.convert_url(ISSUE_URL, emit=events.append)

        assert result is fallback_doc
        assert github.convert.await_count == 1
        html.convert.assert_awaited_once_with(ISSUE_URL, None)
        started = [e for e in events if e.type == EventType.FALLBACK_STARTED]
        assert len(started) == 1
        assert started[0].source_tag == ContentSourceTag.GITHUB_ISSUE
        assert started[0].fallback_tag == ContentSourceTag.HTML
        assert orchestrator.stats.fallbacks_attempted == 1
        assert orchestrator.stats.fallbacks_succeeded == 1
        assert orchestrator.stats.conversions_succeeded == 1

    @pytest.mark.asyncio
    async def test_missing_token_is_terminal(self, orchestrator, github, html):
        github.convert.side_effect = AuthenticationError(AuthErrorKind.MISSING_TOKEN)

        with pytest.raises(AuthenticationError) as exc_info:
            await orchestrator.convert_url(ISSUE_URL)

        assert exc_info.value.sub_kind == AuthErrorKind.MISSING_TOKEN
        assert exc_info.value.context.source_tag == ContentSourceTag.GITHUB_ISSUE
        html.convert.assert_not_awaited()
        assert orchestrator.stats.fallbacks_attempted == 0

    @pytest.mark.asyncio
    async def test_fallback_failure_raises_original(self, orchestrator, github, html):
        original = ContentError(ContentErrorKind.PARSING_FAILED)
        github.convert.side_effect = original
        html.convert.side_effect = server_error()
        events = []

        with pytest.raises(ContentError) as exc_info:
            await orchestrator.convert_url(ISSUE_URL, emit=events.append)

        error = exc_info.value
        assert error is original
        assert "fallback to html attempted: network.server_error(503)" in error.context.note
        assert isinstance(error.__cause__, NetworkError)
        # The fallback gets a single attempt
        assert html.convert.await_count == 1
        assert EventType.FALLBACK_FAILED in [e.type for e in events]
        assert orchestrator.stats.fallbacks_succeeded == 0

    @pytest.mark.asyncio
    async def test_network_failure_falls_back_after_retries(self, orchestrator, github, html):
        github.convert.side_effect = server_error()
        html.convert.side_effect = [document(ISSUE_URL, ContentSourceTag.HTML)]

        result = await orchestrator.convert_url(ISSUE_URL)

        assert result.source_tag == ContentSourceTag.HTML
        assert github.convert.await_count == 3
        assert html.convert.await_count == 1

    @pytest.mark.asyncio
    async def test_html_failure_has_no_fallback(self, orchestrator, html):
        html.convert.side_effect = ContentError(ContentErrorKind.EMPTY_CONTENT)
        with pytest.raises(ContentError):
            await orchestrator.convert_url("https://example.com/")
        assert html.convert.await_count == 1

    @pytest.mark.asyncio
    async def test_disabled_policy(self, registry, executor, github, html):
        orchestrator = ConversionOrchestrator(registry, executor=executor, fallback=FallbackPolicy.disabled())
        github.convert.side_effect = ContentError(ContentErrorKind.PARSING_FAILED)

        with pytest.raises(ContentError):
            await orchestrator.convert_url(ISSUE_URL)
        html.convert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_fallback_when_cancelled(self, orchestrator, github, html):
        token = CancellationToken()

        async def convert(url, credentials):
            token.cancel()
            raise ContentError(ContentErrorKind.PARSING_FAILED)

        github.convert.side_effect = convert

        with pytest.raises(ContentError):
            await orchestrator.convert_url(ISSUE_URL, token=token)
        html.convert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fallback_skipped_when_html_circuit_open(self, orchestrator, breaker, github, html):
        for _ in range(5):
            await breaker.record_result("html:github.com", success=False)
        github.convert.side_effect = ContentError(ContentErrorKind.PARSING_FAILED)

        with pytest.raises(ContentError) as exc_info:
            await orchestrator.convert_url(ISSUE_URL)

        assert "fallback to html skipped" in exc_info.value.context.note
        html.convert.assert_not_awaited()


class TestConvertMany:
    """Batch conversion."""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self, orchestrator, github, html):
        def convert_html(url, credentials):
            if "bad" in url:
                raise ContentError(ContentErrorKind.EMPTY_CONTENT)
            return document(url, ContentSourceTag.HTML)

        html.convert.side_effect = convert_html
        github.convert.side_effect = lambda url, credentials: document(url, ContentSourceTag.GITHUB_ISSUE)
        urls = ["https://one.example/", "https://bad.example/", ISSUE_URL, "not a url"]

        results = await orchestrator.convert_many(urls, max_concurrent=2)

        assert [r.url for r in results] == urls
        assert [r.ok for r in results] == [True, False, True, False]
        assert results[0].document.source_url == "https://one.example/"
        assert results[2].document.source_tag == ContentSourceTag.GITHUB_ISSUE
        assert isinstance(results[3].error, ValidationError)
        assert orchestrator.stats.conversions_started == 4
        assert orchestrator.stats.success_rate == 50.0

    @pytest.mark.asyncio
    async def test_rejects_zero_concurrency(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.convert_many([ISSUE_URL], max_concurrent=0)

    @pytest.mark.asyncio
    async def test_empty(self, orchestrator):
        assert await orchestrator.convert_many([]) == []

    def test_result_ok(self):
        assert ConversionResult(url=ISSUE_URL).ok
        assert not ConversionResult(url=ISSUE_URL, error=ContentError(ContentErrorKind.EMPTY_CONTENT)).ok


class TestFromConfig:
    """Wiring from MarkdownDownConfig."""

    def test_builds_all_converters(self):
        config = MarkdownDownConfig()
        orchestrator = ConversionOrchestrator.from_config(config, AsyncMock())

        assert set(orchestrator.registry.supported_tags()) == set(ContentSourceTag)
        assert orchestrator.executor.max_attempts == 3
        assert orchestrator.breaker.failure_threshold == 5
        assert orchestrator.credentials is config.auth

    def test_uses_config_values(self):
        config = MarkdownDownConfig.model_validate(
            {
                "retry": {"max_attempts": 5, "total_timeout": 10},
                "circuit_breaker": {"failure_threshold": 2, "cooldown": 5},
                "fallback": {"enabled": False},
            }
        )
        orchestrator = ConversionOrchestrator.from_config(config, AsyncMock())

        assert orchestrator.executor.max_attempts == 5
        assert orchestrator.executor.total_timeout == 10
        assert orchestrator.breaker.cooldown == 5
        assert len(orchestrator.fallback) == 0
