"""Async HTTP transport with per-host rate limiting and error mapping."""

from __future__ import annotations

import logging
from types import TracebackType

import aiohttp

from ..errors import (
    ContentError,
    ContentErrorKind,
    ErrorContext,
    MarkdownError,
    error_from_status,
    parse_retry_after,
    translate_exception,
)
from ..models.config import HttpConfig
from .protocols import HttpResponse
from .rate_limiter import PerHostRateLimiter

logger = logging.getLogger(__name__)

_CREDENTIAL_HEADERS = ("authorization", "x-api-key", "x-goog-api-key")


class AsyncHttpClient:
    """
    Async HTTP client that turns every failure into a ``MarkdownError``.

    Features:
    - Per-host rate limiting via PerHostRateLimiter
    - Content size limits to prevent memory exhaustion
    - Status mapping: 401/403 to authentication errors, 429 to rate
      limiting (with Retry-After), other non-2xx to server errors
    - No retries; one call is one request

    Example:
        client = AsyncHttpClient(user_agent="markdowndown/0.1")

        async with client:
            html = await client.fetch_text("https://example.com")
    """

    MAX_CONTENT_SIZE = 50 * 1024 * 1024  # 50 MB

    def __init__(
        self,
        rate_limiter: PerHostRateLimiter | None = None,
        max_content_size: int = MAX_CONTENT_SIZE,
        user_agent: str | None = None,
        proxy: str | None = None,
        default_timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize the HTTP client.

        Args:
            rate_limiter: Per-host rate limiter (a permissive one if None)
            max_content_size: Maximum response size in bytes
            user_agent: Custom User-Agent string
            proxy: Proxy URL
            default_timeout: Per-request timeout in seconds
            session: Existing aiohttp session to use; it is not closed on exit
        """
        self._rate_limiter = rate_limiter or PerHostRateLimiter()
        self._max_content_size = max_content_size
        self._proxy = proxy
        self._default_timeout = default_timeout
        self._user_agent = user_agent or "markdowndown/0.1"

        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: HttpConfig) -> AsyncHttpClient:
        """Build a client from the ``http`` config section."""
        return cls(
            rate_limiter=PerHostRateLimiter(
                default_delay=config.per_host_delay,
                default_concurrent=config.per_host_concurrent,
            ),
            max_content_size=config.max_content_size,
            user_agent=config.user_agent,
            proxy=config.proxy,
            default_timeout=config.timeout,
        )

    async def __aenter__(self) -> AsyncHttpClient:
        """Enter async context and create session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(
                limit=100,
                limit_per_host=10,
                ttl_dns_cache=300,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"User-Agent": self._user_agent},
            )
            self._owns_session = True
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit async context and close session."""
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def get(
        self,
        url: str,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """
        Perform one HTTP GET request.

        Args:
            url: The URL to fetch
            timeout: Request timeout in seconds (uses default if None)
            headers: Optional additional headers

        Returns:
            HttpResponse for a 2xx status

        Raises:
            AuthenticationError: On 401/403
            NetworkError: On 429, other non-2xx, timeouts and connection failures
            ContentError: When the body exceeds the size limit
        """
        if self._session is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        timeout_val = timeout or self._default_timeout
        request_headers = dict(headers or {})
        credentials_sent = any(name.lower() in _CREDENTIAL_HEADERS for name in request_headers)

        try:
            async with (
                self._rate_limiter.limit(url),
                self._session.get(
                    url,
                    timeout=aiohttp.ClientTimeout(total=timeout_val),
                    headers=request_headers,
                    proxy=self._proxy,
                    allow_redirects=True,
                ) as response,
            ):
                if not 200 <= response.status < 300:
                    logger.debug(f"Got {response.status} for {url}")
                    raise error_from_status(
                        response.status,
                        url,
                        retry_after=parse_retry_after(response.headers.get("Retry-After")),
                        credentials_sent=credentials_sent,
                    )

                content_length = response.headers.get("Content-Length")
                if content_length and content_length.isdigit() and int(content_length) > self._max_content_size:
                    raise self._too_large(url, content_length)

                content = bytearray()
                async for chunk in response.content.iter_chunked(8192):
                    content.extend(chunk)
                    if len(content) > self._max_content_size:
                        raise self._too_large(url, f">{self._max_content_size}")

                return HttpResponse(
                    status_code=response.status,
                    content=bytes(content),
                    content_type=response.headers.get("Content-Type", ""),
                    headers=dict(response.headers),
                    url=str(response.url),
                )
        except MarkdownError:
            raise
        except Exception as e:
            logger.debug(f"HTTP fetch error for {url}: {e!r}")
            raise translate_exception(e, url, "fetch") from e

    def _too_large(self, url: str, size: str) -> ContentError:
        return ContentError(
            ContentErrorKind.UNSUPPORTED_FORMAT,
            ErrorContext(url=url, operation="fetch"),
            message=f"Content too large: {size} bytes",
        )

    async def fetch_bytes(
        self,
        url: str,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> bytes:
        response = await self.get(url, timeout=timeout, headers=headers)
        return response.content

    async def fetch_text(
        self,
        url: str,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """GET ``url`` and decode it with the declared charset, else UTF-8."""
        response = await self.get(url, timeout=timeout, headers=headers)
        return response.text()
