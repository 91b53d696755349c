"""Protocol definitions for the HTTP transport."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class HttpResponse:
    """
    Immutable HTTP response returned by a Transport.

    Attributes:
        status_code: HTTP status code (always 2xx; other codes raise)
        content: Raw response body
        content_type: Content-Type header value
        headers: All response headers
        url: Final URL after any redirects
    """

    status_code: int
    content: bytes
    content_type: str
    headers: dict[str, str]
    url: str

    @property
    def charset(self) -> str | None:
        """Charset declared in the Content-Type header, if any."""
        for part in self.content_type.split(";"):
            part = part.strip()
            if part.lower().startswith("charset="):
                return part.split("=", 1)[1].strip().strip("\"'") or None
        return None

    def text(self) -> str:
        """
        Decode the body.

        Uses the Content-Type charset when it is valid, otherwise UTF-8
        with replacement characters.
        """
        encoding = self.charset
        if encoding:
            try:
                return self.content.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                pass
        return self.content.decode("utf-8", errors="replace")


class Transport(Protocol):
    """
    What converters need from the network.

    Implementations map non-2xx responses and connection failures to
    ``MarkdownError`` subclasses before returning, and never retry;
    retries belong to the orchestrator.
    """

    async def get(
        self,
        url: str,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """
        Perform an HTTP GET request.

        Raises:
            MarkdownError: On non-2xx status, timeout or connection failure
        """
        ...

    async def fetch_text(
        self,
        url: str,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """GET ``url`` and decode the body."""
        ...

    async def fetch_bytes(
        self,
        url: str,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> bytes:
        """GET ``url`` and return the raw body."""
        ...
