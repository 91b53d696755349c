"""Google Docs converter using the document export endpoint."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from ..conversion.frontmatter import FrontmatterBuilder
from ..conversion.markdown import HtmlToMarkdown
from ..errors import (
    ContentError,
    ContentErrorKind,
    ErrorContext,
    ErrorKind,
    MarkdownError,
    NetworkErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from ..http.protocols import Transport
from ..models.config import AuthConfig
from ..models.document import ContentSourceTag, Document
from .base import BaseConverter

logger = logging.getLogger(__name__)

EXPORT_URL = "https://docs.google.com/document/d/{document_id}/export?format={format}"

_ID_IN_PATH = re.compile(r"/(?:document|file)/d/([A-Za-z0-9_-]+)")

# Markers of an error page served with a 200 status
_ERROR_PAGE_MARKERS = (
    "sorry, the file you have requested does not exist",
    "access denied",
    "permission denied",
    "file not found",
    "error 404",
    "error 403",
)


def extract_document_id(url: str) -> Optional[str]:
    """
    Pull the document id out of a Docs or Drive URL.

    Handles ``/document/d/{id}/...``, ``/file/d/{id}/...`` and
    ``/open?id={id}``.
    """
    parsed = urlsplit(url)
    match = _ID_IN_PATH.search(parsed.path)
    if match:
        return match.group(1)
    ids = parse_qs(parsed.query).get("id")
    if ids and ids[0]:
        return ids[0]
    return None


def looks_valid(content: str, export_format: str) -> bool:
    """Reject error pages and bodies that don't match the requested format."""
    lowered = content.lower()
    if any(marker in lowered for marker in _ERROR_PAGE_MARKERS):
        return False
    head = lowered.lstrip()[:200]
    if export_format in ("md", "txt"):
        return not (head.startswith("<!doctype") or head.startswith("<html"))
    if export_format == "html":
        return "<html" in lowered or head.startswith("<!doctype")
    return True


class GoogleDocsConverter(BaseConverter):
    """
    Converts Google Docs through ``/export?format=...``.

    Formats are tried in order (markdown, then plain text, then HTML). A
    format is skipped when the export is rejected with a client error or
    the body is an error page; network and authentication failures are
    raised as-is.
    """

    name = "google_docs"
    source_tag = ContentSourceTag.GOOGLE_DOCS

    def __init__(
        self,
        transport: Transport,
        export_formats: Sequence[str] = ("md", "txt", "html"),
        markdown: Optional[HtmlToMarkdown] = None,
        frontmatter: Optional[FrontmatterBuilder] = None,
    ):
        super().__init__(frontmatter)
        self.transport = transport
        self.export_formats = tuple(export_formats)
        self.markdown = markdown or HtmlToMarkdown()

    @staticmethod
    def export_url(document_id: str, export_format: str) -> str:
        return EXPORT_URL.format(document_id=document_id, format=export_format)

    @staticmethod
    def _skippable(error: MarkdownError) -> bool:
        # 4xx other than 429: this export format is not available
        return (
            error.kind == ErrorKind.NETWORK
            and error.sub_kind == NetworkErrorKind.SERVER_ERROR
            and error.status_code is not None
            and 400 <= error.status_code < 500
        )

    async def convert(
        self,
        url: str,
        credentials: Optional[AuthConfig] = None,
    ) -> Document:
        document_id = extract_document_id(url)
        if not document_id:
            raise ValidationError(
                ValidationErrorKind.MISSING_PARAMETER,
                ErrorContext(url=url, operation="convert", source_tag=self.source_tag),
                message="No document id in Google Docs URL",
            )

        headers = {}
        if credentials is not None and credentials.google_api_key:
            headers["X-Goog-Api-Key"] = credentials.google_api_key

        last_error: Optional[MarkdownError] = None
        for export_format in self.export_formats:
            export_url = self.export_url(document_id, export_format)
            try:
                body = await self.transport.fetch_text(export_url, headers=headers or None)
            except MarkdownError as e:
                if not self._skippable(e):
                    raise
                logger.debug(f"Export as {export_format} rejected for {document_id}: {e}")
                last_error = e
                continue

            if not looks_valid(body, export_format):
                logger.debug(f"Export as {export_format} for {document_id} returned an error page")
                continue

            content = self.markdown.convert(body, url) if export_format == "html" else body.strip() + "\n"
            return self.make_document(
                content,
                url,
                {"document_id": document_id, "export_format": export_format},
            )

        if last_error is not None:
            raise last_error
        raise ContentError(
            ContentErrorKind.UNSUPPORTED_FORMAT,
            ErrorContext(url=url, operation="convert", source_tag=self.source_tag),
            message="No export format produced usable content",
        )
