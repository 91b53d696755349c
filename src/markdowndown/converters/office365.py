"""Office 365 (SharePoint / OneDrive) document converter."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from ..conversion.frontmatter import FrontmatterBuilder
from ..conversion.markdown import HtmlToMarkdown, extract_title
from ..errors import (
    ContentError,
    ContentErrorKind,
    ConverterError,
    ConverterErrorKind,
    ErrorContext,
)
from ..http.protocols import HttpResponse, Transport
from ..models.config import AuthConfig
from ..models.document import ContentSourceTag, Document
from .base import BaseConverter

logger = logging.getLogger(__name__)

# pandoc reader names by file extension
PANDOC_FORMATS = {
    ".docx": "docx",
    ".odt": "odt",
    ".pptx": "pptx",
}

_TEXT_TYPES = ("text/markdown", "text/plain", "text/x-markdown")


def download_url(url: str) -> str:
    """
    Turn a SharePoint document URL into a direct download URL.

    Only SharePoint paths ending in a file name get ``download=1``; other
    links (sharing links, OneDrive personal) are fetched as given and
    rely on redirects.
    """
    parsed = urlsplit(url)
    host = (parsed.hostname or "").lower()
    if host.endswith(".sharepoint.com") and os.path.splitext(parsed.path)[1].lower() in PANDOC_FORMATS:
        query = f"{parsed.query}&download=1" if parsed.query else "download=1"
        return urlunsplit(parsed._replace(query=query))
    return url


def document_extension(url: str) -> str:
    return os.path.splitext(urlsplit(url).path)[1].lower()


class Office365Converter(BaseConverter):
    """
    Converts SharePoint, OneDrive and Office Online documents.

    HTML and text responses are converted directly. Binary Office files
    (docx, pptx, ...) are handed to pandoc when ``pandoc_path`` is set;
    otherwise they fail with Converter.UnsupportedOperation, which lets
    the HTML fallback take over.

    The bearer token from ``AuthConfig.office365_token`` is sent as-is.
    """

    name = "office365"
    source_tag = ContentSourceTag.OFFICE365

    def __init__(
        self,
        transport: Transport,
        pandoc_path: Optional[str] = None,
        markdown: Optional[HtmlToMarkdown] = None,
        frontmatter: Optional[FrontmatterBuilder] = None,
    ):
        super().__init__(frontmatter)
        self.transport = transport
        self.pandoc_path = pandoc_path
        self.markdown = markdown or HtmlToMarkdown()

    async def convert(
        self,
        url: str,
        credentials: Optional[AuthConfig] = None,
    ) -> Document:
        headers = {}
        if credentials is not None and credentials.office365_token:
            headers["Authorization"] = f"Bearer {credentials.office365_token}"

        response = await self.transport.get(download_url(url), headers=headers or None)
        content_type = response.content_type.split(";")[0].strip().lower()
        metadata: dict = {"document_type": document_extension(url).lstrip(".") or "page"}

        if content_type in ("text/html", "application/xhtml+xml"):
            html = response.text()
            title = extract_title(html)
            if title:
                metadata["title"] = title
            return self.make_document(self.markdown.convert(html, url), url, metadata)

        if content_type in _TEXT_TYPES:
            text = response.text()
            return self.make_document(text.strip() + "\n", url, metadata)

        extension = document_extension(str(response.url)) or document_extension(url)
        reader = PANDOC_FORMATS.get(extension)
        if reader is None:
            raise ContentError(
                ContentErrorKind.UNSUPPORTED_FORMAT,
                ErrorContext(url=url, operation="convert", source_tag=self.source_tag),
                message=f"Unsupported Office 365 content type: {content_type or 'unknown'}",
            )
        if not self.pandoc_path:
            raise ConverterError(
                ConverterErrorKind.UNSUPPORTED_OPERATION,
                ErrorContext(url=url, operation="convert", source_tag=self.source_tag),
                message=f"Converting {extension} files requires pandoc (set converters.pandoc_path)",
            )
        content = await self._run_pandoc(response, reader, url)
        return self.make_document(content, url, metadata)

    async def _run_pandoc(self, response: HttpResponse, reader: str, url: str) -> str:
        """Convert a binary document with pandoc to GitHub-flavored markdown."""
        context = ErrorContext(url=url, operation="pandoc", source_tag=self.source_tag)
        with tempfile.TemporaryDirectory(prefix="markdowndown-") as workdir:
            source = os.path.join(workdir, f"document.{reader}")
            with open(source, "wb") as f:
                f.write(response.content)
            try:
                proc = await asyncio.create_subprocess_exec(
                    self.pandoc_path,
                    "--from",
                    reader,
                    "--to",
                    "gfm",
                    source,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise ConverterError(
                    ConverterErrorKind.EXTERNAL_TOOL_FAILED,
                    context.with_note(repr(e)),
                    message=f"Could not start pandoc at {self.pandoc_path}",
                ) from e
            stdout, stderr = await proc.communicate()

        if proc.returncode != 0:
            raise ConverterError(
                ConverterErrorKind.EXTERNAL_TOOL_FAILED,
                context.with_note(stderr.decode("utf-8", errors="replace").strip()[:500]),
                message=f"pandoc exited with status {proc.returncode}",
            )
        logger.debug(f"pandoc converted {len(response.content)} bytes from {url}")
        return stdout.decode("utf-8", errors="replace")
