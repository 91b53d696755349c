"""Generic HTML page converter."""

from __future__ import annotations

import logging
from typing import Optional

from ..conversion.frontmatter import FrontmatterBuilder
from ..conversion.markdown import HtmlToMarkdown, extract_title
from ..http.protocols import Transport
from ..models.config import AuthConfig
from ..models.document import ContentSourceTag, Document
from .base import BaseConverter

logger = logging.getLogger(__name__)


class HtmlConverter(BaseConverter):
    """
    Fetches any HTTP(S) page and converts it with html2text.

    Also serves as the fallback target for the specialized converters, so
    it must accept every URL they accept.

    Example:
        async with AsyncHttpClient() as client:
            converter = HtmlConverter(client)
            doc = await converter.convert("https://example.com/")
    """

    name = "html"
    source_tag = ContentSourceTag.HTML

    def __init__(
        self,
        transport: Transport,
        markdown: Optional[HtmlToMarkdown] = None,
        frontmatter: Optional[FrontmatterBuilder] = None,
    ):
        super().__init__(frontmatter)
        self.transport = transport
        self.markdown = markdown or HtmlToMarkdown()

    async def convert(
        self,
        url: str,
        credentials: Optional[AuthConfig] = None,
    ) -> Document:
        html = await self.transport.fetch_text(url)
        logger.debug(f"Fetched {len(html)} chars from {url}")

        content = self.markdown.convert(html, url)
        title = extract_title(html)
        return self.make_document(content, url, {"title": title} if title else None)
