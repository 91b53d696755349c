"""HTML to Markdown conversion."""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin

import html2text
from bs4 import BeautifulSoup

from ..errors import ContentError, ContentErrorKind, ErrorContext

logger = logging.getLogger(__name__)


class HtmlToMarkdown:
    """
    Converts HTML content to Markdown.

    Uses html2text. The whole document is converted; nothing is stripped.

    Example:
        converter = HtmlToMarkdown()
        markdown = converter.convert(html_string, "https://docs.example.com/page")
    """

    def __init__(
        self,
        body_width: int = 0,
        inline_links: bool = True,
        ignore_images: bool = False,
        ignore_tables: bool = False,
        unicode_snob: bool = True,
        mark_code: bool = True,
    ):
        """
        Args:
            body_width: Max line width (0 = no wrapping)
            inline_links: Use inline [text](url) vs reference style
            ignore_images: Skip image conversion
            ignore_tables: Skip table conversion
            unicode_snob: Use Unicode chars where possible
            mark_code: Mark code blocks with backticks
        """
        self.body_width = body_width
        self.inline_links = inline_links
        self.ignore_images = ignore_images
        self.ignore_tables = ignore_tables
        self.unicode_snob = unicode_snob
        self.mark_code = mark_code

    def _make_parser(self, base_url: str) -> html2text.HTML2Text:
        # HTML2Text keeps state between handle() calls; one per conversion
        parser = html2text.HTML2Text(baseurl=base_url, bodywidth=self.body_width)
        parser.inline_links = self.inline_links
        parser.protect_links = True
        parser.wrap_links = False
        parser.ignore_images = self.ignore_images
        parser.ignore_tables = self.ignore_tables
        parser.unicode_snob = self.unicode_snob
        parser.mark_code = self.mark_code
        parser.default_image_alt = ""
        return parser

    @staticmethod
    def _tidy(markdown: str) -> str:
        markdown = re.sub(r"\n{3,}", "\n\n", markdown)
        markdown = "\n".join(line.rstrip() for line in markdown.split("\n"))
        return markdown.strip() + "\n"

    @staticmethod
    def _absolute_links(markdown: str, base_url: str) -> str:
        def replace_link(match: re.Match[str]) -> str:
            text, url = match.group(1), match.group(2)
            # <...> targets come from protect_links and are already resolved
            if not base_url or url.startswith(("#", "<", "http://", "https://", "mailto:", "tel:")):
                return match.group(0)
            return f"[{text}]({urljoin(base_url, url)})"

        return re.sub(r"\[([^\]]+)\]\(([^)\s]+)\)", replace_link, markdown)

    def convert(self, html: str, url: str) -> str:
        """
        Convert HTML to Markdown.

        Args:
            html: HTML content string
            url: Source URL for resolving relative links

        Returns:
            Markdown string ending in a single newline

        Raises:
            ContentError: PARSING_FAILED if html2text cannot handle the input,
                EMPTY_CONTENT if nothing but whitespace remains
        """
        try:
            markdown = self._make_parser(url).handle(html)
        except Exception as e:
            logger.error(f"Failed to convert HTML to Markdown for {url}: {e}")
            raise ContentError(
                ContentErrorKind.PARSING_FAILED,
                ErrorContext(url=url, operation="html to markdown", note=repr(e)),
            ) from e

        if not markdown.strip():
            raise ContentError(
                ContentErrorKind.EMPTY_CONTENT,
                ErrorContext(url=url, operation="html to markdown"),
                message="Page produced no markdown",
            )
        return self._absolute_links(self._tidy(markdown), url)


def extract_title(html: str) -> str | None:
    """Return the page ``<title>``, or the first ``<h1>``, if present."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in (soup.title, soup.find("h1")):
        if tag is not None:
            text = tag.get_text(strip=True)
            if text:
                return text
    return None
