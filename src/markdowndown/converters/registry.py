"""Mapping from source tags to converters."""

from __future__ import annotations

import logging
from typing import Optional

from ..conversion.frontmatter import FrontmatterBuilder
from ..conversion.markdown import HtmlToMarkdown
from ..http.protocols import Transport
from ..models.config import MarkdownDownConfig
from ..models.document import ContentSourceTag
from .github import GitHubIssueConverter
from .google_docs import GoogleDocsConverter
from .html import HtmlConverter
from .local import LocalFileConverter
from .office365 import Office365Converter
from .protocols import ConverterPort

logger = logging.getLogger(__name__)


class ConverterRegistry:
    """
    Holds at most one converter per ContentSourceTag.

    Populated once at startup; the orchestrator only reads from it.

    Example:
        registry = ConverterRegistry.default(client, config)
        converter = registry.get(ContentSourceTag.GITHUB_ISSUE)
    """

    def __init__(self) -> None:
        self._converters: dict[ContentSourceTag, ConverterPort] = {}

    def register(self, tag: ContentSourceTag, converter: ConverterPort) -> None:
        """Register ``converter`` for ``tag``, replacing any existing one."""
        if not isinstance(converter, ConverterPort):
            raise TypeError(f"{converter!r} does not implement ConverterPort")
        if tag in self._converters:
            logger.debug(f"Replacing converter for {tag.value}")
        self._converters[tag] = converter

    def get(self, tag: ContentSourceTag) -> Optional[ConverterPort]:
        return self._converters.get(tag)

    def supported_tags(self) -> list[ContentSourceTag]:
        return list(self._converters)

    def __contains__(self, tag: object) -> bool:
        return tag in self._converters

    def __len__(self) -> int:
        return len(self._converters)

    @classmethod
    def default(
        cls,
        transport: Transport,
        config: Optional[MarkdownDownConfig] = None,
    ) -> ConverterRegistry:
        """Registry with the built-in converter for every tag."""
        config = config or MarkdownDownConfig()
        frontmatter = (
            FrontmatterBuilder(config.output.custom_frontmatter_fields)
            if config.output.include_frontmatter
            else None
        )
        markdown = HtmlToMarkdown()

        registry = cls()
        registry.register(
            ContentSourceTag.HTML,
            HtmlConverter(transport, markdown=markdown, frontmatter=frontmatter),
        )
        registry.register(
            ContentSourceTag.GOOGLE_DOCS,
            GoogleDocsConverter(
                transport,
                export_formats=config.converters.google_export_formats,
                markdown=markdown,
                frontmatter=frontmatter,
            ),
        )
        registry.register(
            ContentSourceTag.GITHUB_ISSUE,
            GitHubIssueConverter(
                transport,
                api_base_url=config.converters.github_api_base_url,
                frontmatter=frontmatter,
            ),
        )
        registry.register(
            ContentSourceTag.OFFICE365,
            Office365Converter(
                transport,
                pandoc_path=config.converters.pandoc_path,
                markdown=markdown,
                frontmatter=frontmatter,
            ),
        )
        registry.register(ContentSourceTag.LOCAL_FILE, LocalFileConverter(frontmatter=frontmatter))
        return registry
