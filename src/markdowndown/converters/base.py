"""Shared plumbing for converters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from ..conversion.frontmatter import FrontmatterBuilder
from ..errors import ContentError, ContentErrorKind, ErrorContext
from ..models.document import ContentSourceTag, Document


class BaseConverter:
    """
    Builds Documents with optional frontmatter.

    Subclasses set ``name`` and ``source_tag`` and implement ``convert``.
    """

    name: str = "base"
    source_tag: ContentSourceTag = ContentSourceTag.HTML

    def __init__(self, frontmatter: Optional[FrontmatterBuilder] = None):
        """
        Args:
            frontmatter: Builder for the YAML header; None disables frontmatter
        """
        self.frontmatter = frontmatter

    def make_document(
        self,
        content: str,
        url: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Document:
        """Wrap converted markdown, rejecting whitespace-only content."""
        if not content.strip():
            raise ContentError(
                ContentErrorKind.EMPTY_CONTENT,
                ErrorContext(url=url, operation="convert", source_tag=self.source_tag),
                message=f"{self.name} produced no content",
            )
        metadata = dict(metadata or {})
        now = datetime.now(timezone.utc)
        header = None
        if self.frontmatter is not None:
            header = self.frontmatter.build(
                source_url=url,
                exporter=self.name,
                date_downloaded=now,
                **{k: v for k, v in metadata.items() if isinstance(v, (str, int, float, bool))},
            )
        return Document(
            content=content,
            source_url=url,
            source_tag=self.source_tag,
            exporter=self.name,
            frontmatter=header,
            date_downloaded=now,
            metadata=metadata,
        )
