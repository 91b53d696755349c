"""Source tags and the converted document value."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ContentSourceTag(str, Enum):
    """Where a URL's content comes from. Assigned once per URL."""

    HTML = "html"
    GOOGLE_DOCS = "google_docs"
    OFFICE365 = "office365"
    GITHUB_ISSUE = "github_issue"
    LOCAL_FILE = "local_file"


@dataclass(frozen=True)
class Document:
    """
    Markdown produced by a converter.

    The orchestrator passes documents through untouched; only converters
    create them and only callers look inside.

    Attributes:
        content: Markdown body (without frontmatter)
        source_url: Normalized URL the content was produced from
        source_tag: Tag of the converter that produced it
        exporter: Name of the converter
        frontmatter: Rendered YAML frontmatter block, or None
        date_downloaded: When the content was fetched (UTC)
        metadata: Converter specific extras (title, repository, ...)
    """

    content: str
    source_url: str
    source_tag: ContentSourceTag
    exporter: str
    frontmatter: str | None = None
    date_downloaded: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        """Return frontmatter followed by content."""
        if self.frontmatter:
            return f"{self.frontmatter}{self.content}"
        return self.content

    def __str__(self) -> str:
        return self.render()
