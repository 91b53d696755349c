"""YAML frontmatter for converted documents."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import yaml


class FrontmatterBuilder:
    """
    Builds the YAML block placed ahead of each converted document.

    Always writes ``source_url``, ``exporter`` and ``date_downloaded``;
    extra fields follow in insertion order. Fields set to None are skipped.

    Example:
        builder = FrontmatterBuilder(custom_fields={"project": "docs"})
        block = builder.build(
            source_url="https://github.com/acme/widgets/issues/42",
            exporter="github_issue",
            title="Widget crashes on start",
        )
    """

    def __init__(self, custom_fields: Optional[dict[str, str]] = None):
        self.custom_fields = dict(custom_fields or {})

    def build(
        self,
        source_url: str,
        exporter: str,
        date_downloaded: Optional[datetime] = None,
        **extra_fields: Any,
    ) -> str:
        """
        Build YAML frontmatter string.

        Returns:
            YAML frontmatter (with --- delimiters and a trailing blank line)
        """
        when = date_downloaded or datetime.now(timezone.utc)
        data: dict[str, Any] = {
            "source_url": source_url,
            "exporter": exporter,
            "date_downloaded": when.isoformat(),
        }
        for key, value in {**self.custom_fields, **extra_fields}.items():
            if value is not None and key not in data:
                data[key] = value

        body = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
        return f"---\n{body}---\n\n"


def parse_frontmatter(markdown: str) -> tuple[dict[str, Any], str]:
    """
    Split a rendered document into its frontmatter fields and body.

    Returns ``({}, markdown)`` when there is no frontmatter block.
    """
    if not markdown.startswith("---\n"):
        return {}, markdown
    end = markdown.find("\n---\n", 4)
    if end == -1:
        return {}, markdown
    try:
        data = yaml.safe_load(markdown[4:end]) or {}
    except yaml.YAMLError:
        return {}, markdown
    if not isinstance(data, dict):
        return {}, markdown
    return data, markdown[end + len("\n---\n") :].lstrip("\n")
