"""HTML to Markdown conversion and frontmatter."""

from .frontmatter import FrontmatterBuilder, parse_frontmatter
from .markdown import HtmlToMarkdown, extract_title

__all__ = ["FrontmatterBuilder", "HtmlToMarkdown", "extract_title", "parse_frontmatter"]
