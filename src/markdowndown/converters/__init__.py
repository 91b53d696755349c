"""Source-specific converters."""

from .base import BaseConverter
from .github import GitHubIssueConverter, parse_github_url
from .google_docs import GoogleDocsConverter, extract_document_id
from .html import HtmlConverter
from .local import LocalFileConverter
from .office365 import Office365Converter
from .protocols import ConverterPort
from .registry import ConverterRegistry

__all__ = [
    "BaseConverter",
    "ConverterPort",
    "ConverterRegistry",
    "GitHubIssueConverter",
    "GoogleDocsConverter",
    "HtmlConverter",
    "LocalFileConverter",
    "Office365Converter",
    "extract_document_id",
    "parse_github_url",
]
