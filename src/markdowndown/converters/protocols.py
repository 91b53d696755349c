"""Protocol definitions for source converters."""

from typing import Optional, Protocol, runtime_checkable

from ..models.config import AuthConfig
from ..models.document import Document


@runtime_checkable
class ConverterPort(Protocol):
    """
    Protocol every source-specific converter implements.

    Error Handling Contract:
    - Raise a MarkdownError subclass for every failure the converter can
      classify (HTTP status, missing token, empty body, bad JSON).
    - Anything else that escapes is reported as Converter.ProcessingError.
    - Never retry internally; the orchestrator owns retries and fallback.

    Example implementation:
        class TextConverter:
            name = "text"

            async def convert(
                self,
                url: str,
                credentials: Optional[AuthConfig] = None,
            ) -> Document:
                text = await self.transport.fetch_text(url)
                return Document(text, url, ContentSourceTag.HTML, self.name)
    """

    name: str

    async def convert(
        self,
        url: str,
        credentials: Optional[AuthConfig] = None,
    ) -> Document:
        """
        Convert the resource at ``url`` into a Document.

        Args:
            url: Normalized URL (or local path) from the classifier
            credentials: Tokens to pass through to the remote service

        Returns:
            The converted Document

        Raises:
            MarkdownError: On any classified failure
        """
        ...
