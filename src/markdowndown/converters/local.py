"""Local file converter."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from ..conversion.frontmatter import FrontmatterBuilder
from ..detection import normalize_local_path
from ..errors import (
    ContentError,
    ContentErrorKind,
    ErrorContext,
    ValidationError,
    ValidationErrorKind,
)
from ..models.config import AuthConfig
from ..models.document import ContentSourceTag, Document
from .base import BaseConverter

logger = logging.getLogger(__name__)


class LocalFileConverter(BaseConverter):
    """
    Reads a local file (plain path or ``file://`` URL) as markdown.

    The file is read in the default executor so the event loop is never
    blocked on disk I/O.
    """

    name = "local_file"
    source_tag = ContentSourceTag.LOCAL_FILE

    def __init__(self, frontmatter: Optional[FrontmatterBuilder] = None):
        super().__init__(frontmatter)

    def _read(self, path: Path, url: str) -> str:
        context = ErrorContext(url=url, operation="read file", source_tag=self.source_tag)
        if not path.exists():
            raise ValidationError(
                ValidationErrorKind.INVALID_FORMAT,
                context.with_note("file does not exist"),
            )
        if not path.is_file():
            raise ValidationError(
                ValidationErrorKind.INVALID_FORMAT,
                context.with_note("path is not a regular file"),
            )
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ContentError(
                ContentErrorKind.UNSUPPORTED_FORMAT,
                context.with_note("file is not UTF-8 text"),
            ) from e
        except OSError as e:
            raise ContentError(ContentErrorKind.PARSING_FAILED, context.with_note(repr(e))) from e

    async def convert(
        self,
        url: str,
        credentials: Optional[AuthConfig] = None,
    ) -> Document:
        path = Path(normalize_local_path(url)).expanduser()
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self._read, path, url)
        logger.debug(f"Read {len(text)} chars from {path}")
        return self.make_document(text, url, {"file_name": path.name})
