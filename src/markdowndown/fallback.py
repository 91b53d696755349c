"""Table-driven fallback policy for failed conversions."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Optional

from .errors import ErrorKind
from .models.config import FallbackConfig
from .models.document import ContentSourceTag

# Never fall back on these, whatever the table says
NON_RECOVERABLE_KINDS = frozenset(
    {ErrorKind.AUTHENTICATION, ErrorKind.VALIDATION, ErrorKind.CONFIGURATION}
)

SPECIALIZED_TAGS = (
    ContentSourceTag.GOOGLE_DOCS,
    ContentSourceTag.OFFICE365,
    ContentSourceTag.GITHUB_ISSUE,
)

DEFAULT_FALLBACK_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.CONTENT, ErrorKind.CONVERTER})


class FallbackPolicy:
    """
    Maps ``(source_tag, error_kind)`` to an optional fallback source tag.

    The default table sends failed Google Docs, Office 365 and GitHub
    conversions to the generic HTML converter for network, content and
    converter errors.

    Example:
        policy = FallbackPolicy.default()
        policy.fallback_for(ContentSourceTag.GITHUB_ISSUE, ErrorKind.CONTENT)
        # -> ContentSourceTag.HTML
    """

    def __init__(
        self,
        table: Optional[Mapping[tuple[ContentSourceTag, ErrorKind], ContentSourceTag]] = None,
    ) -> None:
        self._table: dict[tuple[ContentSourceTag, ErrorKind], ContentSourceTag] = {}
        for (tag, kind), target in (table or {}).items():
            self.add(tag, [kind], target)

    @classmethod
    def default(cls) -> FallbackPolicy:
        """The built-in "specialized converter -> HTML" table."""
        policy = cls()
        for tag in SPECIALIZED_TAGS:
            policy.add(tag, DEFAULT_FALLBACK_KINDS, ContentSourceTag.HTML)
        return policy

    @classmethod
    def disabled(cls) -> FallbackPolicy:
        """A policy that never falls back."""
        return cls()

    @classmethod
    def from_config(cls, config: FallbackConfig) -> FallbackPolicy:
        """Build the policy from the ``fallback`` config section."""
        policy = cls()
        if not config.enabled:
            return policy
        for tag, rule in config.rules.items():
            policy.add(tag, [ErrorKind(kind) for kind in rule.error_kinds], rule.target)
        return policy

    def add(
        self,
        tag: ContentSourceTag,
        kinds: Iterable[ErrorKind],
        target: ContentSourceTag,
    ) -> None:
        """Register ``target`` as the fallback for ``tag`` failing with ``kinds``."""
        if target == tag:
            raise ValueError(f"A source cannot fall back to itself: {tag.value}")
        for kind in kinds:
            if kind in NON_RECOVERABLE_KINDS:
                raise ValueError(f"{kind.value} errors cannot trigger a fallback")
            self._table[(tag, kind)] = target

    def fallback_for(self, tag: ContentSourceTag, kind: ErrorKind) -> Optional[ContentSourceTag]:
        """Return the fallback tag, or None if this failure is terminal."""
        if kind in NON_RECOVERABLE_KINDS:
            return None
        return self._table.get((tag, kind))

    def __len__(self) -> int:
        return len(self._table)
