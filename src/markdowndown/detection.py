"""URL classification and normalization.

Classification is pure: no I/O, no clock, no randomness. The same raw URL
always yields the same ``Classification``.

Example:
    classifier = UrlClassifier()
    result = classifier.classify("https://github.com/acme/widgets/issues/42")
    assert result.tag == ContentSourceTag.GITHUB_ISSUE
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, Sequence
from urllib.parse import SplitResult, unquote_plus, urlsplit, urlunsplit

from .errors import (
    ConfigurationError,
    ConfigurationErrorKind,
    ErrorContext,
    ValidationError,
    ValidationErrorKind,
)
from .models.document import ContentSourceTag

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "ref",
        "source",
        "campaign",
        "medium",
        "term",
        "gclid",
        "fbclid",
        "msclkid",
        "_ga",
        "_gid",
        "mc_cid",
        "mc_eid",
    }
)

NON_FILE_SCHEMES = ("data:", "javascript:", "mailto:", "ftp:", "tel:", "sms:", "http:", "https:")

COMMON_TLDS = frozenset({"com", "org", "net", "edu", "gov", "mil", "int", "io", "co"})

FILE_EXTENSIONS = frozenset(
    {
        "md", "txt", "json", "xml", "yaml", "yml", "toml", "ini", "cfg", "conf", "py",
        "rs", "js", "ts", "html", "css", "java", "cpp", "c", "h", "pdf", "doc", "docx",
        "png", "jpg", "jpeg", "gif", "svg",
    }
)

EXTENSIONLESS_FILES = frozenset(
    {
        "Makefile",
        "README",
        "LICENSE",
        "CHANGELOG",
        "CONTRIBUTING",
        "Dockerfile",
        "Vagrantfile",
    }
)

_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")

# SharePoint / OneDrive paths that identify an actual document
_OFFICE_DOC_PATH = re.compile(
    r"(/:[wxpb]:/|/_layouts/15/(doc|doc2|wopiframe)\.aspx|\.(docx?|xlsx?|pptx?)$)",
    re.IGNORECASE,
)


class Classification(NamedTuple):
    """Result of classifying a URL."""

    tag: ContentSourceTag
    normalized_url: str


@dataclass(frozen=True)
class ClassificationRule:
    """
    One entry of a classification ruleset.

    Rules are tried in descending ``priority``; the first whose predicate
    accepts the parsed URL decides the tag.
    """

    name: str
    tag: ContentSourceTag
    priority: int
    predicate: Callable[[SplitResult], bool]

    def matches(self, url: SplitResult) -> bool:
        return self.predicate(url)


def is_local_file_path(value: str) -> bool:
    """
    Check whether ``value`` names a local file rather than a web URL.

    Accepts ``file://`` URLs, absolute and ``./``/``../`` paths, Windows
    drive paths, relative paths containing separators, names with a known
    file extension, and well-known extensionless files like ``README``.
    """
    text = value.strip()
    if not text:
        return False

    if text.startswith("file://"):
        return True
    if text.startswith("//"):
        # protocol-relative URL
        return False
    if text.startswith("/") or text.startswith("./") or text.startswith("../"):
        return True
    if _WINDOWS_DRIVE.match(text):
        return True
    if "://" in text or text.startswith(NON_FILE_SCHEMES) or text.startswith("www."):
        return False
    if " " in text:
        return False

    if "/" in text or "\\" in text:
        return True

    if "." in text:
        parts = text.split(".")
        if len(parts) == 2 and parts[1] in COMMON_TLDS:
            return False
        if parts[-1] in FILE_EXTENSIONS:
            return True
        return ".." not in text and text.count(".") <= 2 and parts[-1] not in COMMON_TLDS

    return text in EXTENSIONLESS_FILES


def normalize_local_path(value: str) -> str:
    """Turn ``file://`` URLs into plain paths; leave other paths alone."""
    text = value.strip()
    if text.startswith("file://"):
        return text[len("file://") :]
    return text


def _host(url: SplitResult) -> str:
    return (url.hostname or "").lower()


def _path_segments(url: SplitResult) -> list[str]:
    return [segment for segment in url.path.split("/") if segment]


def is_github_issue(url: SplitResult) -> bool:
    """github.com/{owner}/{repo}/(issues|pull)/{n} or the API equivalent."""
    host = _host(url)
    segments = _path_segments(url)
    if host == "github.com":
        return len(segments) >= 4 and segments[2] in ("issues", "pull") and segments[3].isdigit()
    if host == "api.github.com":
        return (
            len(segments) >= 5
            and segments[0] == "repos"
            and segments[3] in ("issues", "pulls")
            and segments[4].isdigit()
        )
    return False


def is_google_doc(url: SplitResult) -> bool:
    """Google Docs documents and Google Drive files."""
    host = _host(url)
    if host == "docs.google.com":
        return url.path.startswith("/document/")
    if host == "drive.google.com":
        if url.path.startswith("/file/"):
            return True
        return url.path.startswith("/open") and "id=" in url.query
    return False


def is_office365_document(url: SplitResult) -> bool:
    """SharePoint, OneDrive and Office Online URLs that point at a document."""
    host = _host(url)
    if host.endswith(".sharepoint.com") or host == "sharepoint.com":
        return bool(_OFFICE_DOC_PATH.search(url.path))
    if host == "onedrive.live.com":
        return "resid=" in url.query or "cid=" in url.query or url.path.startswith("/edit")
    if host == "1drv.ms":
        return len(_path_segments(url)) >= 2
    if host in ("office.com", "www.office.com") or host.endswith(".officeapps.live.com"):
        return bool(_OFFICE_DOC_PATH.search(url.path)) or "src=" in url.query
    return False


def is_http_url(url: SplitResult) -> bool:
    return url.scheme in ("http", "https") and bool(url.hostname)


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("github_issue", ContentSourceTag.GITHUB_ISSUE, 100, is_github_issue),
    ClassificationRule("google_docs", ContentSourceTag.GOOGLE_DOCS, 100, is_google_doc),
    ClassificationRule("office365", ContentSourceTag.OFFICE365, 90, is_office365_document),
    ClassificationRule("html", ContentSourceTag.HTML, 0, is_http_url),
)


class UrlClassifier:
    """
    Classifies URLs into content sources.

    The ruleset must contain exactly one lowest-priority rule and it must be
    the generic HTML rule, so every valid HTTP(S) URL gets a tag.
    """

    def __init__(
        self,
        rules: Optional[Sequence[ClassificationRule]] = None,
        tracking_params: Optional[frozenset[str]] = None,
    ) -> None:
        ruleset = list(rules) if rules is not None else list(DEFAULT_RULES)
        self._validate_ruleset(ruleset)
        # sorted() is stable, so equal priorities keep their given order
        self._rules = sorted(ruleset, key=lambda rule: rule.priority, reverse=True)
        self._tracking_params = TRACKING_PARAMS if tracking_params is None else tracking_params

    @staticmethod
    def _validate_ruleset(rules: list[ClassificationRule]) -> None:
        if not rules:
            raise ConfigurationError(
                ConfigurationErrorKind.INVALID_CONFIG,
                ErrorContext(url="", operation="configure classifier"),
                message="Classification ruleset is empty",
            )
        lowest = min(rule.priority for rule in rules)
        bottom = [rule for rule in rules if rule.priority == lowest]
        if len(bottom) != 1 or bottom[0].tag != ContentSourceTag.HTML:
            raise ConfigurationError(
                ConfigurationErrorKind.INVALID_CONFIG,
                ErrorContext(url="", operation="configure classifier"),
                message="Ruleset needs exactly one lowest-priority rule, the generic HTML rule",
            )

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return tuple(self._rules)

    def _invalid(self, raw_url: str, note: str) -> ValidationError:
        return ValidationError(
            ValidationErrorKind.INVALID_URL,
            ErrorContext(url=raw_url, operation="classify", note=note),
        )

    def _parse(self, raw_url: str) -> SplitResult:
        text = raw_url.strip()
        if not text or any(ch.isspace() for ch in text):
            raise self._invalid(raw_url, "URL is empty or contains whitespace")
        try:
            parsed = urlsplit(text)
            # Accessing port validates it
            parsed.port
        except ValueError as e:
            raise self._invalid(raw_url, f"Parse error: {e}") from e
        if parsed.scheme.lower() not in ("http", "https"):
            raise self._invalid(raw_url, f"Unsupported scheme: {parsed.scheme or 'none'}")
        if not parsed.hostname:
            raise self._invalid(raw_url, "URL has no host")
        return parsed

    def normalize(self, parsed: SplitResult) -> SplitResult:
        """Lower-case scheme and host, drop tracking parameters."""
        netloc = parsed.netloc
        host = parsed.hostname or ""
        userinfo, at, hostport = netloc.rpartition("@")
        netloc = f"{userinfo}{at}{hostport.lower()}" if host else netloc

        # Kept pairs stay byte-for-byte (valueless flags, original escaping)
        query_pairs = [
            pair
            for pair in parsed.query.split("&")
            if pair and unquote_plus(pair.partition("=")[0]) not in self._tracking_params
        ]
        return SplitResult(
            scheme=parsed.scheme.lower(),
            netloc=netloc,
            path=parsed.path or "/",
            query="&".join(query_pairs),
            fragment=parsed.fragment,
        )

    def normalize_url(self, raw_url: str) -> str:
        """Normalize a URL or local path without classifying it."""
        return self.classify(raw_url).normalized_url

    def classify(self, raw_url: str) -> Classification:
        """
        Classify a URL or local path.

        Args:
            raw_url: Absolute HTTP(S) URL or local file notation

        Returns:
            Classification with the source tag and normalized URL

        Raises:
            ValidationError: If the input is neither a valid URL nor a local path
        """
        if not isinstance(raw_url, str):
            raise self._invalid(str(raw_url), "URL must be a string")

        if is_local_file_path(raw_url):
            return Classification(ContentSourceTag.LOCAL_FILE, normalize_local_path(raw_url))

        normalized = self.normalize(self._parse(raw_url))
        for rule in self._rules:
            if rule.matches(normalized):
                return Classification(rule.tag, urlunsplit(normalized))

        # Unreachable with a valid ruleset; the HTML rule accepts any parsed URL
        raise self._invalid(raw_url, "No classification rule matched")


_default_classifier = UrlClassifier()


def classify(raw_url: str) -> Classification:
    """Classify ``raw_url`` with the default ruleset."""
    return _default_classifier.classify(raw_url)
