"""GitHub issue and pull request converter (REST API)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlsplit

from ..conversion.frontmatter import FrontmatterBuilder
from ..errors import (
    ContentError,
    ContentErrorKind,
    ErrorContext,
    ValidationError,
    ValidationErrorKind,
)
from ..http.protocols import Transport
from ..models.config import AuthConfig
from ..models.document import ContentSourceTag, Document
from .base import BaseConverter

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.github.com"
GITHUB_ACCEPT = "application/vnd.github.v3+json"


@dataclass(frozen=True)
class GitHubResource:
    """An issue or pull request reference parsed from a URL."""

    owner: str
    repo: str
    number: int
    is_pull_request: bool

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def resource_type(self) -> str:
        return "pull_request" if self.is_pull_request else "issue"


def parse_github_url(url: str) -> Optional[GitHubResource]:
    """
    Parse ``github.com/{owner}/{repo}/(issues|pull)/{n}`` or
    ``api.github.com/repos/{owner}/{repo}/(issues|pulls)/{n}``.
    """
    parsed = urlsplit(url)
    host = (parsed.hostname or "").lower()
    segments = [s for s in parsed.path.split("/") if s]

    if host == "api.github.com" and segments[:1] == ["repos"]:
        segments = segments[1:]
        kinds = {"issues": False, "pulls": True}
    elif host == "github.com":
        kinds = {"issues": False, "pull": True}
    else:
        return None

    if len(segments) < 4 or segments[2] not in kinds or not segments[3].isdigit():
        return None
    return GitHubResource(
        owner=segments[0],
        repo=segments[1],
        number=int(segments[3]),
        is_pull_request=kinds[segments[2]],
    )


def _format_timestamp(value: Optional[str]) -> str:
    if not value:
        return "unknown"
    try:
        when = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return when.strftime("%Y-%m-%d %H:%M:%S UTC")


def render_issue(issue: dict[str, Any], comments: list[dict[str, Any]]) -> str:
    """Render an issue payload and its comments as markdown."""
    lines = [f"# {issue['title']}", ""]
    lines.append(f"**Author:** @{issue['user']['login']}  ")
    lines.append(f"**Created:** {_format_timestamp(issue.get('created_at'))}  ")
    lines.append(f"**State:** {str(issue.get('state', 'unknown')).capitalize()}  ")
    labels = [label["name"] for label in issue.get("labels") or []]
    if labels:
        lines.append(f"**Labels:** {', '.join(labels)}  ")
    lines.append("")

    body = (issue.get("body") or "").strip()
    if body:
        lines.extend([body, ""])

    if comments:
        lines.extend(["## Comments", ""])
        for comment in comments:
            author = comment["user"]["login"]
            lines.append(f"### Comment by @{author} ({_format_timestamp(comment.get('created_at'))})")
            lines.append("")
            text = (comment.get("body") or "").strip()
            if text:
                lines.append(text)
            lines.append("")

    return "\n".join(lines).strip() + "\n"


class GitHubIssueConverter(BaseConverter):
    """
    Fetches an issue (or PR) plus its comments and renders them.

    Authenticates with ``Authorization: token <github_token>`` when a token
    is supplied; without one only public repositories are reachable and
    GitHub's anonymous rate limit applies.
    """

    name = "github_issue"
    source_tag = ContentSourceTag.GITHUB_ISSUE

    def __init__(
        self,
        transport: Transport,
        api_base_url: str = DEFAULT_API_BASE_URL,
        frontmatter: Optional[FrontmatterBuilder] = None,
    ):
        super().__init__(frontmatter)
        self.transport = transport
        self.api_base_url = api_base_url.rstrip("/")

    def _headers(self, credentials: Optional[AuthConfig]) -> dict[str, str]:
        headers = {"Accept": GITHUB_ACCEPT}
        if credentials is not None and credentials.github_token:
            headers["Authorization"] = f"token {credentials.github_token}"
        return headers

    async def _get_json(self, api_url: str, url: str, headers: dict[str, str]) -> Any:
        text = await self.transport.fetch_text(api_url, headers=headers)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ContentError(
                ContentErrorKind.PARSING_FAILED,
                ErrorContext(url=url, operation="parse github response", source_tag=self.source_tag, note=str(e)),
            ) from e

    async def convert(
        self,
        url: str,
        credentials: Optional[AuthConfig] = None,
    ) -> Document:
        resource = parse_github_url(url)
        if resource is None:
            raise ValidationError(
                ValidationErrorKind.INVALID_FORMAT,
                ErrorContext(url=url, operation="convert", source_tag=self.source_tag),
                message="Not a GitHub issue or pull request URL",
            )

        headers = self._headers(credentials)
        issue_url = f"{self.api_base_url}/repos/{resource.repository}/issues/{resource.number}"
        issue = await self._get_json(issue_url, url, headers)
        comments = await self._get_json(f"{issue_url}/comments?per_page=100", url, headers)

        try:
            content = render_issue(issue, comments if isinstance(comments, list) else [])
            labels = ", ".join(label["name"] for label in issue.get("labels") or [])
            metadata = {
                "title": issue["title"],
                "github_repository": resource.repository,
                "github_issue_number": resource.number,
                "github_state": issue.get("state"),
                "github_author": issue["user"]["login"],
                "resource_type": resource.resource_type,
            }
        except (KeyError, TypeError, AttributeError) as e:
            raise ContentError(
                ContentErrorKind.PARSING_FAILED,
                ErrorContext(url=url, operation="render github issue", source_tag=self.source_tag, note=repr(e)),
            ) from e
        if labels:
            metadata["github_labels"] = labels

        logger.debug(f"Rendered {resource.repository}#{resource.number} with {len(comments)} comments")
        return self.make_document(content, url, metadata)
