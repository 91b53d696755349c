"""Tests for the source converters."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from markdowndown.conversion import FrontmatterBuilder, parse_frontmatter
from markdowndown.converters import (
    ConverterPort,
    ConverterRegistry,
    GitHubIssueConverter,
    GoogleDocsConverter,
    HtmlConverter,
    LocalFileConverter,
    Office365Converter,
    extract_document_id,
    parse_github_url,
)
from markdowndown.converters.github import render_issue
from markdowndown.converters.google_docs import looks_valid
from markdowndown.converters.office365 import download_url
from markdowndown.errors import (
    AuthenticationError,
    AuthErrorKind,
    ContentError,
    ContentErrorKind,
    ConverterError,
    ConverterErrorKind,
    ErrorContext,
    NetworkError,
    NetworkErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from markdowndown.http import HttpResponse
from markdowndown.models.config import AuthConfig, MarkdownDownConfig
from markdowndown.models.document import ContentSourceTag

ISSUE_URL = "https://github.com/acme/widgets/issues/42"
DOC_URL = "https://docs.google.com/document/d/abc123/edit"

ISSUE = {
    "title": "Widget crashes on start",
    "user": {"login": "octocat"},
    "created_at": "2024-01-02T03:04:05Z",
    "state": "open",
    "labels": [{"name": "bug"}, {"name": "urgent"}],
    "body": "Steps to reproduce:\n\n1. Start the widget",
}

COMMENTS = [
    {"user": {"login": "hubot"}, "created_at": "2024-01-03T10:00:00Z", "body": "Confirmed on 2.1"},
]


def http_error(status):
    return NetworkError(
        NetworkErrorKind.SERVER_ERROR,
        ErrorContext(url=DOC_URL, operation="fetch", note=f"HTTP status {status}"),
        status_code=status,
    )


def response(content, content_type, url="https://contoso.sharepoint.com/doc"):
    return HttpResponse(status_code=200, content=content, content_type=content_type, headers={}, url=url)


class TestGitHubUrls:
    """Tests for parse_github_url()."""

    def test_issue(self):
        resource = parse_github_url(ISSUE_URL)
        assert resource.repository == "acme/widgets"
        assert resource.number == 42
        assert resource.resource_type == "issue"

    def test_pull_request(self):
        resource = parse_github_url("https://github.com/acme/widgets/pull/7")
        assert resource.is_pull_request
        assert resource.resource_type == "pull_request"

    def test_api_url(self):
        resource = parse_github_url("https://api.github.com/repos/acme/widgets/pulls/7")
        assert resource.repository == "acme/widgets"
        assert resource.is_pull_request

    @pytest.mark.parametrize(
        "url",
        ["https://github.com/acme/widgets", "https://github.com/acme/widgets/issues/new", "https://example.com/a/b/issues/1"],
    )
    def test_not_an_issue(self, url):
        assert parse_github_url(url) is None


class TestRenderIssue:
    """Tests for render_issue()."""

    def test_renders_header_body_and_comments(self):
        content = render_issue(ISSUE, COMMENTS)

        assert content.startswith("# Widget crashes on start\n")
        assert "**Author:** @octocat" in content
        assert "**Created:** 2024-01-02 03:04:05 UTC" in content
        assert "**State:** Open" in content
        assert "**Labels:** bug, urgent" in content
        assert "1. Start the widget" in content
        assert "## Comments" in content
        assert "### Comment by @hubot (2024-01-03 10:00:00 UTC)" in content
        assert "Confirmed on 2.1" in content

    def test_no_comments_section_without_comments(self):
        assert "## Comments" not in render_issue(ISSUE, [])

    def test_missing_body(self):
        content = render_issue({**ISSUE, "body": None, "labels": []}, [])
        assert "Labels" not in content
        assert content.endswith("\n")


class TestGitHubIssueConverter:
    """Tests for GitHubIssueConverter."""

    @pytest.fixture
    def transport(self):
        transport = AsyncMock()
        transport.fetch_text.side_effect = [json.dumps(ISSUE), json.dumps(COMMENTS)]
        return transport

    @pytest.mark.asyncio
    async def test_converts_issue(self, transport):
        converter = GitHubIssueConverter(transport)

        doc = await converter.convert(ISSUE_URL)

        assert doc.source_tag == ContentSourceTag.GITHUB_ISSUE
        assert doc.exporter == "github_issue"
        assert doc.source_url == ISSUE_URL
        assert "# Widget crashes on start" in doc.content
        assert doc.metadata["github_repository"] == "acme/widgets"
        assert doc.metadata["github_issue_number"] == 42
        assert doc.metadata["github_labels"] == "bug, urgent"
        assert doc.frontmatter is None

    @pytest.mark.asyncio
    async def test_api_calls(self, transport):
        converter = GitHubIssueConverter(transport)
        await converter.convert(ISSUE_URL)

        first, second = transport.fetch_text.await_args_list
        assert first.args == ("https://api.github.com/repos/acme/widgets/issues/42",)
        assert second.args == ("https://api.github.com/repos/acme/widgets/issues/42/comments?per_page=100",)
        assert first.kwargs["headers"] == {"Accept": "application/vnd.github.v3+json"}

    @pytest.mark.asyncio
    async def test_token_header(self, transport):
        converter = GitHubIssueConverter(transport)
        await converter.convert(ISSUE_URL, AuthConfig(github_token="ghp_secret"))

        headers = transport.fetch_text.await_args_list[0].kwargs["headers"]
        assert headers["Authorization"] == "token ghp_secret"

    @pytest.mark.asyncio
    async def test_custom_api_base(self, transport):
        converter = GitHubIssueConverter(transport, api_base_url="https://ghe.example.com/api/v3/")
        await converter.convert(ISSUE_URL)
        url = transport.fetch_text.await_args_list[0].args[0]
        assert url == "https://ghe.example.com/api/v3/repos/acme/widgets/issues/42"

    @pytest.mark.asyncio
    async def test_frontmatter(self, transport):
        converter = GitHubIssueConverter(transport, frontmatter=FrontmatterBuilder())

        doc = await converter.convert(ISSUE_URL)

        data, body = parse_frontmatter(doc.render())
        assert data["source_url"] == ISSUE_URL
        assert data["exporter"] == "github_issue"
        assert data["title"] == "Widget crashes on start"
        assert data["github_state"] == "open"
        assert body == doc.content

    @pytest.mark.asyncio
    async def test_bad_json(self):
        transport = AsyncMock()
        transport.fetch_text.return_value = "<html>not json</html>"

        with pytest.raises(ContentError) as exc_info:
            await GitHubIssueConverter(transport).convert(ISSUE_URL)
        assert exc_info.value.sub_kind == ContentErrorKind.PARSING_FAILED

    @pytest.mark.asyncio
    async def test_unexpected_payload(self):
        transport = AsyncMock()
        transport.fetch_text.side_effect = [json.dumps({"message": "odd"}), "[]"]

        with pytest.raises(ContentError) as exc_info:
            await GitHubIssueConverter(transport).convert(ISSUE_URL)
        assert exc_info.value.sub_kind == ContentErrorKind.PARSING_FAILED

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self):
        transport = AsyncMock()
        transport.fetch_text.side_effect = AuthenticationError(AuthErrorKind.INVALID_TOKEN)

        with pytest.raises(AuthenticationError):
            await GitHubIssueConverter(transport).convert(ISSUE_URL)

    @pytest.mark.asyncio
    async def test_rejects_non_issue_url(self):
        transport = AsyncMock()
        with pytest.raises(ValidationError) as exc_info:
            await GitHubIssueConverter(transport).convert("https://github.com/acme/widgets")
        assert exc_info.value.sub_kind == ValidationErrorKind.INVALID_FORMAT
        transport.fetch_text.assert_not_awaited()


class TestGoogleDocsHelpers:
    """Tests for document id extraction and body validation."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            (DOC_URL, "abc123"),
            ("https://docs.google.com/document/d/a-B_9/view", "a-B_9"),
            ("https://drive.google.com/file/d/xyz789/view", "xyz789"),
            ("https://drive.google.com/open?id=q1w2e3", "q1w2e3"),
            ("https://docs.google.com/document/", None),
        ],
    )
    def test_extract_document_id(self, url, expected):
        assert extract_document_id(url) == expected

    def test_looks_valid(self):
        assert looks_valid("# Title\n\nBody", "md")
        assert not looks_valid("<!DOCTYPE html><html></html>", "md")
        assert not looks_valid("Sorry, the file you have requested does not exist.", "txt")
        assert looks_valid("<html><body>x</body></html>", "html")
        assert not looks_valid("plain text", "html")


class TestGoogleDocsConverter:
    """Tests for GoogleDocsConverter."""

    @pytest.mark.asyncio
    async def test_markdown_export(self):
        transport = AsyncMock()
        transport.fetch_text.return_value = "# Plan\n\nShip it.\n\n"

        doc = await GoogleDocsConverter(transport).convert(DOC_URL)

        assert doc.content == "# Plan\n\nShip it.\n"
        assert doc.metadata == {"document_id": "abc123", "export_format": "md"}
        transport.fetch_text.assert_awaited_once_with(
            "https://docs.google.com/document/d/abc123/export?format=md",
            headers=None,
        )

    @pytest.mark.asyncio
    async def test_api_key_header(self):
        transport = AsyncMock()
        transport.fetch_text.return_value = "text"

        await GoogleDocsConverter(transport).convert(DOC_URL, AuthConfig(google_api_key="AIza-key"))

        assert transport.fetch_text.await_args.kwargs["headers"] == {"X-Goog-Api-Key": "AIza-key"}

    @pytest.mark.asyncio
    async def test_skips_rejected_format(self):
        transport = AsyncMock()
        transport.fetch_text.side_effect = [http_error(400), "Plain text body"]

        doc = await GoogleDocsConverter(transport).convert(DOC_URL)

        assert doc.metadata["export_format"] == "txt"
        assert transport.fetch_text.await_count == 2

    @pytest.mark.asyncio
    async def test_skips_error_page(self):
        transport = AsyncMock()
        transport.fetch_text.side_effect = ["<!DOCTYPE html><html>login</html>", "Plain text body"]

        doc = await GoogleDocsConverter(transport).convert(DOC_URL)
        assert doc.metadata["export_format"] == "txt"

    @pytest.mark.asyncio
    async def test_html_export_converted(self):
        transport = AsyncMock()
        transport.fetch_text.return_value = "<html><body><h1>Doc</h1><p>Text</p></body></html>"

        doc = await GoogleDocsConverter(transport, export_formats=["html"]).convert(DOC_URL)

        assert "# Doc" in doc.content
        assert "<h1>" not in doc.content

    @pytest.mark.asyncio
    async def test_all_rejected_raises_last_error(self):
        transport = AsyncMock()
        transport.fetch_text.side_effect = [http_error(400), http_error(404), http_error(404)]

        with pytest.raises(NetworkError) as exc_info:
            await GoogleDocsConverter(transport).convert(DOC_URL)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_no_usable_content(self):
        transport = AsyncMock()
        transport.fetch_text.return_value = "Error 404 (Not Found)"

        with pytest.raises(ContentError) as exc_info:
            await GoogleDocsConverter(transport).convert(DOC_URL)
        assert exc_info.value.sub_kind == ContentErrorKind.UNSUPPORTED_FORMAT

    @pytest.mark.asyncio
    async def test_auth_error_not_skipped(self):
        transport = AsyncMock()
        transport.fetch_text.side_effect = AuthenticationError(AuthErrorKind.PERMISSION_DENIED)

        with pytest.raises(AuthenticationError):
            await GoogleDocsConverter(transport).convert(DOC_URL)
        assert transport.fetch_text.await_count == 1

    @pytest.mark.asyncio
    async def test_server_error_not_skipped(self):
        transport = AsyncMock()
        transport.fetch_text.side_effect = http_error(503)

        with pytest.raises(NetworkError):
            await GoogleDocsConverter(transport).convert(DOC_URL)
        assert transport.fetch_text.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_document_id(self):
        with pytest.raises(ValidationError) as exc_info:
            await GoogleDocsConverter(AsyncMock()).convert("https://docs.google.com/document/")
        assert exc_info.value.sub_kind == ValidationErrorKind.MISSING_PARAMETER


class TestHtmlConverter:
    """Tests for HtmlConverter."""

    PAGE = (
        "<html><head><title>Page Title</title></head>"
        '<body><h1>Hello</h1><p>Some <b>bold</b> text and <a href="/docs">docs</a>.</p></body></html>'
    )

    @pytest.mark.asyncio
    async def test_converts_page(self):
        transport = AsyncMock()
        transport.fetch_text.return_value = self.PAGE

        doc = await HtmlConverter(transport).convert("https://example.com/page")

        assert "# Hello" in doc.content
        assert "**bold**" in doc.content
        assert "https://example.com/docs" in doc.content
        assert doc.metadata == {"title": "Page Title"}
        assert doc.source_tag == ContentSourceTag.HTML
        transport.fetch_text.assert_awaited_once_with("https://example.com/page")

    @pytest.mark.asyncio
    async def test_frontmatter(self):
        transport = AsyncMock()
        transport.fetch_text.return_value = self.PAGE

        doc = await HtmlConverter(transport, frontmatter=FrontmatterBuilder()).convert("https://example.com/page")

        assert doc.frontmatter.startswith("---\nsource_url: https://example.com/page\nexporter: html\n")
        assert doc.render().startswith(doc.frontmatter)

    @pytest.mark.asyncio
    async def test_empty_page(self):
        transport = AsyncMock()
        transport.fetch_text.return_value = "<html><body></body></html>"

        with pytest.raises(ContentError) as exc_info:
            await HtmlConverter(transport).convert("https://example.com/")
        assert exc_info.value.sub_kind == ContentErrorKind.EMPTY_CONTENT


class TestOffice365Converter:
    """Tests for Office365Converter."""

    DOCX_URL = "https://contoso.sharepoint.com/sites/team/Shared%20Documents/report.docx"

    def test_download_url(self):
        assert download_url(self.DOCX_URL) == self.DOCX_URL + "?download=1"
        assert download_url(self.DOCX_URL + "?web=1") == self.DOCX_URL + "?web=1&download=1"
        share = "https://contoso.sharepoint.com/:w:/s/team/EaBcD"
        assert download_url(share) == share

    @pytest.mark.asyncio
    async def test_html_response(self):
        transport = AsyncMock()
        transport.get.return_value = response(
            b"<html><title>Report</title><body><p>Quarterly numbers</p></body></html>",
            "text/html; charset=utf-8",
        )

        doc = await Office365Converter(transport).convert(self.DOCX_URL, AuthConfig(office365_token="tok"))

        assert "Quarterly numbers" in doc.content
        assert doc.metadata["title"] == "Report"
        assert doc.metadata["document_type"] == "docx"
        transport.get.assert_awaited_once_with(
            self.DOCX_URL + "?download=1",
            headers={"Authorization": "Bearer tok"},
        )

    @pytest.mark.asyncio
    async def test_text_response(self):
        transport = AsyncMock()
        transport.get.return_value = response(b"  plain notes  ", "text/plain")

        doc = await Office365Converter(transport).convert("https://onedrive.live.com/edit.aspx?resid=1")

        assert doc.content == "plain notes\n"
        transport.get.assert_awaited_once_with("https://onedrive.live.com/edit.aspx?resid=1", headers=None)

    @pytest.mark.asyncio
    async def test_binary_without_pandoc(self):
        transport = AsyncMock()
        transport.get.return_value = response(b"PK\x03\x04", "application/octet-stream", url=self.DOCX_URL)

        with pytest.raises(ConverterError) as exc_info:
            await Office365Converter(transport).convert(self.DOCX_URL)
        assert exc_info.value.sub_kind == ConverterErrorKind.UNSUPPORTED_OPERATION

    @pytest.mark.asyncio
    async def test_unknown_binary(self):
        transport = AsyncMock()
        transport.get.return_value = response(b"\x00\x01", "application/zip", url="https://contoso.sharepoint.com/a.zip")

        with pytest.raises(ContentError) as exc_info:
            await Office365Converter(transport, pandoc_path="pandoc").convert(
                "https://contoso.sharepoint.com/:u:/s/team/a"
            )
        assert exc_info.value.sub_kind == ContentErrorKind.UNSUPPORTED_FORMAT

    @pytest.mark.asyncio
    async def test_pandoc_missing_executable(self, tmp_path):
        transport = AsyncMock()
        transport.get.return_value = response(b"PK\x03\x04", "application/octet-stream", url=self.DOCX_URL)
        converter = Office365Converter(transport, pandoc_path=str(tmp_path / "no-such-pandoc"))

        with pytest.raises(ConverterError) as exc_info:
            await converter.convert(self.DOCX_URL)
        assert exc_info.value.sub_kind == ConverterErrorKind.EXTERNAL_TOOL_FAILED

    @pytest.mark.asyncio
    async def test_pandoc_success(self):
        transport = AsyncMock()
        transport.get.return_value = response(b"PK\x03\x04", "application/octet-stream", url=self.DOCX_URL)
        proc = MagicMock(returncode=0)
        proc.communicate = AsyncMock(return_value=(b"# Report\n\nNumbers\n", b""))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            doc = await Office365Converter(transport, pandoc_path="/usr/bin/pandoc").convert(self.DOCX_URL)

        assert doc.content == "# Report\n\nNumbers\n"
        args = spawn.await_args.args
        assert args[:5] == ("/usr/bin/pandoc", "--from", "docx", "--to", "gfm")

    @pytest.mark.asyncio
    async def test_pandoc_failure(self):
        transport = AsyncMock()
        transport.get.return_value = response(b"PK\x03\x04", "application/octet-stream", url=self.DOCX_URL)
        proc = MagicMock(returncode=1)
        proc.communicate = AsyncMock(return_value=(b"", b"Unknown reader"))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ConverterError) as exc_info:
                await Office365Converter(transport, pandoc_path="/usr/bin/pandoc").convert(self.DOCX_URL)

        assert exc_info.value.sub_kind == ConverterErrorKind.EXTERNAL_TOOL_FAILED
        assert "Unknown reader" in exc_info.value.context.note


class TestLocalFileConverter:
    """Tests for LocalFileConverter."""

    @pytest.mark.asyncio
    async def test_reads_file(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("# Notes\n\nHello\n", encoding="utf-8")

        doc = await LocalFileConverter().convert(str(path))

        assert doc.content == "# Notes\n\nHello\n"
        assert doc.metadata == {"file_name": "notes.md"}
        assert doc.source_tag == ContentSourceTag.LOCAL_FILE

    @pytest.mark.asyncio
    async def test_file_url(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("content", encoding="utf-8")

        doc = await LocalFileConverter().convert(f"file://{path}")
        assert doc.content == "content"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError) as exc_info:
            await LocalFileConverter().convert(str(tmp_path / "missing.md"))
        assert exc_info.value.sub_kind == ValidationErrorKind.INVALID_FORMAT
        assert "does not exist" in exc_info.value.context.note

    @pytest.mark.asyncio
    async def test_directory(self, tmp_path):
        with pytest.raises(ValidationError):
            await LocalFileConverter().convert(str(tmp_path))

    @pytest.mark.asyncio
    async def test_binary_file(self, tmp_path):
        path = tmp_path / "image.png"
        path.write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe")

        with pytest.raises(ContentError) as exc_info:
            await LocalFileConverter().convert(str(path))
        assert exc_info.value.sub_kind == ContentErrorKind.UNSUPPORTED_FORMAT

    @pytest.mark.asyncio
    async def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.md"
        path.write_text("   \n", encoding="utf-8")

        with pytest.raises(ContentError) as exc_info:
            await LocalFileConverter().convert(str(path))
        assert exc_info.value.sub_kind == ContentErrorKind.EMPTY_CONTENT


class TestConverterRegistry:
    """Tests for ConverterRegistry."""

    def test_register_and_get(self):
        registry = ConverterRegistry()
        converter = LocalFileConverter()
        registry.register(ContentSourceTag.LOCAL_FILE, converter)

        assert registry.get(ContentSourceTag.LOCAL_FILE) is converter
        assert registry.get(ContentSourceTag.HTML) is None
        assert ContentSourceTag.LOCAL_FILE in registry
        assert len(registry) == 1

    def test_rejects_non_converter(self):
        with pytest.raises(TypeError):
            ConverterRegistry().register(ContentSourceTag.HTML, object())

    def test_replaces(self):
        registry = ConverterRegistry()
        first, second = LocalFileConverter(), LocalFileConverter()
        registry.register(ContentSourceTag.LOCAL_FILE, first)
        registry.register(ContentSourceTag.LOCAL_FILE, second)
        assert registry.get(ContentSourceTag.LOCAL_FILE) is second

    def test_default(self):
        registry = ConverterRegistry.default(AsyncMock())

        assert set(registry.supported_tags()) == set(ContentSourceTag)
        for tag in ContentSourceTag:
            converter = registry.get(tag)
            assert isinstance(converter, ConverterPort)
            assert converter.frontmatter is not None

    def test_default_without_frontmatter(self):
        config = MarkdownDownConfig.model_validate({"output": {"include_frontmatter": False}})
        registry = ConverterRegistry.default(AsyncMock(), config)
        assert registry.get(ContentSourceTag.HTML).frontmatter is None

    def test_default_uses_converter_config(self):
        config = MarkdownDownConfig.model_validate(
            {"converters": {"google_export_formats": ["txt"], "pandoc_path": "/opt/pandoc"}}
        )
        registry = ConverterRegistry.default(AsyncMock(), config)
        assert registry.get(ContentSourceTag.GOOGLE_DOCS).export_formats == ("txt",)
        assert registry.get(ContentSourceTag.OFFICE365).pandoc_path == "/opt/pandoc"
