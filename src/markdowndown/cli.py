"""Command-line interface for markdowndown."""

import argparse
import asyncio
import re
import sys
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

import yaml
from pydantic import ValidationError as ConfigValidationError
from rich.console import Console
from rich.markup import escape

from . import __version__
from .errors import MarkdownError
from .http import AsyncHttpClient
from .logging_config import setup_logging
from .models.config import MarkdownDownConfig
from .models.document import Document
from .models.events import ConversionEvent, EventType
from .orchestrator import ConversionOrchestrator, ConversionResult


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="markdowndown",
        description="Convert URLs (web pages, Google Docs, Office 365, GitHub issues, local files) to markdown",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Print a GitHub issue as markdown
  markdowndown https://github.com/acme/widgets/issues/42

  # Save to a file, without frontmatter
  markdowndown https://docs.google.com/document/d/abc123/edit -o notes.md --no-frontmatter

  # Convert several URLs into a directory
  markdowndown https://example.com https://example.org -o out/

  # Only show how URLs are classified
  markdowndown --classify https://example.com ./README.md
        """,
    )

    parser.add_argument(
        "urls",
        nargs="+",
        metavar="URL",
        help="URLs or local file paths to convert",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Output file (one URL) or directory (several URLs); default: stdout",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        metavar="FILE",
        help="YAML configuration file",
    )
    parser.add_argument(
        "--classify",
        action="store_true",
        help="Print the source type and normalized URL without converting",
    )
    parser.add_argument(
        "--no-frontmatter",
        action="store_true",
        help="Omit the YAML frontmatter block",
    )

    # Credentials
    auth_group = parser.add_argument_group("credentials")
    auth_group.add_argument(
        "--github-token",
        type=str,
        metavar="TOKEN",
        help="GitHub token (default: $GITHUB_TOKEN)",
    )
    auth_group.add_argument(
        "--office365-token",
        type=str,
        metavar="TOKEN",
        help="Office 365 bearer token (default: $OFFICE365_TOKEN)",
    )

    # Network settings
    network_group = parser.add_argument_group("network settings")
    network_group.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Per-request timeout",
    )
    network_group.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Retries after the first attempt",
    )
    network_group.add_argument(
        "--max-concurrent",
        type=int,
        default=5,
        help="URLs converted at once (default: 5)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: from config, WARNING)",
    )

    return parser


def load_config(args: argparse.Namespace) -> MarkdownDownConfig:
    """
    Build the effective configuration.

    Precedence: command-line flags, then the config file, then environment
    variables.
    """
    env_config = MarkdownDownConfig.from_env()
    if args.config:
        data: dict[str, Any] = MarkdownDownConfig.from_yaml_file(args.config).model_dump()
        # Credentials missing from the file come from the environment
        for name, value in env_config.auth.model_dump().items():
            if value and not data["auth"].get(name):
                data["auth"][name] = value
    else:
        data = env_config.model_dump()

    if args.github_token:
        data["auth"]["github_token"] = args.github_token
    if args.office365_token:
        data["auth"]["office365_token"] = args.office365_token
    if args.timeout is not None:
        data["http"]["timeout"] = args.timeout
    if args.max_retries is not None:
        data["retry"]["max_attempts"] = args.max_retries + 1
    if args.no_frontmatter:
        data["output"]["include_frontmatter"] = False
    if args.log_level:
        data["log_level"] = args.log_level

    return MarkdownDownConfig.model_validate(data)


def output_filename(url: str, used: set[str]) -> str:
    """Derive a unique ``.md`` file name from a URL or path."""
    parsed = urlsplit(url)
    stem = f"{parsed.hostname or ''}{parsed.path}" if parsed.scheme in ("http", "https") else Path(url).stem
    stem = re.sub(r"[^\w\-]+", "_", stem).strip("_") or "document"
    name = f"{stem[:100]}.md"
    counter = 1
    while name in used:
        counter += 1
        name = f"{stem[:100]}_{counter}.md"
    used.add(name)
    return name


def print_error(console: Console, url: str, error: MarkdownError) -> None:
    console.print(f"[red]Failed:[/red] {escape(url)}")
    console.print(f"  {escape(str(error))}")
    for suggestion in error.suggestions():
        console.print(f"  [dim]-[/dim] {escape(suggestion)}")


def run_classify(args: argparse.Namespace, console: Console) -> int:
    from .detection import UrlClassifier

    classifier = UrlClassifier()
    failed = 0
    for url in args.urls:
        try:
            tag, normalized = classifier.classify(url)
        except MarkdownError as e:
            print_error(console, url, e)
            failed += 1
            continue
        print(f"{tag.value}\t{normalized}")
    return 1 if failed else 0


def write_documents(
    args: argparse.Namespace,
    results: list[ConversionResult],
    console: Console,
) -> None:
    documents: list[Document] = [r.document for r in results if r.document is not None]
    if args.output is None:
        sys.stdout.write("\n".join(doc.render() for doc in documents))
        return

    if len(args.urls) == 1:
        if documents:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(documents[0].render(), encoding="utf-8")
            console.print(f"[green]Wrote[/green] {args.output}")
        return

    args.output.mkdir(parents=True, exist_ok=True)
    used: set[str] = set()
    for result in results:
        if result.document is None:
            continue
        path = args.output / output_filename(result.document.source_url, used)
        path.write_text(result.document.render(), encoding="utf-8")
        console.print(f"[green]Wrote[/green] {path}")


def run_convert(args: argparse.Namespace, config: MarkdownDownConfig, console: Console) -> int:
    """Convert every URL and write the results."""

    def on_event(event: ConversionEvent) -> None:
        if event.type == EventType.RETRY_SCHEDULED:
            console.print(
                f"[yellow]Retry[/yellow] {escape(event.url or '')} "
                f"(attempt {event.attempt}/{event.max_attempts}, waiting {event.delay:.1f}s)"
            )
        elif event.type == EventType.FALLBACK_STARTED:
            tag = event.fallback_tag.value if event.fallback_tag else "fallback"
            console.print(f"[yellow]Falling back[/yellow] to {tag} for {escape(event.url or '')}")

    async def run() -> list[ConversionResult]:
        async with AsyncHttpClient.from_config(config.http) as client:
            orchestrator = ConversionOrchestrator.from_config(config, client)
            return await orchestrator.convert_many(
                args.urls,
                max_concurrent=max(1, args.max_concurrent),
                emit=on_event,
            )

    results = asyncio.run(run())

    for result in results:
        if result.error is not None:
            print_error(console, result.url, result.error)

    write_documents(args, results, console)
    return 0 if all(r.ok for r in results) else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    console = Console(stderr=True)

    if args.classify:
        return run_classify(args, console)

    try:
        config = load_config(args)
    except (ConfigValidationError, yaml.YAMLError, OSError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        return 1

    setup_logging(config.log_level, config.log_file)
    return run_convert(args, config, console)


if __name__ == "__main__":
    sys.exit(main())
