"""Pydantic configuration models for markdowndown."""

import os
import re
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from .document import ContentSourceTag


class ByteSize(int):
    """
    Custom type that parses human-readable byte sizes.

    Accepts:
        - Integers (bytes)
        - Strings like '200kb', '1mb', '5gb'

    Examples:
        >>> ByteSize._parse('200kb')
        204800
        >>> ByteSize._parse(1024)
        1024
    """

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: Any) -> Any:
        from pydantic_core import core_schema

        return core_schema.no_info_plain_validator_function(cls._parse)

    @classmethod
    def _parse(cls, v: Any) -> int:
        if isinstance(v, int):
            return v
        if isinstance(v, str):
            v = v.lower().strip()
            # Longer suffixes first
            for unit, mult in (("gb", 1024**3), ("mb", 1024**2), ("kb", 1024), ("b", 1)):
                if v.endswith(unit):
                    try:
                        return int(float(v[: -len(unit)].strip()) * mult)
                    except ValueError as err:
                        raise ValueError(f"Invalid number in byte size: {v}") from err
            if v.isdigit():
                return int(v)
        raise ValueError(f"Invalid byte size: {v}. Use format like '200kb', '1mb', or integer bytes.")


def _expand_env_var(value: Optional[str]) -> Optional[str]:
    """Expand $VAR and ${VAR} references. Unset variables are left as-is."""
    if value is None:
        return None

    def replace(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        return os.environ.get(var_name, match.group(0))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", replace, value)


class HttpConfig(BaseModel):
    """Configuration for the HTTP transport."""

    timeout: float = Field(30.0, gt=0, description="Per-request timeout in seconds")
    user_agent: str = Field("markdowndown/0.1", description="User-Agent header")
    max_content_size: ByteSize = Field(
        ByteSize(50 * 1024 * 1024),
        description="Maximum response size (e.g., '10mb')",
    )
    per_host_delay: float = Field(0.0, ge=0, description="Minimum seconds between requests to same host")
    per_host_concurrent: int = Field(5, ge=1, description="Maximum concurrent requests per host")
    proxy: Optional[str] = Field(None, description="HTTP/HTTPS proxy URL")

    model_config = {"extra": "forbid"}


class AuthConfig(BaseModel):
    """Credentials passed through to converters.

    Supports environment variable expansion using $VAR or ${VAR} syntax,
    e.g. ``github_token: '$GITHUB_TOKEN'``.
    """

    github_token: Optional[str] = Field(None, description="GitHub personal access token")
    office365_token: Optional[str] = Field(None, description="Office 365 bearer token")
    google_api_key: Optional[str] = Field(None, description="Google API key")

    model_config = {"extra": "forbid"}

    def model_post_init(self, __context: object) -> None:
        for name in ("github_token", "office365_token", "google_api_key"):
            value = getattr(self, name)
            if value:
                object.__setattr__(self, name, _expand_env_var(value))


class RetryConfig(BaseModel):
    """Retry and backoff behavior around each converter call."""

    max_attempts: int = Field(3, ge=1, description="Attempts per conversion, including the first")
    base_delay: float = Field(1.0, ge=0, description="Base delay for exponential backoff (seconds)")
    max_delay: float = Field(30.0, ge=0, description="Upper bound for a single backoff sleep")
    jitter: float = Field(0.5, ge=0, description="Upper bound of random jitter added to each backoff")
    total_timeout: Optional[float] = Field(
        120.0,
        gt=0,
        description="Wall-clock ceiling across all attempts (None = unlimited)",
    )

    model_config = {"extra": "forbid"}


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker thresholds."""

    failure_threshold: int = Field(5, ge=1, description="Consecutive failures that open the circuit")
    cooldown: float = Field(60.0, ge=0, description="Seconds before an open circuit admits a trial call")

    model_config = {"extra": "forbid"}


class FallbackRule(BaseModel):
    """Where a failed conversion for one source may be retried."""

    target: ContentSourceTag = Field(ContentSourceTag.HTML, description="Converter to fall back to")
    error_kinds: list[Literal["network", "content", "converter"]] = Field(
        default_factory=lambda: ["network", "content", "converter"],
        description="Error kinds that trigger the fallback",
    )

    model_config = {"extra": "forbid"}


def _default_fallback_rules() -> dict[ContentSourceTag, FallbackRule]:
    return {
        ContentSourceTag.GOOGLE_DOCS: FallbackRule(),
        ContentSourceTag.OFFICE365: FallbackRule(),
        ContentSourceTag.GITHUB_ISSUE: FallbackRule(),
    }


class FallbackConfig(BaseModel):
    """Fallback table. Authentication and validation failures never fall back."""

    enabled: bool = Field(True, description="Attempt fallback converters at all")
    rules: dict[ContentSourceTag, FallbackRule] = Field(
        default_factory=_default_fallback_rules,
        description="Per-source fallback rules",
    )

    model_config = {"extra": "forbid"}


class ConverterConfig(BaseModel):
    """Per-source converter settings."""

    google_export_formats: list[Literal["md", "txt", "html"]] = Field(
        default_factory=lambda: ["md", "txt", "html"],
        min_length=1,
        description="Google Docs export formats, tried in order",
    )
    github_api_base_url: str = Field("https://api.github.com", description="GitHub REST API root")
    pandoc_path: Optional[str] = Field(
        None,
        description="pandoc executable for binary Office documents (None = HTML only)",
    )

    model_config = {"extra": "forbid"}


class OutputConfig(BaseModel):
    """Configuration for produced documents."""

    include_frontmatter: bool = Field(True, description="Prepend YAML frontmatter to documents")
    custom_frontmatter_fields: dict[str, str] = Field(
        default_factory=dict,
        description="Extra key/value pairs added to every frontmatter block",
    )

    model_config = {"extra": "forbid"}


class MarkdownDownConfig(BaseModel):
    """
    Root configuration model for markdowndown.

    Example:
        config = MarkdownDownConfig(
            retry=RetryConfig(max_attempts=5),
            auth=AuthConfig(github_token="$GITHUB_TOKEN"),
        )

    YAML format:
        http:
          timeout: 60
        retry:
          max_attempts: 5
        circuit_breaker:
          failure_threshold: 3
    """

    http: HttpConfig = Field(default_factory=HttpConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    converters: ConverterConfig = Field(default_factory=ConverterConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "WARNING",
        description="Logging level",
    )
    log_file: Optional[Path] = Field(None, description="Log file path")

    model_config = {"extra": "forbid"}

    def to_yaml(self) -> str:
        """Serialize config to YAML string."""
        import yaml

        return yaml.dump(self.model_dump(mode="json", exclude_none=True), default_flow_style=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "MarkdownDownConfig":
        """Load config from YAML string."""
        import yaml

        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: Path) -> "MarkdownDownConfig":
        """Load config from YAML file."""
        return cls.from_yaml(path.read_text())

    @classmethod
    def from_env(cls) -> "MarkdownDownConfig":
        """
        Build a config from environment variables.

        Reads GITHUB_TOKEN, OFFICE365_TOKEN, GOOGLE_API_KEY,
        MARKDOWNDOWN_TIMEOUT, MARKDOWNDOWN_USER_AGENT and
        MARKDOWNDOWN_MAX_RETRIES. Blank or unparseable values are ignored.
        """
        auth: dict[str, str] = {}
        for env_name, field_name in (
            ("GITHUB_TOKEN", "github_token"),
            ("OFFICE365_TOKEN", "office365_token"),
            ("GOOGLE_API_KEY", "google_api_key"),
        ):
            value = os.environ.get(env_name, "").strip()
            if value:
                auth[field_name] = value

        http: dict[str, Any] = {}
        timeout = os.environ.get("MARKDOWNDOWN_TIMEOUT", "").strip()
        if timeout.isdigit() and int(timeout) > 0:
            http["timeout"] = float(timeout)
        user_agent = os.environ.get("MARKDOWNDOWN_USER_AGENT", "").strip()
        if user_agent:
            http["user_agent"] = user_agent

        retry: dict[str, Any] = {}
        retries = os.environ.get("MARKDOWNDOWN_MAX_RETRIES", "").strip()
        if retries.isdigit():
            # Retries count the attempts after the first one
            retry["max_attempts"] = int(retries) + 1

        return cls(auth=AuthConfig(**auth), http=HttpConfig(**http), retry=RetryConfig(**retry))
