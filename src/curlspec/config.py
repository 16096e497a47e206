"""Settings for curlspec.

Settings come from four layers; a higher layer wins:
1. Keyword arguments to CurlspecConfig
2. CURLSPEC_* environment variables (nested with ``__``)
3. A TOML file (see :func:`load_config`)
4. The defaults below

A TOML file mirrors the section classes:
    [model]
    model = "gpt-4"
    timeout_seconds = 45

    [extraction]
    confidence_threshold = 0.7

Environment overrides use the section and key names:
    CURLSPEC_MODEL__API_KEY="sk-..."
    CURLSPEC_RESILIENCE__FAILURE_THRESHOLD=3
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from curlspec.models import ExtractionOptions

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "console")

CONFIG_FILE_NAME = "curlspec.toml"
USER_CONFIG_PATH = Path(".config") / "curlspec" / "config.toml"


class ModelServiceConfig(BaseSettings):
    """External language-model service configuration.

    Attributes:
        base_url: Base URL of an OpenAI-compatible chat completions API
        api_key: API key (falls back to OPENAI_API_KEY when unset)
        model: Model identifier
        max_tokens: Maximum tokens per completion
        temperature: Sampling temperature
        timeout_seconds: Per-call deadline in seconds
    """

    model_config = SettingsConfigDict(
        env_prefix="CURLSPEC_MODEL__",
        extra="forbid",
    )

    base_url: str = Field(default="https://api.openai.com/v1")
    api_key: str | None = Field(default=None)
    model: str = Field(default="gpt-4")
    max_tokens: int = Field(default=4000, ge=256, le=128000)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=60.0, gt=0.0, le=600.0)


class ResilienceConfig(BaseSettings):
    """Retry and circuit breaker configuration for model calls.

    Attributes:
        max_attempts: Attempts per call, including the first
        base_delay_ms: Linear backoff base; attempt n waits base * n
        failure_threshold: Consecutive failures that open the circuit
        reset_timeout_ms: Time the circuit stays open before a trial call
    """

    model_config = SettingsConfigDict(
        env_prefix="CURLSPEC_RESILIENCE__",
        extra="forbid",
    )

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_ms: int = Field(default=1000, ge=0, le=60000)
    failure_threshold: int = Field(default=5, ge=1, le=100)
    reset_timeout_ms: int = Field(default=60000, ge=0, le=3600000)


class ExtractionConfig(BaseSettings):
    """Default extraction options.

    Attributes:
        confidence_threshold: Minimum confidence to accept a result (0.0-1.0)
        max_retries: Retries of the whole-document strategy
        use_optimization: Run spec optimization on document-strategy APIs
        fallback_to_basic_parsing: Allow the per-command fallback strategy
        max_concurrency: Worker pool size of the fallback loop (1 = sequential)
        retry_delay_seconds: Linear delay base between document retries
    """

    model_config = SettingsConfigDict(
        env_prefix="CURLSPEC_EXTRACTION__",
        extra="forbid",
    )

    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_retries: int = Field(default=2, ge=0, le=10)
    use_optimization: bool = Field(default=True)
    fallback_to_basic_parsing: bool = Field(default=True)
    max_concurrency: int = Field(default=1, ge=1, le=32)
    retry_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)

    def merged_with(self, options: ExtractionOptions | None) -> ExtractionConfig:
        """Return a copy with every non-None option applied on top.

        Args:
            options: Per-call overrides, or None

        Returns:
            New ExtractionConfig instance
        """
        if options is None:
            return self.model_copy()
        overrides = options.model_dump(exclude_none=True)
        return self.model_copy(update=overrides)


class LoggingConfig(BaseSettings):
    """Logging section.

    Attributes:
        level: Minimum level, case-insensitive (stored upper-case)
        format: ``json`` or ``console``
        file: Rotating log file; None logs to stderr
        rotation_size_mb: Size at which the log file rotates
        retention_count: Rotated files kept on disk
    """

    model_config = SettingsConfigDict(
        env_prefix="CURLSPEC_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=10, ge=1, le=1000)
    retention_count: int = Field(default=5, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        """Upper-case the level and reject unknown names."""
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level {value!r}; expected one of {LOG_LEVELS}")
        return level

    @field_validator("format")
    @classmethod
    def normalize_format(cls, value: str) -> str:
        """Lower-case the format and reject unknown renderers."""
        fmt = value.lower()
        if fmt not in LOG_FORMATS:
            raise ValueError(f"Unknown log format {value!r}; expected one of {LOG_FORMATS}")
        return fmt


class CurlspecConfig(BaseSettings):
    """All curlspec settings, one attribute per section.

    Nested environment variables take the form CURLSPEC_<SECTION>__<KEY>.
    """

    model_config = SettingsConfigDict(
        env_prefix="CURLSPEC_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    model: ModelServiceConfig = Field(default_factory=ModelServiceConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def find_config_file() -> Path | None:
    """Return the first existing default config file, if any.

    ``./curlspec.toml`` is checked before ``~/.config/curlspec/config.toml``.
    """
    for candidate in (Path.cwd() / CONFIG_FILE_NAME, Path.home() / USER_CONFIG_PATH):
        if candidate.is_file():
            return candidate
    return None


def load_config(config_path: Path | None = None) -> CurlspecConfig:
    """Build the configuration from a TOML file and the environment.

    Args:
        config_path: TOML file to read. When None, :func:`find_config_file`
            picks one, and defaults apply if none exists.

    Returns:
        Resolved CurlspecConfig

    Raises:
        FileNotFoundError: If config_path is given but does not exist
        ValueError: If the file is not valid TOML or holds invalid settings
    """
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    source = config_path or find_config_file()

    sections: dict[str, Any] = {}
    if source is not None:
        with source.open("rb") as fh:
            try:
                sections = tomli.load(fh)
            except tomli.TOMLDecodeError as e:
                raise ValueError(f"Malformed TOML in {source}: {e}") from e

    try:
        return CurlspecConfig(**sections)
    except ValidationError as e:
        where = f" in {source}" if source is not None else ""
        raise ValueError(f"Invalid configuration{where}: {e}") from e
