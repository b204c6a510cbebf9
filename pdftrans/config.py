"""Translator configuration module.

This module provides:
- TranslatorConfig: Dataclass for all service configuration options
- YAML, environment and CLI loaders
- Validation of numeric limits and required credentials
"""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHECKPOINT_DIR,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_LOG_LIMIT,
    DEFAULT_MAX_CONCURRENT_TASKS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_TOKENS,
    DEFAULT_OCR_MODEL,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PREVIEW_CHARS,
    DEFAULT_RECLAIM_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETENTION_HOURS,
    DEFAULT_TARGET_LANGUAGE,
    DEFAULT_TRANSLATE_MODEL,
    MAX_FILE_SIZE,
    RENDER_DPI,
    RENDER_JPEG_QUALITY,
    RENDER_SCALE_TO,
    TRANSLATION_SKIP_RATIO,
)
from .exceptions import InvalidConfigError, MissingConfigError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration file with error handling.

    Args:
        config_path: Path to YAML config file

    Returns:
        Configuration dict, or empty dict if file not found

    Raises:
        InvalidConfigError: If the file exists but is not valid YAML
    """
    if not config_path.exists():
        logger.debug("Config file not found: %s", config_path)
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Failed to parse config file {config_path}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidConfigError(f"Failed to read config file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidConfigError(f"Config file {config_path} must contain a mapping")
    return data


# Environment variable -> (field name, transform)
_ENV_MAPPING: dict[str, tuple[str, Any]] = {
    "BASE_URL": ("base_url", None),
    "API_KEY": ("api_key", None),
    "OCR_MODEL": ("ocr_model", None),
    "MODEL": ("translate_model", None),
    "OCR_MODEL_FALLBACK": ("ocr_model_fallback", None),
    "MODEL_FALLBACK": ("translate_model_fallback", None),
    "TARGET_LANGUAGE": ("target_language", None),
    "MAX_CONCURRENT_TASKS": ("max_concurrent_tasks", int),
    "BATCH_SIZE": ("batch_size", int),
    "CHECKPOINT_DIR": ("checkpoint_dir", Path),
    "RETENTION_HOURS": ("retention_hours", float),
    "TIMEZONE": ("timezone", None),
    "HOST": ("host", None),
    "PORT": ("port", int),
}


@dataclass
class TranslatorConfig:
    """Service configuration with validation.

    Configuration Sources (in order of precedence):
    1. Constructor arguments / overrides (highest priority)
    2. CLI arguments via from_cli()
    3. Environment variables via from_env()
    4. YAML configuration files via from_yaml()
    5. Default values (lowest priority)

    Example:
        >>> config = TranslatorConfig.from_yaml(Path("settings/config.yaml"))
        >>> config = TranslatorConfig.from_env(base=config)
        >>> config.validate()
    """

    # ==================== API ====================
    base_url: str = ""
    api_key: str = ""
    ocr_model: str = DEFAULT_OCR_MODEL
    translate_model: str = DEFAULT_TRANSLATE_MODEL
    ocr_model_fallback: str | None = None
    translate_model_fallback: str | None = None
    target_language: str = DEFAULT_TARGET_LANGUAGE
    max_tokens: int = DEFAULT_MAX_TOKENS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    # ==================== Scheduling ====================
    max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS
    batch_size: int = DEFAULT_BATCH_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    translation_skip_ratio: float = TRANSLATION_SKIP_RATIO

    # ==================== Input / Rendering ====================
    max_file_size: int = MAX_FILE_SIZE
    render_dpi: int = RENDER_DPI
    render_scale_to: int = RENDER_SCALE_TO
    render_jpeg_quality: int = RENDER_JPEG_QUALITY

    # ==================== Progress ====================
    log_limit: int = DEFAULT_LOG_LIMIT
    preview_chars: int = DEFAULT_PREVIEW_CHARS
    poll_interval: float = DEFAULT_POLL_INTERVAL

    # ==================== Storage ====================
    checkpoint_dir: Path = field(default_factory=lambda: Path(DEFAULT_CHECKPOINT_DIR))
    retention_hours: float = DEFAULT_RETENTION_HOURS
    reclaim_interval: float = DEFAULT_RECLAIM_INTERVAL
    timezone: str = "UTC"

    # ==================== Server ====================
    host: str = "0.0.0.0"
    port: int = 8080

    def __post_init__(self) -> None:
        """Convert path strings to Path objects and blank fallbacks to None."""
        if isinstance(self.checkpoint_dir, str):
            self.checkpoint_dir = Path(self.checkpoint_dir)
        if not self.ocr_model_fallback:
            self.ocr_model_fallback = None
        if not self.translate_model_fallback:
            self.translate_model_fallback = None

    @classmethod
    def _field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}

    @classmethod
    def from_yaml(cls, config_path: Path, **overrides: Any) -> TranslatorConfig:
        """Load configuration from YAML file.

        Unknown keys are ignored with a warning so old config files keep working.

        Args:
            config_path: Path to YAML configuration file
            **overrides: Values to override from file

        Returns:
            TranslatorConfig instance
        """
        yaml_config = _load_yaml_config(Path(config_path))
        known = cls._field_names()

        kwargs: dict[str, Any] = {}
        for key, value in yaml_config.items():
            if key in known:
                kwargs[key] = value
            else:
                logger.warning("Ignoring unknown config key '%s' in %s", key, config_path)

        kwargs.update(overrides)
        return cls(**kwargs)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        base: TranslatorConfig | None = None,
    ) -> TranslatorConfig:
        """Create configuration from environment variables.

        Args:
            environ: Environment mapping (defaults to os.environ)
            base: Configuration whose values are kept for unset variables

        Returns:
            TranslatorConfig instance
        """
        environ = os.environ if environ is None else environ
        kwargs = base.to_kwargs() if base is not None else {}

        for env_name, (field_name, transform) in _ENV_MAPPING.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                kwargs[field_name] = transform(raw) if transform else raw
            except ValueError as e:
                raise InvalidConfigError(f"Invalid value for {env_name}: {raw!r}") from e

        return cls(**kwargs)

    @classmethod
    def from_cli(cls, args: argparse.Namespace, base: TranslatorConfig | None = None) -> TranslatorConfig:
        """Create configuration from CLI arguments.

        Args:
            args: Parsed CLI arguments from argparse
            base: Configuration whose values are kept for unset arguments

        Returns:
            TranslatorConfig instance
        """
        # Format: (cli_name, config_name, transform_func)
        mappings: list[tuple[str, str, Any]] = [
            ("ocr_model", "ocr_model", None),
            ("translate_model", "translate_model", None),
            ("target_language", "target_language", None),
            ("max_concurrent_tasks", "max_concurrent_tasks", None),
            ("batch_size", "batch_size", None),
            ("max_retries", "max_retries", None),
            ("checkpoint_dir", "checkpoint_dir", Path),
            ("host", "host", None),
            ("port", "port", None),
        ]

        kwargs = base.to_kwargs() if base is not None else {}
        for cli_name, config_name, transform in mappings:
            value = getattr(args, cli_name, None)
            if value is not None:
                kwargs[config_name] = transform(value) if transform else value

        return cls(**kwargs)

    def validate(self, require_credentials: bool = True) -> None:
        """Validate configuration values.

        Args:
            require_credentials: Whether the API base URL and key must be set

        Raises:
            MissingConfigError: If required credentials are missing
            InvalidConfigError: If a numeric limit is out of range
        """
        if require_credentials:
            if not self.base_url:
                raise MissingConfigError("BASE_URL is required")
            if not self.api_key:
                raise MissingConfigError("API_KEY is required")

        positive_ints = {
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "batch_size": self.batch_size,
            "max_file_size": self.max_file_size,
            "log_limit": self.log_limit,
            "max_tokens": self.max_tokens,
        }
        for name, value in positive_ints.items():
            if value < 1:
                raise InvalidConfigError(f"{name} must be >= 1, got {value}")

        if self.max_retries < 0:
            raise InvalidConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if not 0.0 <= self.translation_skip_ratio <= 1.0:
            raise InvalidConfigError(
                f"translation_skip_ratio must be within [0, 1], got {self.translation_skip_ratio}"
            )
        if self.request_timeout <= 0 or self.poll_interval <= 0:
            raise InvalidConfigError("request_timeout and poll_interval must be positive")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidConfigError(f"Unknown timezone: {self.timezone!r}") from e

        logger.info(
            "Configuration validated: ocr_model=%s, translate_model=%s, max_tasks=%d, batch_size=%d",
            self.ocr_model,
            self.translate_model,
            self.max_concurrent_tasks,
            self.batch_size,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry policy for recognition and translation calls."""
        return RetryPolicy(max_retries=self.max_retries)

    @property
    def retention_seconds(self) -> float:
        return self.retention_hours * 3600.0

    def to_kwargs(self) -> dict[str, Any]:
        """Constructor keyword arguments reproducing this configuration."""
        return {name: getattr(self, name) for name in self._field_names()}

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a printable dictionary (API key masked).

        Returns:
            Dictionary representation of configuration
        """
        data = self.to_kwargs()
        data["checkpoint_dir"] = str(self.checkpoint_dir)
        data["api_key"] = "***" if self.api_key else ""
        return data
