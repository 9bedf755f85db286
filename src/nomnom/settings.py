from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from nomnom.config import FilterKind, FilterRule, RedactRule, RunLimits, TruncateRule, UnknownRule
from nomnom.exceptions import (
    ConfigFileError,
    FilterRuleError,
    InvalidSizeError,
    InvalidThreadCountError,
)
from nomnom.output import OutputFormat

ENV_PREFIX = "NOMNOM_"
PROJECT_CONFIG = Path(".nomnom.yml")

_SIZE_UNITS = {"K": 1024, "M": 1024**2, "G": 1024**3}


def user_config_path() -> Path:
    """Location of the per-user configuration file."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "nomnom" / "config.yml"


def parse_size(value: str) -> int:
    """Parse a human size such as `512`, `64K`, `4M` or `1g` into bytes.

    Suffixes are powers of 1024 and case-insensitive.

    Args:
        value (str): the size to parse

    Raises:
        InvalidSizeError: if the value is empty, negative or not a number.

    Returns:
        int: the size in bytes
    """
    text = value.strip().upper()
    multiplier = 1
    if text and text[-1] in _SIZE_UNITS:
        multiplier = _SIZE_UNITS[text[-1]]
        text = text[:-1]
    if not text.isdigit():
        raise InvalidSizeError(value=value)
    return int(text) * multiplier


class FilterConfig(BaseModel):
    """One filter rule as written in YAML or the environment."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="redact | truncate")
    pattern: str = Field(..., description="Regex matched against file content")
    file_pattern: str | None = Field(default=None, description="Regex the file path must contain")
    threshold: int | None = Field(default=None, ge=0, description="Length hint for truncation")

    def compile(self) -> FilterRule:
        """Decode the rule into its tagged variant, compiling its regexes once.

        Raises:
            FilterRuleError: if the content or path pattern is not a valid regex.
        """
        file_pattern = _compile(self.file_pattern) if self.file_pattern is not None else None
        kind = self.type.strip().lower()
        if kind == FilterKind.REDACT:
            return RedactRule(pattern=_compile(self.pattern), file_pattern=file_pattern)
        if kind == FilterKind.TRUNCATE:
            return TruncateRule(
                pattern=_compile(self.pattern),
                file_pattern=file_pattern,
                threshold=self.threshold,
            )
        return UnknownRule(kind=self.type, file_pattern=file_pattern)


def _compile(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise FilterRuleError(pattern=pattern, detail=str(e)) from e


DEFAULT_FILTERS: list[FilterConfig] = [
    FilterConfig(
        type="redact",
        pattern=r"(?i)\b(?:password|passwd|api[_-]?key)\s*[:=]\s*\S+",
    ),
    FilterConfig(type="redact", pattern=r"\bAKIA[0-9A-Z]{16}\b"),
    FilterConfig(
        type="redact",
        pattern=r"(?i)\b(?:secret|token)\s*[:=]\s*[A-Za-z0-9+/]{20,}={0,2}",
    ),
    FilterConfig(type="truncate", pattern=r"(?s)<style[^>]*>.*?</style>", file_pattern=r"\.html?$"),
    FilterConfig(type="truncate", pattern=r"(?s)<svg[^>]*>.*?</svg>", file_pattern=r"\.html?$"),
    FilterConfig(type="truncate", pattern=r'"[^"\n]{50,}"', file_pattern=r"\.json$", threshold=50),
]


class Settings(BaseModel):
    """Resolved configuration for one nomnom run."""

    model_config = ConfigDict(frozen=True)

    threads: str | int = Field(default="auto", description="'auto' or a positive thread count")
    max_size: str = Field(default="4M", description="Files above are stubbed (K/M/G suffix)")
    format: OutputFormat = Field(default=OutputFormat.MD, description="Output format: md, json, xml or txt")
    ignore_git: bool = Field(default=True, description="Honor .gitignore/.ignore and skip .git")
    safe_logging: bool = Field(default=True, description="Never show matched text in logs")
    filters: list[FilterConfig] = Field(
        default_factory=lambda: list(DEFAULT_FILTERS),
        description="Ordered content filter rules",
    )

    @field_validator("threads", mode="before")
    @classmethod
    def _coerce_threads(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        return value

    def resolve_threads(self) -> int:
        """Resolve `auto` to the CPU count and check explicit counts.

        Raises:
            InvalidThreadCountError: if the count is zero or not `auto`.
        """
        if isinstance(self.threads, int):
            if self.threads < 1:
                raise InvalidThreadCountError(value=str(self.threads))
            return self.threads
        if self.threads.strip().lower() != "auto":
            raise InvalidThreadCountError(value=self.threads)
        return os.cpu_count() or 1

    def resolve_max_size(self) -> int:
        return parse_size(self.max_size)

    def run_limits(self) -> RunLimits:
        """Build the read-only limits every pipeline component receives."""
        return RunLimits(
            max_size=self.resolve_max_size(),
            threads=self.resolve_threads(),
            safe_logging=self.safe_logging,
        )

    def compile_rules(self) -> tuple[FilterRule, ...]:
        return tuple(f.compile() for f in self.filters)

    def to_yaml(self) -> str:
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)

    @classmethod
    def load(cls, extra_config: Path | None = None) -> Settings:
        """Merge defaults, the user file, the project file, `extra_config` and the environment.

        Later layers win. Mappings merge key by key; a `filters` list in a
        later layer replaces the earlier one. Environment variables use the
        `NOMNOM_` prefix and may come from a `.env` file.

        Raises:
            ConfigFileError: if a layer is not valid YAML or the merged result
                does not validate.
        """
        merged: dict[str, Any] = {}
        for path in config_layers(extra_config):
            if path.is_file():
                merged.update(_read_yaml(path))
        merged.update(_env_overrides())
        try:
            return cls(**merged)
        except ValidationError as e:
            raise ConfigFileError(source="merged configuration", detail=str(e)) from e


def config_layers(extra_config: Path | None = None) -> list[Path]:
    layers = [user_config_path(), PROJECT_CONFIG]
    if extra_config is not None:
        layers.append(extra_config)
    return layers


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigFileError(source=str(path), detail=str(e)) from e
    if not isinstance(data, dict):
        raise ConfigFileError(source=str(path), detail="top level must be a mapping")
    return data


def _env_overrides() -> dict[str, Any]:
    load_dotenv(find_dotenv(usecwd=True))
    out: dict[str, Any] = {}
    for name in Settings.model_fields:
        raw = os.environ.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        # Values are YAML scalars or flow sequences, so `true`, `8` and
        # `[{type: redact, pattern: x}]` all work.
        try:
            out[name] = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigFileError(source=ENV_PREFIX + name.upper(), detail=str(e)) from e
    return out


@dataclass
class ConfigValidation:
    """Outcome of `validate_configuration`, printed by `--validate-config`."""

    settings: Settings | None
    discovered: list[tuple[Path, bool]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_configuration(extra_config: Path | None = None) -> ConfigValidation:
    """Load the configuration and collect every problem instead of stopping at the first."""
    discovered = [(p, p.is_file()) for p in config_layers(extra_config)]
    try:
        settings = Settings.load(extra_config)
    except ConfigFileError as e:
        return ConfigValidation(settings=None, discovered=discovered, errors=[str(e)])

    report = ConfigValidation(settings=settings, discovered=discovered)
    for check in (settings.resolve_threads, settings.resolve_max_size, settings.compile_rules):
        try:
            check()
        except (InvalidThreadCountError, InvalidSizeError, FilterRuleError) as e:
            report.errors.append(str(e))
    if not settings.filters:
        report.warnings.append("No filters configured - sensitive data may not be redacted")
    for f in settings.filters:
        if f.type.strip().lower() not in set(FilterKind):
            report.warnings.append(f"Unknown filter type {f.type!r} will be skipped")
    return report
