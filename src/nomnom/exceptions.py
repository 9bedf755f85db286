from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NomnomError(Exception):
    """Base exception for errors in the nomnom package."""

    @property
    def message(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ConfigurationError(NomnomError):
    """Raised when the run configuration cannot be resolved.

    Every subclass is a run-level defect: it aborts before any walking begins.
    """


@dataclass(frozen=True)
class ConfigFileError(ConfigurationError):
    """Raised when a configuration layer cannot be read or validated."""

    source: str
    detail: str

    @property
    def message(self) -> str:
        return f"Configuration error in {self.source}: {self.detail}"


@dataclass(frozen=True)
class InvalidSizeError(ConfigurationError):
    """Raised when a size limit such as `4M` cannot be parsed."""

    value: str

    @property
    def message(self) -> str:
        return f"Invalid size format: {self.value!r}"


@dataclass(frozen=True)
class InvalidThreadCountError(ConfigurationError):
    """Raised when the thread count is neither `auto` nor a positive integer."""

    value: str

    @property
    def message(self) -> str:
        return f"Invalid thread count: {self.value!r} (expected 'auto' or a positive integer)"


@dataclass(frozen=True)
class FilterRuleError(ConfigurationError):
    """Raised when a filter rule's pattern does not compile."""

    pattern: str
    detail: str

    @property
    def message(self) -> str:
        return f"Invalid filter pattern {self.pattern!r}: {self.detail}"


@dataclass(frozen=True)
class GitSourceError(NomnomError):
    """Raised when a remote source cannot be cloned or resolved."""

    source: str
    detail: str

    @property
    def message(self) -> str:
        return f"Git source {self.source!r}: {self.detail}"


@dataclass(frozen=True)
class SourceNotFoundError(NomnomError):
    """Raised when the local path to snapshot does not exist."""

    path: str

    @property
    def message(self) -> str:
        return f"Source path does not exist: {self.path}"


@dataclass(frozen=True)
class FileTooLargeError(NomnomError):
    """Raised for a file above the size limit; becomes an oversized stub."""

    path: str
    size: int

    @property
    def message(self) -> str:
        return f"File too large: {self.path} ({self.size} bytes)"


@dataclass(frozen=True)
class BinaryFileError(NomnomError):
    """Raised for a file classified as binary; becomes a binary stub."""

    path: str
    reason: str

    @property
    def message(self) -> str:
        return f"Binary file detected ({self.reason}): {self.path}"


@dataclass(frozen=True)
class FileReadError(NomnomError):
    """Raised when a file's bytes cannot be loaded; becomes an error stub."""

    path: str
    detail: str

    @property
    def message(self) -> str:
        return self.detail
