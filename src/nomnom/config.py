from __future__ import annotations

import re
from enum import StrEnum, auto
from pathlib import Path, PurePosixPath
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

REDACTION_MARKER = "██REDACTED██"
ELLIPSIS = "…"
STYLE_PLACEHOLDER = "<style>…</style>"
SVG_PLACEHOLDER = "<svg>…</svg>"
SIMPLIFIED_PLACEHOLDER = "/* CSS content simplified */"
SIMPLIFIED_EXTENSIONS = frozenset({"css"})

BINARY_STUB = "[binary skipped]"

MMAP_THRESHOLD = 4 * 1024 * 1024
MATCH_PREVIEW_CHARS = 100


class BinaryCategory(StrEnum):
    """Families of file extensions that are assumed to hold binary data.

    The lookup is a fast pre-filter only: files that pass it are still
    inspected byte-wise before being treated as text.
    """

    IMAGE = auto()
    VIDEO = auto()
    AUDIO = auto()
    ARCHIVE = auto()
    EXECUTABLE = auto()
    DOCUMENT = auto()
    FONT = auto()
    DATA = auto()


BINARY_EXTENSIONS: dict[str, BinaryCategory] = {
    "png": BinaryCategory.IMAGE,
    "jpg": BinaryCategory.IMAGE,
    "jpeg": BinaryCategory.IMAGE,
    "gif": BinaryCategory.IMAGE,
    "bmp": BinaryCategory.IMAGE,
    "ico": BinaryCategory.IMAGE,
    "tiff": BinaryCategory.IMAGE,
    "webp": BinaryCategory.IMAGE,
    "svg": BinaryCategory.IMAGE,
    "mp4": BinaryCategory.VIDEO,
    "avi": BinaryCategory.VIDEO,
    "mov": BinaryCategory.VIDEO,
    "wmv": BinaryCategory.VIDEO,
    "flv": BinaryCategory.VIDEO,
    "webm": BinaryCategory.VIDEO,
    "mkv": BinaryCategory.VIDEO,
    "mp3": BinaryCategory.AUDIO,
    "wav": BinaryCategory.AUDIO,
    "flac": BinaryCategory.AUDIO,
    "aac": BinaryCategory.AUDIO,
    "ogg": BinaryCategory.AUDIO,
    "wma": BinaryCategory.AUDIO,
    "zip": BinaryCategory.ARCHIVE,
    "tar": BinaryCategory.ARCHIVE,
    "gz": BinaryCategory.ARCHIVE,
    "bz2": BinaryCategory.ARCHIVE,
    "xz": BinaryCategory.ARCHIVE,
    "7z": BinaryCategory.ARCHIVE,
    "rar": BinaryCategory.ARCHIVE,
    "exe": BinaryCategory.EXECUTABLE,
    "dll": BinaryCategory.EXECUTABLE,
    "so": BinaryCategory.EXECUTABLE,
    "dylib": BinaryCategory.EXECUTABLE,
    "app": BinaryCategory.EXECUTABLE,
    "pdf": BinaryCategory.DOCUMENT,
    "doc": BinaryCategory.DOCUMENT,
    "docx": BinaryCategory.DOCUMENT,
    "xls": BinaryCategory.DOCUMENT,
    "xlsx": BinaryCategory.DOCUMENT,
    "ppt": BinaryCategory.DOCUMENT,
    "pptx": BinaryCategory.DOCUMENT,
    "ttf": BinaryCategory.FONT,
    "otf": BinaryCategory.FONT,
    "woff": BinaryCategory.FONT,
    "woff2": BinaryCategory.FONT,
    "bin": BinaryCategory.DATA,
    "dat": BinaryCategory.DATA,
    "db": BinaryCategory.DATA,
    "sqlite": BinaryCategory.DATA,
}

FENCE_LANGUAGE: dict[str, str] = {
    "bash": "bash",
    "c": "c",
    "cfg": "ini",
    "conf": "ini",
    "cpp": "cpp",
    "css": "css",
    "go": "go",
    "h": "c",
    "hpp": "cpp",
    "htm": "html",
    "html": "html",
    "ini": "ini",
    "java": "java",
    "js": "javascript",
    "json": "json",
    "md": "markdown",
    "mjs": "javascript",
    "php": "php",
    "py": "python",
    "rs": "rust",
    "sh": "bash",
    "sql": "sql",
    "toml": "toml",
    "ts": "typescript",
    "tsx": "typescript",
    "xml": "xml",
    "yaml": "yaml",
    "yml": "yaml",
    "zsh": "bash",
}


def extension_of(path: str | Path) -> str:
    """Return the lowercased extension of `path` without its leading dot."""
    return PurePosixPath(str(path).replace("\\", "/")).suffix.lower().removeprefix(".")


def guess_binary_category(path: str | Path) -> BinaryCategory | None:
    """Heuristic guess of a binary family based on extension.

    Args:
        path (str | Path): The file path to inspect.

    Returns:
        BinaryCategory | None: The matching binary family, or None when the
            extension is not a known binary one.
    """
    return BINARY_EXTENSIONS.get(extension_of(path))


def guess_language(path: str | Path) -> str:
    """Get the suggested code fence language for a file path, or an empty string."""
    return FENCE_LANGUAGE.get(extension_of(path), "")


def path_sort_key(path: str) -> tuple[str, ...]:
    """Order paths component by component, so siblings sort before nephews."""
    return PurePosixPath(path).parts


class FilterKind(StrEnum):
    """Rule kinds understood by the filter pipeline."""

    REDACT = auto()
    TRUNCATE = auto()


class _Rule(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    file_pattern: re.Pattern[str] | None = Field(
        default=None,
        description="Rule applies only to paths where this regex is found",
    )

    def applies_to(self, path: str) -> bool:
        """Check the rule's applicability pattern against a file path."""
        return self.file_pattern is None or self.file_pattern.search(path) is not None


class RedactRule(_Rule):
    """Replace every match with the redaction marker."""

    kind: Literal[FilterKind.REDACT] = FilterKind.REDACT
    pattern: re.Pattern[str]

    @property
    def label(self) -> str:
        return "Redaction"

    @property
    def replacement(self) -> str:
        return REDACTION_MARKER


class TruncateRule(_Rule):
    """Replace every match with a short placeholder.

    With a threshold the placeholder reports how many characters were kept
    out; without one it is picked from the shape of the pattern.
    """

    kind: Literal[FilterKind.TRUNCATE] = FilterKind.TRUNCATE
    pattern: re.Pattern[str]
    threshold: int | None = Field(default=None, ge=0)

    @property
    def label(self) -> str:
        return "Truncation"

    @property
    def replacement(self) -> str:
        if self.threshold is not None:
            return f'"...({self.threshold} chars truncated)..."'
        if "<style" in self.pattern.pattern:
            return STYLE_PLACEHOLDER
        if "<svg" in self.pattern.pattern:
            return SVG_PLACEHOLDER
        return ELLIPSIS


class UnknownRule(_Rule):
    """A rule whose kind is not recognised; kept so it can be reported and skipped."""

    kind: str


FilterRule = RedactRule | TruncateRule | UnknownRule


class DiscoveryRecord(BaseModel):
    """A file found by the walker, before any of its bytes are read.

    Attributes:
        path: Path relative to the walked root, with POSIX separators.
        absolute_path: Location of the file on disk.
        size: File size in bytes.
        looks_binary_by_extension: Extension belongs to a known binary family.
        is_oversized: Size is above the configured limit.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="File path relative to the walked root")
    absolute_path: Path = Field(..., description="Absolute file path")
    size: int = Field(..., ge=0, description="File size in bytes")
    looks_binary_by_extension: bool = Field(default=False, description="Extension pre-filter result")
    is_oversized: bool = Field(default=False, description="Size exceeds the configured limit")


class ContentKind(StrEnum):
    """What a processed file carries: its text, or the reason it has none."""

    TEXT = auto()
    BINARY = auto()
    OVERSIZED = auto()
    ERROR = auto()


class ProcessedFile(BaseModel):
    """Terminal per-file record handed to the output writers."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="File path relative to the walked root")
    size: int = Field(default=0, ge=0, description="File size in bytes")
    kind: ContentKind = Field(..., description="Text or the kind of stub")
    content: str = Field(..., description="Filtered text or stub description")

    @computed_field
    @property
    def is_stub(self) -> bool:
        """Whether the content is a placeholder instead of the file's text."""
        return self.kind is not ContentKind.TEXT

    @classmethod
    def text(cls, path: str, content: str, size: int = 0) -> ProcessedFile:
        return cls(path=path, size=size, kind=ContentKind.TEXT, content=content)

    @classmethod
    def binary_stub(cls, path: str, size: int = 0) -> ProcessedFile:
        return cls(path=path, size=size, kind=ContentKind.BINARY, content=BINARY_STUB)

    @classmethod
    def oversized_stub(cls, path: str, size: int) -> ProcessedFile:
        return cls(
            path=path,
            size=size,
            kind=ContentKind.OVERSIZED,
            content=f"[file too large: {size} bytes]",
        )

    @classmethod
    def error_stub(cls, path: str, description: str, size: int = 0) -> ProcessedFile:
        return cls(path=path, size=size, kind=ContentKind.ERROR, content=description)


class RunLimits(BaseModel):
    """Resolved, read-only limits for one run."""

    model_config = ConfigDict(frozen=True)

    max_size: int = Field(..., ge=0, description="Files above this many bytes are stubbed")
    threads: int = Field(default=1, ge=1, description="Worker threads")
    safe_logging: bool = Field(default=True, description="Hide matched text in filter logs")
    mmap_threshold: int = Field(default=MMAP_THRESHOLD, description="Map files at or above this size")
