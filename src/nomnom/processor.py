from __future__ import annotations

import mmap
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from nomnom.config import ProcessedFile, path_sort_key
from nomnom.exceptions import BinaryFileError, FileReadError, FileTooLargeError
from nomnom.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from nomnom.config import DiscoveryRecord, RunLimits
    from nomnom.filters import FilterPipeline

NUL_WINDOW = 1024
CONTROL_WINDOW = 4096
CONTROL_RATIO = 0.30

_TEXT_WHITESPACE = frozenset(b"\t\n\r\f\v")

BOMS: tuple[bytes, ...] = (
    b"\xef\xbb\xbf",
    b"\xff\xfe\x00\x00",
    b"\x00\x00\xfe\xff",
    b"\xff\xfe",
    b"\xfe\xff",
)

# (offset, magic, media type). Text types fall through to the heuristic.
SIGNATURES: tuple[tuple[int, bytes, str], ...] = (
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (8, b"WEBP", "image/webp"),
    (0, b"II*\x00", "image/tiff"),
    (0, b"MM\x00*", "image/tiff"),
    (0, b"\x00\x00\x01\x00", "image/x-icon"),
    (0, b"%PDF-", "application/pdf"),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"PK\x05\x06", "application/zip"),
    (0, b"\x1f\x8b", "application/gzip"),
    (0, b"BZh", "application/x-bzip2"),
    (0, b"\xfd7zXZ\x00", "application/x-xz"),
    (0, b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed"),
    (0, b"Rar!\x1a\x07", "application/vnd.rar"),
    (0, b"\x7fELF", "application/x-executable"),
    (0, b"\xfe\xed\xfa\xce", "application/x-mach-binary"),
    (0, b"\xfe\xed\xfa\xcf", "application/x-mach-binary"),
    (0, b"\xce\xfa\xed\xfe", "application/x-mach-binary"),
    (0, b"\xcf\xfa\xed\xfe", "application/x-mach-binary"),
    (0, b"\xca\xfe\xba\xbe", "application/java-vm"),
    (0, b"\x00asm", "application/wasm"),
    (0, b"SQLite format 3\x00", "application/vnd.sqlite3"),
    (0, b"OggS", "audio/ogg"),
    (0, b"fLaC", "audio/x-flac"),
    (0, b"ID3", "audio/mpeg"),
    (4, b"ftyp", "video/mp4"),
    (0, b"wOFF", "font/woff"),
    (0, b"wOF2", "font/woff2"),
    (0, b"OTTO", "font/otf"),
    (257, b"ustar", "application/x-tar"),
    (0, b"<?xml", "text/xml"),
    (0, b"#!", "text/x-shellscript"),
)


def detect_signature(data: bytes) -> str | None:
    """Return the media type of a recognised magic signature, or None."""
    for offset, magic, media_type in SIGNATURES:
        if data[offset : offset + len(magic)] == magic:
            return media_type
    return None


def is_binary_content(data: bytes) -> bool:
    """Byte-distribution check for buffers with no known signature.

    A byte-order mark means text. A NUL byte near the start, or a high share
    of control characters other than whitespace, means binary.

    Args:
        data (bytes): file contents (only the head is inspected)

    Returns:
        bool: True if the data looks binary
    """
    if not data or data.startswith(BOMS):
        return False
    if b"\x00" in data[:NUL_WINDOW]:
        return True
    sample = data[:CONTROL_WINDOW]
    control = sum(1 for b in sample if (b < 0x20 and b not in _TEXT_WHITESPACE) or b == 0x7F)
    return control / len(sample) > CONTROL_RATIO


def read_bytes(path: Path, size: int, *, mmap_threshold: int) -> bytes:
    """Load a whole file, mapping it into memory when it is large.

    Raises:
        FileReadError: on any failure to open, map or read the file.
    """
    try:
        if size >= mmap_threshold and size > 0:
            with path.open("rb") as f, mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mm:
                return bytes(mm)
        return path.read_bytes()
    except (OSError, ValueError) as e:
        raise FileReadError(path=str(path), detail=f"[read error: {e}]") from e


class Processor:
    """Classify one discovered file and turn it into its final text.

    Every check that could make the file a stub runs before any filter rule.
    """

    def __init__(self, limits: RunLimits, pipeline: FilterPipeline) -> None:
        self.limits = limits
        self.pipeline = pipeline

    def process_file(self, record: DiscoveryRecord) -> ProcessedFile:
        """Read, classify and filter one file.

        Args:
            record (DiscoveryRecord): the file to process

        Raises:
            FileTooLargeError: if the walker flagged the file as oversized.
            BinaryFileError: if the extension, a magic signature, the byte
                heuristic or UTF-8 decoding says the file is binary.
            FileReadError: if the file's bytes cannot be loaded.

        Returns:
            ProcessedFile: the filtered text
        """
        if record.is_oversized:
            raise FileTooLargeError(path=record.path, size=record.size)
        if record.looks_binary_by_extension:
            raise BinaryFileError(path=record.path, reason="extension")

        data = read_bytes(record.absolute_path, record.size, mmap_threshold=self.limits.mmap_threshold)
        media_type = detect_signature(data)
        if media_type is not None and not media_type.startswith("text/"):
            raise BinaryFileError(path=record.path, reason=media_type)
        if media_type is None and is_binary_content(data):
            raise BinaryFileError(path=record.path, reason="content")
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BinaryFileError(path=record.path, reason="invalid utf-8") from e

        return ProcessedFile.text(record.path, self.pipeline.apply(text, record.path), size=record.size)


def _process_one(processor: Processor, record: DiscoveryRecord) -> ProcessedFile:
    try:
        return processor.process_file(record)
    except FileTooLargeError as e:
        logger.info("Skipping oversized file %s (%d bytes)", record.path, e.size)
        return ProcessedFile.oversized_stub(record.path, e.size)
    except BinaryFileError as e:
        logger.debug("Skipping binary file %s (%s)", record.path, e.reason)
        return ProcessedFile.binary_stub(record.path, record.size)
    except FileReadError as e:
        logger.warning("Failed to read %s: %s", record.path, e.detail)
        return ProcessedFile.error_stub(record.path, e.detail, record.size)
    except Exception as e:  # noqa: BLE001
        logger.warning("Failed to process %s: %s", record.path, e)
        return ProcessedFile.error_stub(record.path, f"[error: {e}]", record.size)


def process_files(
    records: Sequence[DiscoveryRecord],
    processor: Processor,
    *,
    threads: int = 1,
) -> list[ProcessedFile]:
    """Process every discovered file; a failure becomes a stub, never a gap.

    Args:
        records (Sequence[DiscoveryRecord]): files from the walker
        processor (Processor): the configured per-file processor
        threads (int): worker threads for the per-file stage

    Returns:
        list[ProcessedFile]: one entry per record, sorted by path
    """
    if threads > 1 and len(records) > 1:
        with ThreadPoolExecutor(max_workers=threads) as pool:
            out = list(pool.map(lambda r: _process_one(processor, r), records))
    else:
        out = [_process_one(processor, r) for r in records]
    out.sort(key=lambda f: path_sort_key(f.path))
    return out
