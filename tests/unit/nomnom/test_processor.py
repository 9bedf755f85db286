from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from nomnom import processor as processor_module
from nomnom.config import BINARY_STUB, REDACTION_MARKER, ContentKind, DiscoveryRecord, RedactRule, RunLimits
from nomnom.exceptions import BinaryFileError, FileReadError, FileTooLargeError
from nomnom.filters import FilterPipeline
from nomnom.processor import Processor, detect_signature, is_binary_content, process_files, read_bytes
from nomnom.walker import walk

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

LIMIT = 1024
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"rest"


def make_processor(**limits: int) -> Processor:
    pipeline = FilterPipeline([RedactRule(pattern=re.compile(r"password=\S+"))])
    return Processor(RunLimits(max_size=limits.pop("max_size", LIMIT), **limits), pipeline)


def record_for(path: Path, root: Path, **flags: bool) -> DiscoveryRecord:
    return DiscoveryRecord(
        path=path.relative_to(root).as_posix(),
        absolute_path=path,
        size=path.stat().st_size,
        **flags,
    )


@pytest.mark.unit
@pytest.mark.parametrize(
    ("data", "expected"),
    [
        (PNG, "image/png"),
        (b"%PDF-1.7\n", "application/pdf"),
        (b"PK\x03\x04rest", "application/zip"),
        (b"\x7fELF\x02\x01", "application/x-executable"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"\x00\x00\x00\x18ftypmp42", "video/mp4"),
        (b"<?xml version='1.0'?>", "text/xml"),
        (b"#!/bin/sh\necho hi\n", "text/x-shellscript"),
        (b"print('hello')\n", None),
    ],
)
def test_detect_signature(data: bytes, expected: str | None) -> None:
    assert detect_signature(data) == expected


@pytest.mark.unit
def test_detect_signature_tar_at_offset() -> None:
    data = b"\x00" * 257 + b"ustar\x0000"

    assert detect_signature(data) == "application/x-tar"


@pytest.mark.unit
def test_is_binary_content_heuristics() -> None:
    assert not is_binary_content(b"")
    assert not is_binary_content(b"plain text\twith tabs\r\n")
    assert is_binary_content(b"abc\x00def")
    assert is_binary_content(bytes([1, 2, 3, 4, 5]) + b"ab")
    assert not is_binary_content(b"\xef\xbb\xbf" + bytes([1, 2, 3, 4, 5]))
    assert not is_binary_content(b"a" * 2000 + b"\x00")


@pytest.mark.unit
def test_process_file_filters_text(tmp_path: Path) -> None:
    f = tmp_path / "app.cfg"
    f.write_text("host=db\npassword=hunter2\n", encoding="utf-8")

    out = make_processor().process_file(record_for(f, tmp_path))

    assert out.kind is ContentKind.TEXT
    assert out.content == f"host=db\n{REDACTION_MARKER}\n"


@pytest.mark.unit
def test_process_file_short_circuits_without_reading(tmp_path: Path, mocker: MockerFixture) -> None:
    big = tmp_path / "big.txt"
    big.write_text("x" * 10, encoding="utf-8")
    read = mocker.patch.object(processor_module, "read_bytes")
    proc = make_processor()

    with pytest.raises(FileTooLargeError):
        proc.process_file(record_for(big, tmp_path, is_oversized=True))
    with pytest.raises(BinaryFileError):
        proc.process_file(record_for(big, tmp_path, looks_binary_by_extension=True))
    read.assert_not_called()


@pytest.mark.unit
@pytest.mark.parametrize(
    "data",
    [PNG, b"text\x00with nul", b"caf\xe9 au lait\n"],
    ids=["png-magic", "nul-byte", "invalid-utf8"],
)
def test_process_file_detects_binary_content(tmp_path: Path, data: bytes) -> None:
    f = tmp_path / "payload.txt"
    f.write_bytes(data)

    with pytest.raises(BinaryFileError):
        make_processor().process_file(record_for(f, tmp_path))


@pytest.mark.unit
def test_process_file_accepts_shebang_scripts(tmp_path: Path) -> None:
    f = tmp_path / "run"
    f.write_text("#!/bin/sh\necho ok\n", encoding="utf-8")

    assert make_processor().process_file(record_for(f, tmp_path)).content == "#!/bin/sh\necho ok\n"


@pytest.mark.unit
def test_read_bytes_uses_mmap_at_threshold(tmp_path: Path, mocker: MockerFixture) -> None:
    f = tmp_path / "data.txt"
    f.write_bytes(b"0123456789")
    spy = mocker.spy(processor_module.mmap, "mmap")

    assert read_bytes(f, 10, mmap_threshold=10) == b"0123456789"
    assert spy.call_count == 1
    assert read_bytes(f, 10, mmap_threshold=11) == b"0123456789"
    assert spy.call_count == 1


@pytest.mark.unit
def test_read_bytes_wraps_os_errors(tmp_path: Path) -> None:
    with pytest.raises(FileReadError) as exc_info:
        read_bytes(tmp_path / "gone.txt", 5, mmap_threshold=1024)

    assert exc_info.value.detail.startswith("[read error: ")


@pytest.mark.unit
def test_process_files_maps_every_record_to_one_result(tmp_path: Path, mocker: MockerFixture) -> None:
    (tmp_path / "a.py").write_text("print('a')\n", encoding="utf-8")
    (tmp_path / "big.log").write_text("y" * (LIMIT + 5), encoding="utf-8")
    (tmp_path / "img.png").write_bytes(PNG)
    (tmp_path / "blob.txt").write_bytes(PNG)
    (tmp_path / "gone.txt").write_text("soon deleted", encoding="utf-8")
    (tmp_path / "z.md").write_text("# title\n", encoding="utf-8")
    records = walk(tmp_path, max_size=LIMIT)
    (tmp_path / "gone.txt").unlink()
    proc = make_processor()
    original = proc.pipeline.apply

    def explode(text: str, path: str) -> str:
        if path == "z.md":
            msg = "boom"
            raise RuntimeError(msg)
        return original(text, path)

    mocker.patch.object(proc.pipeline, "apply", side_effect=explode)

    results = process_files(records, proc, threads=4)
    by_path = {r.path: r for r in results}

    assert len(results) == len(records)
    assert [r.path for r in results] == ["a.py", "big.log", "blob.txt", "gone.txt", "img.png", "z.md"]
    assert by_path["a.py"].content == "print('a')\n"
    assert by_path["big.log"].content == f"[file too large: {LIMIT + 5} bytes]"
    assert "y" * 10 not in by_path["big.log"].content
    assert by_path["img.png"].content == BINARY_STUB
    assert by_path["blob.txt"].kind is ContentKind.BINARY
    assert by_path["gone.txt"].kind is ContentKind.ERROR
    assert by_path["gone.txt"].content.startswith("[read error: ")
    assert by_path["z.md"].content == "[error: boom]"


@pytest.mark.unit
def test_process_files_sequential_matches_parallel(tmp_path: Path) -> None:
    for i in range(12):
        (tmp_path / f"f{i:02}.txt").write_text(f"password=p{i}\n", encoding="utf-8")
    records = walk(tmp_path, max_size=LIMIT)

    assert process_files(records, make_processor(), threads=1) == process_files(
        records,
        make_processor(),
        threads=4,
    )
