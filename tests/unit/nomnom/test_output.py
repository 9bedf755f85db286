from __future__ import annotations

import json

import pytest

from nomnom.config import ProcessedFile
from nomnom.output import (
    JsonWriter,
    MarkdownWriter,
    OutputFormat,
    TxtWriter,
    XmlWriter,
    build_tree_lines,
    cdata,
    get_writer,
)

FILES = [
    ProcessedFile.text("README.md", "# Demo\n"),
    ProcessedFile.binary_stub("assets/logo.png"),
    ProcessedFile.text("src/main.rs", "fn main() {}"),
]


@pytest.mark.unit
def test_build_tree_lines_puts_directories_first() -> None:
    lines = build_tree_lines(["src/main.rs", "README.md", "src/lib/mod.rs", "assets/logo.png"])

    assert lines == [
        ".",
        "├── assets/",
        "│   └── logo.png",
        "├── src/",
        "│   ├── lib/",
        "│   │   └── mod.rs",
        "│   └── main.rs",
        "└── README.md",
    ]


@pytest.mark.unit
def test_txt_writer() -> None:
    out = TxtWriter().render([FILES[0]])

    assert out == ".\n└── README.md\n\n---\n### README.md\n\n# Demo\n\n\n"


@pytest.mark.unit
def test_markdown_writer_fences_text_and_describes_stubs() -> None:
    out = MarkdownWriter().render(FILES)

    assert out.startswith("## Directory Tree\n\n```text\n.\n")
    assert "\n---\n" in out
    assert "### `src/main.rs`\n\n```rust\nfn main() {}\n```\n" in out
    assert "### `assets/logo.png`\n\n[binary skipped]\n" in out
    assert "### `README.md`\n\n```markdown\n# Demo\n```\n" in out


@pytest.mark.unit
def test_markdown_writer_lengthens_fence_around_backticks() -> None:
    out = MarkdownWriter().render([ProcessedFile.text("doc.md", "```py\nx\n```\n")])

    assert "````markdown\n```py\nx\n```\n````\n" in out


@pytest.mark.unit
def test_json_writer() -> None:
    doc = json.loads(JsonWriter().render(FILES))

    assert doc["directory_tree"].startswith(".\n")
    assert doc["files"][1] == {"path": "assets/logo.png", "content": "[binary skipped]"}
    assert [f["path"] for f in doc["files"]] == ["README.md", "assets/logo.png", "src/main.rs"]


@pytest.mark.unit
def test_xml_writer() -> None:
    files = [
        ProcessedFile.text("a&b.py", "if a < b:\n    pass"),
        ProcessedFile.error_stub("x.txt", "[read error: <denied>]"),
    ]

    out = XmlWriter().render(files)

    assert out.startswith("<instructions>Read all code before answering.</instructions>\n<directory_tree>\n")
    assert '<file path="a&amp;b.py"><![CDATA[\nif a < b:\n    pass\n]]></file>' in out
    assert '<file path="x.txt">[read error: &lt;denied&gt;]</file>' in out


@pytest.mark.unit
def test_cdata_splits_terminator() -> None:
    assert cdata("a]]>b") == "<![CDATA[a]]]]><![CDATA[>b]]>"


@pytest.mark.unit
@pytest.mark.parametrize("fmt", ["md", "JSON", OutputFormat.XML, "txt"])
def test_get_writer_resolves_each_format(fmt: str | OutputFormat) -> None:
    assert get_writer(fmt).fmt == OutputFormat(str(fmt).lower())


@pytest.mark.unit
def test_get_writer_rejects_unknown_format() -> None:
    with pytest.raises(ValueError, match="docx"):
        get_writer("docx")
