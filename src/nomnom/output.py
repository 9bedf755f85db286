from __future__ import annotations

import io
import json
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from xml.sax.saxutils import escape, quoteattr

from nomnom.config import guess_language

if TYPE_CHECKING:
    from collections.abc import Sequence

    from nomnom.config import ProcessedFile

TREE_ROOT = "."
XML_INSTRUCTIONS = "Read all code before answering."


class OutputFormat(StrEnum):
    """Snapshot serialisations, named by the `--format` value."""

    TXT = "txt"
    MD = "md"
    JSON = "json"
    XML = "xml"


def build_tree_lines(rel_paths: Sequence[str], root_name: str = TREE_ROOT) -> list[str]:
    """Build a visual tree of file paths.

    Args:
        rel_paths (Sequence[str]): paths relative to the root, POSIX separators (e.g. "src/main.py")
        root_name (str): label of the first line

    Returns:
        list[str]: one string per tree line, directories before files at each level
    """
    tree: dict[str, Any] = {}
    for rp in rel_paths:
        cur = tree
        parts = rp.strip("/").split("/")
        for part in parts[:-1]:
            cur = cur.setdefault(part, {})
        cur.setdefault("__files__", set()).add(parts[-1])

    lines: list[str] = [root_name]

    def walk(node: dict[str, Any], prefix: str) -> None:
        entries: list[tuple[str, dict[str, Any] | None]] = [(d, node[d]) for d in sorted(k for k in node if k != "__files__")]
        entries.extend((f, None) for f in sorted(node.get("__files__", set())))
        for idx, (name, child) in enumerate(entries):
            last = idx == len(entries) - 1
            branch = "└── " if last else "├── "
            lines.append(prefix + branch + name + ("/" if child is not None else ""))
            if child is not None:
                walk(child, prefix + ("    " if last else "│   "))

    walk(tree, "")
    return lines


def directory_tree(files: Sequence[ProcessedFile]) -> str:
    return "\n".join(build_tree_lines([f.path for f in files]))


class Writer:
    """Serialise a sorted list of processed files into one document."""

    fmt: OutputFormat

    def render(self, files: Sequence[ProcessedFile]) -> str:
        raise NotImplementedError


class TxtWriter(Writer):
    fmt = OutputFormat.TXT

    def render(self, files: Sequence[ProcessedFile]) -> str:
        out = io.StringIO()
        out.write(directory_tree(files))
        out.write("\n\n")
        for f in files:
            out.write(f"---\n### {f.path}\n\n{f.content}\n\n")
        return out.getvalue()


class MarkdownWriter(Writer):
    fmt = OutputFormat.MD

    def render(self, files: Sequence[ProcessedFile]) -> str:
        out = io.StringIO()
        out.write("## Directory Tree\n\n```text\n")
        out.write(directory_tree(files))
        out.write("\n```\n\n---\n\n")
        for f in files:
            out.write(f"### `{f.path}`\n\n")
            if f.is_stub:
                out.write(f"{f.content}\n\n")
                continue
            fence = _fence_for(f.content)
            out.write(f"{fence}{guess_language(f.path)}\n{f.content}")
            if not f.content.endswith("\n"):
                out.write("\n")
            out.write(f"{fence}\n\n")
        return out.getvalue()


def _fence_for(content: str) -> str:
    """Pick a backtick fence longer than any backtick run inside `content`."""
    longest = run = 0
    for ch in content:
        run = run + 1 if ch == "`" else 0
        longest = max(longest, run)
    return "`" * max(3, longest + 1)


class JsonWriter(Writer):
    fmt = OutputFormat.JSON

    def render(self, files: Sequence[ProcessedFile]) -> str:
        doc = {
            "directory_tree": directory_tree(files),
            "files": [{"path": f.path, "content": f.content} for f in files],
        }
        return json.dumps(doc, indent=2, ensure_ascii=False) + "\n"


def cdata(text: str) -> str:
    """Wrap text in CDATA, splitting any `]]>` across two sections."""
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


class XmlWriter(Writer):
    fmt = OutputFormat.XML

    def render(self, files: Sequence[ProcessedFile]) -> str:
        out = io.StringIO()
        out.write(f"<instructions>{XML_INSTRUCTIONS}</instructions>\n")
        out.write(f"<directory_tree>\n{escape(directory_tree(files))}\n</directory_tree>\n")
        for f in files:
            attr = quoteattr(f.path)
            if f.is_stub:
                out.write(f"<file path={attr}>{escape(f.content)}</file>\n")
            else:
                body = cdata("\n" + f.content + "\n")
                out.write(f"<file path={attr}>{body}</file>\n")
        return out.getvalue()


_WRITERS: dict[OutputFormat, type[Writer]] = {
    OutputFormat.TXT: TxtWriter,
    OutputFormat.MD: MarkdownWriter,
    OutputFormat.JSON: JsonWriter,
    OutputFormat.XML: XmlWriter,
}


def get_writer(fmt: str | OutputFormat) -> Writer:
    """Resolve a format name to its writer.

    Raises:
        ValueError: if `fmt` is not a known format.
    """
    return _WRITERS[OutputFormat(str(fmt).lower())]()
