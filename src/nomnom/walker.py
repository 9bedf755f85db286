from __future__ import annotations

import os
import stat
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pathspec

from nomnom.config import DiscoveryRecord, guess_binary_category, path_sort_key
from nomnom.exceptions import SourceNotFoundError
from nomnom.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

GIT_DIR = ".git"
IGNORE_FILES = (".gitignore", ".ignore")


@dataclass(frozen=True)
class IgnoreLayer:
    """Patterns from one ignore file, scoped to the directory holding it.

    Attributes:
        base: Directory the patterns are relative to ("" for the walked root).
        spec: Compiled gitignore-style patterns.
        prefix: Location of the walked root relative to the ignore file's
            directory, for files read from above the root ("" otherwise).
    """

    base: str
    spec: pathspec.PathSpec
    prefix: str = ""

    def check(self, rel_path: str, *, is_dir: bool) -> bool | None:
        """Return True (ignored), False (re-included by `!`) or None (no pattern matched)."""
        local = rel_path[len(self.base) + 1 :] if self.base else rel_path
        if self.prefix:
            local = f"{self.prefix}/{local}"
        if is_dir:
            local += "/"
        return self.spec.check_file(local).include


def _valid_patterns(lines: list[str], path: Path) -> list[str]:
    """Drop the lines pathspec cannot compile, as git does."""
    valid: list[str] = []
    for number, line in enumerate(lines, start=1):
        try:
            pathspec.GitIgnoreSpec.from_lines([line])
        except ValueError as e:
            logger.warning("Skipping invalid pattern on line %d of %s: %s", number, path, e)
            continue
        valid.append(line)
    return valid


def read_ignore_file(path: Path, base: str, prefix: str = "") -> IgnoreLayer | None:
    """Compile an ignore file into a layer, or None if it is absent or empty.

    Args:
        path (Path): the ignore file to read
        base (str): the walked-root-relative directory its patterns apply to
        prefix (str): the walked root relative to the file's directory, when
            the file sits above the root

    Returns:
        IgnoreLayer | None: the compiled layer
    """
    try:
        if not path.is_file():
            return None
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        logger.warning("Cannot read ignore file %s: %s", path, e)
        return None
    spec = pathspec.GitIgnoreSpec.from_lines(_valid_patterns(lines, path))
    if not spec.patterns:
        return None
    return IgnoreLayer(base=base, spec=spec, prefix=prefix)


def global_ignore_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "git" / "ignore"


def enclosing_repository(root: Path) -> Path | None:
    """Return the nearest directory at or above `root` that holds a `.git` entry."""
    for candidate in (root, *root.parents):
        if (candidate / GIT_DIR).exists():
            return candidate
    return None


def _prefix(root: Path, directory: Path) -> str:
    rel = root.relative_to(directory).as_posix()
    return "" if rel == "." else rel


def root_ignore_layers(root: Path) -> list[IgnoreLayer]:
    """Layers that apply to the whole tree, lowest precedence first.

    When `root` lies inside a git work tree, the repository's
    `info/exclude` and every `.gitignore`/`.ignore` between the repository
    top and `root` are included, matched relative to their own directory.
    The root's own ignore files are read by the scan itself.
    """
    root = root.resolve()
    repo = enclosing_repository(root)
    if repo is None:
        layer = read_ignore_file(global_ignore_path(), "")
        return [layer] if layer is not None else []

    repo_prefix = _prefix(root, repo)
    candidates: list[tuple[Path, str]] = [
        (global_ignore_path(), repo_prefix),
        (repo / GIT_DIR / "info" / "exclude", repo_prefix),
    ]
    ancestors: list[Path] = []
    directory = root
    while directory != repo:
        directory = directory.parent
        ancestors.append(directory)
    for ancestor in reversed(ancestors):
        candidates.extend((ancestor / name, _prefix(root, ancestor)) for name in IGNORE_FILES)
    return [layer for p, prefix in candidates if (layer := read_ignore_file(p, "", prefix)) is not None]


def is_ignored(rel_path: str, layers: Sequence[IgnoreLayer], *, is_dir: bool) -> bool:
    """Decide whether `rel_path` is ignored.

    The deepest layer with a matching pattern decides; within a layer the
    last matching pattern wins, so `!` negations re-include paths.
    """
    for layer in reversed(layers):
        verdict = layer.check(rel_path, is_dir=is_dir)
        if verdict is not None:
            return verdict
    return False


@dataclass(frozen=True)
class _PendingDir:
    path: Path
    rel: str
    layers: tuple[IgnoreLayer, ...]


class _Scanner:
    def __init__(self, *, ignore_git: bool, max_size: int) -> None:
        self.ignore_git = ignore_git
        self.max_size = max_size

    def record(self, path: Path, rel: str) -> DiscoveryRecord | None:
        try:
            st = path.stat()
        except OSError as e:
            logger.warning("Failed to get metadata for %s: %s", rel, e)
            return None
        if not stat.S_ISREG(st.st_mode):
            return None
        return DiscoveryRecord(
            path=rel,
            absolute_path=path,
            size=st.st_size,
            looks_binary_by_extension=guess_binary_category(rel) is not None,
            is_oversized=st.st_size > self.max_size,
        )

    def scan(self, pending: _PendingDir) -> tuple[list[DiscoveryRecord], list[_PendingDir]]:
        """List one directory: its file records and the subdirectories still to visit."""
        layers = pending.layers
        if self.ignore_git:
            own = (read_ignore_file(pending.path / name, pending.rel) for name in IGNORE_FILES)
            layers = layers + tuple(layer for layer in own if layer is not None)

        try:
            with os.scandir(pending.path) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.warning("Failed to read directory %s: %s", pending.rel or ".", e)
            return [], []

        records: list[DiscoveryRecord] = []
        subdirs: list[_PendingDir] = []
        for entry in entries:
            rel = f"{pending.rel}/{entry.name}" if pending.rel else entry.name
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_link = entry.is_symlink()
            except OSError as e:
                logger.warning("Failed to get metadata for %s: %s", rel, e)
                continue

            if is_dir:
                if self.ignore_git and (entry.name == GIT_DIR or is_ignored(rel, layers, is_dir=True)):
                    continue
                subdirs.append(_PendingDir(path=Path(entry.path), rel=rel, layers=layers))
                continue

            if is_link and os.path.isdir(entry.path):
                logger.debug("Not following directory symlink %s", rel)
                continue
            if self.ignore_git and is_ignored(rel, layers, is_dir=False):
                continue
            rec = self.record(Path(entry.path), rel)
            if rec is not None:
                records.append(rec)
        return records, subdirs


def walk(root: Path, *, ignore_git: bool = True, max_size: int, threads: int = 1) -> list[DiscoveryRecord]:
    """Enumerate the files under `root`.

    Directories never become entries. With `threads > 1` directories are
    scanned level by level on a thread pool; the result is the same as a
    sequential walk because it is sorted by path before being returned.

    Args:
        root (Path): directory (or single file) to walk
        ignore_git (bool): honor ignore files and skip the `.git` directory
        max_size (int): files above this many bytes are flagged oversized
        threads (int): worker threads for directory scanning

    Raises:
        SourceNotFoundError: if `root` does not exist.

    Returns:
        list[DiscoveryRecord]: discovered files sorted by relative path
    """
    if not root.exists():
        raise SourceNotFoundError(path=str(root))
    scanner = _Scanner(ignore_git=ignore_git, max_size=max_size)
    if not root.is_dir():
        rec = scanner.record(root, root.name)
        return [rec] if rec is not None else []

    start = _PendingDir(
        path=root,
        rel="",
        layers=tuple(root_ignore_layers(root)) if ignore_git else (),
    )
    if threads <= 1:
        found = _walk_sequential(scanner, start)
    else:
        found = _walk_parallel(scanner, start, threads)
    found.sort(key=lambda r: path_sort_key(r.path))
    logger.debug("Discovered %d file(s) under %s", len(found), root)
    return found


def _walk_sequential(scanner: _Scanner, start: _PendingDir) -> list[DiscoveryRecord]:
    found: list[DiscoveryRecord] = []
    stack = [start]
    while stack:
        records, subdirs = scanner.scan(stack.pop())
        found.extend(records)
        stack.extend(reversed(subdirs))
    return found


def _walk_parallel(scanner: _Scanner, start: _PendingDir, threads: int) -> list[DiscoveryRecord]:
    found: list[DiscoveryRecord] = []
    lock = threading.Lock()

    def scan(pending: _PendingDir) -> list[_PendingDir]:
        records, subdirs = scanner.scan(pending)
        with lock:
            found.extend(records)
        return subdirs

    with ThreadPoolExecutor(max_workers=threads) as pool:
        frontier = [start]
        while frontier:
            frontier = [d for subdirs in pool.map(scan, frontier) for d in subdirs]
    return found
