from __future__ import annotations

import re
import shutil
import subprocess  # noqa: S404
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from nomnom.exceptions import GitSourceError
from nomnom.logging import logger

if TYPE_CHECKING:
    from types import TracebackType

CLONE_PREFIX = "nomnom-git-"
REMOTE_PREFIXES = ("http://", "https://", "git@", "ssh://")

_USERINFO = re.compile(r"(://)[^/@]+@")


class GitSource(BaseModel):
    """A remote repository, optionally pinned to a reference and narrowed to a subdirectory."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Clone URL without reference or subpath")
    reference: str | None = Field(default=None, description="Branch, tag or commit to check out")
    subpath: str | None = Field(default=None, description="Directory inside the repository to snapshot")


def parse_git_source(source: str) -> GitSource:
    """Split a source string into clone URL, reference and subpath.

    Two syntaxes are understood:

    - scp-like SSH, `git@host:repo[@ref][:subpath]`
    - everything else, `url[@ref][#subpath]`, where an `@` only separates a
      reference when it comes after the last `/` of the path, so user
      credentials in the authority are left alone.

    Args:
        source (str): the source as given on the command line

    Returns:
        GitSource: the parsed source
    """
    if source.startswith("git@"):
        return _parse_scp_like(source)

    rest = source
    subpath: str | None = None
    hash_at = rest.rfind("#")
    if hash_at != -1:
        rest, subpath = rest[:hash_at], rest[hash_at + 1 :]

    reference: str | None = None
    at = rest.rfind("@")
    if at != -1 and at > _path_start(rest) and at > rest.rfind("/"):
        rest, reference = rest[:at], rest[at + 1 :]
    return GitSource(url=rest, reference=reference, subpath=subpath)


def _path_start(url: str) -> int:
    """Index where the path begins, or past the end if the URL has none."""
    scheme = url.find("://")
    if scheme == -1:
        return -1
    slash = url.find("/", scheme + 3)
    return len(url) if slash == -1 else slash


def _parse_scp_like(source: str) -> GitSource:
    host, sep, rest = source.partition(":")
    if not sep:
        return GitSource(url=source)
    repo, _, subpath = rest.partition(":")
    reference: str | None = None
    if "@" in repo:
        repo, reference = repo.rsplit("@", 1)
    return GitSource(url=f"{host}:{repo}", reference=reference, subpath=subpath or None)


def is_remote_source(source: str) -> bool:
    """Tell whether `source` names a remote repository rather than a local path."""
    if source.startswith(REMOTE_PREFIXES):
        return True
    return parse_git_source(source).url.endswith(".git")


def display_url(url: str) -> str:
    """Hide credentials embedded in a URL before it is logged."""
    return _USERINFO.sub(r"\1***@", url)


def run_git(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run a git command, raising `CalledProcessError` on a non-zero exit."""
    return subprocess.run(
        ["git", *args],  # noqa: S607
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        capture_output=True,
        check=True,
    )


def _failure(e: subprocess.CalledProcessError) -> str:
    return (e.stderr or e.stdout or str(e)).strip()


class ClonedSource:
    """Context manager that clones a `GitSource` into a temporary directory.

    Entering returns the directory to snapshot (the subpath when one is
    given); leaving removes the clone.
    """

    def __init__(self, source: GitSource) -> None:
        self.source = source
        self._tmp: tempfile.TemporaryDirectory[str] | None = None

    def __enter__(self) -> Path:
        self._tmp = tempfile.TemporaryDirectory(prefix=CLONE_PREFIX)
        try:
            return self._checkout(Path(self._tmp.name) / "repo")
        except BaseException:
            self._cleanup()
            raise

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._cleanup()

    def _cleanup(self) -> None:
        if self._tmp is not None:
            self._tmp.cleanup()
            self._tmp = None

    def _checkout(self, dest: Path) -> Path:
        url = self.source.url
        ref = self.source.reference or None
        logger.info("Cloning %s%s", display_url(url), f" at {ref}" if ref else "")

        shallow = ["clone", "--depth", "1"]
        if ref:
            shallow += ["--branch", ref]
        try:
            run_git([*shallow, url, str(dest)])
        except FileNotFoundError as e:
            raise GitSourceError(source=display_url(url), detail="git executable not found") from e
        except subprocess.CalledProcessError as e:
            if not ref:
                raise GitSourceError(source=display_url(url), detail=_failure(e)) from e
            # --branch only accepts branches and tags; commits need a full clone.
            logger.info("Shallow clone failed, retrying with a full clone to check out %s", ref)
            shutil.rmtree(dest, ignore_errors=True)
            try:
                run_git(["clone", url, str(dest)])
                run_git(["checkout", ref], cwd=dest)
            except subprocess.CalledProcessError as e2:
                raise GitSourceError(source=display_url(url), detail=_failure(e2)) from e2

        if not self.source.subpath:
            return dest
        target = (dest / self.source.subpath).resolve()
        if not target.is_relative_to(dest.resolve()) or not target.exists():
            raise GitSourceError(
                source=display_url(url),
                detail=f"subpath {self.source.subpath!r} not found in repository",
            )
        return target


def clone_source(source: str | GitSource) -> ClonedSource:
    """Prepare a clone of `source`; use the result as a context manager."""
    if isinstance(source, str):
        source = parse_git_source(source)
    return ClonedSource(source)
