from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from nomnom.logging import LOGGER_NAME

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep the user's config, git ignore file and NOMNOM_ variables out of tests."""
    home = tmp_path_factory.mktemp("home")
    workdir = tmp_path_factory.mktemp("cwd")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("HOME", str(home))
    for name in list(os.environ):
        if name.startswith("NOMNOM_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(workdir)
    return workdir


@pytest.fixture(autouse=True)
def reset_log_level() -> Iterator[None]:
    yield
    logging.getLogger(LOGGER_NAME).setLevel(logging.INFO)
