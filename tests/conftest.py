"""Shared helpers: build directory trees from dicts and read them back."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import pytest

import replica_sync

Layout = dict


def make_tree(root: Path, layout: Layout) -> Path:
    """
    Create LAYOUT under ROOT.

    Values are file contents (str or bytes), None for an empty folder, or a
    nested dict for a folder with children.
    """
    root.mkdir(parents=True, exist_ok=True)
    for name, content in layout.items():
        path = root / name
        if isinstance(content, dict):
            make_tree(path, content)
        elif content is None:
            path.mkdir(parents=True, exist_ok=True)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
    return root


def read_tree(root: Path) -> dict[str, Optional[Union[str, bytes]]]:
    """Flatten ROOT into {posix relative path: file bytes, or None for folders}."""
    out: dict[str, Optional[Union[str, bytes]]] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        out[rel] = None if path.is_dir() else path.read_bytes()
    return out


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def replica(tmp_path: Path) -> Path:
    path = tmp_path / "replica"
    path.mkdir()
    return path


@pytest.fixture
def logger() -> logging.Logger:
    # outside the app logger's namespace so caplog sees the records
    return logging.getLogger("tests.replica_sync")


@pytest.fixture(autouse=True)
def _close_app_handlers():
    yield
    app_logger = logging.getLogger(replica_sync.LOGGER_NAME)
    for handler in list(app_logger.handlers):
        app_logger.removeHandler(handler)
        handler.close()
