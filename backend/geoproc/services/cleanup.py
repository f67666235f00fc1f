"""Scratch storage cleanup run after every request."""

from __future__ import annotations

import shutil
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable


def remove_path(path: pathlib.Path) -> None:
    """Delete a scratch file or directory tree; failures are only logged."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning(f"Cleanup failed for {path}: {exc}")


def cleanup(paths: Iterable[pathlib.Path | None]) -> None:
    """Remove every given scratch path, skipping None entries."""
    for path in paths:
        if path is not None:
            remove_path(path)
