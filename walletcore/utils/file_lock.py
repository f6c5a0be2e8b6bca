"""File locking helpers for the seed store and settings files."""
from __future__ import annotations

import fcntl
import json
import logging
import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator

log = logging.getLogger("walletcore.file_lock")


@contextmanager
def exclusive_file_lock(path: Path) -> Generator[None, None, None]:
    """Hold an exclusive flock on `<path>.lock` for the duration of the block."""
    lock_path = path.with_suffix(path.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "w") as lock_file:
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


def _read(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError:
        backup_path = path.with_suffix(path.suffix + ".bak")
        if not backup_path.exists():
            raise
        log.warning("Corrupted JSON at %s, restoring from %s", path, backup_path)
        shutil.copy(backup_path, path)
        return json.loads(path.read_text())


def _write(path: Path, data: dict[str, Any], indent: int, mode: int | None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        shutil.copy(path, path.with_suffix(path.suffix + ".bak"))

    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(data, indent=indent))
    if mode is not None:
        os.chmod(tmp_path, mode)
    tmp_path.rename(path)


def safe_read_json(path: Path) -> dict[str, Any]:
    """Read JSON under lock. Falls back to the .bak copy if the file is corrupt."""
    with exclusive_file_lock(path):
        return _read(path)


def safe_write_json(
    path: Path, data: dict[str, Any], indent: int = 2, mode: int | None = None
) -> None:
    """Write JSON under lock with tmp+rename. Keeps a .bak of the previous file."""
    with exclusive_file_lock(path):
        _write(path, data, indent, mode)


def safe_update_json(
    path: Path,
    update_fn: Callable[[dict[str, Any]], dict[str, Any]],
    indent: int = 2,
) -> dict[str, Any]:
    """Atomically read-modify-write JSON. Returns the updated data."""
    with exclusive_file_lock(path):
        updated = update_fn(_read(path))
        _write(path, updated, indent, None)
        return updated
