"""Filesystem helpers."""

from __future__ import annotations

import os
import stat
from collections.abc import Iterator


def _iter_files(path: str) -> Iterator[tuple[str, os.stat_result]]:
    info = os.lstat(path)
    if not stat.S_ISDIR(info.st_mode):
        yield path, info
        return
    for name in sorted(os.listdir(path)):
        yield from _iter_files(os.path.join(path, name))


def get_latest_file(directory: str | os.PathLike[str]) -> str | None:
    """Return the most recently modified file below ``directory``.

    The tree is walked in lexical order; on equal modification times the
    first file found wins. Returns None when there is no file at all and
    raises OSError when the tree cannot be read.
    """
    latest: str | None = None
    latest_mtime: int | None = None
    for path, info in _iter_files(os.fspath(directory)):
        if latest_mtime is None or info.st_mtime_ns > latest_mtime:
            latest, latest_mtime = path, info.st_mtime_ns
    return latest