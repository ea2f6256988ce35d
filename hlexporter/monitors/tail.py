"""Follow the newest file in a directory, line by line."""

from __future__ import annotations

import os

from .. import logger
from ..utils import get_latest_file


class FileTailer:
    """Streams complete lines from the most recently modified file in a directory.

    The first file found is read from its end; every file that replaces it
    later is read from its start. An incomplete last line is held back until
    its newline arrives.
    """

    def __init__(self, directory: str | os.PathLike[str], description: str = "file") -> None:
        self.directory = os.fspath(directory)
        self.description = description
        self._path: str | None = None
        self._file = None
        self._pending = b""
        self._first_run = True

    @property
    def current_file(self) -> str | None:
        """The file being followed, if any."""
        return self._path

    def __enter__(self) -> FileTailer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _switch(self, path: str) -> None:
        logger.info("Switching to new %s: %s", self.description, path)
        handle = open(path, "rb")
        try:
            if self._first_run:
                handle.seek(0, os.SEEK_END)
                logger.info("First run: starting to stream from the end of file %s", path)
            else:
                logger.info("Not first run: reading entire file %s", path)
        except OSError:
            handle.close()
            raise
        self.close()
        self._file = handle
        self._path = path
        self._pending = b""
        self._first_run = False

    def poll(self) -> list[str]:
        """Return the lines completed since the last poll, without newlines.

        Raises OSError when the directory or the file cannot be read.
        """
        latest = get_latest_file(self.directory)
        if latest is not None and latest != self._path:
            self._switch(latest)
        if self._file is None:
            return []
        data = self._file.read()
        if not data:
            return []
        *lines, self._pending = (self._pending + data).split(b"\n")
        return [line.decode("utf-8", errors="replace") for line in lines]

    def close(self) -> None:
        """Close the followed file."""
        handle, self._file = self._file, None
        if handle is not None:
            handle.close()