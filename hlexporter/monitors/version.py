"""The running node software version, from the node binary's ``--version`` output."""

from __future__ import annotations

import os
import queue
import shutil
import subprocess
import tempfile
import threading

from .. import logger
from ..config import Config
from ..metrics.state import MetricsState

DEFAULT_COPY_PATH = os.path.join(tempfile.gettempdir(), "hl_node_current")
CHECK_INTERVAL = 60.0
COMMAND_TIMEOUT = 30.0


def parse_version_output(output: str) -> tuple[str | None, str]:
    """Return (commit, date) from output shaped like ``commit <hash>|<date>|...``.

    The commit is None when the first field has no second word. Raises
    ValueError when the output has fewer than three ``|``-separated fields.
    """
    parts = output.split("|")
    if len(parts) < 3:
        raise ValueError(f"unexpected version output format: {output}")
    words = parts[0].split(" ")
    commit = words[1].strip() if len(words) >= 2 else None
    return commit, parts[1].strip()


def _run_version(binary: str, timeout: float) -> str:
    try:
        result = subprocess.run(
            [binary, "--version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise RuntimeError(f"error running version command: {exc}") from exc
    if result.returncode != 0:
        raise RuntimeError(f"error running version command: exit status {result.returncode}")
    return result.stdout.decode("utf-8", errors="replace")


class VersionTracker:
    """Remembers the commit of the node binary that is installed locally."""

    def __init__(
        self,
        copy_path: str | os.PathLike[str] = DEFAULT_COPY_PATH,
        timeout: float = COMMAND_TIMEOUT,
    ) -> None:
        self.copy_path = os.fspath(copy_path)
        self.timeout = timeout
        self._lock = threading.Lock()
        self._commit = ""

    @property
    def current_commit_hash(self) -> str:
        """The commit last read from the node binary, or an empty string."""
        with self._lock:
            return self._commit

    def update_version_info(self, state: MetricsState, node_binary: str) -> tuple[str, str]:
        """Copy the node binary aside, ask it for its version and record it.

        Returns (commit, date). Raises RuntimeError when the binary cannot be
        copied or run, and ValueError when its output has the wrong shape.
        """
        try:
            shutil.copyfile(node_binary, self.copy_path)
            os.chmod(self.copy_path, 0o755)
        except OSError as exc:
            raise RuntimeError(f"error copying binary: {exc}") from exc

        commit, date = parse_version_output(_run_version(self.copy_path, self.timeout))
        with self._lock:
            if commit is not None:
                self._commit = commit
            commit = self._commit

        state.set_software_version(commit, date)
        logger.info("Updated software version: commit=%s, date=%s", commit, date)
        return commit, date


def _run(
    config: Config,
    state: MetricsState,
    tracker: VersionTracker,
    stop: threading.Event,
    errors: queue.Queue,
) -> None:
    while not stop.wait(CHECK_INTERVAL):
        try:
            tracker.update_version_info(state, config.node_binary)
        except (RuntimeError, ValueError) as exc:
            errors.put(RuntimeError(f"version monitor error: {exc}"))


def start_version_monitor(
    config: Config,
    state: MetricsState,
    tracker: VersionTracker,
    stop: threading.Event,
    errors: queue.Queue,
) -> threading.Thread:
    """Read the node software version every minute until ``stop`` is set."""
    thread = threading.Thread(
        target=_run,
        args=(config, state, tracker, stop, errors),
        name="version-monitor",
        daemon=True,
    )
    thread.start()
    return thread