"""Whether the running node software matches the latest published release."""

from __future__ import annotations

import hashlib
import math
import os
import queue
import subprocess
import tempfile
import threading
import time

import requests

from .. import logger
from ..config import Config
from ..metrics.state import MetricsState
from .version import VersionTracker, parse_version_output

MAINNET_BINARY_URL = "https://binaries.hyperliquid.xyz/Mainnet/hl-visor"
TESTNET_BINARY_URL = "https://binaries.hyperliquid-testnet.xyz/Testnet/hl-visor"
DEFAULT_LOCAL_PATH = os.path.join(tempfile.gettempdir(), "hl-visor-latest")
DOWNLOAD_INTERVAL = 300.0
CHECK_INTERVAL = 300.0
REQUEST_TIMEOUT = 60.0
COMMAND_TIMEOUT = 30.0


def binary_url(chain: str) -> str:
    """Return the release binary address for ``chain``; anything but mainnet is testnet."""
    return MAINNET_BINARY_URL if chain == "mainnet" else TESTNET_BINARY_URL


def file_hash(path: str | os.PathLike[str]) -> str:
    """Return the hex SHA-256 digest of the file at ``path``."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 16), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _latest_version(binary: str, timeout: float) -> str:
    try:
        result = subprocess.run(
            [binary, "--version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise RuntimeError(f"error running latest binary version command: {exc}") from exc
    if result.returncode != 0:
        raise RuntimeError(
            f"error running latest binary version command: exit status {result.returncode}"
        )
    return result.stdout.decode("utf-8", errors="replace")


class UpdateChecker:
    """Downloads the latest release binary when it changes and compares commits."""

    def __init__(
        self,
        chain: str,
        state: MetricsState,
        tracker: VersionTracker,
        local_path: str | os.PathLike[str] = DEFAULT_LOCAL_PATH,
        download_interval: float = DOWNLOAD_INTERVAL,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.url = binary_url(chain)
        self.state = state
        self.tracker = tracker
        self.local_path = os.fspath(local_path)
        self.download_interval = download_interval
        self.timeout = timeout
        self.last_download: float | None = None

    def _since_download(self) -> float:
        if self.last_download is None:
            return math.inf
        return time.monotonic() - self.last_download

    def should_download(self) -> bool:
        """Return whether the local copy of the release binary needs refreshing.

        Raises RuntimeError when the remote binary cannot be checked.
        """
        if self._since_download() < self.download_interval:
            return False
        if not os.path.exists(self.local_path):
            return True
        try:
            response = requests.head(self.url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RuntimeError(f"error checking remote binary: {exc}") from exc
        remote_etag = response.headers.get("ETag", "")
        if not remote_etag:
            return self._since_download() > self.download_interval
        try:
            local_hash = file_hash(self.local_path)
        except OSError:
            return True
        return local_hash != remote_etag

    def _download(self) -> None:
        try:
            with requests.get(self.url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(self.local_path, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=1 << 16):
                        handle.write(chunk)
        except (requests.RequestException, OSError) as exc:
            raise RuntimeError(f"error downloading latest binary: {exc}") from exc
        try:
            os.chmod(self.local_path, 0o755)
        except OSError as exc:
            raise RuntimeError(f"error changing permissions of latest binary: {exc}") from exc

    def check(self) -> bool:
        """Refresh the release binary if needed and record whether the node is up to date.

        Raises RuntimeError on download or execution failures and ValueError
        when the release binary's version output has the wrong shape.
        """
        try:
            needs_download = self.should_download()
        except RuntimeError as exc:
            raise RuntimeError(f"error checking binary status: {exc}") from exc

        if needs_download:
            self._download()
            self.last_download = time.monotonic()
            logger.info("Downloaded new binary version")

        output = _latest_version(self.local_path, COMMAND_TIMEOUT)
        try:
            latest_commit, _ = parse_version_output(output)
        except ValueError:
            latest_commit = None
        if latest_commit is None:
            raise ValueError(f"unexpected latest version output format: {output}")

        current = self.tracker.current_commit_hash
        up_to_date = current == latest_commit
        self.state.set_software_up_to_date(up_to_date)
        if up_to_date:
            logger.info("Software is up to date")
        else:
            logger.info(
                "Software is NOT up to date. Current: %s, Latest: %s", current, latest_commit
            )
        return up_to_date


def _run(checker: UpdateChecker, stop: threading.Event, errors: queue.Queue) -> None:
    while not stop.wait(CHECK_INTERVAL):
        try:
            checker.check()
        except (RuntimeError, ValueError) as exc:
            errors.put(RuntimeError(f"update checker error: {exc}"))


def start_update_checker(
    config: Config,
    state: MetricsState,
    tracker: VersionTracker,
    stop: threading.Event,
    errors: queue.Queue,
) -> threading.Thread:
    """Check for new node software every five minutes until ``stop`` is set."""
    checker = UpdateChecker(config.chain, state, tracker)
    thread = threading.Thread(
        target=_run,
        args=(checker, stop, errors),
        name="update-checker",
        daemon=True,
    )
    thread.start()
    return thread