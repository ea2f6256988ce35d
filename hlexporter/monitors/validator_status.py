"""Whether this node is a validator, from the node's hourly status logs."""

from __future__ import annotations

import json
import os
import queue
import threading
import time

from .. import logger
from ..config import Config
from ..metrics.state import MetricsState
from ..utils import get_latest_file

STATUS_SUBDIR = os.path.join("data", "node_logs", "status", "hourly")
VALIDATOR_STALE_AFTER = 12 * 3600.0
STATUS_STALE_AFTER = 24 * 3600.0
CHECK_INTERVAL = 30.0


def read_last_line(path: str | os.PathLike[str]) -> str:
    """Return the last line of the file at ``path`` without its line ending."""
    last = b""
    with open(path, "rb") as handle:
        for line in handle:
            last = line
    return last.removesuffix(b"\n").removesuffix(b"\r").decode("utf-8", errors="replace")


def _status_data(line: str) -> dict:
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"failed to parse status array: {exc}") from exc
    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise ValueError("failed to parse status array: not a JSON array")
    if len(raw) != 2:
        raise ValueError("unexpected validator status data format")
    data = raw[1]
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("failed to parse validator data: not a JSON object")
    return data


def _home_validator(data: dict) -> str:
    value = data.get("home_validator")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError("failed to parse validator data: home_validator is not a string")
    return value


def _check_details(data: dict) -> None:
    round_ = data.get("round")
    if round_ is not None and (not isinstance(round_, int) or isinstance(round_, bool)):
        raise ValueError("failed to parse validator data: round is not an integer")
    stakes = data.get("current_stakes")
    if stakes is None:
        return
    if not isinstance(stakes, list) or any(
        item is not None and not isinstance(item, list) for item in stakes
    ):
        raise ValueError("failed to parse validator data: current_stakes is not a list of lists")


def _clear(state: MetricsState) -> None:
    state.set_is_validator(False)
    state.set_validator_address("")


def process_validator_status_line(state: MetricsState, line: str) -> None:
    """Update the validator identity from one status line; raise ValueError if malformed."""
    data = _status_data(line)
    address = _home_validator(data)
    _check_details(data)
    if address:
        state.set_validator_address(address)
        state.set_is_validator(True)
        logger.info("Found validator address: %s", address)
    else:
        _clear(state)
        logger.info("No validator address found")


def _status_file(node_home: str, max_age: float) -> str | None:
    """Return the newest status file if it is younger than ``max_age``; raise OSError."""
    directory = os.path.join(node_home, STATUS_SUBDIR)
    latest = get_latest_file(directory)
    if latest is None:
        raise FileNotFoundError(f"no status file in {directory}")
    if time.time() - os.stat(latest).st_mtime > max_age:
        return None
    return latest


def read_validator_status(state: MetricsState, node_home: str) -> None:
    """Refresh the validator identity from the newest status file.

    A missing, unreadable, stale or malformed file marks the node as not a validator.
    """
    directory = os.path.join(node_home, STATUS_SUBDIR)
    try:
        latest = get_latest_file(directory)
    except OSError:
        _clear(state)
        return
    if latest is None:
        logger.warning("Error getting status file info: no status file in %s", directory)
        _clear(state)
        return
    try:
        mtime = os.stat(latest).st_mtime
    except OSError as exc:
        logger.warning("Error getting status file info: %s", exc)
        _clear(state)
        return
    if time.time() - mtime > VALIDATOR_STALE_AFTER:
        _clear(state)
        return
    try:
        line = read_last_line(latest)
    except OSError as exc:
        logger.warning("Error reading last line of status file: %s", exc)
        _clear(state)
        return
    try:
        process_validator_status_line(state, line)
    except ValueError as exc:
        logger.warning("Error processing validator status line: %s", exc)
        _clear(state)


def get_validator_status(node_home: str) -> tuple[str, bool]:
    """Return this node's validator address and whether it is a validator."""
    try:
        latest = _status_file(node_home, STATUS_STALE_AFTER)
    except OSError as exc:
        logger.warning("Error finding latest status file: %s", exc)
        return "", False
    if latest is None:
        return "", False
    try:
        line = read_last_line(latest)
    except OSError as exc:
        logger.warning("Error reading last line of status file: %s", exc)
        return "", False
    try:
        address = _home_validator(_status_data(line))
    except ValueError as exc:
        logger.warning("%s", exc)
        return "", False
    return address, address != ""


def _run(config: Config, state: MetricsState, stop: threading.Event) -> None:
    while not stop.wait(CHECK_INTERVAL):
        read_validator_status(state, config.node_home)


def start_validator_status_monitor(
    config: Config,
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
) -> threading.Thread:
    """Re-read the validator status every 30 seconds until ``stop`` is set."""
    thread = threading.Thread(
        target=_run,
        args=(config, state, stop),
        name="validator-status-monitor",
        daemon=True,
    )
    thread.start()
    return thread