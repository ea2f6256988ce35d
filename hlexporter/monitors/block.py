"""Block height, block time and apply duration from the node's block time logs."""

from __future__ import annotations

import calendar
import json
import os
import queue
import re
import threading
from datetime import datetime, timezone

from .. import logger
from ..config import Config
from ..metrics.state import MetricsState
from .tail import FileTailer

BLOCK_TIME_SUBDIR = os.path.join("data", "node_fast_block_times")

_BLOCK_TIME = re.compile(r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?")
_NANOS_PER_SECOND = 1_000_000_000
_NANOS_PER_MILLI = 1_000_000


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_block_time(text: str) -> int:
    """Return nanoseconds since the epoch for a UTC timestamp without zone."""
    match = _BLOCK_TIME.fullmatch(text)
    if match is None:
        raise ValueError(f"error parsing block time: {text!r}")
    *fields, fraction = match.groups()
    try:
        moment = datetime(*map(int, fields), tzinfo=timezone.utc)
    except ValueError as exc:
        raise ValueError(f"error parsing block time: {exc}") from exc
    nanos = int((fraction or "").ljust(9, "0"))
    return calendar.timegm(moment.timetuple()) * _NANOS_PER_SECOND + nanos


def _truncated_millis(nanos: int) -> int:
    millis = abs(nanos) // _NANOS_PER_MILLI
    return millis if nanos >= 0 else -millis


class BlockMonitor:
    """Turns block time log lines into metric updates."""

    def __init__(self, state: MetricsState) -> None:
        self.state = state
        self.last_block_time: int | None = None

    def parse_line(self, line: str) -> None:
        """Apply one log line to the metrics; raise ValueError if it is malformed."""
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ValueError(f"error parsing block time line: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("error parsing block time line: not a JSON object")

        height = data.get("height")
        if not _is_number(height):
            raise ValueError("height not found or not a number")
        block_time = data.get("block_time")
        if not isinstance(block_time, str):
            raise ValueError("block time not found or not a string")
        apply_duration = data.get("apply_duration")
        if not _is_number(apply_duration):
            raise ValueError("apply duration not found or not a number")

        parsed = _parse_block_time(block_time)

        if self.last_block_time is not None:
            diff_ms = _truncated_millis(parsed - self.last_block_time)
            if diff_ms > 0:
                self.state.record_block_time(float(diff_ms))
                logger.debug("Block time difference: %d milliseconds", diff_ms)
            else:
                logger.warning("Invalid block time difference: %d milliseconds", diff_ms)
        self.last_block_time = parsed

        seconds = parsed // _NANOS_PER_SECOND
        self.state.set_block_height(int(height))
        self.state.record_apply_duration(apply_duration * 1000)
        self.state.set_latest_block_time(seconds)

        stamp = datetime.fromtimestamp(seconds, timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        logger.debug(
            "Updated metrics: height=%.0f, apply_duration=%.6f, block_time=%s UTC",
            height,
            apply_duration,
            stamp,
        )


def _run(monitor: BlockMonitor, directory: str, stop: threading.Event, errors: queue.Queue) -> None:
    with FileTailer(directory, "block time file") as tailer:
        while not stop.is_set():
            try:
                lines = tailer.poll()
            except OSError as exc:
                errors.put(RuntimeError(f"error following block time file: {exc}"))
                stop.wait(1.0)
                continue
            for line in lines:
                try:
                    monitor.parse_line(line)
                except ValueError as exc:
                    errors.put(RuntimeError(f"error parsing block time line: {exc}"))
            stop.wait(0.1)


def start_block_monitor(
    config: Config,
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
) -> threading.Thread:
    """Follow the block time logs in a background thread until ``stop`` is set."""
    directory = os.path.join(config.node_home, BLOCK_TIME_SUBDIR)
    thread = threading.Thread(
        target=_run,
        args=(BlockMonitor(state), directory, stop, errors),
        name="block-monitor",
        daemon=True,
    )
    thread.start()
    return thread