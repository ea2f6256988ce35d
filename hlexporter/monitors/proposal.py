"""Block proposer counts from the node's replica command logs."""

from __future__ import annotations

import json
import os
import queue
import threading
from collections import Counter

from .. import logger
from ..config import Config
from ..metrics.state import MetricsState
from .tail import FileTailer

REPLICA_CMDS_SUBDIR = os.path.join("data", "replica_cmds")


class ProposalMonitor:
    """Counts blocks per proposer from replica command log lines."""

    def __init__(self, state: MetricsState) -> None:
        self.state = state
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def parse_line(self, line: str) -> None:
        """Count the proposer of one log line; raise ValueError if it is malformed."""
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ValueError(f"error parsing proposal line: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("error parsing proposal line: not a JSON object")

        abci_block = data.get("abci_block")
        if not isinstance(abci_block, dict):
            raise ValueError("ABCI block not found in proposal line")
        proposer = abci_block.get("proposer")
        if not isinstance(proposer, str):
            raise ValueError("proposer not found in ABCI block")

        self.state.increment_proposer_counter(proposer)
        with self._lock:
            self._counts[proposer] += 1
            count = self._counts[proposer]
        logger.debug("Proposer %s counter incremented. Local count: %d", proposer, count)

    def proposer_counts(self) -> dict[str, int]:
        """Return a copy of the number of blocks seen per proposer."""
        with self._lock:
            return dict(self._counts)


def _run(monitor: ProposalMonitor, directory: str, stop: threading.Event, errors: queue.Queue) -> None:
    with FileTailer(directory, "proposal log file") as tailer:
        while not stop.is_set():
            try:
                lines = tailer.poll()
            except OSError as exc:
                errors.put(RuntimeError(f"error following proposal log file: {exc}"))
                stop.wait(1.0)
                continue
            for line in lines:
                try:
                    monitor.parse_line(line)
                except ValueError as exc:
                    errors.put(RuntimeError(f"error parsing proposal line: {exc}"))
            stop.wait(0.1)


def start_proposal_monitor(
    config: Config,
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
) -> threading.Thread:
    """Follow the replica command logs in a background thread until ``stop`` is set."""
    directory = os.path.join(config.node_home, REPLICA_CMDS_SUBDIR)
    thread = threading.Thread(
        target=_run,
        args=(ProposalMonitor(state), directory, stop, errors),
        name="proposal-monitor",
        daemon=True,
    )
    thread.start()
    return thread