"""Starts every monitor and reports their errors until asked to stop."""

from __future__ import annotations

import queue
import threading

from . import logger
from .config import Config
from .metrics.state import MetricsState
from .monitors.block import start_block_monitor
from .monitors.evm import start_evm_block_height_monitor, start_evm_transactions_monitor
from .monitors.proposal import start_proposal_monitor
from .monitors.update_checker import start_update_checker
from .monitors.validator_api import start_validator_monitor
from .monitors.validator_ip import start_validator_ip_monitor
from .monitors.validator_status import start_validator_status_monitor
from .monitors.version import VersionTracker, start_version_monitor

ERROR_POLL = 0.1
ERROR_PAUSE = 0.1


def drain_errors(errors: queue.Queue, stop: threading.Event) -> int:
    """Log monitor errors as they arrive until ``stop`` is set; return how many were logged."""
    handled = 0
    while not stop.is_set():
        try:
            exc = errors.get(timeout=ERROR_POLL)
        except queue.Empty:
            continue
        logger.error("Monitor error: %s", exc)
        handled += 1
        # Pause briefly so a monitor failing in a loop cannot flood the log.
        stop.wait(ERROR_PAUSE)
    logger.info("Shutting down monitors...")
    return handled


def start(config: Config, state: MetricsState, stop: threading.Event) -> list[threading.Thread]:
    """Run all monitors until ``stop`` is set; return the threads that were started."""
    logger.info("Starting Hyperliquid exporter...")
    errors: queue.Queue = queue.Queue()
    tracker = VersionTracker()
    threads: list[threading.Thread] = []

    logger.info("Initializing block monitor...")
    threads.append(start_block_monitor(config, state, stop, errors))

    logger.info("Initializing proposal monitor...")
    threads.append(start_proposal_monitor(config, state, stop, errors))

    logger.info("Initializing version monitor...")
    threads.append(start_version_monitor(config, state, tracker, stop, errors))

    logger.info("Initializing update checker...")
    threads.append(start_update_checker(config, state, tracker, stop, errors))

    if config.enable_evm:
        logger.info("Initializing evm monitor...")
        threads.append(start_evm_block_height_monitor(config, state, stop, errors))
        logger.info("Initializing EVM Transactions monitor...")
        threads.append(start_evm_transactions_monitor(config, state, stop, errors))

    logger.info("Initializing Validator Status monitor...")
    threads.append(start_validator_status_monitor(config, state, stop, errors))

    logger.info("Initializing validator IP monitor...")
    threads.append(start_validator_ip_monitor(config, state, stop, errors))

    logger.info("Initializing validator API monitor...")
    threads.append(start_validator_monitor(config, state, stop, errors))

    logger.info("Exporter is now running")
    drain_errors(errors, stop)
    return threads