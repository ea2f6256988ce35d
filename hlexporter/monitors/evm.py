"""EVM block height and transaction counts from the node's hourly EVM logs."""

from __future__ import annotations

import json
import os
import queue
import threading
from collections.abc import Callable

from .. import logger
from ..config import Config
from ..metrics.state import MetricsState
from .tail import FileTailer

EVM_BLOCKS_SUBDIR = os.path.join("data", "dhs", "EvmBlocks", "hourly")
EVM_TXS_SUBDIR = os.path.join("data", "dhs", "EvmTxs", "hourly")
DEFAULT_DELAY = 60.0


def process_evm_block_height_line(state: MetricsState, line: str) -> None:
    """Set the EVM block height from one log line; raise ValueError if it is malformed."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"error unmarshaling EVM block height data: {exc}") from exc
    if data is None:
        data = []
    if not isinstance(data, list):
        raise ValueError("error unmarshaling EVM block height data: not a JSON array")
    if len(data) < 2:
        raise ValueError(
            f"invalid block data format: expected at least 2 elements, got {len(data)}"
        )
    number = data[1]
    if not isinstance(number, (int, float)) or isinstance(number, bool):
        raise ValueError(
            f"invalid block number format: expected number, got {type(number).__name__}"
        )
    state.set_evm_block_height(int(number))


def process_evm_transaction_line(state: MetricsState, line: str) -> None:
    """Count one EVM transaction log line; raise ValueError if it is malformed."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"error unmarshaling EVM transaction data: {exc}") from exc
    if data is not None and not isinstance(data, list):
        raise ValueError("error unmarshaling EVM transaction data: not a JSON array")
    state.increment_evm_transactions_counter()


def _follow(
    directory: str,
    description: str,
    process: Callable[[MetricsState, str], None],
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
    delay: float,
) -> None:
    if stop.wait(delay):
        return
    if state.is_validator():
        logger.info("Node is a validator, skipping %s monitoring", description)
        return
    logger.info("Starting %s monitoring in directory: %s", description, directory)
    if not os.path.isdir(directory):
        logger.warning("%s directory does not exist: %s", description, directory)

    with FileTailer(directory, f"{description} file") as tailer:
        while not stop.wait(1.0):
            try:
                lines = tailer.poll()
            except OSError as exc:
                errors.put(RuntimeError(f"error following {description} file: {exc}"))
                continue
            for line in lines:
                try:
                    process(state, line)
                except ValueError as exc:
                    errors.put(RuntimeError(f"error processing {description} line: {exc}"))


def _start(
    name: str,
    directory: str,
    description: str,
    process: Callable[[MetricsState, str], None],
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
    delay: float,
) -> threading.Thread:
    thread = threading.Thread(
        target=_follow,
        args=(directory, description, process, state, stop, errors, delay),
        name=name,
        daemon=True,
    )
    thread.start()
    return thread


def start_evm_block_height_monitor(
    config: Config,
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
    delay: float = DEFAULT_DELAY,
) -> threading.Thread:
    """After ``delay`` seconds, follow the EVM block logs unless the node is a validator."""
    return _start(
        "evm-block-height-monitor",
        os.path.join(config.node_home, EVM_BLOCKS_SUBDIR),
        "EVM block height",
        process_evm_block_height_line,
        state,
        stop,
        errors,
        delay,
    )


def start_evm_transactions_monitor(
    config: Config,
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
    delay: float = DEFAULT_DELAY,
) -> threading.Thread:
    """After ``delay`` seconds, follow the EVM transaction logs unless the node is a validator."""
    return _start(
        "evm-transactions-monitor",
        os.path.join(config.node_home, EVM_TXS_SUBDIR),
        "EVM transactions",
        process_evm_transaction_line,
        state,
        stop,
        errors,
        delay,
    )