import json
import queue
import threading
import time

import pytest

from hlexporter.config import Config
from hlexporter.metrics.state import MetricsState
from hlexporter.monitors.evm import (
    process_evm_block_height_line,
    process_evm_transaction_line,
    start_evm_block_height_monitor,
    start_evm_transactions_monitor,
)


def _values(state, instrument):
    return [sample.value for sample in state.meter.collect()[instrument]]


def test_block_height_line_sets_gauge():
    state = MetricsState()
    process_evm_block_height_line(state, json.dumps(["hash", 42, {"extra": True}]))
    assert _values(state, state.instruments.evm_block_height_gauge) == [42]


def test_block_height_is_truncated_to_integer():
    state = MetricsState()
    process_evm_block_height_line(state, "[0, 42.9]")
    assert _values(state, state.instruments.evm_block_height_gauge) == [42]


@pytest.mark.parametrize(
    "line",
    ["not json", '{"a": 1}', "[1]", "null", '[1, "42"]', "[1, true]", "[1, null]"],
)
def test_malformed_block_height_lines_raise(line):
    state = MetricsState()
    with pytest.raises(ValueError):
        process_evm_block_height_line(state, line)
    assert _values(state, state.instruments.evm_block_height_gauge) == []


def test_transaction_lines_are_counted():
    state = MetricsState()
    process_evm_transaction_line(state, "[1, 2, 3]")
    process_evm_transaction_line(state, "null")
    [sample] = state.instruments.evm_transactions_counter.collect()
    assert sample.value == 2


@pytest.mark.parametrize("line", ["nope", '{"tx": 1}', '"text"'])
def test_malformed_transaction_lines_raise(line):
    state = MetricsState()
    with pytest.raises(ValueError):
        process_evm_transaction_line(state, line)
    assert state.instruments.evm_transactions_counter.collect() == []


@pytest.mark.parametrize("start", [start_evm_block_height_monitor, start_evm_transactions_monitor])
def test_validator_node_skips_monitoring(tmp_path, start):
    state = MetricsState()
    state.set_is_validator(True)
    stop = threading.Event()
    errors = queue.Queue()
    thread = start(Config(node_home=str(tmp_path)), state, stop, errors, delay=0)
    thread.join(5)
    alive = thread.is_alive()
    stop.set()
    assert not alive
    assert errors.empty()


@pytest.mark.parametrize("start", [start_evm_block_height_monitor, start_evm_transactions_monitor])
def test_stop_during_delay_ends_thread(tmp_path, start):
    stop = threading.Event()
    thread = start(Config(node_home=str(tmp_path)), MetricsState(), stop, queue.Queue(), delay=30)
    stop.set()
    thread.join(5)
    assert not thread.is_alive()


def test_block_height_monitor_follows_file(tmp_path):
    directory = tmp_path / "data" / "dhs" / "EvmBlocks" / "hourly" / "20240101"
    directory.mkdir(parents=True)
    path = directory / "0"
    path.write_text("")
    state = MetricsState()
    stop = threading.Event()
    thread = start_evm_block_height_monitor(
        Config(node_home=str(tmp_path)), state, stop, queue.Queue(), delay=0
    )
    gauge = state.instruments.evm_block_height_gauge
    try:
        deadline = time.monotonic() + 15
        while time.monotonic() < deadline and not _values(state, gauge):
            with path.open("a") as handle:
                handle.write('["block", 9001]\n')
            time.sleep(0.3)
    finally:
        stop.set()
        thread.join(5)
    assert _values(state, gauge) == [9001]
    assert not thread.is_alive()


def test_transactions_monitor_reports_missing_directory(tmp_path):
    stop = threading.Event()
    errors = queue.Queue()
    thread = start_evm_transactions_monitor(
        Config(node_home=str(tmp_path)), MetricsState(), stop, errors, delay=0
    )
    try:
        error = errors.get(timeout=10)
    finally:
        stop.set()
        thread.join(5)
    assert isinstance(error, RuntimeError)
    assert "EVM transactions" in str(error)