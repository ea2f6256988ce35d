import json
import queue
import threading

import pytest
import requests
import responses

from hlexporter.config import Config
from hlexporter.metrics.state import MetricsState
from hlexporter.monitors.validator_api import (
    ValidatorSummary,
    api_url,
    apply_validator_summaries,
    start_validator_monitor,
    update_validator_metrics,
)

SUMMARIES = [
    {
        "validator": "0xa",
        "signer": "0xsa",
        "name": "alpha",
        "description": "first",
        "nRecentBlocks": 3,
        "stake": 100.0,
        "isJailed": False,
        "unjailableAfter": None,
        "isActive": True,
    },
    {
        "validator": "0xb",
        "signer": "0xsb",
        "name": "beta",
        "description": "second",
        "nRecentBlocks": 0,
        "stake": 50.0,
        "isJailed": True,
        "unjailableAfter": 1700000000000,
        "isActive": False,
    },
]


def by_validator(state, gauge):
    return {s.label_dict["validator"]: s.value for s in state.meter.collect()[gauge]}


def plain_value(state, gauge):
    (sample,) = state.meter.collect()[gauge]
    return sample.value


def test_api_url():
    assert api_url("mainnet") == "https://api.hyperliquid.xyz/info"
    assert api_url("testnet") == "https://api.hyperliquid-testnet.xyz/info"
    assert api_url("") == "https://api.hyperliquid-testnet.xyz/info"


def test_summary_from_dict():
    summary = ValidatorSummary.from_dict(SUMMARIES[1])
    assert summary.validator == "0xb"
    assert summary.name == "beta"
    assert summary.n_recent_blocks == 0
    assert summary.stake == 50.0
    assert summary.is_jailed is True
    assert summary.unjailable_after == 1700000000000
    assert summary.is_active is False


def test_summary_defaults_for_missing_fields():
    assert ValidatorSummary.from_dict({}) == ValidatorSummary()


def test_summary_integer_stake_becomes_float():
    summary = ValidatorSummary.from_dict({"stake": 7})
    assert summary.stake == 7.0
    assert isinstance(summary.stake, float)


@pytest.mark.parametrize(
    "data",
    [{"stake": "abc"}, {"isJailed": 1}, {"nRecentBlocks": 1.5}, {"validator": 3}, ["not", "a", "dict"]],
)
def test_summary_rejects_wrong_types(data):
    with pytest.raises(ValueError):
        ValidatorSummary.from_dict(data)


def test_apply_summaries_records_metrics():
    state = MetricsState()
    summaries = [ValidatorSummary.from_dict(d) for d in SUMMARIES]
    totals = apply_validator_summaries(state, summaries)

    assert totals["jailed"] == 50.0
    assert totals["active"] == 100.0
    assert totals["total"] == totals["jailed"] + totals["not_jailed"]
    assert totals["total"] == totals["active"] + totals["inactive"]

    assert state.get_validator_stakes() == {"0xa": 100.0, "0xb": 50.0}
    assert by_validator(state, state.instruments.validator_jailed_status) == {"0xa": 0.0, "0xb": 1.0}
    assert by_validator(state, state.instruments.validator_active_status) == {"0xa": 1.0, "0xb": 0.0}
    assert plain_value(state, state.instruments.validator_count_gauge) == len(summaries)
    assert plain_value(state, state.instruments.total_stake_gauge) == totals["total"]


def test_apply_empty_summaries():
    state = MetricsState()
    totals = apply_validator_summaries(state, [])
    assert set(totals.values()) == {0.0}
    assert plain_value(state, state.instruments.validator_count_gauge) == 0


def test_update_validator_metrics_posts_request():
    state = MetricsState()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, "https://api.hyperliquid.xyz/info", json=SUMMARIES)
        update_validator_metrics(state, "mainnet")
        body = json.loads(rsps.calls[0].request.body)
    assert body == {"type": "validatorSummaries"}
    assert state.get_validator_stakes() == {"0xa": 100.0, "0xb": 50.0}


def test_update_validator_metrics_testnet_url():
    state = MetricsState()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, "https://api.hyperliquid-testnet.xyz/info", json=[SUMMARIES[0]])
        update_validator_metrics(state, "testnet")
    assert state.get_validator_stakes() == {"0xa": 100.0}


def test_update_validator_metrics_bad_body():
    state = MetricsState()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, "https://api.hyperliquid.xyz/info", body="not json")
        with pytest.raises(ValueError):
            update_validator_metrics(state, "mainnet")


def test_update_validator_metrics_not_a_list():
    state = MetricsState()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, "https://api.hyperliquid.xyz/info", json={"error": "nope"})
        with pytest.raises(ValueError):
            update_validator_metrics(state, "mainnet")


def test_update_validator_metrics_connection_error():
    state = MetricsState()
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.POST,
            "https://api.hyperliquid.xyz/info",
            body=requests.ConnectionError("down"),
        )
        with pytest.raises(requests.ConnectionError):
            update_validator_metrics(state, "mainnet")
    assert state.get_validator_stakes() == {}


def test_monitor_stops_when_event_set():
    stop = threading.Event()
    stop.set()
    thread = start_validator_monitor(Config(chain="mainnet"), MetricsState(), stop, queue.Queue())
    thread.join(timeout=5)
    assert not thread.is_alive()