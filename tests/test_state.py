import pytest
import requests
import responses

from hlexporter.metrics.state import (
    PUBLIC_IP_URL,
    MetricsConfig,
    MetricsError,
    MetricsState,
    NodeIdentity,
    get_public_ip,
)


def values(state, instrument):
    return {s.labels: s.value for s in state.meter.collect()[instrument]}


def test_block_height_is_observed():
    state = MetricsState()
    state.set_block_height(123)
    assert values(state, state.instruments.block_height_gauge) == {(): 123}


def test_unset_gauge_has_no_samples():
    state = MetricsState()
    assert values(state, state.instruments.total_stake_gauge) == {}


def test_apply_duration_feeds_histogram_and_gauge():
    state = MetricsState()
    state.record_apply_duration(12.5)
    [sample] = state.meter.collect()[state.instruments.apply_duration_histogram]
    assert sample.count == 1
    assert sample.value == 12.5
    assert values(state, state.instruments.apply_duration_gauge) == {(): 12.5}


def test_block_time_histogram_counts_records():
    state = MetricsState()
    state.record_block_time(150)
    state.record_block_time(400)
    [sample] = state.meter.collect()[state.instruments.block_time_histogram]
    assert sample.count == 2
    assert sum(sample.bucket_counts) == 2


def test_validator_stake_labels_and_getter():
    state = MetricsState()
    state.set_validator_stake("0xaaa", "0xbbb", "node-a", 1000.0)
    expected_labels = (("moniker", "node-a"), ("signer", "0xbbb"), ("validator", "0xaaa"))
    assert values(state, state.instruments.validator_stake_gauge) == {expected_labels: 1000.0}
    assert state.get_validator_stakes() == {"0xaaa": 1000.0}


def test_validator_stake_is_replaced_per_address():
    state = MetricsState()
    state.set_validator_stake("0xaaa", "0xbbb", "node-a", 1000.0)
    state.set_validator_stake("0xaaa", "0xbbb", "node-a", 5.0)
    assert state.get_validator_stakes() == {"0xaaa": 5.0}


def test_get_validator_stakes_returns_a_copy():
    state = MetricsState()
    state.set_validator_stake("0xaaa", "0xbbb", "node-a", 1.0)
    stakes = state.get_validator_stakes()
    stakes["0xccc"] = 9.0
    assert state.get_validator_stakes() == {"0xaaa": 1.0}


def test_jailed_and_active_status_labels():
    state = MetricsState()
    state.set_validator_jailed_status("0xaaa", "0xbbb", "node-a", 1.0)
    state.set_validator_active_status("0xaaa", "0xbbb", "node-a", 0.0)
    labels = (("name", "node-a"), ("signer", "0xbbb"), ("validator", "0xaaa"))
    assert values(state, state.instruments.validator_jailed_status) == {labels: 1.0}
    assert values(state, state.instruments.validator_active_status) == {labels: 0.0}


def test_validator_rtt_labels():
    state = MetricsState()
    state.set_validator_rtt("0xaaa", "node-a", "192.0.2.1", 850.0)
    labels = (("ip", "192.0.2.1"), ("moniker", "node-a"), ("validator", "0xaaa"))
    assert values(state, state.instruments.validator_rtt_gauge) == {labels: 850.0}


@pytest.mark.parametrize("flag, expected", [(True, 1), (False, 0)])
def test_software_up_to_date(flag, expected):
    state = MetricsState()
    state.set_software_up_to_date(flag)
    assert values(state, state.instruments.software_up_to_date) == {(): expected}


def test_software_version_carries_commit_and_date():
    state = MetricsState()
    state.set_software_version("abc123", "2024-01-01")
    labels = (("commit", "abc123"), ("date", "2024-01-01"))
    assert values(state, state.instruments.software_version_info) == {labels: 1}


def test_proposer_counter_per_validator():
    state = MetricsState()
    state.increment_proposer_counter("0xaaa")
    state.increment_proposer_counter("0xaaa")
    state.increment_proposer_counter("0xbbb")
    assert values(state, state.instruments.proposer_counter) == {
        (("validator", "0xaaa"),): 2,
        (("validator", "0xbbb"),): 1,
    }


def test_evm_transactions_counter():
    state = MetricsState()
    for _ in range(3):
        state.increment_evm_transactions_counter()
    assert values(state, state.instruments.evm_transactions_counter) == {(): 3}


def test_stake_aggregates_and_counts():
    state = MetricsState()
    state.set_total_stake(10.0)
    state.set_jailed_stake(2.0)
    state.set_not_jailed_stake(8.0)
    state.set_active_stake(7.0)
    state.set_inactive_stake(3.0)
    state.set_validator_count(4)
    state.set_evm_block_height(99)
    state.set_latest_block_time(1700000000)
    inst = state.instruments
    assert values(state, inst.total_stake_gauge) == {(): 10.0}
    assert values(state, inst.jailed_stake_gauge) == {(): 2.0}
    assert values(state, inst.not_jailed_stake_gauge) == {(): 8.0}
    assert values(state, inst.active_stake_gauge) == {(): 7.0}
    assert values(state, inst.inactive_stake_gauge) == {(): 3.0}
    assert values(state, inst.validator_count_gauge) == {(): 4}
    assert values(state, inst.evm_block_height_gauge) == {(): 99}
    assert values(state, inst.latest_block_time_gauge) == {(): 1700000000}


def test_validator_flags_update_identity():
    state = MetricsState()
    assert state.is_validator() is False
    state.set_is_validator(True)
    state.set_validator_address("0xaaa")
    assert state.is_validator() is True
    assert state.node_identity.validator_address == "0xaaa"


def test_initialize_node_identity_with_given_ip():
    state = MetricsState()
    config = MetricsConfig(alias="node-a", chain="testnet", validator_address="0xaaa", is_validator=True)
    state.initialize_node_identity(config, "198.51.100.4")
    assert state.node_identity == NodeIdentity(
        validator_address="0xaaa",
        server_ip="198.51.100.4",
        alias="node-a",
        is_validator=True,
        chain="testnet",
    )


def test_get_public_ip_returns_body():
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, PUBLIC_IP_URL, body="203.0.113.7")
        assert get_public_ip() == "203.0.113.7"


def test_initialize_node_identity_looks_up_ip():
    state = MetricsState()
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, PUBLIC_IP_URL, body="203.0.113.7")
        state.initialize_node_identity(MetricsConfig(alias="node-a"))
    assert state.node_identity.server_ip == "203.0.113.7"


def test_initialize_node_identity_fails_without_ip():
    state = MetricsState()
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, PUBLIC_IP_URL, body=requests.ConnectionError("down"))
        with pytest.raises(MetricsError, match="failed to get public IP"):
            state.initialize_node_identity(MetricsConfig())