"""Shared metric state that the monitors update and the exporters read."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace

import requests

from .. import logger
from .instruments import Labels, Meter, ObservableGauge, create_instruments

PUBLIC_IP_URL = "https://api.ipify.org"


class MetricsError(Exception):
    """Raised when the metrics system cannot be set up."""


@dataclass(frozen=True)
class MetricsConfig:
    """Settings for the metrics pipeline."""

    enable_prometheus: bool = True
    enable_otlp: bool = False
    otlp_endpoint: str = ""
    otlp_insecure: bool = False
    alias: str = ""
    chain: str = ""
    node_home: str = ""
    validator_address: str = ""
    is_validator: bool = False
    enable_evm: bool = True
    prometheus_port: int = 8086


@dataclass(frozen=True)
class NodeIdentity:
    """Who this node is, as reported alongside its metrics."""

    validator_address: str = ""
    server_ip: str = ""
    alias: str = ""
    is_validator: bool = False
    chain: str = ""


@dataclass(frozen=True)
class LabeledValue:
    """A gauge value together with its own labels."""

    value: float
    labels: Labels


def get_public_ip(timeout: float = 10.0) -> str:
    """Return this host's public IP address as reported by a lookup service."""
    response = requests.get(PUBLIC_IP_URL, timeout=timeout)
    return response.text


def _labels(**pairs: str) -> Labels:
    return tuple(sorted(pairs.items()))


class MetricsState:
    """Current gauge values, counters and node identity, safe to share between threads."""

    def __init__(self, meter: Meter | None = None) -> None:
        self.meter = meter or Meter()
        self.instruments = create_instruments(self.meter)
        self._lock = threading.RLock()
        self._identity = NodeIdentity()
        self._current: dict[ObservableGauge, float | int] = {}
        self._labeled: dict[ObservableGauge, dict[str, LabeledValue]] = {}
        self._unregister = self.meter.register_callback(
            self.observe, self.instruments.observables()
        )

    @property
    def node_identity(self) -> NodeIdentity:
        with self._lock:
            return replace(self._identity)

    def initialize_node_identity(self, config: MetricsConfig, server_ip: str | None = None) -> None:
        """Set the identity from ``config``; look up the public IP unless given."""
        if server_ip is None:
            try:
                server_ip = get_public_ip()
            except requests.RequestException as exc:
                raise MetricsError(f"failed to get public IP: {exc}") from exc
        with self._lock:
            self._identity = NodeIdentity(
                validator_address=config.validator_address,
                server_ip=server_ip,
                alias=config.alias,
                is_validator=config.is_validator,
                chain=config.chain,
            )

    def observe(self, observer) -> None:
        """Report every stored gauge value to ``observer``."""
        with self._lock:
            current = list(self._current.items())
            labeled = [(g, list(v.values())) for g, v in self._labeled.items()]
        for gauge, value in current:
            observer.observe(gauge, value)
        for gauge, values in labeled:
            for item in values:
                observer.observe(gauge, item.value, item.labels)

    def _set(self, gauge: ObservableGauge, value: float | int) -> None:
        with self._lock:
            self._current[gauge] = value

    def _set_labeled(self, gauge: ObservableGauge, key: str, value: float, labels: Labels) -> None:
        with self._lock:
            self._labeled.setdefault(gauge, {})[key] = LabeledValue(value, labels)

    def increment_proposer_counter(self, proposer: str) -> None:
        self.instruments.proposer_counter.add(1, {"validator": proposer})

    def set_block_height(self, height: int) -> None:
        self._set(self.instruments.block_height_gauge, int(height))

    def record_apply_duration(self, duration: float) -> None:
        self.instruments.apply_duration_histogram.record(duration)
        self._set(self.instruments.apply_duration_gauge, float(duration))

    def set_validator_stake(self, address: str, signer: str, moniker: str, stake: float) -> None:
        self._set_labeled(
            self.instruments.validator_stake_gauge,
            address,
            stake,
            _labels(validator=address, signer=signer, moniker=moniker),
        )

    def set_validator_jailed_status(self, validator: str, signer: str, name: str, status: float) -> None:
        self._set_labeled(
            self.instruments.validator_jailed_status,
            validator,
            status,
            _labels(validator=validator, signer=signer, name=name),
        )

    def set_total_stake(self, stake: float) -> None:
        self._set(self.instruments.total_stake_gauge, float(stake))

    def set_jailed_stake(self, stake: float) -> None:
        self._set(self.instruments.jailed_stake_gauge, float(stake))

    def set_not_jailed_stake(self, stake: float) -> None:
        self._set(self.instruments.not_jailed_stake_gauge, float(stake))

    def set_validator_count(self, count: int) -> None:
        self._set(self.instruments.validator_count_gauge, int(count))

    def set_software_version(self, commit: str, date: str) -> None:
        self._set_labeled(
            self.instruments.software_version_info,
            "current",
            1,
            _labels(date=date, commit=commit),
        )

    def set_software_up_to_date(self, up_to_date: bool) -> None:
        self._set(self.instruments.software_up_to_date, 1 if up_to_date else 0)

    def record_block_time(self, duration: float) -> None:
        self.instruments.block_time_histogram.record(duration)

    def set_latest_block_time(self, timestamp: int) -> None:
        self._set(self.instruments.latest_block_time_gauge, int(timestamp))

    def set_evm_block_height(self, height: int) -> None:
        logger.debug("Setting EVM block height to: %d", height)
        self._set(self.instruments.evm_block_height_gauge, int(height))

    def increment_evm_transactions_counter(self) -> None:
        self.instruments.evm_transactions_counter.add(1)

    def set_is_validator(self, is_validator: bool) -> None:
        with self._lock:
            self._identity = replace(self._identity, is_validator=is_validator)

    def set_validator_address(self, address: str) -> None:
        with self._lock:
            self._identity = replace(self._identity, validator_address=address)

    def set_active_stake(self, stake: float) -> None:
        self._set(self.instruments.active_stake_gauge, float(stake))

    def set_inactive_stake(self, stake: float) -> None:
        self._set(self.instruments.inactive_stake_gauge, float(stake))

    def set_validator_active_status(self, validator: str, signer: str, name: str, status: float) -> None:
        self._set_labeled(
            self.instruments.validator_active_status,
            validator,
            status,
            _labels(validator=validator, signer=signer, name=name),
        )

    def set_validator_rtt(self, validator: str, moniker: str, ip: str, latency: float) -> None:
        self._set_labeled(
            self.instruments.validator_rtt_gauge,
            validator,
            latency,
            _labels(validator=validator, moniker=moniker, ip=ip),
        )

    def is_validator(self) -> bool:
        with self._lock:
            return self._identity.is_validator

    def get_validator_stakes(self) -> dict[str, float]:
        """Return the last known stake of every validator, keyed by address."""
        with self._lock:
            values = self._labeled.get(self.instruments.validator_stake_gauge, {})
            return {address: item.value for address, item in values.items()}