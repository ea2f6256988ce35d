"""Metric instruments, an in-process meter, and the exporter's instrument set."""

from __future__ import annotations

import threading
from bisect import bisect_left
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Union

Labels = tuple[tuple[str, str], ...]
LabelInput = Union[Mapping[str, object], Iterable[tuple[str, object]], None]

DEFAULT_BUCKETS: tuple[float, ...] = (
    0, 5, 10, 25, 50, 75, 100, 250, 500, 750, 1000, 2500, 5000, 7500, 10000,
)

BLOCK_TIME_BUCKETS: tuple[float, ...] = (
    10, 20, 30, 40, 50, 60, 70, 80, 90, 100,
    120, 140, 160, 180, 200, 220, 240, 260, 280, 300,
    350, 400, 450, 500, 600, 700, 800,
    900, 1000, 1500, 2000,
)

APPLY_DURATION_BUCKETS: tuple[float, ...] = (
    0.1, 0.2, 0.5, 1, 2, 3, 5, 7, 10, 15, 20,
    30, 50, 75, 100, 150, 160, 170, 180, 190,
    200, 210, 220, 230, 240, 250,
)


def _label_key(labels: LabelInput) -> Labels:
    if not labels:
        return ()
    items = labels.items() if isinstance(labels, Mapping) else labels
    merged = {str(k): str(v) for k, v in items}
    return tuple(sorted(merged.items()))


@dataclass(frozen=True)
class Sample:
    """One collected data point. For histograms ``value`` is the sum."""

    labels: Labels
    value: float
    count: int = 0
    bucket_counts: tuple[int, ...] = ()

    @property
    def label_dict(self) -> dict[str, str]:
        return dict(self.labels)


@dataclass(eq=False)
class Counter:
    """A monotonically increasing sum per label set."""

    name: str
    description: str = ""
    unit: str = ""

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[Labels, float] = {}

    def add(self, value: float, labels: LabelInput = None) -> None:
        if value < 0:
            raise ValueError(f"counter {self.name} cannot be decreased")
        key = _label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value

    def collect(self) -> list[Sample]:
        with self._lock:
            return [Sample(key, value) for key, value in self._values.items()]


@dataclass
class _HistogramPoint:
    bucket_counts: list[int]
    total: float = 0.0
    count: int = 0


@dataclass(eq=False)
class Histogram:
    """A distribution with explicit upper-inclusive bucket boundaries."""

    name: str
    description: str = ""
    unit: str = ""
    buckets: tuple[float, ...] = DEFAULT_BUCKETS

    def __post_init__(self) -> None:
        self.buckets = tuple(float(b) for b in self.buckets)
        if any(a >= b for a, b in zip(self.buckets, self.buckets[1:])):
            raise ValueError("histogram bucket boundaries must be strictly increasing")
        self._lock = threading.Lock()
        self._points: dict[Labels, _HistogramPoint] = {}

    def record(self, value: float, labels: LabelInput = None) -> None:
        key = _label_key(labels)
        index = bisect_left(self.buckets, value)
        with self._lock:
            point = self._points.get(key)
            if point is None:
                point = _HistogramPoint([0] * (len(self.buckets) + 1))
                self._points[key] = point
            point.bucket_counts[index] += 1
            point.total += value
            point.count += 1

    def collect(self) -> list[Sample]:
        with self._lock:
            return [
                Sample(key, p.total, p.count, tuple(p.bucket_counts))
                for key, p in self._points.items()
            ]


@dataclass(eq=False)
class ObservableGauge:
    """A gauge whose values are reported by callbacks at collection time."""

    name: str
    description: str = ""
    kind: type = float
    unit: str = ""

    def __post_init__(self) -> None:
        if self.kind not in (int, float):
            raise ValueError(f"gauge kind must be int or float, not {self.kind!r}")

    def _convert(self, value: float) -> float | int:
        return int(value) if self.kind is int else float(value)


Instrument = Union[Counter, Histogram, ObservableGauge]


class _Observer:
    def __init__(
        self,
        allowed: frozenset[ObservableGauge],
        observed: dict[ObservableGauge, dict[Labels, float | int]],
    ) -> None:
        self._allowed = allowed
        self._observed = observed

    def observe(self, instrument: ObservableGauge, value: float, labels: LabelInput = None) -> None:
        if instrument not in self._allowed:
            raise ValueError(f"instrument {instrument.name} is not registered with this callback")
        self._observed.setdefault(instrument, {})[_label_key(labels)] = instrument._convert(value)


class Meter:
    """Creates instruments and collects their current data."""

    def __init__(self, name: str = "hyperliquid-exporter", version: str = "0.1.0") -> None:
        self.name = name
        self.version = version
        self._lock = threading.Lock()
        self._instruments: dict[str, Instrument] = {}
        self._callbacks: list[tuple[Callable[[_Observer], None], frozenset[ObservableGauge]]] = []

    def _register(self, instrument: Instrument) -> Instrument:
        with self._lock:
            if instrument.name in self._instruments:
                raise ValueError(f"duplicate instrument name: {instrument.name}")
            self._instruments[instrument.name] = instrument
        return instrument

    def counter(self, name: str, description: str = "", unit: str = "") -> Counter:
        return self._register(Counter(name, description, unit))

    def histogram(
        self,
        name: str,
        description: str = "",
        unit: str = "",
        buckets: Iterable[float] = DEFAULT_BUCKETS,
    ) -> Histogram:
        return self._register(Histogram(name, description, unit, tuple(buckets)))

    def observable_gauge(self, name: str, description: str = "", kind: type = float) -> ObservableGauge:
        return self._register(ObservableGauge(name, description, kind))

    def register_callback(
        self,
        callback: Callable[[_Observer], None],
        instruments: Iterable[ObservableGauge],
    ) -> Callable[[], None]:
        """Register ``callback`` to observe ``instruments``; return an unregister function."""
        allowed = frozenset(instruments)
        with self._lock:
            owned = set(self._instruments.values())
            foreign = [i.name for i in allowed if i not in owned]
            if foreign:
                raise ValueError(f"instruments not created by this meter: {', '.join(sorted(foreign))}")
            entry = (callback, allowed)
            self._callbacks.append(entry)

        def unregister() -> None:
            with self._lock:
                if entry in self._callbacks:
                    self._callbacks.remove(entry)

        return unregister

    def collect(self) -> dict[Instrument, list[Sample]]:
        """Run the callbacks and return every instrument's samples in creation order."""
        with self._lock:
            instruments = list(self._instruments.values())
            callbacks = list(self._callbacks)
        observed: dict[ObservableGauge, dict[Labels, float | int]] = {}
        for callback, allowed in callbacks:
            callback(_Observer(allowed, observed))
        result: dict[Instrument, list[Sample]] = {}
        for instrument in instruments:
            if isinstance(instrument, ObservableGauge):
                values = observed.get(instrument, {})
                result[instrument] = [Sample(key, value) for key, value in values.items()]
            else:
                result[instrument] = instrument.collect()
        return result


@dataclass(frozen=True)
class Instruments:
    """The exporter's full instrument set."""

    block_time_histogram: Histogram
    apply_duration_histogram: Histogram
    proposer_counter: Counter
    block_height_gauge: ObservableGauge
    apply_duration_gauge: ObservableGauge
    validator_jailed_status: ObservableGauge
    validator_stake_gauge: ObservableGauge
    total_stake_gauge: ObservableGauge
    jailed_stake_gauge: ObservableGauge
    not_jailed_stake_gauge: ObservableGauge
    validator_count_gauge: ObservableGauge
    software_version_info: ObservableGauge
    software_up_to_date: ObservableGauge
    latest_block_time_gauge: ObservableGauge
    evm_block_height_gauge: ObservableGauge
    evm_transactions_counter: Counter
    active_stake_gauge: ObservableGauge
    inactive_stake_gauge: ObservableGauge
    validator_active_status: ObservableGauge
    validator_rtt_gauge: ObservableGauge

    def observables(self) -> list[ObservableGauge]:
        return [
            self.block_height_gauge,
            self.apply_duration_gauge,
            self.validator_jailed_status,
            self.validator_stake_gauge,
            self.total_stake_gauge,
            self.jailed_stake_gauge,
            self.not_jailed_stake_gauge,
            self.validator_count_gauge,
            self.software_version_info,
            self.software_up_to_date,
            self.latest_block_time_gauge,
            self.evm_block_height_gauge,
            self.active_stake_gauge,
            self.inactive_stake_gauge,
            self.validator_active_status,
            self.validator_rtt_gauge,
        ]


def create_instruments(meter: Meter) -> Instruments:
    """Create every exporter instrument on ``meter``."""
    gauge = meter.observable_gauge
    return Instruments(
        block_time_histogram=meter.histogram(
            "hl_block_time_milliseconds",
            "Distribution of time between blocks in milliseconds",
            "ms",
            BLOCK_TIME_BUCKETS,
        ),
        apply_duration_histogram=meter.histogram(
            "hl_apply_duration_milliseconds",
            "Distribution of block apply durations in milliseconds",
            "ms",
            APPLY_DURATION_BUCKETS,
        ),
        proposer_counter=meter.counter(
            "hl_proposer_count_total", "Total number of blocks proposed by each validator"
        ),
        block_height_gauge=gauge("hl_block_height", "Current block height of the chain", int),
        apply_duration_gauge=gauge("hl_apply_duration", "Duration of block application", float),
        validator_jailed_status=gauge(
            "hl_validator_jailed_status", "Validator jail status (0=not jailed, 1=jailed)", float
        ),
        validator_stake_gauge=gauge("hl_validator_stake", "Stake amount for each validator", float),
        total_stake_gauge=gauge("hl_total_stake", "Total stake in the network", float),
        jailed_stake_gauge=gauge("hl_jailed_stake", "Total jailed stake", float),
        not_jailed_stake_gauge=gauge("hl_not_jailed_stake", "Total not jailed stake", float),
        validator_count_gauge=gauge("hl_validator_count", "Total number of validators", int),
        software_version_info=gauge("hl_software_version", "Software version information", int),
        software_up_to_date=gauge("hl_software_up_to_date", "Software up to date status", int),
        latest_block_time_gauge=gauge("hl_latest_block_time", "Latest block time", int),
        evm_block_height_gauge=gauge(
            "hl_evm_block_height", "Current block height of the EVM chain", int
        ),
        evm_transactions_counter=meter.counter(
            "hl_evm_transactions_total", "Total number of EVM transactions processed"
        ),
        active_stake_gauge=gauge(
            "hl_active_stake", "Total stake of active validators in the Hyperliquid network", float
        ),
        inactive_stake_gauge=gauge(
            "hl_inactive_stake",
            "Total stake of inactive validators in the Hyperliquid network",
            float,
        ),
        validator_active_status=gauge(
            "hl_validator_active_status",
            "Active status of each validator (1 if active, 0 if not active)",
            float,
        ),
        validator_rtt_gauge=gauge(
            "hl_validator_rtt", "Round-trip time (RTT) to validator nodes in milliseconds", float
        ),
    )