"""Validator addresses from the node's ABCI state, and round-trip times to them."""

from __future__ import annotations

import json
import os
import queue
import socket
import subprocess
import tempfile
import threading
import time
from collections.abc import Iterable, Iterator, Mapping

from .. import logger
from ..config import Config
from ..metrics.state import MetricsState
from ..utils import get_latest_file

STATE_SUBDIR = os.path.join("data", "periodic_abci_states")
PROFILE_KEY = "validator_to_profile"
DEFAULT_PORTS = range(4000, 4011)
CONNECT_TIMEOUT = 2.0
TOP_VALIDATORS = 50
RTT_INTERVAL = 5.0
CHECK_INTERVAL = 5.0
RETRY_AFTER = 3600.0


def _profile_lists(node: object) -> Iterator[object]:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == PROFILE_KEY:
                yield value
            else:
                yield from _profile_lists(value)
    elif isinstance(node, list):
        for item in node:
            yield from _profile_lists(item)


def _read_profiles(entries: object) -> dict[str, tuple[str, str]]:
    profiles: dict[str, tuple[str, str]] = {}
    if not isinstance(entries, list):
        return profiles
    for entry in entries:
        if not isinstance(entry, list) or len(entry) < 2:
            continue
        address, profile = entry[0], entry[1]
        if not isinstance(address, str) or not isinstance(profile, dict):
            continue
        node_ip = profile.get("node_ip")
        if not isinstance(node_ip, dict):
            continue
        ip = node_ip.get("Ip")
        name = profile.get("name")
        if not isinstance(ip, str) or not isinstance(name, str):
            continue
        profiles[address] = (ip, name)
        logger.debug("Found validator: %s, IP: %s, Name: %s", address, ip, name)
    return profiles


def extract_validator_profiles(data: object) -> dict[str, tuple[str, str]] | None:
    """Map validator address to (IP, name) from a translated ABCI state.

    Returns None when the state has no validator profile list at all.
    """
    found = False
    profiles: dict[str, tuple[str, str]] = {}
    for entries in _profile_lists(data):
        found = True
        profiles.update(_read_profiles(entries))
    return profiles if found else None


class ValidatorDirectory:
    """Known validator IPs, names and stakes, safe to share between threads."""

    def __init__(
        self,
        ports: Iterable[int] = DEFAULT_PORTS,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self.ports = tuple(ports)
        self.connect_timeout = connect_timeout
        self.current_file: str | None = None
        self._lock = threading.RLock()
        self._ips: dict[str, str] = {}
        self._monikers: dict[str, str] = {}
        self._stakes: dict[str, float] = {}

    @property
    def ips(self) -> dict[str, str]:
        with self._lock:
            return dict(self._ips)

    @property
    def monikers(self) -> dict[str, str]:
        with self._lock:
            return dict(self._monikers)

    @property
    def stakes(self) -> dict[str, float]:
        with self._lock:
            return dict(self._stakes)

    def update_from_profiles(self, profiles: Mapping[str, tuple[str, str]]) -> None:
        """Store the IP and name of every validator in ``profiles``."""
        with self._lock:
            for address, (ip, name) in profiles.items():
                self._ips[address] = ip
                self._monikers[address] = name

    def _translate(self, state_file: str, node_binary: str, chain: str) -> object:
        with tempfile.TemporaryDirectory() as workdir:
            output = os.path.join(workdir, "latest_state.json")
            command = [
                node_binary,
                "--chain",
                chain.lower().title(),
                "translate-abci-state",
                state_file,
                output,
            ]
            try:
                result = subprocess.run(
                    command, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, check=False
                )
            except OSError as exc:
                logger.error("Error translating ABCI state: %s", exc)
                raise RuntimeError(f"error translating ABCI state: {exc}") from exc
            if result.returncode != 0:
                stderr = result.stderr.decode("utf-8", errors="replace")
                logger.error(
                    "Error translating ABCI state: exit status %d, stderr: %s",
                    result.returncode,
                    stderr,
                )
                raise RuntimeError(
                    f"error translating ABCI state: exit status {result.returncode}"
                )
            with open(output, "rb") as handle:
                return json.load(handle)

    def process_latest_state(self, state_dir: str, node_binary: str, chain: str) -> None:
        """Translate the newest ABCI state file with the node binary and learn its validators.

        Raises OSError when the directory or output cannot be read, RuntimeError
        when translation fails and ValueError when the output is not JSON.
        """
        try:
            latest = get_latest_file(state_dir)
        except OSError as exc:
            logger.error("Error finding latest state file in dir %s: %s", state_dir, exc)
            raise
        if latest is None:
            return
        logger.info("Processing state file: %s", latest)
        if latest == self.current_file:
            return

        profiles = extract_validator_profiles(self._translate(latest, node_binary, chain))
        if profiles is None:
            logger.warning("%s field not found in state file", PROFILE_KEY)
            return
        self.update_from_profiles(profiles)
        with self._lock:
            logger.info(
                "Updated validator maps - IPs: %d, Monikers: %d",
                len(self._ips),
                len(self._monikers),
            )
        self.current_file = latest

    def update_stake(self, validator: str, stake: float) -> None:
        with self._lock:
            self._stakes[validator] = stake

    def top_validators(self, stakes: Mapping[str, float], n: int) -> list[str]:
        """Return up to ``n`` addresses with a known IP, largest stake first."""
        with self._lock:
            ranked = [(addr, stake) for addr, stake in stakes.items() if self._ips.get(addr)]
        ranked.sort(key=lambda item: item[1], reverse=True)
        return [addr for addr, _ in ranked[: max(n, 0)]]

    def measure_rtt(self, state: MetricsState, validator: str) -> float | None:
        """Time a TCP connect to the validator's first open port, in microseconds.

        Returns the latency recorded in ``state``, or None when nothing was recorded.
        """
        with self._lock:
            ip = self._ips.get(validator, "")
            moniker = self._monikers.get(validator, "")
        if not ip:
            return None

        latency = 0.0
        for port in self.ports:
            start = time.perf_counter()
            try:
                connection = socket.create_connection((ip, port), timeout=self.connect_timeout)
            except OSError:
                continue
            latency = float(int((time.perf_counter() - start) * 1_000_000))
            connection.close()
            break

        if latency > 0 and validator and moniker:
            state.set_validator_rtt(validator, moniker, ip, latency)
            return latency
        return None


def _monitor_rtt(directory: ValidatorDirectory, state: MetricsState, stop: threading.Event) -> None:
    while not stop.wait(RTT_INTERVAL):
        for validator in directory.top_validators(state.get_validator_stakes(), TOP_VALIDATORS):
            threading.Thread(
                target=directory.measure_rtt, args=(state, validator), daemon=True
            ).start()


def _attempt(
    directory: ValidatorDirectory, state_dir: str, config: Config, errors: queue.Queue
) -> None:
    try:
        directory.process_latest_state(state_dir, config.node_binary, config.chain)
    except (OSError, RuntimeError, ValueError) as exc:
        logger.error("State processing failed: %s", exc)
        errors.put(exc)


def _run(
    directory: ValidatorDirectory,
    config: Config,
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
) -> None:
    state_dir = os.path.join(config.node_home, STATE_SUBDIR)
    if not os.path.exists(state_dir):
        logger.error("State directory does not exist: %s", state_dir)
        errors.put(RuntimeError(f"state directory does not exist: {state_dir}"))
        return

    threading.Thread(
        target=_monitor_rtt, args=(directory, state, stop), name="validator-rtt", daemon=True
    ).start()

    _attempt(directory, state_dir, config, errors)
    last_attempt = time.monotonic()
    while not stop.wait(CHECK_INTERVAL):
        if time.monotonic() - last_attempt < RETRY_AFTER:
            continue
        _attempt(directory, state_dir, config, errors)
        last_attempt = time.monotonic()


def start_validator_ip_monitor(
    config: Config,
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
) -> threading.Thread:
    """Learn validator IPs hourly and measure round-trip times until ``stop`` is set."""
    thread = threading.Thread(
        target=_run,
        args=(ValidatorDirectory(), config, state, stop, errors),
        name="validator-ip-monitor",
        daemon=True,
    )
    thread.start()
    return thread