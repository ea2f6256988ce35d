"""Validator stakes and statuses from the public info API."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any

import requests

from .. import logger
from ..config import Config
from ..metrics.state import MetricsState

MAINNET_API_URL = "https://api.hyperliquid.xyz/info"
TESTNET_API_URL = "https://api.hyperliquid-testnet.xyz/info"
REQUEST_PAYLOAD = {"type": "validatorSummaries"}
REQUEST_TIMEOUT = 10.0
UPDATE_INTERVAL = 300.0


def _field(data: dict, key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if kind is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise ValueError(f"field {key!r}: expected {kind.__name__}, got {type(value).__name__}")
    return kind(value)


@dataclass(frozen=True)
class ValidatorSummary:
    """One validator as reported by the info API."""

    validator: str = ""
    signer: str = ""
    name: str = ""
    description: str = ""
    n_recent_blocks: int = 0
    stake: float = 0.0
    is_jailed: bool = False
    unjailable_after: int = 0
    is_active: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> ValidatorSummary:
        """Build a summary from its JSON object; raise ValueError on wrong types."""
        if not isinstance(data, dict):
            raise ValueError("validator summary must be a JSON object")
        return cls(
            validator=_field(data, "validator", str, ""),
            signer=_field(data, "signer", str, ""),
            name=_field(data, "name", str, ""),
            description=_field(data, "description", str, ""),
            n_recent_blocks=_field(data, "nRecentBlocks", int, 0),
            stake=_field(data, "stake", float, 0.0),
            is_jailed=_field(data, "isJailed", bool, False),
            unjailable_after=_field(data, "unjailableAfter", int, 0),
            is_active=_field(data, "isActive", bool, False),
        )


def api_url(chain: str) -> str:
    """Return the info API address for ``chain``; anything but mainnet is testnet."""
    return MAINNET_API_URL if chain == "mainnet" else TESTNET_API_URL


def apply_validator_summaries(
    state: MetricsState, summaries: list[ValidatorSummary]
) -> dict[str, float]:
    """Record per-validator and aggregate metrics; return the stake totals."""
    totals = dict.fromkeys(("total", "jailed", "not_jailed", "active", "inactive"), 0.0)
    for summary in summaries:
        state.set_validator_stake(summary.validator, summary.signer, summary.name, summary.stake)
        totals["jailed" if summary.is_jailed else "not_jailed"] += summary.stake
        state.set_validator_jailed_status(
            summary.validator, summary.signer, summary.name, 1.0 if summary.is_jailed else 0.0
        )
        totals["active" if summary.is_active else "inactive"] += summary.stake
        state.set_validator_active_status(
            summary.validator, summary.signer, summary.name, 1.0 if summary.is_active else 0.0
        )
        totals["total"] += summary.stake

    state.set_total_stake(totals["total"])
    state.set_jailed_stake(totals["jailed"])
    state.set_not_jailed_stake(totals["not_jailed"])
    state.set_active_stake(totals["active"])
    state.set_inactive_stake(totals["inactive"])
    state.set_validator_count(len(summaries))

    logger.info("Updated validator metrics: Total validators: %d", len(summaries))
    logger.info(
        "Total stake: %f, Jailed stake: %f, Not jailed stake: %f, Active stake: %f, Inactive stake: %f",
        totals["total"],
        totals["jailed"],
        totals["not_jailed"],
        totals["active"],
        totals["inactive"],
    )
    return totals


def update_validator_metrics(state: MetricsState, chain: str) -> dict[str, float]:
    """Fetch the validator summaries and record them.

    Raises requests.RequestException on transport failures and ValueError
    when the response is not a list of summaries.
    """
    logger.debug("Making request to validator API")
    response = requests.post(api_url(chain), json=REQUEST_PAYLOAD, timeout=REQUEST_TIMEOUT)
    try:
        body = response.json()
    except ValueError as exc:
        raise ValueError(f"error unmarshaling response: {exc}") from exc
    if body is None:
        body = []
    if not isinstance(body, list):
        raise ValueError("error unmarshaling response: not a JSON array")
    summaries = [ValidatorSummary.from_dict(item) for item in body]
    return apply_validator_summaries(state, summaries)


def _run(config: Config, state: MetricsState, stop: threading.Event, errors: queue.Queue) -> None:
    while not stop.wait(UPDATE_INTERVAL):
        try:
            update_validator_metrics(state, config.chain)
        except (requests.RequestException, ValueError) as exc:
            logger.error("Validator monitor error: %s", exc)
            errors.put(exc)


def start_validator_monitor(
    config: Config,
    state: MetricsState,
    stop: threading.Event,
    errors: queue.Queue,
) -> threading.Thread:
    """Refresh validator metrics every five minutes until ``stop`` is set."""
    thread = threading.Thread(
        target=_run,
        args=(config, state, stop, errors),
        name="validator-api-monitor",
        daemon=True,
    )
    thread.start()
    return thread