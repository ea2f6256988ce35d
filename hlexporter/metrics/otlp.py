"""Periodic OTLP/HTTP export of a meter's data, JSON-encoded."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable, Mapping

import requests

from .. import logger
from .instruments import Counter, Histogram, Meter, Sample

AGGREGATION_TEMPORALITY_CUMULATIVE = 2


def sanitize_endpoint(endpoint: str) -> str:
    """Strip a leading ``https://`` or ``http://`` from ``endpoint``."""
    if len(endpoint) > 8:
        if endpoint.startswith("https://"):
            return endpoint[8:]
        if endpoint.startswith("http://"):
            return endpoint[7:]
    return endpoint


def _any_value(value: object) -> dict[str, object]:
    if isinstance(value, bool):
        return {"boolValue": value}
    if isinstance(value, int):
        return {"intValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    return {"stringValue": str(value)}


def _attributes(pairs: Iterable[tuple[str, object]]) -> list[dict[str, object]]:
    return [{"key": key, "value": _any_value(value)} for key, value in pairs]


def _number_point(sample: Sample, now: str) -> dict[str, object]:
    point: dict[str, object] = {"attributes": _attributes(sample.labels), "timeUnixNano": now}
    if isinstance(sample.value, int) and not isinstance(sample.value, bool):
        point["asInt"] = str(sample.value)
    else:
        point["asDouble"] = float(sample.value)
    return point


def _histogram_point(instrument: Histogram, sample: Sample, now: str) -> dict[str, object]:
    return {
        "attributes": _attributes(sample.labels),
        "timeUnixNano": now,
        "count": str(sample.count),
        "sum": float(sample.value),
        "bucketCounts": [str(c) for c in sample.bucket_counts],
        "explicitBounds": list(instrument.buckets),
    }


def build_payload(meter: Meter, resource: Mapping[str, object] | None = None) -> dict[str, object]:
    """Build an OTLP metrics export request, in its JSON form, from ``meter``."""
    now = str(time.time_ns())
    metrics: list[dict[str, object]] = []
    for instrument, samples in meter.collect().items():
        if not samples:
            continue
        metric: dict[str, object] = {
            "name": instrument.name,
            "description": instrument.description,
            "unit": instrument.unit,
        }
        if isinstance(instrument, Histogram):
            metric["histogram"] = {
                "dataPoints": [_histogram_point(instrument, s, now) for s in samples],
                "aggregationTemporality": AGGREGATION_TEMPORALITY_CUMULATIVE,
            }
        elif isinstance(instrument, Counter):
            metric["sum"] = {
                "dataPoints": [_number_point(s, now) for s in samples],
                "aggregationTemporality": AGGREGATION_TEMPORALITY_CUMULATIVE,
                "isMonotonic": True,
            }
        else:
            metric["gauge"] = {"dataPoints": [_number_point(s, now) for s in samples]}
        metrics.append(metric)
    return {
        "resourceMetrics": [
            {
                "resource": {"attributes": _attributes((resource or {}).items())},
                "scopeMetrics": [
                    {
                        "scope": {"name": meter.name, "version": meter.version},
                        "metrics": metrics,
                    }
                ],
            }
        ]
    }


class OTLPExporter:
    """Pushes the meter's data to an OTLP/HTTP collector at a fixed interval."""

    def __init__(
        self,
        meter: Meter,
        resource: Mapping[str, object] | None = None,
        endpoint: str = "",
        insecure: bool = False,
        interval: float = 5.0,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        host = sanitize_endpoint(endpoint).rstrip("/")
        if not host:
            raise ValueError("OTLP endpoint must not be empty")
        scheme = "http" if insecure else "https"
        self.url = f"{scheme}://{host}/v1/metrics"
        self.meter = meter
        self.resource = dict(resource or {})
        self.interval = interval
        self.timeout = timeout
        self._session = session or requests.Session()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def export(self) -> None:
        """Send one export request; raise requests.RequestException on failure."""
        response = self._session.post(
            self.url,
            json=build_payload(self.meter, self.resource),
            timeout=self.timeout,
        )
        response.raise_for_status()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.export()
            except requests.RequestException as exc:
                logger.error("OTLP export failed: %s", exc)

    def start(self) -> None:
        """Begin exporting in a background thread."""
        if self._thread is not None:
            raise RuntimeError("OTLP exporter already started")
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="otlp-exporter", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background export thread."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None