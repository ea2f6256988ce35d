import json

import pytest
import requests
import responses

from hlexporter.metrics.instruments import BLOCK_TIME_BUCKETS
from hlexporter.metrics.otlp import OTLPExporter, build_payload, sanitize_endpoint
from hlexporter.metrics.state import MetricsState


@pytest.mark.parametrize(
    "endpoint, expected",
    [
        ("https://otel.example.com", "otel.example.com"),
        ("http://otel.example.com", "otel.example.com"),
        ("otel.example.com", "otel.example.com"),
        ("http://a", "http://a"),
        ("", ""),
    ],
)
def test_sanitize_endpoint(endpoint, expected):
    assert sanitize_endpoint(endpoint) == expected


def metrics_by_name(payload):
    [resource_metrics] = payload["resourceMetrics"]
    [scope_metrics] = resource_metrics["scopeMetrics"]
    return {m["name"]: m for m in scope_metrics["metrics"]}


def test_gauge_points():
    state = MetricsState()
    state.set_block_height(42)
    state.set_total_stake(3.5)
    metrics = metrics_by_name(build_payload(state.meter))
    assert metrics["hl_block_height"]["gauge"]["dataPoints"][0]["asInt"] == "42"
    assert metrics["hl_total_stake"]["gauge"]["dataPoints"][0]["asDouble"] == 3.5
    assert "hl_jailed_stake" not in metrics


def test_counter_is_monotonic_cumulative_sum():
    state = MetricsState()
    state.increment_proposer_counter("0xaaa")
    metric = metrics_by_name(build_payload(state.meter))["hl_proposer_count_total"]
    assert metric["sum"]["isMonotonic"] is True
    assert metric["sum"]["aggregationTemporality"] == 2
    [point] = metric["sum"]["dataPoints"]
    assert point["asInt"] == "1"
    assert point["attributes"] == [{"key": "validator", "value": {"stringValue": "0xaaa"}}]


def test_histogram_points():
    state = MetricsState()
    state.record_block_time(150)
    state.record_block_time(400)
    metric = metrics_by_name(build_payload(state.meter))["hl_block_time_milliseconds"]
    assert metric["unit"] == "ms"
    [point] = metric["histogram"]["dataPoints"]
    assert point["explicitBounds"] == [float(b) for b in BLOCK_TIME_BUCKETS]
    assert len(point["bucketCounts"]) == len(point["explicitBounds"]) + 1
    assert sum(int(c) for c in point["bucketCounts"]) == int(point["count"]) == 2


def test_resource_and_scope():
    state = MetricsState()
    payload = build_payload(state.meter, {"instance": "node-a", "is_validator": False})
    [resource_metrics] = payload["resourceMetrics"]
    assert resource_metrics["resource"]["attributes"] == [
        {"key": "instance", "value": {"stringValue": "node-a"}},
        {"key": "is_validator", "value": {"boolValue": False}},
    ]
    assert resource_metrics["scopeMetrics"][0]["scope"] == {
        "name": "hyperliquid-exporter",
        "version": "0.1.0",
    }


def test_export_posts_payload():
    state = MetricsState()
    state.set_block_height(7)
    exporter = OTLPExporter(state.meter, {"instance": "node-a"}, "https://otel.example.com")
    assert exporter.url == "https://otel.example.com/v1/metrics"
    with responses.RequestsMock() as mock:
        mock.add(responses.POST, "https://otel.example.com/v1/metrics", status=200)
        exporter.export()
        assert len(mock.calls) == 1
        request = mock.calls[0].request
        body = json.loads(request.body)
    assert request.url == exporter.url
    assert metrics_by_name(body)["hl_block_height"]["gauge"]["dataPoints"][0]["asInt"] == "7"
    [resource_metrics] = body["resourceMetrics"]
    assert resource_metrics["resource"]["attributes"] == [
        {"key": "instance", "value": {"stringValue": "node-a"}}
    ]


def test_insecure_uses_plain_http():
    state = MetricsState()
    exporter = OTLPExporter(state.meter, endpoint="otel.example.com:4318", insecure=True)
    assert exporter.url == "http://otel.example.com:4318/v1/metrics"


def test_export_error_status_raises():
    state = MetricsState()
    exporter = OTLPExporter(state.meter, endpoint="otel.example.com")
    with responses.RequestsMock() as mock:
        mock.add(responses.POST, "https://otel.example.com/v1/metrics", status=503)
        with pytest.raises(requests.HTTPError):
            exporter.export()


def test_empty_endpoint_rejected():
    with pytest.raises(ValueError):
        OTLPExporter(MetricsState().meter, endpoint="")