"""Prometheus text exposition of a meter's data and an HTTP server for it."""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Mapping
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from itertools import accumulate

from .. import logger
from .instruments import Counter, Histogram, Meter

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _format_labels(pairs: Iterable[tuple[str, str]]) -> str:
    rendered = ",".join(f'{key}="{_escape_label(value)}"' for key, value in pairs)
    return f"{{{rendered}}}" if rendered else ""


def _format_value(value: float | int) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _resource_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_prometheus(meter: Meter, resource: Mapping[str, object] | None = None) -> str:
    """Render every instrument of ``meter`` that has data in Prometheus text format."""
    lines: list[str] = []
    if resource:
        labels = sorted((k, _resource_value(v)) for k, v in resource.items())
        lines += [
            "# HELP target_info Target metadata",
            "# TYPE target_info gauge",
            f"target_info{_format_labels(labels)} 1",
        ]
    for instrument, samples in meter.collect().items():
        if not samples:
            continue
        name = instrument.name
        if isinstance(instrument, Histogram):
            kind = "histogram"
        elif isinstance(instrument, Counter):
            kind = "counter"
        else:
            kind = "gauge"
        lines.append(f"# HELP {name} {_escape_help(instrument.description)}")
        lines.append(f"# TYPE {name} {kind}")
        for sample in samples:
            if isinstance(instrument, Histogram):
                cumulative = list(accumulate(sample.bucket_counts))
                for bound, count in zip(instrument.buckets, cumulative):
                    labels = _format_labels((*sample.labels, ("le", _format_value(bound))))
                    lines.append(f"{name}_bucket{labels} {count}")
                labels = _format_labels((*sample.labels, ("le", "+Inf")))
                lines.append(f"{name}_bucket{labels} {sample.count}")
                plain = _format_labels(sample.labels)
                lines.append(f"{name}_sum{plain} {_format_value(sample.value)}")
                lines.append(f"{name}_count{plain} {sample.count}")
            else:
                lines.append(f"{name}{_format_labels(sample.labels)} {_format_value(sample.value)}")
    return "\n".join(lines) + "\n" if lines else ""


class PrometheusServer:
    """Serves ``/metrics`` over HTTP from a background thread."""

    def __init__(
        self,
        meter: Meter,
        resource: Mapping[str, object] | None = None,
        port: int = 8086,
        host: str = "",
    ) -> None:
        self.meter = meter
        self.resource = dict(resource or {})
        self.host = host
        self._port = port
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        """The bound port once started, else the requested one."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._port

    def _handler(self) -> type[BaseHTTPRequestHandler]:
        owner = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                if self.path.split("?", 1)[0] != "/metrics":
                    self.send_error(404)
                    return
                body = render_prometheus(owner.meter, owner.resource).encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", CONTENT_TYPE)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: object) -> None:
                logger.debug("Prometheus request: " + format, *args)

        return Handler

    def start(self) -> None:
        """Bind the port and start serving; raise OSError if the port cannot be bound."""
        if self._server is not None:
            raise RuntimeError("Prometheus server already started")
        server = ThreadingHTTPServer((self.host, self._port), self._handler())
        server.daemon_threads = True
        self._server = server
        self._thread = threading.Thread(
            target=server.serve_forever, name="prometheus-server", daemon=True
        )
        self._thread.start()
        logger.info("Starting Prometheus metrics server on port %d", self.port)

    def stop(self) -> None:
        """Stop serving and release the port."""
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join()
            self._thread = None