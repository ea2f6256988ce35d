# hlexporter

A metrics library for Hyperliquid nodes. Its monitors follow the files a node
writes under its home directory (block times, replica commands, EVM blocks and
transactions, status logs, ABCI state snapshots), query the public validator
API, run the node binary for its version and measure TCP round-trip times to
the largest validators. The results are kept in a shared `MetricsState` and
can be served as Prometheus text or pushed to an OTLP/HTTP collector.

## Installation

```
pip install .
```

## Usage

You wire the pieces together from Python. `hlexporter.exporter.start` starts
every monitor in a background thread, then logs their errors and blocks until
the given `threading.Event` is set.

```python
import signal
import threading

from hlexporter import exporter, logger
from hlexporter.config import Flags, load_config
from hlexporter.metrics.exposition import PrometheusServer
from hlexporter.metrics.otlp import OTLPExporter
from hlexporter.metrics.state import MetricsConfig, MetricsState
from hlexporter.monitors.validator_status import get_validator_status

logger.set_log_level("info")

stop = threading.Event()
signal.signal(signal.SIGINT, lambda *_: stop.set())
signal.signal(signal.SIGTERM, lambda *_: stop.set())

config = load_config(Flags(chain="mainnet", enable_evm=True))
address, is_validator = get_validator_status(config.node_home)

state = MetricsState()
state.initialize_node_identity(
    MetricsConfig(alias="my-node", chain="mainnet",
                  validator_address=address, is_validator=is_validator)
)  # looks up the public IP unless server_ip= is given

resource = {"instance": "my-node", "job": "hyperliquid-exporter/mainnet"}

prometheus = PrometheusServer(state.meter, resource, port=8086)
prometheus.start()

otlp = OTLPExporter(state.meter, resource, endpoint="collector.example.com")
otlp.start()  # pushes to https://collector.example.com/v1/metrics every 5 s

try:
    exporter.start(config, state, stop)
finally:
    otlp.stop()
    prometheus.stop()
```

`PrometheusServer` answers `GET /metrics`; `render_prometheus(meter, resource)`
and `build_payload(meter, resource)` produce the same data as a string or as an
OTLP JSON request body. `sanitize_endpoint` strips a leading `http://` or
`https://` from a collector address; pass `insecure=True` to `OTLPExporter` to
use plain HTTP.

## Configuration from the environment

`load_config(flags)` reads the process environment and a `.env` file in the
working directory; non-empty `Flags` values take precedence.

- `NODE_HOME` – node home directory, default `$HOME/hl`
- `BINARY_HOME` – directory holding the node binary, default `$HOME`
- `NODE_BINARY` – node binary, default `$BINARY_HOME/hl-node`

A mapping passed as `environ` is used instead of the process environment and
`.env`.

## Monitors

All are started by `exporter.start`; each also has its own `start_*` function
in `hlexporter.monitors`.

- block (`data/node_fast_block_times`): block height, latest block time, apply
  duration, block time histogram
- proposal (`data/replica_cmds`): blocks per proposer
- evm (`data/dhs/EvmBlocks/hourly`, `data/dhs/EvmTxs/hourly`): starts after a
  60 second delay and does nothing if the node is a validator
- validator_status (`data/node_logs/status/hourly`): whether this node is a
  validator, every 30 seconds
- validator_api: stakes, jail and active status from the info API, every five
  minutes
- validator_ip (`data/periodic_abci_states`): runs the node binary's
  `translate-abci-state` hourly to learn validator IPs, and measures TCP
  connect time on ports 4000–4010 to the 50 largest validators every 5 seconds
- version: copies the node binary to the temporary directory and runs it with
  `--version` every minute
- update_checker: downloads the latest release binary to the temporary
  directory when it changes and compares its commit, every five minutes

Log-following monitors start at the end of the newest file and read later files
from their start.

## Exported metrics

- `hl_block_height`, `hl_latest_block_time`, `hl_apply_duration`
- `hl_block_time_milliseconds`, `hl_apply_duration_milliseconds` (histograms)
- `hl_proposer_count_total` (per validator)
- `hl_validator_stake`, `hl_validator_jailed_status`, `hl_validator_active_status`
- `hl_total_stake`, `hl_jailed_stake`, `hl_not_jailed_stake`,
  `hl_active_stake`, `hl_inactive_stake`, `hl_validator_count`
- `hl_validator_rtt` (TCP connect time, microseconds)
- `hl_software_version`, `hl_software_up_to_date`
- `hl_evm_block_height`, `hl_evm_transactions_total`

## What the package does not do

- There is no command-line program: nothing is installed to run, and options
  such as log level, chain or alias are set from Python as shown above.
- There is no single call that sets up the metrics pipeline: you create the
  `MetricsState`, choose the resource labels, and start `PrometheusServer`
  and/or `OTLPExporter` yourself.

## Tests

```
pip install ".[test]"
pytest
```