"""Metrics exporter library for Hyperliquid nodes: configuration, logging, monitors and metrics."""

__version__ = "0.1.0"