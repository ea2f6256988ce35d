"""Metric instruments, shared metric state and their exposition over Prometheus and OTLP."""