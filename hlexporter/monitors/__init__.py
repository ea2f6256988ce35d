"""Monitors that follow node files, remote APIs and the node binary and update the metric state."""