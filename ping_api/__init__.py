"""ICMP Watch service: probe reconciliation, windowed aggregation and live SSE updates."""

__version__ = "0.1.0"
