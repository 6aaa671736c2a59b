"""Collect CPU, disk, host, memory, network and OS feature statistics as in-memory metrics."""

__version__ = "0.1.0"