"""Collects host uptime, labelled with kernel and OS versions."""

from __future__ import annotations

import logging
import platform
from typing import Optional

from nodestats.config import HostStatsConfig, MetricConfig
from nodestats.helpers import get_os_version, get_uptime_duration
from nodestats.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric

_log = logging.getLogger(__name__)


class HostCollector:
    """Records the operating system uptime."""

    def __init__(
        self,
        config: HostStatsConfig,
        kernel_version: Optional[str] = None,
        os_version: Optional[str] = None,
    ) -> None:
        if kernel_version is None:
            kernel_version = platform.release()
            if not kernel_version:
                raise RuntimeError("Failed to retrieve kernel version")
        if os_version is None:
            os_version = get_os_version()
        self.tags: dict[str, str] = {
            "kernel_version": kernel_version,
            "os_version": os_version,
        }

        self.uptime: Optional[Int64Metric] = None
        display_name = config.metrics_configs.get(
            MetricID.HOST_UPTIME.value, MetricConfig()
        ).display_name
        if display_name:
            self.uptime = new_int64_metric(
                MetricID.HOST_UPTIME,
                display_name,
                "The uptime of the operating system",
                "second",
                Aggregation.LAST_VALUE,
                ["kernel_version", "os_version"],
            )

    def collect(self) -> None:
        """Record the current uptime in seconds."""
        try:
            uptime = get_uptime_duration()
        except OSError as err:
            _log.error("Failed to retrieve uptime of the host: %s", err)
            return
        if self.uptime is not None:
            self.uptime.record(self.tags, int(uptime.total_seconds()))