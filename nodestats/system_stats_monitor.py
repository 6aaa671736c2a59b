"""The monitor that periodically collects system statistics into metrics."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Optional

from nodestats.config import ConfigError, SystemStatsConfig
from nodestats.cpu_collector import CPUCollector
from nodestats.disk_collector import DiskCollector
from nodestats.host_collector import HostCollector
from nodestats.memory_collector import MemoryCollector
from nodestats.net_collector import NetCollector
from nodestats.osfeature_collector import OSFeatureCollector
from nodestats.tomb import Tomb
from nodestats.types import Monitor, ProblemDaemonHandler

_log = logging.getLogger(__name__)

SYSTEM_STATS_MONITOR_NAME = "system-stats-monitor"


class SystemStatsMonitor(Monitor):
    """Collects CPU, disk, host, memory, OS feature and network statistics."""

    def __init__(self, config_path: str) -> None:
        self.config_path = config_path
        self._tomb = Tomb()
        self._thread: Optional[threading.Thread] = None

        with open(config_path, encoding="utf-8") as handle:
            text = handle.read()
        try:
            data = json.loads(text)
        except ValueError as err:
            raise ConfigError(
                f"Failed to unmarshal configuration file {config_path!r}: {err}"
            ) from err

        self.config = SystemStatsConfig.from_dict(data)
        self.config.apply_configuration()
        self.config.validate()

        config = self.config
        self.cpu_collector: Optional[CPUCollector] = None
        self.disk_collector: Optional[DiskCollector] = None
        self.host_collector: Optional[HostCollector] = None
        self.memory_collector: Optional[MemoryCollector] = None
        self.os_feature_collector: Optional[OSFeatureCollector] = None
        self.net_collector: Optional[NetCollector] = None

        if config.cpu_config.metrics_configs:
            self.cpu_collector = CPUCollector(config.cpu_config, config.proc_path)
        if config.disk_config.metrics_configs:
            self.disk_collector = DiskCollector(config.disk_config)
        if config.host_config.metrics_configs:
            self.host_collector = HostCollector(config.host_config)
        if config.memory_config.metrics_configs:
            self.memory_collector = MemoryCollector(config.memory_config)
        if config.os_feature_config.metrics_configs:
            # A relative known modules path is taken relative to this config file.
            os_config = config.os_feature_config
            if not os.path.isabs(os_config.known_modules_config_path):
                os_config.known_modules_config_path = os.path.join(
                    os.path.dirname(config_path), os_config.known_modules_config_path
                )
            self.os_feature_collector = OSFeatureCollector(os_config, config.proc_path)
        if config.net_config.metrics_configs:
            self.net_collector = NetCollector(config.net_config, config.proc_path)

    def start(self) -> None:
        """Start collecting in a background thread; this monitor reports no problems."""
        _log.info("Start system stats monitor %s", self.config_path)
        if self._thread is not None:
            raise RuntimeError("system stats monitor already started")
        self._thread = threading.Thread(
            target=self._monitor_loop, name=SYSTEM_STATS_MONITOR_NAME, daemon=True
        )
        self._thread.start()
        return None

    def _collect_all(self) -> None:
        for collector in (
            self.cpu_collector,
            self.disk_collector,
            self.host_collector,
            self.memory_collector,
            self.os_feature_collector,
            self.net_collector,
        ):
            if collector is not None:
                collector.collect()

    def _monitor_loop(self) -> None:
        stopping = self._tomb.stopping()
        interval = self.config.invoke_interval.total_seconds()
        next_tick = time.monotonic() + interval
        try:
            if stopping.is_set():
                _log.info("System stats monitor stopped: %s", self.config_path)
                return
            self._collect_all()
            while True:
                if stopping.wait(max(0.0, next_tick - time.monotonic())):
                    _log.info("System stats monitor stopped: %s", self.config_path)
                    return
                self._collect_all()
                next_tick += interval
                now = time.monotonic()
                # Ticks missed during a slow collection are dropped.
                while next_tick < now:
                    next_tick += interval
        except Exception:
            _log.exception("System stats monitor failed: %s", self.config_path)
        finally:
            self._tomb.done()

    def stop(self) -> None:
        """Stop collecting and wait for the background thread to finish."""
        _log.info("Stop system stats monitor %s", self.config_path)
        if self._thread is None:
            raise RuntimeError("system stats monitor was not started")
        self._tomb.stop()
        self._thread.join()


HANDLER = ProblemDaemonHandler(
    create_problem_daemon_or_die=SystemStatsMonitor,
    cmd_option_description="Set to config file paths.",
)