"""Collects per-interface network statistics from the kernel's net/dev file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Optional, Union

from nodestats.config import ConfigError, MetricConfig, NetStatsConfig
from nodestats.labels import INTERFACE_NAME_LABEL
from nodestats.metrics import Aggregation, MetricID, new_int64_metric

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetDevLine:
    """Counters of one network interface."""

    name: str
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errors: int = 0
    rx_dropped: int = 0
    rx_fifo: int = 0
    rx_frame: int = 0
    rx_compressed: int = 0
    rx_multicast: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errors: int = 0
    tx_dropped: int = 0
    tx_fifo: int = 0
    tx_collisions: int = 0
    tx_carrier: int = 0
    tx_compressed: int = 0


_COUNTER_FIELDS = tuple(f.name for f in fields(NetDevLine) if f.name != "name")


def _parse_line(line: str) -> NetDevLine:
    idx = line.rfind(":")
    if idx < 0:
        raise ValueError(f"invalid net/dev line, missing colon: {line!r}")
    name = line[:idx].strip()
    values = line[idx + 1 :].split()
    if len(values) != len(_COUNTER_FIELDS):
        raise ValueError(f"invalid net/dev line, missing fields: {line!r}")
    try:
        counters = [int(value) for value in values]
    except ValueError:
        raise ValueError(f"invalid counter in net/dev line: {line!r}") from None
    if any(value < 0 for value in counters):
        raise ValueError(f"negative counter in net/dev line: {line!r}")
    return NetDevLine(name, *counters)


def parse_net_dev(text: str) -> dict[str, NetDevLine]:
    """Parse a net/dev file into counters by interface name.

    The two heading lines are skipped. Raises ValueError on a malformed line.
    """
    result: dict[str, NetDevLine] = {}
    for line in text.splitlines()[2:]:
        if not line.strip():
            continue
        stat = _parse_line(line)
        result[stat.name] = stat
    return result


NewInt64MetricFn = Callable[[MetricID, str, str, str, Aggregation, list[str]], Any]


@dataclass
class _IfaceStatCollector:
    metric: Any
    exporter: Callable[[NetDevLine], int]


class IfaceStatRecorder:
    """Records several metrics from one interface's counters with the same tags."""

    def __init__(self, new_int64_metric: NewInt64MetricFn) -> None:
        self._new_int64_metric = new_int64_metric
        self.collectors: dict[MetricID, _IfaceStatCollector] = {}

    def register(
        self,
        metric_id: MetricID,
        view_name: str,
        description: str,
        unit: str,
        aggregation: Union[Aggregation, str],
        tag_names: list[str],
        exporter: Callable[[NetDevLine], int],
    ) -> None:
        """Create a metric and remember how to extract its value. Raises ValueError."""
        if metric_id in self.collectors:
            raise ValueError(f"metric {str(metric_id)!r} already registered")
        metric = self._new_int64_metric(
            metric_id, view_name, description, unit, aggregation, tag_names
        )
        self.collectors[metric_id] = _IfaceStatCollector(metric, exporter)

    def record_with_same_tags(self, stat: NetDevLine, tags: dict[str, str]) -> None:
        """Record every registered metric for ``stat`` with ``tags``."""
        for metric_id, collector in self.collectors.items():
            if collector.metric is None:
                continue
            measurement = collector.exporter(stat)
            collector.metric.record(tags, measurement)
            _log.debug("Metric %s record measurement %d with tags %s", metric_id, measurement, tags)


_METRICS: tuple[tuple[MetricID, str, str, str], ...] = (
    (MetricID.NET_DEV_RX_BYTES, "Cumulative count of bytes received.", "Byte", "rx_bytes"),
    (MetricID.NET_DEV_RX_PACKETS, "Cumulative count of packets received.", "1", "rx_packets"),
    (
        MetricID.NET_DEV_RX_ERRORS,
        "Cumulative count of receive errors encountered.",
        "1",
        "rx_errors",
    ),
    (
        MetricID.NET_DEV_RX_DROPPED,
        "Cumulative count of packets dropped while receiving.",
        "1",
        "rx_dropped",
    ),
    (MetricID.NET_DEV_RX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "rx_fifo"),
    (MetricID.NET_DEV_RX_FRAME, "Cumulative count of packet framing errors.", "1", "rx_frame"),
    (
        MetricID.NET_DEV_RX_COMPRESSED,
        "Cumulative count of compressed packets received by the device driver.",
        "1",
        "rx_compressed",
    ),
    (
        MetricID.NET_DEV_RX_MULTICAST,
        "Cumulative count of multicast frames received by the device driver.",
        "1",
        "rx_multicast",
    ),
    (MetricID.NET_DEV_TX_BYTES, "Cumulative count of bytes transmitted.", "Byte", "tx_bytes"),
    (
        MetricID.NET_DEV_TX_PACKETS,
        "Cumulative count of packets transmitted.",
        "1",
        "tx_packets",
    ),
    (
        MetricID.NET_DEV_TX_ERRORS,
        "Cumulative count of transmit errors encountered.",
        "1",
        "tx_errors",
    ),
    (
        MetricID.NET_DEV_TX_DROPPED,
        "Cumulative count of packets dropped while transmitting.",
        "1",
        "tx_dropped",
    ),
    (MetricID.NET_DEV_TX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "tx_fifo"),
    (
        MetricID.NET_DEV_TX_COLLISIONS,
        "Cumulative count of collisions detected on the interface.",
        "1",
        "tx_collisions",
    ),
    (
        MetricID.NET_DEV_TX_CARRIER,
        "Cumulative count of carrier losses detected by the device driver.",
        "1",
        "tx_carrier",
    ),
    (
        MetricID.NET_DEV_TX_COMPRESSED,
        "Cumulative count of compressed packets transmitted by the device driver.",
        "1",
        "tx_compressed",
    ),
)


def _exporter(attribute: str) -> Callable[[NetDevLine], int]:
    return lambda stat: int(getattr(stat, attribute))


class NetCollector:
    """Records network interface counters as cumulative metrics."""

    def __init__(
        self,
        config: NetStatsConfig,
        proc_path: str,
        recorder: Optional[IfaceStatRecorder] = None,
    ) -> None:
        self.config = config
        self.proc_path = proc_path
        self.recorder = recorder if recorder is not None else IfaceStatRecorder(new_int64_metric)
        for metric_id, description, unit, attribute in _METRICS:
            metric_config: Optional[MetricConfig] = config.metrics_configs.get(metric_id.value)
            if metric_config is None:
                raise ConfigError(f"Metric config {metric_id.value!r} not found")
            try:
                self.recorder.register(
                    metric_id,
                    metric_config.display_name,
                    description,
                    unit,
                    Aggregation.SUM,
                    [INTERFACE_NAME_LABEL],
                    _exporter(attribute),
                )
            except ValueError as err:
                raise ConfigError(
                    f"Failed to initialize metric {metric_id.value!r}: {err}"
                ) from err

    def collect(self) -> None:
        """Read net/dev and record counters of every interface not excluded."""
        try:
            with open(os.path.join(self.proc_path, "net", "dev"), encoding="utf-8") as handle:
                stats = parse_net_dev(handle.read())
        except (OSError, ValueError) as err:
            _log.error("Failed to retrieve net dev stat: %s", err)
            return

        exclude = self.config.exclude_interface_regexp.r
        for iface, iface_stats in stats.items():
            if exclude is not None and exclude.search(iface):
                _log.debug(
                    "Network interface %s matched exclude regexp %r, skipping recording",
                    iface,
                    exclude.pattern,
                )
                continue
            self.recorder.record_with_same_tags(iface_stats, {INTERFACE_NAME_LABEL: iface})