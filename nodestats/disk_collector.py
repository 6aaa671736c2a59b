"""Collects disk IO counters and disk space usage."""

from __future__ import annotations

import logging
import math
import os
import subprocess
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable, Optional

import psutil

from nodestats.config import DiskStatsConfig, MetricConfig
from nodestats.labels import (
    DEVICE_NAME_LABEL,
    DIRECTION_LABEL,
    FS_TYPE_LABEL,
    MOUNT_OPTION_LABEL,
    STATE_LABEL,
)
from nodestats.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

_log = logging.getLogger(__name__)

DEFAULT_DISKSTATS_PATH = "/proc/diskstats"

# Size in bytes of the sectors the kernel counts in its disk statistics.
SECTOR_SIZE = 512

_DIRECTIONS = (
    ("read", ("read_count", "merged_read_count", "read_bytes", "read_time")),
    ("write", ("write_count", "merged_write_count", "write_bytes", "write_time")),
)


@dataclass(frozen=True)
class IOCounters:
    """Cumulative IO counters of one block device."""

    name: str
    read_count: int = 0
    merged_read_count: int = 0
    read_bytes: int = 0
    read_time: int = 0
    write_count: int = 0
    merged_write_count: int = 0
    write_bytes: int = 0
    write_time: int = 0
    iops_in_progress: int = 0
    io_time: int = 0
    weighted_io: int = 0


def parse_diskstats(text: str) -> dict[str, IOCounters]:
    """Parse a diskstats file into IO counters by device name.

    Lines with fewer than 14 fields are skipped. Sector counts are turned into
    bytes. Raises ValueError on a malformed counter.
    """
    result: dict[str, IOCounters] = {}
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 14:
            continue
        name = fields[2]
        try:
            values = [int(value) for value in fields[3:14]]
        except ValueError:
            raise ValueError(f"invalid counter in diskstats line: {line!r}") from None
        (
            reads,
            merged_reads,
            read_sectors,
            read_time,
            writes,
            merged_writes,
            write_sectors,
            write_time,
            in_progress,
            io_time,
            weighted_io,
        ) = values
        result[name] = IOCounters(
            name=name,
            read_count=reads,
            merged_read_count=merged_reads,
            read_bytes=read_sectors * SECTOR_SIZE,
            read_time=read_time,
            write_count=writes,
            merged_write_count=merged_writes,
            write_bytes=write_sectors * SECTOR_SIZE,
            write_time=write_time,
            iops_in_progress=in_progress,
            io_time=io_time,
            weighted_io=weighted_io,
        )
    return result


def list_root_block_devices(timeout: timedelta) -> list[str]:
    """List block devices that are neither slaves nor holders, as lsblk shows them."""
    # "-d" leaves out slave and holder devices, "-n" the headings, "-o NAME"
    # prints only the device name.
    output = b""
    try:
        completed = subprocess.run(
            ["lsblk", "-d", "-n", "-o", "NAME"],
            capture_output=True,
            timeout=max(timeout.total_seconds(), 0.0),
            check=True,
        )
        output = completed.stdout
    except subprocess.CalledProcessError as err:
        _log.error("Error calling lsblk")
        output = err.stdout or b""
    except subprocess.TimeoutExpired as err:
        _log.error("Error calling lsblk")
        output = err.stdout or b""
    except OSError:
        _log.error("Error calling lsblk")
    return output.decode("utf-8", errors="replace").strip().split("\n")


def list_attached_block_devices(partitions: Iterable[Any]) -> list[str]:
    """List the devices of all currently mounted partitions."""
    return [partition.device for partition in partitions]


class DiskCollector:
    """Records disk IO since the last collection and disk space usage."""

    def __init__(self, config: DiskStatsConfig) -> None:
        self.config = config
        self.diskstats_path = DEFAULT_DISKSTATS_PATH

        # Sum aggregation makes these counter (cumulative) metrics.
        self._io_time = self._int(
            MetricID.DISK_IO_TIME,
            "The IO time spent on the disk, in ms",
            "ms",
            Aggregation.SUM,
            [DEVICE_NAME_LABEL],
        )
        self._weighted_io = self._int(
            MetricID.DISK_WEIGHTED_IO,
            "The weighted IO on the disk, in ms",
            "ms",
            Aggregation.SUM,
            [DEVICE_NAME_LABEL],
        )
        self._avg_queue_len: Optional[Float64Metric] = new_float64_metric(
            MetricID.DISK_AVG_QUEUE_LEN,
            self._display_name(MetricID.DISK_AVG_QUEUE_LEN),
            "The average queue length on the disk",
            "1",
            Aggregation.LAST_VALUE,
            [DEVICE_NAME_LABEL],
        )
        self._ops_count = self._int(
            MetricID.DISK_OPS_COUNT,
            "Disk operations count",
            "1",
            Aggregation.SUM,
            [DEVICE_NAME_LABEL, DIRECTION_LABEL],
        )
        self._merged_ops_count = self._int(
            MetricID.DISK_MERGED_OPS_COUNT,
            "Disk merged operations count",
            "1",
            Aggregation.SUM,
            [DEVICE_NAME_LABEL, DIRECTION_LABEL],
        )
        self._ops_bytes = self._int(
            MetricID.DISK_OPS_BYTES,
            "Bytes transferred in disk operations",
            "1",
            Aggregation.SUM,
            [DEVICE_NAME_LABEL, DIRECTION_LABEL],
        )
        self._ops_time = self._int(
            MetricID.DISK_OPS_TIME,
            "Time spent in disk operations, in ms",
            "ms",
            Aggregation.SUM,
            [DEVICE_NAME_LABEL, DIRECTION_LABEL],
        )
        self._bytes_used = self._int(
            MetricID.DISK_BYTES_USED,
            "Disk bytes used, in Bytes",
            "Byte",
            Aggregation.LAST_VALUE,
            [DEVICE_NAME_LABEL, FS_TYPE_LABEL, MOUNT_OPTION_LABEL, STATE_LABEL],
        )
        self._percent_used: Optional[Float64Metric] = new_float64_metric(
            MetricID.DISK_PERCENT_USED,
            self._display_name(MetricID.DISK_PERCENT_USED),
            "Disk usage in percentage of total space",
            "%",
            Aggregation.LAST_VALUE,
            [DEVICE_NAME_LABEL],
        )

        self._last_io_time: dict[str, int] = {}
        self._last_weighted_io: dict[str, int] = {}
        self._last_counters: dict[tuple[str, str], int] = {}
        self.last_sample_time = 0.0

    def _display_name(self, metric_id: MetricID) -> str:
        return self.config.metrics_configs.get(metric_id.value, MetricConfig()).display_name

    def _int(
        self,
        metric_id: MetricID,
        description: str,
        unit: str,
        aggregation: Aggregation,
        tag_names: list[str],
    ) -> Optional[Int64Metric]:
        return new_int64_metric(
            metric_id, self._display_name(metric_id), description, unit, aggregation, tag_names
        )

    def record_io_counters(self, io_counters: dict[str, IOCounters], sample_time: float) -> None:
        """Record IO since the previous sample; ``sample_time`` is in seconds."""
        for device, counters in io_counters.items():
            tags = {DEVICE_NAME_LABEL: device}

            history_exists = device in self._last_io_time
            last_io_time = self._last_io_time.get(device, 0)
            last_weighted_io = self._last_weighted_io.get(device, 0)
            self._last_io_time[device] = counters.io_time
            self._last_weighted_io[device] = counters.weighted_io

            if self._io_time is not None:
                self._io_time.record(tags, counters.io_time - last_io_time)
            if self._weighted_io is not None:
                self._weighted_io.record(tags, counters.weighted_io - last_weighted_io)
            if history_exists:
                avg_queue_len = 0.0
                if last_weighted_io != counters.weighted_io:
                    diff_ms = (sample_time - self.last_sample_time) * 1000
                    delta = counters.weighted_io - last_weighted_io
                    if diff_ms == 0:
                        avg_queue_len = math.copysign(math.inf, delta)
                    else:
                        avg_queue_len = delta / diff_ms
                if self._avg_queue_len is not None:
                    self._avg_queue_len.record(tags, avg_queue_len)

            metrics = (self._ops_count, self._merged_ops_count, self._ops_bytes, self._ops_time)
            for direction, attributes in _DIRECTIONS:
                direction_tags = {DEVICE_NAME_LABEL: device, DIRECTION_LABEL: direction}
                for metric, attribute in zip(metrics, attributes):
                    if metric is None:
                        continue
                    value = getattr(counters, attribute)
                    metric.record(
                        direction_tags, value - self._last_counters.get((attribute, device), 0)
                    )
                    self._last_counters[(attribute, device)] = value

    def _read_io_counters(self, devices: list[str]) -> dict[str, IOCounters]:
        with open(self.diskstats_path, encoding="utf-8") as handle:
            counters = parse_diskstats(handle.read())
        if not devices:
            return counters
        wanted = set(devices)
        return {name: stat for name, stat in counters.items() if name in wanted}

    def _record_usage(self, partitions: Iterable[Any]) -> None:
        if self._bytes_used is None:
            return
        # Report each device once even when it is mounted several times.
        seen: set[str] = set()
        for partition in partitions:
            if partition.device in seen:
                continue
            seen.add(partition.device)
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except OSError as err:
                _log.error("Failed to retrieve disk usage for %r: %s", partition.mountpoint, err)
                continue
            device_name = partition.device
            if device_name.startswith("/dev/"):
                device_name = device_name[len("/dev/") :]
            base = {
                DEVICE_NAME_LABEL: device_name,
                FS_TYPE_LABEL: partition.fstype,
                MOUNT_OPTION_LABEL: partition.opts,
            }
            self._bytes_used.record({**base, STATE_LABEL: "free"}, int(usage.free))
            self._bytes_used.record({**base, STATE_LABEL: "used"}, int(usage.used))
            if self._percent_used is not None:
                self._percent_used.record({**base, STATE_LABEL: "used"}, float(usage.percent))

    def collect(self) -> None:
        """Record disk IO counters and disk space usage."""
        devices: list[str] = []
        if self.config.include_root_blk:
            devices.extend(list_root_block_devices(self.config.lsblk_timeout))

        try:
            partitions = psutil.disk_partitions(all=False)
        except (OSError, psutil.Error) as err:
            _log.error("Failed to list disk partitions: %s", err)
            return

        if self.config.include_all_attached_blk:
            devices.extend(list_attached_block_devices(partitions))

        try:
            io_counters = self._read_io_counters(devices)
        except (OSError, ValueError) as err:
            _log.error("Failed to retrieve disk IO counters: %s", err)
            return

        sample_time = time.monotonic()
        try:
            self.record_io_counters(io_counters, sample_time)
            self._record_usage(partitions)
        finally:
            self.last_sample_time = sample_time