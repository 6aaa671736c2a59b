"""Collects memory usage from the kernel's meminfo file."""

from __future__ import annotations

import logging
import os
from typing import Optional

from nodestats.config import MemoryStatsConfig, MetricConfig
from nodestats.labels import STATE_LABEL
from nodestats.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

_log = logging.getLogger(__name__)

_DEFAULT_PROC_PATH = "/proc"


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse the contents of a meminfo file into field names and values.

    Values are returned as written, which for most fields means kibibytes.
    Raises ValueError on a malformed line.
    """
    result: dict[str, int] = {}
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        if len(fields) < 2:
            raise ValueError(f"malformed meminfo line: {line!r}")
        key = fields[0].rstrip(":")
        try:
            value = int(fields[1])
        except ValueError:
            raise ValueError(f"invalid value in meminfo line: {line!r}") from None
        if value < 0:
            raise ValueError(f"negative value in meminfo line: {line!r}")
        result[key] = value
    return result


class MemoryCollector:
    """Records memory usage by state, in bytes and as a percentage."""

    def __init__(self, config: MemoryStatsConfig, proc_path: str = "") -> None:
        self.config = config
        self.proc_path = proc_path or _DEFAULT_PROC_PATH

        self._bytes_used = self._int(
            MetricID.MEMORY_BYTES_USED,
            "Memory usage by each memory state, in Bytes. Summing values of all states "
            "yields the total memory on the node.",
            [STATE_LABEL],
        )
        self._percent_used: Optional[Float64Metric] = new_float64_metric(
            MetricID.MEMORY_PERCENT_USED,
            self._display_name(MetricID.MEMORY_PERCENT_USED),
            "Memory usage in percentage of total memory.",
            "%",
            Aggregation.LAST_VALUE,
            [STATE_LABEL],
        )
        self._anonymous_used = self._int(
            MetricID.MEMORY_ANONYMOUS_USED,
            "Anonymous memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            [STATE_LABEL],
        )
        self._page_cache_used = self._int(
            MetricID.MEMORY_PAGE_CACHE_USED,
            "Page cache memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            [STATE_LABEL],
        )
        self._unevictable_used = self._int(
            MetricID.MEMORY_UNEVICTABLE_USED, "Unevictable memory usage, in Bytes", []
        )
        self._dirty_used = self._int(
            MetricID.MEMORY_DIRTY_USED,
            "Dirty pages usage, in Bytes. Dirty means the memory is waiting to be written "
            "back to disk, and writeback means the memory is actively being written back "
            "to disk.",
            [STATE_LABEL],
        )

    def _display_name(self, metric_id: MetricID) -> str:
        return self.config.metrics_configs.get(metric_id.value, MetricConfig()).display_name

    def _int(
        self, metric_id: MetricID, description: str, tag_names: list[str]
    ) -> Optional[Int64Metric]:
        return new_int64_metric(
            metric_id,
            self._display_name(metric_id),
            description,
            "Byte",
            Aggregation.LAST_VALUE,
            tag_names,
        )

    @staticmethod
    def _record_kib(
        metric: Optional[Int64Metric], info: dict[str, int], key: str, state: Optional[str]
    ) -> None:
        if metric is None or key not in info:
            return
        tags = {} if state is None else {STATE_LABEL: state}
        metric.record(tags, info[key] * 1024)

    def collect(self) -> None:
        """Read meminfo and record the configured memory metrics."""
        try:
            with open(os.path.join(self.proc_path, "meminfo"), encoding="utf-8") as handle:
                info = parse_meminfo(handle.read())
        except (OSError, ValueError) as err:
            _log.error("Failed to retrieve memory stats: %s", err)
            return

        parts = ("MemFree", "Buffers", "Cached", "Slab")
        have_used = "MemTotal" in info and all(key in info for key in parts)
        used = info["MemTotal"] - sum(info[key] for key in parts) if have_used else 0

        if self._bytes_used is not None:
            for key, state in zip(parts, ("free", "buffered", "cached", "slab")):
                self._record_kib(self._bytes_used, info, key, state)
            if have_used:
                self._bytes_used.record({STATE_LABEL: "used"}, used * 1024)

        if self._percent_used is not None and have_used and info["MemTotal"] > 0:
            ratio = used / info["MemTotal"]
            self._percent_used.record({STATE_LABEL: "used"}, ratio * 100.0)

        self._record_kib(self._dirty_used, info, "Dirty", "dirty")
        self._record_kib(self._dirty_used, info, "Writeback", "writeback")
        self._record_kib(self._anonymous_used, info, "Active(anon)", "active")
        self._record_kib(self._anonymous_used, info, "Inactive(anon)", "inactive")
        self._record_kib(self._page_cache_used, info, "Active(file)", "active")
        self._record_kib(self._page_cache_used, info, "Inactive(file)", "inactive")
        self._record_kib(self._unevictable_used, info, "Unevictable", None)