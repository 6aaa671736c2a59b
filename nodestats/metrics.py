"""Named metrics with tagged measurements, aggregated into in-process views."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Aggregation(str, Enum):
    """How measurements are aggregated into data points."""

    # Last measurement overwrites previous ones (gauge metric).
    LAST_VALUE = "LastValue"
    # Measurements are added onto previous ones (counter metric).
    SUM = "Sum"


class MetricID(str, Enum):
    """Identifiers of the metrics the monitors know about."""

    CPU_RUNNABLE_TASK_COUNT = "cpu/runnable_task_count"
    CPU_USAGE_TIME = "cpu/usage_time"
    CPU_LOAD_1M = "cpu/load_1m"
    CPU_LOAD_5M = "cpu/load_5m"
    CPU_LOAD_15M = "cpu/load_15m"
    PROBLEM_COUNTER = "problem_counter"
    PROBLEM_GAUGE = "problem_gauge"
    DISK_IO_TIME = "disk/io_time"
    DISK_WEIGHTED_IO = "disk/weighted_io"
    DISK_AVG_QUEUE_LEN = "disk/avg_queue_len"
    DISK_OPS_COUNT = "disk/operation_count"
    DISK_MERGED_OPS_COUNT = "disk/merged_operation_count"
    DISK_OPS_BYTES = "disk/operation_bytes_count"
    DISK_OPS_TIME = "disk/operation_time"
    DISK_BYTES_USED = "disk/bytes_used"
    DISK_PERCENT_USED = "disk/percent_used"
    HOST_UPTIME = "host/uptime"
    MEMORY_BYTES_USED = "memory/bytes_used"
    MEMORY_ANONYMOUS_USED = "memory/anonymous_used"
    MEMORY_PAGE_CACHE_USED = "memory/page_cache_used"
    MEMORY_UNEVICTABLE_USED = "memory/unevictable_used"
    MEMORY_DIRTY_USED = "memory/dirty_used"
    MEMORY_PERCENT_USED = "memory/percent_used"
    OS_FEATURE = "system/os_feature"
    SYSTEM_PROCESSES_TOTAL = "system/processes_total"
    SYSTEM_PROCS_RUNNING = "system/procs_running"
    SYSTEM_PROCS_BLOCKED = "system/procs_blocked"
    SYSTEM_INTERRUPTS_TOTAL = "system/interrupts_total"
    SYSTEM_CPU_STAT = "system/cpu_stat"
    NET_DEV_RX_BYTES = "net/rx_bytes"
    NET_DEV_RX_PACKETS = "net/rx_packets"
    NET_DEV_RX_ERRORS = "net/rx_errors"
    NET_DEV_RX_DROPPED = "net/rx_dropped"
    NET_DEV_RX_FIFO = "net/rx_fifo"
    NET_DEV_RX_FRAME = "net/rx_frame"
    NET_DEV_RX_COMPRESSED = "net/rx_compressed"
    NET_DEV_RX_MULTICAST = "net/rx_multicast"
    NET_DEV_TX_BYTES = "net/tx_bytes"
    NET_DEV_TX_PACKETS = "net/tx_packets"
    NET_DEV_TX_ERRORS = "net/tx_errors"
    NET_DEV_TX_DROPPED = "net/tx_dropped"
    NET_DEV_TX_FIFO = "net/tx_fifo"
    NET_DEV_TX_COLLISIONS = "net/tx_collisions"
    NET_DEV_TX_CARRIER = "net/tx_carrier"
    NET_DEV_TX_COMPRESSED = "net/tx_compressed"


class MetricMapping:
    """Thread-safe mapping from view names to metric identifiers."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._view_name_to_metric_id: dict[str, MetricID] = {}

    def add_mapping(self, metric_id: MetricID, view_name: str) -> None:
        """Remember that ``view_name`` displays ``metric_id``."""
        with self._lock:
            self._view_name_to_metric_id[view_name] = metric_id

    def view_name_to_metric_id(self, view_name: str) -> Optional[MetricID]:
        """Return the metric shown under ``view_name``, or None if unknown."""
        with self._lock:
            return self._view_name_to_metric_id.get(view_name)


METRIC_MAP = MetricMapping()


@dataclass
class Int64MetricRepresentation:
    """Snapshot of an integer metric row."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: int = 0


@dataclass
class Float64MetricRepresentation:
    """Snapshot of a floating-point metric row."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0


_LabelKey = tuple[tuple[str, str], ...]


@dataclass
class _View:
    name: str
    description: str
    unit: str
    aggregation: Aggregation
    tag_keys: tuple[str, ...]
    integer: bool
    rows: dict[_LabelKey, Union[int, float]] = field(default_factory=dict)


_lock = threading.RLock()
_tag_keys: set[str] = set()
_views: dict[str, _View] = {}


def _check_tag_name(name: str) -> None:
    if not name or len(name) > 255 or any(not (0x20 <= ord(ch) <= 0x7E) for ch in name):
        raise ValueError(f"invalid tag key name {name!r}")


def _register_tag_names(tag_names: list[str]) -> tuple[str, ...]:
    with _lock:
        for tag_name in tag_names:
            if tag_name in _tag_keys:
                continue
            try:
                _check_tag_name(tag_name)
            except ValueError as err:
                raise ValueError(f"failed to create tag {tag_name!r}: {err}") from err
            _tag_keys.add(tag_name)
        return tuple(tag_names)


def _create_view(
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Union[Aggregation, str],
    tag_names: list[str],
    integer: bool,
) -> Optional[_View]:
    if not view_name:
        return None

    METRIC_MAP.add_mapping(metric_id, view_name)

    try:
        tag_keys = _register_tag_names(list(tag_names))
    except ValueError as err:
        raise ValueError(
            f"failed to create metric {view_name!r} because of tag creation failure: {err}"
        ) from err

    try:
        method = Aggregation(aggregation)
    except ValueError:
        raise ValueError(f"unknown aggregation option {aggregation!r}") from None

    with _lock:
        existing = _views.get(view_name)
        if existing is not None:
            return existing
        view = _View(view_name, description, unit, method, tag_keys, integer)
        _views[view_name] = view
        return view


def _record(view: _View, metric_name: str, tags: dict[str, str], measurement: Union[int, float]) -> None:
    with _lock:
        for tag_name in tags:
            if tag_name not in _tag_keys:
                raise ValueError(
                    f"referencing none existing tag {tag_name!r} in metric {metric_name!r}"
                )
        labels = {k: v for k, v in tags.items() if k in view.tag_keys}
        key: _LabelKey = tuple(sorted(labels.items()))
        zero: Union[int, float] = 0 if view.integer else 0.0
        if view.aggregation is Aggregation.SUM:
            view.rows[key] = view.rows.get(key, zero) + measurement
        else:
            view.rows[key] = measurement


class Int64Metric:
    """An integer metric recorded into its view."""

    def __init__(self, name: str, view: _View) -> None:
        self.name = name
        self._view = view

    def record(self, tags: dict[str, str], measurement: int) -> None:
        """Record ``measurement`` with ``tags`` as labels; raise ValueError on unknown tags."""
        _record(self._view, self.name, tags, int(measurement))


class Float64Metric:
    """A floating-point metric recorded into its view."""

    def __init__(self, name: str, view: _View) -> None:
        self.name = name
        self._view = view

    def record(self, tags: dict[str, str], measurement: float) -> None:
        """Record ``measurement`` with ``tags`` as labels; raise ValueError on unknown tags."""
        _record(self._view, self.name, tags, float(measurement))


def new_int64_metric(
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Union[Aggregation, str],
    tag_names: list[str],
) -> Optional[Int64Metric]:
    """Create an integer metric; return None when ``view_name`` is empty."""
    view = _create_view(metric_id, view_name, description, unit, aggregation, tag_names, True)
    return None if view is None else Int64Metric(view_name, view)


def new_float64_metric(
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Union[Aggregation, str],
    tag_names: list[str],
) -> Optional[Float64Metric]:
    """Create a floating-point metric; return None when ``view_name`` is empty."""
    view = _create_view(metric_id, view_name, description, unit, aggregation, tag_names, False)
    return None if view is None else Float64Metric(view_name, view)


def view_rows(
    view_name: str,
) -> list[Union[Int64MetricRepresentation, Float64MetricRepresentation]]:
    """Return the current rows of a registered view; raise KeyError if unknown."""
    with _lock:
        view = _views[view_name]
        representation = Int64MetricRepresentation if view.integer else Float64MetricRepresentation
        return [
            representation(view.name, dict(key), value)  # type: ignore[arg-type]
            for key, value in view.rows.items()
        ]