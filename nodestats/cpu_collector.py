"""Collects CPU load, CPU time and process statistics."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Union

import psutil

from nodestats.config import CPUStatsConfig, MetricConfig
from nodestats.labels import CPU_LABEL, STAGE_LABEL, STATE_LABEL
from nodestats.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

_log = logging.getLogger(__name__)

# Ratio between one second and one USER_HZ clock tick. It is 100 on nearly
# every architecture, so it is not detected at run time.
CLOCK_TICK = 100.0

_USER_HZ = 100.0

_CPU_FIELDS = (
    "user",
    "nice",
    "system",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)

# Label value for each CPU time field, in the order they are recorded.
_STAGES = (
    ("user", "user"),
    ("nice", "nice"),
    ("system", "system"),
    ("idle", "idle"),
    ("iowait", "iowait"),
    ("iRQ", "irq"),
    ("softIRQ", "softirq"),
    ("steal", "steal"),
    ("guest", "guest"),
    ("guestNice", "guest_nice"),
)

_USAGE_STATES = (
    "user",
    "system",
    "idle",
    "nice",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)


@dataclass(frozen=True)
class CPUStat:
    """Time one CPU (or all of them) spent in each state, in seconds."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


@dataclass
class ProcStat:
    """The parts of the kernel's stat file that are collected."""

    cpu_total: CPUStat = field(default_factory=CPUStat)
    cpu: dict[int, CPUStat] = field(default_factory=dict)
    irq_total: int = 0
    process_created: int = 0
    processes_running: int = 0
    processes_blocked: int = 0


def _parse_cpu_line(parts: list[str], line: str) -> CPUStat:
    try:
        values = [float(value) / _USER_HZ for value in parts[1 : 1 + len(_CPU_FIELDS)]]
    except ValueError:
        raise ValueError(f"couldn't parse {line!r} (cpu)") from None
    return CPUStat(**dict(zip(_CPU_FIELDS, values)))


def _parse_count(text: str, line: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"couldn't parse {line!r}") from None


def parse_proc_stat(text: str) -> ProcStat:
    """Parse the contents of a kernel stat file (normally /proc/stat).

    CPU times are converted from clock ticks to seconds. Raises ValueError on
    malformed values.
    """
    stat = ProcStat()
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        key = parts[0]
        if key == "cpu":
            stat.cpu_total = _parse_cpu_line(parts, line)
        elif key.startswith("cpu"):
            index = _parse_count(key[3:], line)
            stat.cpu[index] = _parse_cpu_line(parts, line)
        elif key == "intr":
            stat.irq_total = _parse_count(parts[1], line)
        elif key == "processes":
            stat.process_created = _parse_count(parts[1], line)
        elif key == "procs_running":
            stat.processes_running = _parse_count(parts[1], line)
        elif key == "procs_blocked":
            stat.processes_blocked = _parse_count(parts[1], line)
    return stat


class CPUCollector:
    """Records CPU load averages, CPU usage time and kernel process counters."""

    def __init__(self, config: CPUStatsConfig, proc_path: str) -> None:
        self.config = config
        self.proc_path = proc_path
        self._last_usage_time: dict[str, float] = {}

        self._runnable_task_count = self._float(
            MetricID.CPU_RUNNABLE_TASK_COUNT,
            "The average number of runnable tasks in the run-queue during the last minute",
            "1",
            Aggregation.LAST_VALUE,
            [],
        )
        self._usage_time = self._float(
            MetricID.CPU_USAGE_TIME, "CPU usage, in seconds", "s", Aggregation.SUM, [STATE_LABEL]
        )
        self._load_1m = self._float(
            MetricID.CPU_LOAD_1M, "CPU average load (1m)", "1", Aggregation.LAST_VALUE, []
        )
        self._load_5m = self._float(
            MetricID.CPU_LOAD_5M, "CPU average load (5m)", "1", Aggregation.LAST_VALUE, []
        )
        self._load_15m = self._float(
            MetricID.CPU_LOAD_15M, "CPU average load (15m)", "1", Aggregation.LAST_VALUE, []
        )
        self._processes_total = self._int(
            MetricID.SYSTEM_PROCESSES_TOTAL, "Number of forks since boot.", "1", Aggregation.SUM
        )
        self._procs_running = self._int(
            MetricID.SYSTEM_PROCS_RUNNING,
            "Number of processes currently running.",
            "1",
            Aggregation.LAST_VALUE,
        )
        self._procs_blocked = self._int(
            MetricID.SYSTEM_PROCS_BLOCKED,
            "Number of processes currently blocked.",
            "1",
            Aggregation.LAST_VALUE,
        )
        self._interrupts_total = self._int(
            MetricID.SYSTEM_INTERRUPTS_TOTAL,
            "Total number of interrupts serviced (cumulative).",
            "1",
            Aggregation.SUM,
        )
        self._cpu_stat = self._float(
            MetricID.SYSTEM_CPU_STAT,
            "Cumulative time each cpu spent in various stages.",
            "ns",
            Aggregation.SUM,
            [CPU_LABEL, STAGE_LABEL],
        )

    def _display_name(self, metric_id: MetricID) -> str:
        return self.config.metrics_configs.get(metric_id.value, MetricConfig()).display_name

    def _float(
        self,
        metric_id: MetricID,
        description: str,
        unit: str,
        aggregation: Aggregation,
        tag_names: list[str],
    ) -> Optional[Float64Metric]:
        return new_float64_metric(
            metric_id, self._display_name(metric_id), description, unit, aggregation, tag_names
        )

    def _int(
        self, metric_id: MetricID, description: str, unit: str, aggregation: Aggregation
    ) -> Optional[Int64Metric]:
        return new_int64_metric(
            metric_id, self._display_name(metric_id), description, unit, aggregation, []
        )

    def _record_load(self) -> None:
        gauges = (self._runnable_task_count, self._load_1m, self._load_5m, self._load_15m)
        if all(metric is None for metric in gauges):
            return
        try:
            load1, load5, load15 = psutil.getloadavg()
        except (OSError, AttributeError, psutil.Error) as err:
            _log.error("Failed to retrieve average CPU load: %s", err)
            return
        for metric, value in zip(gauges, (load1, load1, load5, load15)):
            if metric is not None:
                metric.record({}, value)

    def _record_usage(self) -> None:
        if self._usage_time is None:
            return
        try:
            times = psutil.cpu_times(percpu=False)
        except (OSError, psutil.Error) as err:
            _log.error("Failed to retrieve CPU timers stat: %s", err)
            return
        for state in _USAGE_STATES:
            current = CLOCK_TICK * float(getattr(times, state, 0.0))
            self._usage_time.record(
                {STATE_LABEL: state}, current - self._last_usage_time.get(state, 0.0)
            )
            self._last_usage_time[state] = current

    def _record_system_stats(self) -> None:
        metrics: tuple[Union[Int64Metric, Float64Metric, None], ...] = (
            self._cpu_stat,
            self._interrupts_total,
            self._processes_total,
            self._procs_blocked,
            self._procs_running,
        )
        if all(metric is None for metric in metrics):
            return
        if not self.proc_path:
            _log.error("Failed to retrieve cpu/process stats: no proc path configured")
            return
        try:
            with open(os.path.join(self.proc_path, "stat"), encoding="utf-8") as handle:
                stats = parse_proc_stat(handle.read())
        except (OSError, ValueError) as err:
            _log.error("Failed to retrieve cpu/process stats: %s", err)
            return

        if self._processes_total is not None:
            self._processes_total.record({}, stats.process_created)
        if self._procs_running is not None:
            self._procs_running.record({}, stats.processes_running)
        if self._procs_blocked is not None:
            self._procs_blocked.record({}, stats.processes_blocked)
        if self._interrupts_total is not None:
            self._interrupts_total.record({}, stats.irq_total)
        if self._cpu_stat is not None:
            for index in sorted(stats.cpu):
                cpu = stats.cpu[index]
                for stage, attribute in _STAGES:
                    self._cpu_stat.record(
                        {CPU_LABEL: f"cpu{index}", STAGE_LABEL: stage},
                        getattr(cpu, attribute),
                    )

    def collect(self) -> None:
        """Record load, usage and system statistics."""
        self._record_load()
        self._record_usage()
        self._record_system_stats()