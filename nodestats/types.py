"""Internal data types shared by problem daemons, monitors and exporters."""

from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional


class Severity(str, Enum):
    """Severity of a problem event."""

    INFO = "info"
    WARN = "warn"


class ConditionStatus(str, Enum):
    """Status of a node condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ProblemType(str, Enum):
    """Whether a problem is reported as an event or as a condition change."""

    TEMP = "temporary"
    PERM = "permanent"


@dataclass
class Condition:
    """A node condition as seen by the problem detector."""

    type: str
    status: ConditionStatus
    transition: datetime
    reason: str = ""
    message: str = ""


@dataclass
class Event:
    """A temporary node problem event."""

    severity: Severity
    timestamp: datetime
    reason: str = ""
    message: str = ""


@dataclass
class Status:
    """What a problem daemon reports: events (oldest first) and current conditions."""

    source: str
    events: list[Event] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)


class Monitor(ABC):
    """Watches the system and reports problems and metrics."""

    @abstractmethod
    def start(self) -> Optional["queue.Queue[Status]"]:
        """Start monitoring; return a queue of statuses, or None for metrics-only monitors."""

    @abstractmethod
    def stop(self) -> None:
        """Stop monitoring."""


class Exporter(ABC):
    """Exports node health data to a control plane."""

    @abstractmethod
    def export_problems(self, status: Status) -> None:
        """Export the problems held in ``status``."""


@dataclass(frozen=True)
class ProblemDaemonHandler:
    """How to create one type of problem daemon from a config path."""

    create_problem_daemon_or_die: Callable[[str], Monitor]
    cmd_option_description: str = ""