"""Configuration of the system statistics monitor."""

from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from nodestats.helpers import format_duration, parse_duration

_IS_LINUX = sys.platform.startswith("linux")

DEFAULT_INVOKE_INTERVAL_STRING = format_duration(timedelta(seconds=60))
DEFAULT_LSBLK_TIMEOUT_STRING = format_duration(timedelta(seconds=5))
DEFAULT_KNOWN_MODULES_CONFIG_PATH = "guestosconfig/known-modules.json"
DEFAULT_PROC_PATH = "/proc" if _IS_LINUX else ""


class ConfigError(ValueError):
    """The configuration is malformed or invalid."""


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key!r} must be an object")
    return value


def _string(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{key!r} must be a string")
    return value


def _bool(data: dict[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"{key!r} must be a boolean")
    return value


def _check_dict(data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("configuration section must be an object")
    return data


@dataclass
class MetricConfig:
    """How one metric is displayed."""

    display_name: str = ""


def _metrics_configs(data: dict[str, Any]) -> dict[str, MetricConfig]:
    return {
        name: MetricConfig(_string(_check_dict(entry), "displayName"))
        for name, entry in _section(data, "metricsConfigs").items()
    }


@dataclass
class CPUStatsConfig:
    """CPU metrics to collect."""

    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "CPUStatsConfig":
        """Build from decoded JSON."""
        return cls(_metrics_configs(_check_dict(data)))


@dataclass
class DiskStatsConfig:
    """Disk metrics to collect and how to list block devices."""

    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    include_root_blk: bool = False
    include_all_attached_blk: bool = False
    lsblk_timeout_string: str = ""
    lsblk_timeout: timedelta = timedelta(0)

    @classmethod
    def from_dict(cls, data: Any) -> "DiskStatsConfig":
        """Build from decoded JSON."""
        data = _check_dict(data)
        return cls(
            metrics_configs=_metrics_configs(data),
            include_root_blk=_bool(data, "includeRootBlk"),
            include_all_attached_blk=_bool(data, "includeAllAttachedBlk"),
            lsblk_timeout_string=_string(data, "lsblkTimeout"),
        )


@dataclass
class HostStatsConfig:
    """Host metrics to collect."""

    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "HostStatsConfig":
        """Build from decoded JSON."""
        return cls(_metrics_configs(_check_dict(data)))


@dataclass
class MemoryStatsConfig:
    """Memory metrics to collect."""

    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "MemoryStatsConfig":
        """Build from decoded JSON."""
        return cls(_metrics_configs(_check_dict(data)))


@dataclass
class OSFeatureStatsConfig:
    """OS feature metrics to collect and where the known modules are listed."""

    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    known_modules_config_path: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "OSFeatureStatsConfig":
        """Build from decoded JSON."""
        data = _check_dict(data)
        return cls(_metrics_configs(data), _string(data, "knownModulesConfigPath"))


@dataclass
class NetStatsInterfaceRegexp:
    """An optional regular expression for interfaces to leave out."""

    r: Optional[re.Pattern[str]] = None

    @classmethod
    def from_text(cls, text: str) -> "NetStatsInterfaceRegexp":
        """Compile ``text``; an empty text means no expression. Raises ConfigError."""
        if not text:
            return cls()
        try:
            return cls(re.compile(text))
        except re.error as err:
            raise ConfigError(f"invalid interface regexp {text!r}: {err}") from err

    def to_text(self) -> str:
        """Return the expression's source, or "" when there is none."""
        return "" if self.r is None else self.r.pattern


@dataclass
class NetStatsConfig:
    """Network metrics to collect and interfaces to exclude."""

    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    exclude_interface_regexp: NetStatsInterfaceRegexp = field(
        default_factory=NetStatsInterfaceRegexp
    )

    @classmethod
    def from_dict(cls, data: Any) -> "NetStatsConfig":
        """Build from decoded JSON."""
        data = _check_dict(data)
        return cls(
            _metrics_configs(data),
            NetStatsInterfaceRegexp.from_text(_string(data, "excludeInterfaceRegexp")),
        )


@dataclass
class SystemStatsConfig:
    """The whole system statistics monitor configuration."""

    cpu_config: CPUStatsConfig = field(default_factory=CPUStatsConfig)
    disk_config: DiskStatsConfig = field(default_factory=DiskStatsConfig)
    host_config: HostStatsConfig = field(default_factory=HostStatsConfig)
    memory_config: MemoryStatsConfig = field(default_factory=MemoryStatsConfig)
    os_feature_config: OSFeatureStatsConfig = field(default_factory=OSFeatureStatsConfig)
    net_config: NetStatsConfig = field(default_factory=NetStatsConfig)
    invoke_interval_string: str = ""
    invoke_interval: timedelta = timedelta(0)
    proc_path: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "SystemStatsConfig":
        """Build from decoded JSON. Raises ConfigError on wrongly typed values."""
        data = _check_dict(data)
        return cls(
            cpu_config=CPUStatsConfig.from_dict(_section(data, "cpu")),
            disk_config=DiskStatsConfig.from_dict(_section(data, "disk")),
            host_config=HostStatsConfig.from_dict(_section(data, "host")),
            memory_config=MemoryStatsConfig.from_dict(_section(data, "memory")),
            os_feature_config=OSFeatureStatsConfig.from_dict(_section(data, "osFeature")),
            net_config=NetStatsConfig.from_dict(_section(data, "net")),
            invoke_interval_string=_string(data, "invokeInterval"),
            proc_path=_string(data, "procPath"),
        )

    def apply_configuration(self) -> None:
        """Fill in defaults and parse durations. Raises ConfigError."""
        if not self.invoke_interval_string:
            self.invoke_interval_string = DEFAULT_INVOKE_INTERVAL_STRING
        if not self.proc_path:
            self.proc_path = DEFAULT_PROC_PATH
        if not self.disk_config.lsblk_timeout_string:
            self.disk_config.lsblk_timeout_string = DEFAULT_LSBLK_TIMEOUT_STRING
        if not self.os_feature_config.known_modules_config_path:
            self.os_feature_config.known_modules_config_path = DEFAULT_KNOWN_MODULES_CONFIG_PATH

        try:
            self.invoke_interval = parse_duration(self.invoke_interval_string)
        except ValueError as err:
            raise ConfigError(
                f"error in parsing InvokeIntervalString {self.invoke_interval_string!r}: {err}"
            ) from err
        try:
            self.disk_config.lsblk_timeout = parse_duration(self.disk_config.lsblk_timeout_string)
        except ValueError as err:
            raise ConfigError(
                "error in parsing LsblkTimeoutString "
                f"{self.disk_config.lsblk_timeout_string!r}: {err}"
            ) from err

    def _validate_proc_path(self) -> None:
        if _IS_LINUX:
            os.stat(self.proc_path)

    def validate(self) -> None:
        """Check the settings. Raises ConfigError."""
        if self.invoke_interval <= timedelta(0):
            raise ConfigError(
                f"InvokeInterval {format_duration(self.invoke_interval)} must be above 0s"
            )
        try:
            self._validate_proc_path()
        except OSError as err:
            raise ConfigError(f"ProcPath {self.proc_path} check failed: {err}") from err
        lsblk = self.disk_config.lsblk_timeout
        if lsblk <= timedelta(0):
            raise ConfigError(f"LsblkTimeout {format_duration(lsblk)} must be above 0s")
        if lsblk > self.invoke_interval:
            raise ConfigError(
                f"LsblkTimeout {format_duration(lsblk)} must be shorter than "
                f"ssc.InvokeInterval {format_duration(self.invoke_interval)}"
            )