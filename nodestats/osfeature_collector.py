"""Collects guest OS features from the kernel command line and loaded modules."""

from __future__ import annotations

import logging
import os
import re
from typing import Iterable, Optional

from nodestats.config import MetricConfig, OSFeatureStatsConfig
from nodestats.labels import FEATURE_LABEL, VALUE_LABEL
from nodestats.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric
from nodestats.system import (
    CmdlineArg,
    Module,
    cmdline_args,
    contains_module,
    modules,
    modules_from_json,
)

_log = logging.getLogger(__name__)

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MAX = 2**63 - 1
_INT64_MIN = -(2**63)

_CMDLINE_FEATURES = {
    "csm.enabled": "KTD",
    "systemd.unified_cgroup_hierarchy": "UnifiedCgroupHierarchy",
    "module.sig_enforce": "ModuleSigned",
    "loadpin.enabled": "LoadPinEnabled",
}


def _parse_int64(text: str) -> int:
    """Parse a base-10 integer the lenient way: 0 when malformed, clamped when too large."""
    if not _INT_RE.fullmatch(text):
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(text)))


class OSFeatureCollector:
    """Records OS features as a gauge: 1 if a feature is enabled, 0 if not."""

    def __init__(self, config: OSFeatureStatsConfig, proc_path: str) -> None:
        self.config = config
        self.proc_path = proc_path
        self.os_feature: Optional[Int64Metric] = None
        display_name = config.metrics_configs.get(
            MetricID.OS_FEATURE.value, MetricConfig()
        ).display_name
        if display_name:
            self.os_feature = new_int64_metric(
                MetricID.OS_FEATURE,
                display_name,
                "OS Features like GPU support, KTD kernel, third party modules as unknown "
                "modules. 1 if the feature is enabled and 0, if disabled.",
                "1",
                Aggregation.LAST_VALUE,
                [FEATURE_LABEL, VALUE_LABEL],
            )

    def record_features_from_cmdline(self, cmdline_args: Iterable[CmdlineArg]) -> None:
        """Record KTD, UnifiedCgroupHierarchy and KernelModuleIntegrity."""
        if self.os_feature is None:
            return
        features = {name: 0 for name in _CMDLINE_FEATURES.values()}
        for arg in cmdline_args:
            feature = _CMDLINE_FEATURES.get(arg.key)
            if feature is not None:
                features[feature] = _parse_int64(arg.value)

        self.os_feature.record({FEATURE_LABEL: "KTD"}, features["KTD"])
        self.os_feature.record(
            {FEATURE_LABEL: "UnifiedCgroupHierarchy"}, features["UnifiedCgroupHierarchy"]
        )
        integrity = int(features["ModuleSigned"] == 1 and features["LoadPinEnabled"] == 1)
        self.os_feature.record({FEATURE_LABEL: "KernelModuleIntegrity"}, integrity)

    def _known_modules(self) -> list[Module]:
        path = self.config.known_modules_config_path
        try:
            with open(path, encoding="utf-8") as handle:
                text = handle.read()
        except OSError as err:
            _log.warning("Failed to read configuration file %s: %s", path, err)
            return []
        try:
            return modules_from_json(text)
        except (ValueError, TypeError) as err:
            _log.warning("Failed to retrieve known modules %s", err)
            return []

    def record_features_from_modules(self, modules: Iterable[Module]) -> None:
        """Record GPUSupport and the out-of-tree or proprietary modules not known."""
        if self.os_feature is None:
            return
        known = self._known_modules()
        has_gpu_support = 0
        unknown: list[str] = []
        for module in modules:
            if "nvidia" in module.module_name:
                has_gpu_support = 1
            elif (module.out_of_tree or module.proprietary) and not contains_module(
                module.module_name, known
            ):
                unknown.append(module.module_name)

        if unknown:
            self.os_feature.record(
                {FEATURE_LABEL: "UnknownModules", VALUE_LABEL: ",".join(unknown)}, 1
            )
        else:
            self.os_feature.record({FEATURE_LABEL: "UnknownModules"}, 0)
        self.os_feature.record({FEATURE_LABEL: "GPUSupport"}, has_gpu_support)

    def collect(self) -> None:
        """Read the kernel command line and modules and record the features.

        Raises OSError or ValueError when those files cannot be read.
        """
        if self.os_feature is None:
            return
        try:
            args = cmdline_args(os.path.join(self.proc_path, "cmdline"))
        except (OSError, ValueError) as err:
            raise type(err)(f"Error retrieving cmdline args: {err}") from err
        self.record_features_from_cmdline(args)
        try:
            loaded = modules(os.path.join(self.proc_path, "modules"))
        except (OSError, ValueError) as err:
            raise type(err)(f"Error retrieving kernel modules: {err}") from err
        self.record_features_from_modules(loaded)