import json
import uuid

import pytest

from nodestats.config import MetricConfig, OSFeatureStatsConfig
from nodestats.metrics import view_rows
from nodestats.osfeature_collector import OSFeatureCollector
from nodestats.system import CmdlineArg, Module


def _collector(known_path="", proc_path="/nonexistent"):
    name = f"t{uuid.uuid4().hex[:10]}/system/os_feature"
    config = OSFeatureStatsConfig({"system/os_feature": MetricConfig(name)}, known_path)
    return OSFeatureCollector(config, proc_path), name


def _rows(view_name):
    return {frozenset(row.labels.items()): row.value for row in view_rows(view_name)}


def _feature(name, value=None):
    labels = {("os_feature", name)}
    if value is not None:
        labels.add(("value", value))
    return frozenset(labels)


def test_cmdline_features_enabled():
    collector, name = _collector()
    collector.record_features_from_cmdline(
        [
            CmdlineArg("csm.enabled", "1"),
            CmdlineArg("systemd.unified_cgroup_hierarchy", "1"),
            CmdlineArg("module.sig_enforce", "1"),
            CmdlineArg("loadpin.enabled", "1"),
            CmdlineArg("console", "ttyS0"),
        ]
    )
    assert _rows(name) == {
        _feature("KTD"): 1,
        _feature("UnifiedCgroupHierarchy"): 1,
        _feature("KernelModuleIntegrity"): 1,
    }


def test_cmdline_integrity_needs_both_flags():
    collector, name = _collector()
    collector.record_features_from_cmdline(
        [CmdlineArg("module.sig_enforce", "1"), CmdlineArg("csm.enabled", "oops")]
    )
    rows = _rows(name)
    assert rows[_feature("KernelModuleIntegrity")] == 0
    assert rows[_feature("KTD")] == 0
    assert rows[_feature("UnifiedCgroupHierarchy")] == 0


def test_modules_gpu_and_unknown_without_known_file():
    collector, name = _collector()
    collector.record_features_from_modules(
        [
            Module("nvidia_uvm", 1, proprietary=True),
            Module("loadpin_trigger", 0, out_of_tree=True),
            Module("drm", 0),
            Module("vendor_blob", 0, proprietary=True),
        ]
    )
    assert _rows(name) == {
        _feature("UnknownModules", "loadpin_trigger,vendor_blob"): 1,
        _feature("GPUSupport"): 1,
    }


def test_known_modules_are_not_reported(tmp_path):
    known = tmp_path / "known-modules.json"
    known.write_text(json.dumps([{"moduleName": "loadpin_trigger", "outOfTree": True}]))
    collector, name = _collector(str(known))
    collector.record_features_from_modules(
        [Module("loadpin_trigger", 0, out_of_tree=True), Module("drm", 0)]
    )
    assert _rows(name) == {_feature("UnknownModules"): 0, _feature("GPUSupport"): 0}


def test_invalid_known_modules_file_treated_as_empty(tmp_path):
    known = tmp_path / "known-modules.json"
    known.write_text("not json")
    collector, name = _collector(str(known))
    collector.record_features_from_modules([Module("extra", 0, out_of_tree=True)])
    assert _rows(name)[_feature("UnknownModules", "extra")] == 1


def test_collect_reads_proc_files(tmp_path):
    (tmp_path / "cmdline").write_text("console=ttyS0 csm.enabled=1 loadpin.enabled=1\n")
    (tmp_path / "modules").write_text(
        "loadpin_trigger 16384 0 - Live 0x0000000000000000 (O)\n"
        "cryptd 24576 1 crypto_simd, Live 0x0000000000000000\n"
    )
    collector, name = _collector(proc_path=str(tmp_path))
    collector.collect()
    rows = _rows(name)
    assert rows[_feature("KTD")] == 1
    assert rows[_feature("KernelModuleIntegrity")] == 0
    assert rows[_feature("UnknownModules", "loadpin_trigger")] == 1
    assert rows[_feature("GPUSupport")] == 0


def test_collect_raises_when_cmdline_missing(tmp_path):
    collector, _ = _collector(proc_path=str(tmp_path))
    with pytest.raises(OSError):
        collector.collect()


def test_unconfigured_collector_does_nothing(tmp_path):
    config = OSFeatureStatsConfig({}, "")
    collector = OSFeatureCollector(config, str(tmp_path / "absent"))
    collector.collect()
    assert collector.os_feature is None