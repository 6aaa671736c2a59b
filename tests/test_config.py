import json
from datetime import timedelta

import pytest

from nodestats.config import (
    DEFAULT_PROC_PATH,
    ConfigError,
    CPUStatsConfig,
    DiskStatsConfig,
    NetStatsInterfaceRegexp,
    OSFeatureStatsConfig,
    SystemStatsConfig,
)

KNOWN = "guestosconfig/known-modules.json"


def test_apply_configuration_normal():
    config = SystemStatsConfig(
        disk_config=DiskStatsConfig(lsblk_timeout_string="5s"),
        invoke_interval_string="60s",
    )
    config.apply_configuration()
    assert config == SystemStatsConfig(
        disk_config=DiskStatsConfig(
            lsblk_timeout=timedelta(seconds=5), lsblk_timeout_string="5s"
        ),
        os_feature_config=OSFeatureStatsConfig(known_modules_config_path=KNOWN),
        invoke_interval_string="60s",
        invoke_interval=timedelta(seconds=60),
        proc_path=DEFAULT_PROC_PATH,
    )


def test_apply_configuration_empty():
    config = SystemStatsConfig(disk_config=DiskStatsConfig())
    config.apply_configuration()
    assert config == SystemStatsConfig(
        disk_config=DiskStatsConfig(
            lsblk_timeout=timedelta(seconds=5), lsblk_timeout_string="5s"
        ),
        os_feature_config=OSFeatureStatsConfig(known_modules_config_path=KNOWN),
        invoke_interval_string="1m0s",
        invoke_interval=timedelta(seconds=60),
        proc_path=DEFAULT_PROC_PATH,
    )


def test_apply_configuration_error():
    config = SystemStatsConfig(disk_config=DiskStatsConfig(lsblk_timeout_string="foo"))
    with pytest.raises(ConfigError):
        config.apply_configuration()


def test_apply_configuration_bad_invoke_interval():
    config = SystemStatsConfig(invoke_interval_string="soon")
    with pytest.raises(ConfigError):
        config.apply_configuration()


def test_validate_normal():
    config = SystemStatsConfig(
        disk_config=DiskStatsConfig(lsblk_timeout_string="5s"),
        invoke_interval_string="60s",
    )
    config.apply_configuration()
    config.validate()
    assert config.invoke_interval == timedelta(seconds=60)


@pytest.mark.parametrize(
    "lsblk, invoke",
    [("5s", "-1s"), ("-1s", "60s"), ("90s", "60s")],
    ids=["negative-invoke-interval", "negative-lsblk-timeout", "lsblk-bigger-than-invoke"],
)
def test_validate_errors(lsblk, invoke):
    config = SystemStatsConfig(
        disk_config=DiskStatsConfig(lsblk_timeout_string=lsblk),
        invoke_interval_string=invoke,
    )
    config.apply_configuration()
    with pytest.raises(ConfigError):
        config.validate()


def test_regexp_round_trip():
    regexp = NetStatsInterfaceRegexp.from_text(r"docker\d+")
    assert regexp.to_text() == r"docker\d+"
    assert regexp.r.fullmatch("docker1")


def test_regexp_empty():
    regexp = NetStatsInterfaceRegexp.from_text("")
    assert regexp.r is None
    assert regexp.to_text() == ""


def test_regexp_invalid():
    with pytest.raises(ConfigError):
        NetStatsInterfaceRegexp.from_text("(")


def test_cpu_config_from_dict():
    data = json.loads(
        '{"metricsConfigs": {"cpu/load_1m": {"displayName": "cpu/load_1m"},'
        ' "cpu/usage_time": {"displayName": "cpu/usage_time"}}}'
    )
    config = CPUStatsConfig.from_dict(data)
    assert sorted(config.metrics_configs) == ["cpu/load_1m", "cpu/usage_time"]
    assert config.metrics_configs["cpu/load_1m"].display_name == "cpu/load_1m"


def test_system_config_from_dict():
    data = {
        "disk": {"includeRootBlk": True, "lsblkTimeout": "2s"},
        "net": {"excludeInterfaceRegexp": "^veth"},
        "osFeature": {"knownModulesConfigPath": "mods.json"},
        "invokeInterval": "30s",
        "procPath": "/host/proc",
    }
    config = SystemStatsConfig.from_dict(data)
    config.apply_configuration()
    assert config.disk_config.include_root_blk is True
    assert config.disk_config.include_all_attached_blk is False
    assert config.disk_config.lsblk_timeout == timedelta(seconds=2)
    assert config.invoke_interval == timedelta(seconds=30)
    assert config.net_config.exclude_interface_regexp.to_text() == "^veth"
    assert config.os_feature_config.known_modules_config_path == "mods.json"
    assert config.proc_path == "/host/proc"


def test_system_config_from_dict_wrong_type():
    with pytest.raises(ConfigError):
        SystemStatsConfig.from_dict({"invokeInterval": 5})