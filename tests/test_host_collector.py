import platform

from nodestats.config import HostStatsConfig, MetricConfig
from nodestats.helpers import get_uptime_duration
from nodestats.host_collector import HostCollector
from nodestats.metrics import view_rows


def test_tags_are_set():
    collector = HostCollector(HostStatsConfig(), os_version="cos 77-12293.0.0")
    collector.collect()
    assert collector.tags["os_version"] == "cos 77-12293.0.0"
    assert collector.tags["kernel_version"] == platform.release()
    assert collector.tags["kernel_version"] != ""


def test_no_uptime_metric_without_display_name():
    collector = HostCollector(HostStatsConfig(), kernel_version="5.0-test", os_version="cos 1")
    assert collector.uptime is None
    assert collector.tags == {"kernel_version": "5.0-test", "os_version": "cos 1"}


def test_uptime_recorded():
    view_name = "test_host_collector/uptime"
    config = HostStatsConfig({"host/uptime": MetricConfig(view_name)})
    collector = HostCollector(config, kernel_version="5.0-test", os_version="cos 1")
    collector.collect()
    rows = view_rows(view_name)
    assert len(rows) == 1
    assert rows[0].labels == {"kernel_version": "5.0-test", "os_version": "cos 1"}
    expected = int(get_uptime_duration().total_seconds())
    assert abs(rows[0].value - expected) <= 2
    assert rows[0].value >= 0