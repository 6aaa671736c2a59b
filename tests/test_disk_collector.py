import subprocess
import uuid
from datetime import timedelta
from types import SimpleNamespace
from unittest import mock

import pytest

from nodestats.config import DiskStatsConfig, MetricConfig
from nodestats.disk_collector import (
    SECTOR_SIZE,
    DiskCollector,
    IOCounters,
    list_attached_block_devices,
    list_root_block_devices,
    parse_diskstats,
)
from nodestats.metrics import MetricID, view_rows

DISKSTATS = (
    "   8       0 sda 100 10 2000 300 50 5 1000 200 0 400 500\n"
    "   8       1 sda1 7 1 16 3 2 0 8 1 0 4 4\n"
    "   7       0 loop0 1 2 3\n"
)

IO_METRICS = (
    MetricID.DISK_IO_TIME,
    MetricID.DISK_WEIGHTED_IO,
    MetricID.DISK_AVG_QUEUE_LEN,
    MetricID.DISK_OPS_COUNT,
    MetricID.DISK_MERGED_OPS_COUNT,
    MetricID.DISK_OPS_BYTES,
    MetricID.DISK_OPS_TIME,
)


@pytest.fixture
def prefix():
    return f"test_disk_{uuid.uuid4().hex[:10]}_"


def make_config(prefix):
    return DiskStatsConfig(
        metrics_configs={m.value: MetricConfig(prefix + m.value) for m in IO_METRICS}
    )


def rows_by_labels(view_name):
    return {tuple(sorted(row.labels.items())): row.value for row in view_rows(view_name)}


def test_parse_diskstats_fields():
    stats = parse_diskstats(DISKSTATS)
    assert set(stats) == {"sda", "sda1"}
    sda = stats["sda"]
    assert sda.read_count == 100
    assert sda.merged_read_count == 10
    assert sda.read_bytes == 2000 * SECTOR_SIZE
    assert sda.read_time == 300
    assert sda.write_count == 50
    assert sda.merged_write_count == 5
    assert sda.write_bytes == 1000 * SECTOR_SIZE
    assert sda.write_time == 200
    assert sda.io_time == 400
    assert sda.weighted_io == 500


def test_parse_diskstats_rejects_bad_counter():
    with pytest.raises(ValueError):
        parse_diskstats("8 0 sda x 10 2000 300 50 5 1000 200 0 400 500\n")


def test_list_attached_block_devices():
    partitions = [SimpleNamespace(device="/dev/sda1"), SimpleNamespace(device="/dev/sdb")]
    assert list_attached_block_devices(partitions) == ["/dev/sda1", "/dev/sdb"]


def test_list_root_block_devices_parses_output():
    done = subprocess.CompletedProcess(args=[], returncode=0, stdout=b"sda\nsdb\n")
    with mock.patch("nodestats.disk_collector.subprocess.run", return_value=done) as run:
        assert list_root_block_devices(timedelta(seconds=5)) == ["sda", "sdb"]
    assert run.call_args.args[0] == ["lsblk", "-d", "-n", "-o", "NAME"]


def test_list_root_block_devices_on_failure():
    with mock.patch(
        "nodestats.disk_collector.subprocess.run", side_effect=FileNotFoundError("lsblk")
    ):
        assert list_root_block_devices(timedelta(seconds=5)) == [""]


def test_record_io_counters_reports_differences(prefix):
    collector = DiskCollector(make_config(prefix))
    first = IOCounters("sda", read_count=10, write_count=4, io_time=100, weighted_io=1000)
    second = IOCounters("sda", read_count=15, write_count=6, io_time=160, weighted_io=2000)

    collector.record_io_counters({"sda": first}, 0.0)
    assert view_rows(prefix + MetricID.DISK_AVG_QUEUE_LEN.value) == []

    collector.record_io_counters({"sda": second}, 2.0)

    io_rows = rows_by_labels(prefix + MetricID.DISK_IO_TIME.value)
    assert io_rows == {(("device_name", "sda"),): 160}
    ops = rows_by_labels(prefix + MetricID.DISK_OPS_COUNT.value)
    assert ops[(("device_name", "sda"), ("direction", "read"))] == 15
    assert ops[(("device_name", "sda"), ("direction", "write"))] == 6
    queue = view_rows(prefix + MetricID.DISK_AVG_QUEUE_LEN.value)
    assert len(queue) == 1
    assert queue[0].value == pytest.approx(1000 / 2000)


def test_unchanged_weighted_io_gives_zero_queue(prefix):
    collector = DiskCollector(make_config(prefix))
    stat = IOCounters("sdb", weighted_io=42)
    collector.record_io_counters({"sdb": stat}, 0.0)
    collector.record_io_counters({"sdb": stat}, 1.0)
    queue = view_rows(prefix + MetricID.DISK_AVG_QUEUE_LEN.value)
    assert [row.value for row in queue] == [0.0]


def test_unconfigured_collector_records_no_views(prefix):
    collector = DiskCollector(DiskStatsConfig())
    collector.record_io_counters({"sda": IOCounters("sda", io_time=5)}, 0.0)
    with pytest.raises(KeyError):
        view_rows(prefix + MetricID.DISK_IO_TIME.value)


def test_collect_reads_diskstats(prefix, tmp_path):
    path = tmp_path / "diskstats"
    path.write_text(DISKSTATS)
    collector = DiskCollector(make_config(prefix))
    collector.diskstats_path = str(path)
    collector.collect()

    rows = rows_by_labels(prefix + MetricID.DISK_WEIGHTED_IO.value)
    assert rows == {(("device_name", "sda"),): 500, (("device_name", "sda1"),): 4}
    assert collector.last_sample_time > 0