# nodestats

`nodestats` collects health and usage statistics from a machine and records
them as labelled gauge and counter metrics held in memory. It reads files
under `/proc`, `/etc/os-release`, the output of `lsblk`, and what `psutil`
reports.

## What it collects

- **CPU** (`nodestats.cpu_collector.CPUCollector`): load averages, usage time
  by state, per-CPU stage times and the process and interrupt counters of
  `<procPath>/stat`. `parse_proc_stat` parses that file on its own.
- **Disk** (`nodestats.disk_collector.DiskCollector`): IO time, weighted IO,
  average queue length, and operation counts, merged counts, bytes and times
  per direction, read from `/proc/diskstats` (`parse_diskstats`); and bytes
  and percentage used for each mounted device, reported once per device.
  With `includeRootBlk` the devices listed by `lsblk -d -n -o NAME` are
  included (`list_root_block_devices`); with `includeAllAttachedBlk` the
  devices of all mounted partitions are.
- **Host** (`nodestats.host_collector.HostCollector`): uptime in seconds,
  labelled with the kernel version and OS version.
- **Memory** (`nodestats.memory_collector.MemoryCollector`): bytes by state,
  percentage used, anonymous, page cache, unevictable and dirty memory from
  `/proc/meminfo` (`parse_meminfo`).
- **Network** (`nodestats.net_collector.NetCollector`): every counter of
  `<procPath>/net/dev` per interface (`parse_net_dev`). Interfaces whose name
  matches `excludeInterfaceRegexp` are left out. Every `net/...` metric must
  have an entry in `metricsConfigs`, or a `ConfigError` is raised.
- **OS features** (`nodestats.osfeature_collector.OSFeatureCollector`): from
  `<procPath>/cmdline`, the `KTD`, `UnifiedCgroupHierarchy` and
  `KernelModuleIntegrity` features; from `<procPath>/modules`, `GPUSupport`
  (any module whose name contains `nvidia`) and `UnknownModules`
  (out-of-tree or proprietary modules missing from the known-modules JSON
  file).

Counter metrics (`Aggregation.SUM`) are fed the change since the previous
collection, so that their sum is the cumulative value.

## Installation

```
pip install nodestats
```

## Configuration

A monitor is set up from a JSON file. Each section enables a collector by
listing the metrics it should record and the display name of each; a metric
with an empty display name is not created.

```json
{
  "invokeInterval": "60s",
  "procPath": "/proc",
  "cpu": {
    "metricsConfigs": {
      "cpu/load_1m": {"displayName": "cpu/load_1m"}
    }
  },
  "disk": {
    "includeRootBlk": true,
    "includeAllAttachedBlk": true,
    "lsblkTimeout": "5s",
    "metricsConfigs": {
      "disk/io_time": {"displayName": "disk/io_time"}
    }
  },
  "osFeature": {
    "knownModulesConfigPath": "guestosconfig/known-modules.json",
    "metricsConfigs": {
      "system/os_feature": {"displayName": "system/os_feature"}
    }
  }
}
```

Durations are written like `"300ms"`, `"1.5h"` or `"2h45m"`
(`nodestats.helpers.parse_duration`). Anything left out gets a default:
`invokeInterval` is one minute, `procPath` is `/proc` on Linux,
`lsblkTimeout` is five seconds, and the known-modules file is
`guestosconfig/known-modules.json`. A relative known-modules path is taken
relative to the directory of the configuration file.

`SystemStatsConfig.apply_configuration` fills in the defaults and parses the
durations; `SystemStatsConfig.validate` rejects an interval that is not
positive, a `procPath` that does not exist (on Linux), and an `lsblk` timeout
that is not positive or is longer than the interval. Both raise
`nodestats.config.ConfigError`.

## Usage

```python
from nodestats.system_stats_monitor import SystemStatsMonitor
from nodestats.metrics import view_rows

monitor = SystemStatsMonitor("/etc/nodestats/system-stats-monitor.json")
monitor.start()
...
print(view_rows("cpu/load_1m"))
monitor.stop()
```

`start` runs one collection straight away and then one every
`invokeInterval` in a background thread. `stop` asks the thread to stop and
waits for it. The host collector needs an OS it can name: on Linux the `ID`
in `/etc/os-release` must be one of `cos`, `debian`, `ubuntu`, `centos`,
`rocky`, `rhel`, `ol`, `amzn`, `sles`, `mariner` or `azurelinux`, otherwise
`get_os_version` raises `ValueError`.

### Metrics

Metrics are created with `nodestats.metrics.new_int64_metric` and
`new_float64_metric`, which return `None` when the view name is empty.
`Aggregation.LAST_VALUE` keeps the most recent measurement for each set of
labels and `Aggregation.SUM` adds them up. `view_rows(name)` returns the
current rows of a view. `nodestats.fakes.FakeInt64Metric` (made with
`new_fake_int64_metric`) aggregates the same way and lets tests read what was
recorded with `list_metrics`.

Text in the Prometheus exposition format can be read with
`nodestats.prometheus.parse_prometheus_metrics`; only counter and gauge
families are accepted, anything else raises `ValueError`.
`get_float64_metric` then finds one metric, matching labels exactly or as a
subset, and raises `MetricNotFoundError` when nothing matches.

### Other helpers

- `nodestats.system`: `cmdline_args` and `modules` parse the kernel command
  line and module list; `modules_from_json` reads a known-modules file.
- `nodestats.helpers`: `get_start_time` works out from when logs should be
  read given uptime, a lookback and a delay; `generate_condition_change_event`
  builds the event for a changed node condition; `get_uptime_duration` and
  `get_os_version` describe the host.
- `nodestats.exec`: `exec_command` prepares a `Command` that runs in its own
  process group; `Command.kill` kills the whole group and raises
  `CommandNotStartedError` if the command was never started.
- `nodestats.types`: the `Monitor`, `Exporter`, `Status`, `Event` and
  `Condition` types shared by monitors.

## What it does not do

- There is no command-line program; the package is used from Python.
- Metrics stay inside the process. Nothing serves them over HTTP or sends
  them to a monitoring backend; read them with `view_rows`.
- `SystemStatsMonitor` only records metrics. It reports no problems, events
  or node conditions, and no `Exporter` implementation is included.
- CPU, memory, disk IO and network statistics are read from Linux procfs
  files; on other systems those collectors log an error and record nothing.

## Running the tests

```
pip install nodestats[test]
pytest
```