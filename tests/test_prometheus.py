import pytest

from nodestats.metrics import Float64MetricRepresentation
from nodestats.prometheus import (
    MetricNotFoundError,
    get_float64_metric,
    parse_prometheus_metrics,
)

SAMPLE_METRICS = """\
# HELP disk_avg_queue_len The average queue length on the disk
# TYPE disk_avg_queue_len gauge
disk_avg_queue_len{device="sda1"} 5.2
disk_avg_queue_len{device="sda8"} 0.1
# HELP host_uptime The uptime of the operating system
# TYPE host_uptime gauge
host_uptime{kernel_version="4.14.127+",os_version="cos 73-11647.217.0"} 12345
# HELP problem_counter Number of times a specific type of problem have occurred.
# TYPE problem_counter counter
problem_counter{reason="DockerHung"} 0
problem_counter{reason="OOMKilling"} 3
"""


@pytest.fixture
def metrics():
    return parse_prometheus_metrics(SAMPLE_METRICS)


RELAXED_FOUND = [
    ("host_uptime", {}),
    ("host_uptime", {"kernel_version": "4.14.127+"}),
    ("disk_avg_queue_len", {"device": "sda1"}),
    ("disk_avg_queue_len", {"device": "sda8"}),
]
RELAXED_MISSING = [
    ("host_uptime", {"non-existant-version": "0.0.1"}),
    ("host_uptime", {"kernel_version": "mismatched-version"}),
    ("host_downtime", {}),
]
STRICT_FOUND = [
    ("host_uptime", {"kernel_version": "4.14.127+", "os_version": "cos 73-11647.217.0"}),
    ("problem_counter", {"reason": "DockerHung"}),
    ("problem_counter", {"reason": "OOMKilling"}),
]
STRICT_MISSING = [
    ("host_uptime", {"kernel_version": "4.14.127+"}),
    ("host_uptime", {}),
    ("host_uptime", {"non-existent-version": "0.0.1"}),
    ("host_uptime", {"kernel_version": "mismatched-version"}),
    ("host_downtime", {}),
]


@pytest.mark.parametrize("name,labels", RELAXED_FOUND)
def test_relaxed_found(metrics, name, labels):
    found = get_float64_metric(metrics, name, labels, False)
    assert found.name == name
    assert all(found.labels[k] == v for k, v in labels.items())


@pytest.mark.parametrize("name,labels", RELAXED_MISSING)
def test_relaxed_missing(metrics, name, labels):
    with pytest.raises(MetricNotFoundError):
        get_float64_metric(metrics, name, labels, False)


@pytest.mark.parametrize("name,labels", STRICT_FOUND)
def test_strict_found(metrics, name, labels):
    found = get_float64_metric(metrics, name, labels, True)
    assert found.name == name
    assert found.labels == labels


@pytest.mark.parametrize("name,labels", STRICT_MISSING)
def test_strict_missing(metrics, name, labels):
    with pytest.raises(MetricNotFoundError):
        get_float64_metric(metrics, name, labels, True)


def test_values_parsed(metrics):
    uptime = get_float64_metric(metrics, "host_uptime", {}, False)
    assert uptime.value == 12345.0
    assert len(metrics) == 5


def test_carriage_returns_ignored():
    text = '# TYPE x counter\r\nx{a="b"} 2\r\n'
    assert parse_prometheus_metrics(text) == [Float64MetricRepresentation("x", {"a": "b"}, 2.0)]


def test_escaped_label_value():
    text = '# TYPE x gauge\nx{a="q\\"uote\\\\"} 1\n'
    parsed = parse_prometheus_metrics(text)
    assert parsed[0].labels == {"a": 'q"uote\\'}


def test_untyped_metric_rejected():
    with pytest.raises(ValueError):
        parse_prometheus_metrics("plain_metric 1\n")


def test_summary_rejected():
    text = "# TYPE rpc summary\nrpc_sum 4\nrpc_count 2\n"
    with pytest.raises(ValueError):
        parse_prometheus_metrics(text)


def test_malformed_line_rejected():
    with pytest.raises(ValueError):
        parse_prometheus_metrics("# TYPE x gauge\nx{a=\"b\" 1\n")


def test_bad_value_rejected():
    with pytest.raises(ValueError):
        parse_prometheus_metrics("# TYPE x gauge\nx notanumber\n")