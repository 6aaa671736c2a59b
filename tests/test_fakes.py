import pytest

from nodestats.fakes import FakeInt64Metric, new_fake_int64_metric
from nodestats.metrics import Aggregation, Int64MetricRepresentation as R


def _by_labels(rep):
    return sorted(rep.labels.items())


CASES = [
    ("empty sum metric", Aggregation.SUM, [], [], []),
    (
        "sum metric with no tag",
        Aggregation.SUM,
        [],
        [({}, 1), ({}, 2)],
        [R("foo", {}, 3)],
    ),
    (
        "sum metric with one tag",
        Aggregation.SUM,
        ["A"],
        [({"A": "1"}, 1), ({"A": "1"}, 2)],
        [R("foo", {"A": "1"}, 3)],
    ),
    (
        "sum metric with different tags",
        Aggregation.SUM,
        ["A", "B"],
        [({"A": "1"}, 1), ({"B": "2"}, 2), ({}, 4), ({"B": "3"}, 8), ({"A": "1"}, 16)],
        [
            R("foo", {}, 4),
            R("foo", {"A": "1"}, 17),
            R("foo", {"B": "2"}, 2),
            R("foo", {"B": "3"}, 8),
        ],
    ),
    ("empty gauge metric", Aggregation.LAST_VALUE, [], [], []),
    (
        "gauge metric with one measurement",
        Aggregation.LAST_VALUE,
        [],
        [({}, 2)],
        [R("foo", {}, 2)],
    ),
    (
        "gauge metric with multiple measurements under same tag",
        Aggregation.LAST_VALUE,
        ["A"],
        [({"A": "1"}, 2), ({"A": "1"}, 4)],
        [R("foo", {"A": "1"}, 4)],
    ),
    (
        "gauge metric with multiple measurements under different tags",
        Aggregation.LAST_VALUE,
        ["A", "B"],
        [({"A": "1"}, 2), ({"B": "2"}, 4), ({"A": "1", "B": "2"}, 8)],
        [
            R("foo", {"A": "1"}, 2),
            R("foo", {"B": "2"}, 4),
            R("foo", {"A": "1", "B": "2"}, 8),
        ],
    ),
]


@pytest.mark.parametrize(
    "aggregation,tag_names,records,expected",
    [case[1:] for case in CASES],
    ids=[case[0] for case in CASES],
)
def test_fake_int64_metric(aggregation, tag_names, records, expected):
    metric = new_fake_int64_metric("foo", aggregation, tag_names)
    for tags, measurement in records:
        metric.record(tags, measurement)
    got = metric.list_metrics()
    assert sorted(got, key=_by_labels) == sorted(expected, key=_by_labels)


def test_empty_name_returns_none():
    assert new_fake_int64_metric("", Aggregation.SUM, []) is None


def test_disallowed_tag_raises():
    metric = FakeInt64Metric("foo", Aggregation.SUM, ["A"])
    with pytest.raises(ValueError):
        metric.record({"B": "1"}, 1)
    assert metric.list_metrics() == []


def test_unsupported_aggregation_raises():
    metric = FakeInt64Metric("foo", "Median", [])
    with pytest.raises(ValueError):
        metric.record({}, 1)