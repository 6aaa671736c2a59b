"""An inspectable in-memory stand-in for integer metrics."""

from __future__ import annotations

from typing import Optional, Union

from nodestats.metrics import Aggregation, Int64MetricRepresentation


class FakeInt64Metric:
    """Records integer measurements in memory so they can be inspected."""

    def __init__(self, name: str, aggregation: Union[Aggregation, str], tag_names: list[str]) -> None:
        self._name = name
        self._aggregation = aggregation
        self._allowed_tags = frozenset(tag_names)
        self._metrics: list[Int64MetricRepresentation] = []

    def record(self, tags: dict[str, str], measurement: int) -> None:
        """Record a measurement; raise ValueError for disallowed tags or aggregation."""
        labels: dict[str, str] = {}
        for tag_name, tag_value in tags.items():
            if tag_name not in self._allowed_tags:
                raise ValueError(f"tag {tag_name!r} is not allowed")
            labels[tag_name] = tag_value

        target = next((m for m in self._metrics if m.labels == labels), None)
        if target is None:
            target = Int64MetricRepresentation(self._name, labels, 0)
            self._metrics.append(target)

        if self._aggregation == Aggregation.LAST_VALUE:
            target.value = int(measurement)
        elif self._aggregation == Aggregation.SUM:
            target.value += int(measurement)
        else:
            raise ValueError("unsupported aggregation type")

    def list_metrics(self) -> list[Int64MetricRepresentation]:
        """Return the current metric rows."""
        return list(self._metrics)


def new_fake_int64_metric(
    name: str, aggregation: Union[Aggregation, str], tag_names: list[str]
) -> Optional[FakeInt64Metric]:
    """Create a fake metric; return None when ``name`` is empty."""
    if not name:
        return None
    return FakeInt64Metric(name, aggregation, tag_names)