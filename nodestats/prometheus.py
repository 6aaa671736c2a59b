"""Parsing of Prometheus text-format metrics and lookup of parsed rows."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from nodestats.metrics import Float64MetricRepresentation

_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_KNOWN_TYPES = ("counter", "gauge", "histogram", "summary", "untyped")
_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}


class MetricNotFoundError(LookupError):
    """No metric matches the requested name and labels."""


@dataclass
class _Family:
    name: str
    type: Optional[str] = None
    samples: list[tuple[dict[str, str], float]] = field(default_factory=list)


def _parse_value(text: str, line: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"invalid sample value {text!r} in line {line!r}") from None


def _parse_labels(line: str, pos: int) -> tuple[dict[str, str], int]:
    labels: dict[str, str] = {}
    pos += 1  # opening brace
    while True:
        while pos < len(line) and line[pos] in " \t":
            pos += 1
        if pos < len(line) and line[pos] == "}":
            return labels, pos + 1
        match = _LABEL_NAME_RE.match(line, pos)
        if not match:
            raise ValueError(f"invalid label name in line {line!r}")
        name = match.group()
        pos = match.end()
        while pos < len(line) and line[pos] in " \t":
            pos += 1
        if pos >= len(line) or line[pos] != "=":
            raise ValueError(f"expected '=' after label name in line {line!r}")
        pos += 1
        while pos < len(line) and line[pos] in " \t":
            pos += 1
        if pos >= len(line) or line[pos] != '"':
            raise ValueError(f"expected quoted label value in line {line!r}")
        pos += 1
        chars: list[str] = []
        while True:
            if pos >= len(line):
                raise ValueError(f"unterminated label value in line {line!r}")
            ch = line[pos]
            if ch == "\\":
                if pos + 1 >= len(line) or line[pos + 1] not in _ESCAPES:
                    raise ValueError(f"invalid escape in label value in line {line!r}")
                chars.append(_ESCAPES[line[pos + 1]])
                pos += 2
                continue
            if ch == '"':
                pos += 1
                break
            chars.append(ch)
            pos += 1
        if name in labels:
            raise ValueError(f"duplicate label {name!r} in line {line!r}")
        labels[name] = "".join(chars)
        while pos < len(line) and line[pos] in " \t":
            pos += 1
        if pos < len(line) and line[pos] == ",":
            pos += 1
        elif pos < len(line) and line[pos] == "}":
            return labels, pos + 1
        else:
            raise ValueError(f"expected ',' or '}}' in line {line!r}")


def _family_for(families: dict[str, _Family], name: str) -> _Family:
    if name in families:
        return families[name]
    for suffix in ("_bucket", "_count", "_sum"):
        if name.endswith(suffix):
            base = families.get(name[: -len(suffix)])
            if base is not None and base.type in ("histogram", "summary"):
                return base
    family = _Family(name)
    families[name] = family
    return family


def _parse_families(text: str) -> list[_Family]:
    families: dict[str, _Family] = {}
    for raw in text.split("\n"):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            parts = line[1:].split(None, 3)
            if len(parts) >= 2 and parts[0] in ("TYPE", "HELP"):
                if not _NAME_RE.fullmatch(parts[1]):
                    raise ValueError(f"invalid metric name in comment line {line!r}")
                if parts[0] == "TYPE":
                    if len(parts) < 3 or parts[2] not in _KNOWN_TYPES:
                        raise ValueError(f"invalid TYPE line {line!r}")
                    family = families.setdefault(parts[1], _Family(parts[1]))
                    if family.type is not None:
                        raise ValueError(f"second TYPE line for metric name {parts[1]!r}")
                    if family.samples:
                        raise ValueError(f"TYPE line for {parts[1]!r} after samples")
                    family.type = parts[2]
            continue
        match = _NAME_RE.match(line)
        if not match:
            raise ValueError(f"invalid metric name in line {line!r}")
        name = match.group()
        pos = match.end()
        labels: dict[str, str] = {}
        if pos < len(line) and line[pos] == "{":
            labels, pos = _parse_labels(line, pos)
        rest = line[pos:].split()
        if not rest or len(rest) > 2:
            raise ValueError(f"invalid sample line {line!r}")
        value = _parse_value(rest[0], line)
        if len(rest) == 2:
            try:
                int(rest[1])
            except ValueError:
                raise ValueError(f"invalid timestamp in line {line!r}") from None
        _family_for(families, name).samples.append((labels, value))
    return list(families.values())


def parse_prometheus_metrics(metrics_text: str) -> list[Float64MetricRepresentation]:
    """Parse Prometheus text format into rows; only counters and gauges are accepted.

    Raises ValueError on malformed input or other metric types.
    """
    metrics: list[Float64MetricRepresentation] = []
    for family in _parse_families(metrics_text.replace("\r", "")):
        if not family.samples:
            continue
        family_type = family.type or "untyped"
        if family_type not in ("counter", "gauge"):
            raise ValueError(
                f"unexpected MetricType {family_type.upper()} for metric {family.name}"
            )
        for labels, value in family.samples:
            metrics.append(Float64MetricRepresentation(family.name, dict(labels), value))
    return metrics


def get_float64_metric(
    metrics: list[Float64MetricRepresentation],
    name: str,
    labels: dict[str, str],
    strict_label_matching: bool = False,
) -> Float64MetricRepresentation:
    """Find the metric with ``name`` whose labels match ``labels``.

    With strict matching the label sets must be identical; otherwise the
    metric's labels must be a superset. Raises MetricNotFoundError.
    """
    for metric in metrics:
        if metric.name != name:
            continue
        if strict_label_matching and len(metric.labels) != len(labels):
            continue
        if all(metric.labels.get(key, "") == value for key, value in labels.items()):
            return metric
    raise MetricNotFoundError("no matching metric found")