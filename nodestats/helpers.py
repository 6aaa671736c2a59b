"""Durations, condition events, start-time calculation and OS identification."""

from __future__ import annotations

import json
import platform
import re
import sys
import time
from datetime import datetime, timedelta
from typing import Optional

import psutil

from nodestats.types import ConditionStatus, Event, Severity

OS_RELEASE_PATH = "/etc/os-release"

_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_COMPONENT = r"(\d*)(?:\.(\d*))?(ns|us|\u00b5s|\u03bcs|ms|s|m|h)"
_COMPONENT_RE = re.compile(_COMPONENT)
_DURATION_RE = re.compile(rf"(?:{_COMPONENT})+")

_DEBIAN_LIKE = frozenset(
    {"debian", "ubuntu", "centos", "rocky", "rhel", "ol", "amzn", "sles", "mariner", "azurelinux"}
)


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "-1.5h" or "2h45m" into a timedelta."""
    original = text
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text or not _DURATION_RE.fullmatch(text):
        raise ValueError(f"invalid duration {original!r}")
    total = 0
    for whole, frac, unit in _COMPONENT_RE.findall(text):
        if not whole and not frac:
            raise ValueError(f"invalid duration {original!r}")
        scale = _UNIT_NANOS[unit]
        total += int(whole or "0") * scale
        if frac:
            total += int(frac) * scale // 10 ** len(frac)
    return timedelta(microseconds=sign * total / 1000)


def _fraction(value: int, divisor: int) -> str:
    whole, frac = divmod(value, divisor)
    digits = len(str(divisor)) - 1
    frac_text = str(frac).rjust(digits, "0").rstrip("0")
    return f"{whole}.{frac_text}" if frac_text else str(whole)


def format_duration(duration: timedelta) -> str:
    """Format a timedelta the way durations are written, e.g. "1m0s" or "1.5ms"."""
    nanos = ((duration.days * 86400 + duration.seconds) * 1_000_000 + duration.microseconds) * 1000
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos < 1_000:
        return f"{sign}{nanos}ns"
    if nanos < 1_000_000:
        return f"{sign}{_fraction(nanos, 1_000)}\u00b5s"
    if nanos < 1_000_000_000:
        return f"{sign}{_fraction(nanos, 1_000_000)}ms"
    hours, rest = divmod(nanos, _UNIT_NANOS["h"])
    minutes, rest = divmod(rest, _UNIT_NANOS["m"])
    text = f"{_fraction(rest, 1_000_000_000)}s"
    if hours:
        text = f"{hours}h{minutes}m{text}"
    elif minutes:
        text = f"{minutes}m{text}"
    return sign + text


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def generate_condition_change_event(
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    message: str,
    timestamp: datetime,
) -> Event:
    """Build the event announcing that a node condition changed."""
    status = ConditionStatus(status)
    severity = Severity.WARN if status is ConditionStatus.TRUE else Severity.INFO
    return Event(
        severity=severity,
        timestamp=timestamp,
        reason=reason,
        message=(
            f"Node condition {condition_type} is now: {status.value}, "
            f"reason: {reason}, message: {_quote(message)}"
        ),
    )


def get_start_time(now: datetime, uptime: timedelta, lookback: str, delay: str) -> datetime:
    """Work out from when logs should be read, given uptime, lookback and delay.

    Raises ValueError if ``lookback`` or ``delay`` is not a valid duration.
    """
    start_time = now - uptime

    # A delay skips the first logs after boot until the node is stable; the
    # start time may then lie after ``now``.
    if delay:
        try:
            start_time += parse_duration(delay)
        except ValueError as err:
            raise ValueError(f"failed to parse delay duration {delay!r}: {err}") from err

    lookback_start = now
    if lookback:
        try:
            lookback_start = now - parse_duration(lookback)
        except ValueError as err:
            raise ValueError(f"failed to parse lookback duration {lookback!r}: {err}") from err

    return max(start_time, lookback_start)


def get_uptime_duration() -> timedelta:
    """Return the time elapsed since the last boot, in whole seconds."""
    seconds = int(time.time() - psutil.boot_time())
    return timedelta(seconds=max(seconds, 0))


def read_os_release(path: str) -> dict[str, str]:
    """Read an os-release file into a mapping of keys to unquoted values."""
    result: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for raw in handle:
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            result[key.strip()] = value
    return result


def get_os_version(os_release_path: Optional[str] = None) -> str:
    """Return a short OS description such as "cos 77-12293.0.0".

    Raises ValueError for an unsupported distribution ID.
    """
    if os_release_path is None:
        if sys.platform == "darwin":
            return f"darwin {platform.mac_ver()[0]}"
        os_release_path = OS_RELEASE_PATH
    fields = read_os_release(os_release_path)
    os_id = fields.get("ID", "")
    if os_id == "cos":
        return f"{os_id} {fields.get('VERSION', '')}-{fields.get('BUILD_ID', '')}"
    if os_id in _DEBIAN_LIKE:
        return f"{os_id} {fields.get('VERSION', '')}"
    raise ValueError(f"Unsupported ID in /etc/os-release: {_quote(os_id)}")