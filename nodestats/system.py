"""Kernel command line arguments and loaded kernel modules read from procfs."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Iterable

_UINT64_RE = re.compile(r"[0-9]+")
_UINT64_MAX = 2**64 - 1


@dataclass(frozen=True)
class CmdlineArg:
    """One kernel command line parameter, with its value if it has one."""

    key: str
    value: str = ""

    def __str__(self) -> str:
        return json.dumps({"key": self.key, "value": self.value}, separators=(",", ":"))


@dataclass(frozen=True)
class Module:
    """A loaded kernel module and its taint flags."""

    module_name: str
    instances: int = 0
    proprietary: bool = False
    out_of_tree: bool = False
    unsigned: bool = False

    def __str__(self) -> str:
        return json.dumps(
            {
                "moduleName": self.module_name,
                "instances": self.instances,
                "proprietary": self.proprietary,
                "outOfTree": self.out_of_tree,
                "unsigned": self.unsigned,
            },
            separators=(",", ":"),
        )


def read_file_into_lines(filename: str) -> list[str]:
    """Return the lines of a file without their line endings."""
    lines: list[str] = []
    with open(filename, encoding="utf-8", errors="replace", newline="") as handle:
        for raw in handle:
            line = raw[:-1] if raw.endswith("\n") else raw
            if line.endswith("\r"):
                line = line[:-1]
            lines.append(line)
    return lines


def contains_module(key: str, values: Iterable[Module]) -> bool:
    """Tell whether a module named ``key`` is among ``values``."""
    return any(module.module_name == key for module in values)


def _split_outside_quotes(line: str) -> list[str]:
    # Parameters are separated by spaces, but a double-quoted part may hold spaces.
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
            current.append(ch)
        elif ch == " " and not in_quotes:
            if current:
                fields.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        fields.append("".join(current))
    return fields


def cmdline_args(cmdline_file_path: str) -> list[CmdlineArg]:
    """Parse the kernel command line file (normally /proc/cmdline).

    Raises OSError if the file cannot be read and ValueError if it is empty.
    """
    try:
        lines = read_file_into_lines(cmdline_file_path)
    except OSError as err:
        raise OSError(f"error reading the file {cmdline_file_path}, {err}") from err
    if not lines:
        raise ValueError("no lines are returned")

    result: list[CmdlineArg] = []
    for word in _split_outside_quotes(lines[0]):
        if word.startswith('"'):
            continue
        tokens = word.split("=")
        if len(tokens) < 2:
            result.append(CmdlineArg(tokens[0]))
        else:
            result.append(CmdlineArg(tokens[0], tokens[1].strip("\"'")))
    return result


def _parse_instances(text: str) -> int:
    if not _UINT64_RE.fullmatch(text):
        return 0
    value = int(text)
    return value if value <= _UINT64_MAX else 0


def modules(modules_file_path: str) -> list[Module]:
    """Parse the loaded kernel modules file (normally /proc/modules).

    Each line reads: name, size, instances, dependencies, state, offset and
    optionally taint flags ("P" proprietary, "O" out of tree, "E" unsigned).
    Raises OSError if the file cannot be read and ValueError on a short line.
    """
    try:
        lines = read_file_into_lines(modules_file_path)
    except OSError as err:
        raise OSError(f"error reading the contents of {modules_file_path}: {err}") from err

    result: list[Module] = []
    for line in lines:
        fields = line.split()
        if not fields:
            continue
        if len(fields) < 3:
            raise ValueError(f"malformed module line {line!r}")
        taint = fields[6] if len(fields) > 6 else ""
        result.append(
            Module(
                module_name=fields[0],
                instances=_parse_instances(fields[2]),
                proprietary="P" in taint,
                out_of_tree="O" in taint,
                unsigned="E" in taint,
            )
        )
    return result


def modules_from_json(text: str) -> list[Module]:
    """Read a JSON list of modules as written in a known-modules file.

    Raises ValueError for invalid JSON or a document that is not a list of objects.
    """
    data = json.loads(text)
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("known modules must be a JSON list")
    result: list[Module] = []
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError(f"known module entry must be an object, got {entry!r}")
        result.append(
            Module(
                module_name=str(entry.get("moduleName", "")),
                instances=int(entry.get("instances", 0)),
                proprietary=bool(entry.get("proprietary", False)),
                out_of_tree=bool(entry.get("outOfTree", False)),
                unsigned=bool(entry.get("unsigned", False)),
            )
        )
    return result