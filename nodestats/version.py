"""Version string of the node statistics monitor."""

import sys

_VERSION = "UNKNOWN"


def version() -> str:
    """Return the version string."""
    return _VERSION


def print_version() -> None:
    """Write the version string and a newline to standard output."""
    sys.stdout.write(f"{version()}\n")
    sys.stdout.flush()