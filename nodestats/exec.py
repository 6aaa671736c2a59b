"""Starting commands in their own process group and killing the whole group."""

from __future__ import annotations

import os
import signal
import subprocess
from typing import Optional


class CommandNotStartedError(RuntimeError):
    """The command has no running process."""


class Command:
    """A command that runs in a new process group."""

    def __init__(self, name: str, *args: str) -> None:
        self.args: list[str] = [name, *args]
        self._process: Optional[subprocess.Popen[bytes]] = None

    @property
    def pid(self) -> Optional[int]:
        """The process id once started, else None."""
        return None if self._process is None else self._process.pid

    def start(self) -> None:
        """Start the process. Raises OSError if it cannot be run."""
        if self._process is not None:
            raise RuntimeError("command already started")
        self._process = subprocess.Popen(
            self.args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def _require_process(self) -> subprocess.Popen[bytes]:
        if self._process is None:
            raise CommandNotStartedError(f"{self.args} does not have a process handle")
        return self._process

    def kill(self) -> None:
        """Kill the process and everything in its process group."""
        process = self._require_process()
        os.killpg(process.pid, signal.SIGKILL)

    def wait(self, timeout: Optional[float] = None) -> int:
        """Wait for the process to end and return its exit status."""
        return self._require_process().wait(timeout)


def exec_command(name: str, *args: str) -> Command:
    """Prepare a command that will run in its own process group."""
    return Command(name, *args)