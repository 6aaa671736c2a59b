"""Lifecycle control for a background worker thread."""

from __future__ import annotations

import threading


class Tomb:
    """Coordinates stopping a worker and waiting until it has finished."""

    def __init__(self) -> None:
        self._stop = threading.Event()
        self._done = threading.Event()

    def stop(self) -> None:
        """Ask the worker to stop and block until it reports done."""
        self._stop.set()
        self._done.wait()

    def stopping(self) -> threading.Event:
        """Return the event the worker watches to learn it should stop."""
        return self._stop

    def done(self) -> None:
        """Called by the worker to report that it has stopped."""
        self._done.set()