"""Periodic reminder while a long-running step blocks the session."""

from __future__ import annotations

import threading
from types import TracebackType

from ..output import Output


class Watchdog:
    """Print ``message`` every ``interval`` seconds until the block exits.

    The reminder runs on a daemon thread that waits on an event, so
    leaving the ``with`` block stops it promptly.
    """

    def __init__(self, interval: float, message: str, progress: Output | None = None):
        self.interval = interval
        self.message = message
        self.progress = progress
        self.reminders = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.reminders += 1
            if self.progress:
                self.progress.dim(self.message)

    def __enter__(self) -> Watchdog:
        self._thread = threading.Thread(target=self._loop, name="guestroot-watchdog", daemon=True)
        self._thread.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
