# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Session rollback stack and interruption handling.

Everything a session does that must be undone (mostly mounts) is
registered on a :class:`CleanupRegistry`.  The session controller runs
it from a ``finally`` block, so the actions fire on normal return, on a
fatal error and on a signal, each exactly once and newest first.

Signals are turned into :class:`~guestroot.errors.SessionInterrupted`
by :class:`InterruptGuard` while a session is active.  While the
registry itself is running, the same signals are ignored so teardown
cannot be cut short halfway through an unmount sequence.
"""

from __future__ import annotations

import logging
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from types import FrameType, TracebackType
from typing import Any

from .errors import SessionInterrupted

logger = logging.getLogger(__name__)

CleanupAction = Callable[[], None]

SESSION_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


@contextmanager
def signals_ignored() -> Iterator[None]:
    """Ignore the session signals for the duration of the block."""
    previous: dict[int, Any] = {}
    for sig in SESSION_SIGNALS:
        try:
            previous[sig] = signal.signal(sig, signal.SIG_IGN)
        except ValueError:
            # Not the main thread; signals are delivered elsewhere.
            pass
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


class CleanupRegistry:
    """Ordered rollback actions, run in reverse exactly once."""

    def __init__(self) -> None:
        self._actions: list[tuple[int, CleanupAction]] = []
        self._seq = 0
        self._done = False
        self._owned = True

    def register(self, action: CleanupAction) -> None:
        if self._done:
            raise RuntimeError("Cleanup registry has already run")
        self._actions.append((self._seq, action))
        self._seq += 1

    def unregister_last(self) -> CleanupAction | None:
        """Drop the newest action without running it and return it."""
        if not self._actions:
            return None
        return self._actions.pop()[1]

    def disown(self) -> None:
        """Hand responsibility for the actions to another process.

        Used after a fork: the child keeps an owned copy and runs it,
        the parent's copy becomes inert.
        """
        self._owned = False

    @property
    def owned(self) -> bool:
        return self._owned

    @property
    def done(self) -> bool:
        return self._done

    def run_all(self) -> None:
        """Run every action newest-first.

        Each action is removed before it is called, so a failure in one
        does not cause it to be retried and does not prevent the
        remaining actions from running.
        """
        if self._done or not self._owned:
            return
        self._done = True

        with signals_ignored():
            while self._actions:
                seq, action = self._actions.pop()
                try:
                    action()
                except Exception:
                    logger.warning("Cleanup action #%d failed", seq, exc_info=True)

    def __len__(self) -> int:
        return len(self._actions)

    def __enter__(self) -> CleanupRegistry:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.run_all()


class InterruptGuard:
    """Convert session signals into :class:`SessionInterrupted`.

    Previous handlers are restored on exit, so guards nest (the setup
    script sub-session installs its own while the parent's is active).
    """

    def __init__(self) -> None:
        self._previous: dict[int, Any] = {}

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        raise SessionInterrupted(signum)

    def __enter__(self) -> InterruptGuard:
        for sig in SESSION_SIGNALS:
            try:
                self._previous[sig] = signal.signal(sig, self._handle)
            except ValueError:
                pass
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()
