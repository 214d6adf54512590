# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Run a session command detached from the terminal.

The foreground process returns as soon as the child is forked.  The
child owns the session's cleanup registry from then on: it runs the
command, then tears down the mounts itself.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable
from typing import NoReturn

from ..cleanup import CleanupRegistry
from .execute import ExecPlan

logger = logging.getLogger(__name__)


def _detach_output() -> None:
    """Point stdout and stderr at /dev/null if they are terminals."""
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        for fd in (1, 2):
            if os.isatty(fd):
                os.dup2(devnull, fd)
    finally:
        os.close(devnull)


class BackgroundExecutor:
    def __init__(
        self,
        registry: CleanupRegistry,
        fork: Callable[[], int] = os.fork,
        setsid: Callable[[], object] = os.setsid,
        exit: Callable[[int], NoReturn] = os._exit,
    ):
        self.registry = registry
        self.child_pid: int | None = None
        self._fork = fork
        self._setsid = setsid
        self._exit = exit

    def launch(self, plan: ExecPlan) -> int:
        """Fork off ``plan``; returns 0 in the parent and never in the child."""
        stdin = os.dup(0)
        pid = self._fork()
        if pid:
            os.close(stdin)
            self.registry.disown()
            self.child_pid = pid
            logger.debug("Detached session command as pid %d", pid)
            return 0

        code = 1
        try:
            self._setsid()
            _detach_output()
            code = subprocess.run(plan.argv, env=plan.env, stdin=stdin, check=False).returncode
        except Exception:
            logger.exception("Background command failed to start")
        finally:
            os.close(stdin)
            self.registry.run_all()
            self._exit(code)
        raise AssertionError("unreachable")
