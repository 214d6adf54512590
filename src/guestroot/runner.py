# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Thin subprocess helpers shared by the mount and guest-side code."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Runner(Protocol):
    def __call__(
        self, cmd: Sequence[str | os.PathLike[str]], check: bool = True, capture: bool = False, **kwargs: Any
    ) -> subprocess.CompletedProcess[str]: ...


def run_cmd(
    cmd: Sequence[str | os.PathLike[str]],
    check: bool = True,
    capture: bool = False,
    **kwargs: Any,
) -> subprocess.CompletedProcess[str]:
    """Run a command, logging it at debug level."""
    argv = [os.fspath(c) for c in cmd]
    logger.debug("Running: %s", shlex.join(argv))
    return subprocess.run(argv, check=check, capture_output=capture, text=True, **kwargs)


def in_guest(root: Path, cmd: Sequence[str]) -> list[str]:
    """Wrap ``cmd`` so it runs with the guest as its root directory."""
    return ["chroot", os.fspath(root), *cmd]
