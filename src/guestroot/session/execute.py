# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Turn a session request into the command that runs inside the guest.

Three plain modes run through ``chroot``:

direct
    ``chroot <root> <script>`` with an environment holding only ``TERM``.
login
    An interactive login shell of the guest user via ``su --login``.
command
    The same, running ``--command`` with the arguments re-quoted for the
    guest's shell.

Guests that bring their own init system are entered with ``nsenter``
into the namespaces of that init instead, starting it first if needed.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import FrameType

from ..chroots import ChrootDescriptor
from ..errors import SessionError
from ..guestdb import GuestUser
from ..runner import in_guest
from .constants import INIT_POLL_ATTEMPTS

logger = logging.getLogger(__name__)

ROOT_USER = GuestUser("root", 0, 0, "/root", "/bin/sh")


@dataclass(frozen=True)
class ExecPlan:
    """An argv plus the environment to run it with (None inherits)."""

    argv: list[str]
    env: dict[str, str] | None = None

    def __str__(self) -> str:
        return shlex.join(self.argv)


def su_argv(user: GuestUser, command: Sequence[str] = ()) -> list[str]:
    argv = ["su", "--login", "--shell", user.shell, user.name]
    if command:
        argv += ["--command", shlex.join(command)]
    return argv


def plan_direct(root: Path, script: str, term: str) -> ExecPlan:
    return ExecPlan(in_guest(root, [script]), {"TERM": term})


def plan_chroot(root: Path, user: GuestUser, command: Sequence[str] = ()) -> ExecPlan:
    return ExecPlan(in_guest(root, su_argv(user, command)))


def plan_nsenter(pid: int, user: GuestUser, command: Sequence[str] = ()) -> ExecPlan:
    return ExecPlan(["nsenter", "--target", str(pid), "--all", "--root", "--wd", "--", *su_argv(user, command)])


def _innermost_nspid(status: str) -> int | None:
    for line in status.splitlines():
        if line.startswith("NSpid:"):
            ids = line.split()[1:]
            return int(ids[-1]) if ids else None
    return None


def find_guest_init(root: str | os.PathLike[str], proc: str = "/proc") -> int | None:
    """PID (in our namespace) of the guest's init, if one is running.

    That is a process whose root directory is the guest and which is
    PID 1 of its own PID namespace.
    """
    real_root = os.path.realpath(root)
    try:
        entries = sorted((e for e in os.listdir(proc) if e.isdigit()), key=int)
    except OSError:
        return None

    for entry in entries:
        base = os.path.join(proc, entry)
        try:
            if os.readlink(os.path.join(base, "root")) != real_root:
                continue
            with open(os.path.join(base, "status")) as f:
                nspid = _innermost_nspid(f.read())
        except (OSError, ValueError):
            continue
        if nspid == 1:
            return int(entry)
    return None


def init_command(descriptor: ChrootDescriptor) -> list[str]:
    root = os.fspath(descriptor.root)
    return [
        "unshare", "--fork", "--pid", "--mount", "--uts", "--ipc",
        f"--mount-proc={root}/proc",
        *in_guest(descriptor.root, [descriptor.init_path]),
    ]


def start_guest_init(
    descriptor: ChrootDescriptor,
    proc: str = "/proc",
    attempts: int = INIT_POLL_ATTEMPTS,
    interval: float = 0.1,
    popen: Callable[..., object] = subprocess.Popen,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Start the guest init in fresh namespaces and wait for it to appear.

    Raises:
        SessionError: if the init cannot be started or never shows up.
    """
    cmd = init_command(descriptor)
    logger.debug("Starting guest init: %s", shlex.join(cmd))
    try:
        popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise SessionError(f"Cannot start guest init {descriptor.init_path}: {e}") from e

    for _ in range(attempts):
        pid = find_guest_init(descriptor.root, proc)
        if pid is not None:
            return pid
        sleep(interval)
    raise SessionError(f"Guest init {descriptor.init_path} did not start")


def ensure_guest_init(descriptor: ChrootDescriptor, proc: str = "/proc") -> int:
    pid = find_guest_init(descriptor.root, proc)
    if pid is not None:
        logger.debug("Guest init already running as pid %d", pid)
        return pid
    return start_guest_init(descriptor, proc)


def _forward_to_child(signum: int, frame: FrameType | None) -> None:
    # The foreground child shares our terminal and gets the same SIGINT.
    pass


def run_foreground(plan: ExecPlan) -> int:
    """Run ``plan`` attached to our terminal and return its exit status.

    Ctrl-C belongs to the program inside the guest while it runs.  A
    Python handler rather than ``SIG_IGN`` is installed, since an
    ignored disposition would be inherited across ``exec``.
    """
    logger.debug("Executing: %s", plan)
    previous = signal.signal(signal.SIGINT, _forward_to_child)
    try:
        result = subprocess.run(plan.argv, env=plan.env, check=False)
    except FileNotFoundError as e:
        raise SessionError(f"{plan.argv[0]} not found") from e
    finally:
        signal.signal(signal.SIGINT, previous)
    return result.returncode
