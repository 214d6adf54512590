# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Idempotent bind and tmpfs mounts into a guest root.

Nothing about mounts is persisted between runs.  Before every mount the
live mount table is probed for the (symlink-resolved) destination, and
an already-mounted destination is left alone.  That makes re-entering a
guest that another session has already prepared a no-op.

A bind mount copies the flags of its source and ignores most ``-o``
flags on the initial ``mount --bind``; read-only or ``noexec`` need a
second ``remount,bind`` pass, which :meth:`MountOrchestrator.bind_mount`
performs when ``remount`` is given.
"""

from __future__ import annotations

import enum
import logging
import os
import re
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from .cleanup import CleanupRegistry
from .errors import MountError
from .paths import PathResolver
from .runner import Runner, run_cmd

logger = logging.getLogger(__name__)

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


def _unescape(field: str) -> str:
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


class MountTable:
    """Live view of the mount table, re-read on every query."""

    def __init__(self, mountinfo: str = "/proc/self/mountinfo"):
        self.mountinfo = mountinfo

    def mount_points(self) -> list[str]:
        points: list[str] = []
        with open(self.mountinfo) as f:
            for line in f:
                fields = line.split()
                if len(fields) > 4:
                    points.append(_unescape(fields[4]))
        return points

    def is_mounted(self, path: str | os.PathLike[str]) -> bool:
        return os.path.normpath(os.fspath(path)) in self.mount_points()


class MountKind(enum.Enum):
    BIND = "bind"
    RECURSIVE_BIND = "recursive-bind"
    TMPFS = "tmpfs"


@dataclass(frozen=True)
class MountRecord:
    """A mount made by this session.  ``destination`` is a guest path."""

    source: str
    destination: str
    kind: MountKind
    remount: str | None = None
    propagation: str | None = None


class MountOrchestrator:
    """Mount primitives for one guest root.

    When ``registry`` is set, every fresh mount registers its own
    unmount.  Destinations that were already mounted are never
    registered, so a session only tears down what it created.
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        runner: Runner | None = None,
        table: MountTable | None = None,
        registry: CleanupRegistry | None = None,
        resolver: PathResolver | None = None,
    ):
        self.root = Path(root)
        self.resolver = resolver or PathResolver(self.root)
        self.table = table or MountTable()
        self.registry = registry
        self.records: list[MountRecord] = []
        # Set at teardown when other processes still live in the guest.
        self.retain = False
        self._run: Runner = runner or run_cmd

    def target(self, destination: str | os.PathLike[str]) -> Path:
        """Host path for a guest destination, symlinks resolved in the guest."""
        return self.resolver.resolve(destination)

    def is_mounted(self, destination: str | os.PathLike[str]) -> bool:
        return self.table.is_mounted(self.target(destination))

    def bind_mount(
        self,
        source: str | os.PathLike[str],
        destination: str | os.PathLike[str] | None = None,
        options: str = "",
        remount: str | None = None,
        recursive: bool = False,
        propagation: str | None = None,
    ) -> bool:
        """Bind ``source`` (host path) at ``destination`` (guest path).

        ``destination`` defaults to ``source``.  Returns ``False`` when
        the destination was already a mount point.
        """
        dest = destination if destination is not None else source
        target = self.target(dest)
        if self.table.is_mounted(target):
            logger.debug("Already mounted: %s", target)
            return False

        src = Path(source)
        self._prepare_target(target, as_file=src.exists() and not src.is_dir())

        cmd: list[str | os.PathLike[str]] = ["mount", "--rbind" if recursive else "--bind"]
        if options:
            cmd += ["-o", options]
        self._mount([*cmd, src, target], target)

        kind = MountKind.RECURSIVE_BIND if recursive else MountKind.BIND
        self._track(MountRecord(os.fspath(src), self._guest_path(target), kind, remount, propagation), target)

        if remount:
            self._mount(["mount", "-o", f"remount,bind,{remount}", target], target)
        if propagation:
            self._mount(["mount", f"--make-{propagation}", target], target)
        return True

    def tmpfs_mount(self, destination: str | os.PathLike[str], options: str = "", stack: bool = False) -> bool:
        """Mount a fresh tmpfs at ``destination`` (guest path).

        With ``stack`` the tmpfs is mounted on top of whatever is
        already mounted there, which is how a filesystem that came in
        with a recursive bind gets covered.
        """
        target = self.target(destination)
        if not stack and self.table.is_mounted(target):
            logger.debug("Already mounted: %s", target)
            return False

        self._prepare_target(target, as_file=False)
        cmd: list[str | os.PathLike[str]] = ["mount", "-t", "tmpfs"]
        if options:
            cmd += ["-o", options]
        self._mount([*cmd, "tmpfs", target], target)
        self._track(MountRecord("tmpfs", self._guest_path(target), MountKind.TMPFS, options or None), target)
        return True

    def remount(self, destination: str | os.PathLike[str], options: str) -> None:
        target = self.target(destination)
        self._mount(["mount", "-o", f"remount,{options}", target], target)

    def unmount(self, target: Path, recursive: bool = False) -> None:
        """Unmount ``target`` (host path), falling back to a lazy unmount."""
        if self.retain:
            logger.debug("Guest still in use, keeping %s", target)
            return
        if not self.table.is_mounted(target):
            return

        cmd = ["umount", "-R", target] if recursive else ["umount", target]
        try:
            self._run(cmd, check=True, capture=True)
        except subprocess.CalledProcessError:
            logger.debug("umount %s failed, detaching lazily", target)
            self._mount(["umount", "-l", target], target)

    def _track(self, record: MountRecord, target: Path) -> None:
        self.records.append(record)
        if self.registry is not None:
            recursive = record.kind is MountKind.RECURSIVE_BIND
            self.registry.register(partial(self.unmount, target, recursive))

    def _guest_path(self, target: Path) -> str:
        rel = target.relative_to(self.root).as_posix()
        return "/" if rel == "." else f"/{rel}"

    def _prepare_target(self, target: Path, as_file: bool) -> None:
        try:
            if as_file:
                target.parent.mkdir(parents=True, exist_ok=True)
                if not target.exists():
                    target.touch()
            else:
                target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise MountError(f"Cannot create mount point {target}: {e}", os.fspath(target)) from e

    def _mount(self, cmd: Sequence[str | os.PathLike[str]], target: Path) -> None:
        try:
            self._run(cmd, check=True, capture=True)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
            argv = shlex.join(os.fspath(c) for c in cmd)
            raise MountError(f"{argv}: {detail}", os.fspath(target)) from e
        except FileNotFoundError as e:
            raise MountError(f"{cmd[0]} not found", os.fspath(target)) from e


def guest_in_use(
    root: str | os.PathLike[str],
    proc: str = "/proc",
    exclude: Sequence[int] = (),
) -> list[int]:
    """PIDs of processes whose root directory is the guest root."""
    real_root = os.path.realpath(root)
    skip = {os.getpid(), *exclude}
    pids: list[int] = []
    try:
        entries = os.listdir(proc)
    except OSError:
        return pids

    for entry in entries:
        if not entry.isdigit() or int(entry) in skip:
            continue
        try:
            proc_root = os.readlink(os.path.join(proc, entry, "root"))
        except OSError:
            continue
        if proc_root == real_root:
            pids.append(int(entry))
    return sorted(pids)
