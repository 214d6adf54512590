# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Shared fakes for guestroot tests.

Nothing here mounts anything: :class:`FakeRunner` records the commands
it is given and keeps a :class:`FakeMountTable` in step with the mount
and umount commands, so idempotence probes behave as on a real host.
"""

from __future__ import annotations

import io
import os
import shlex
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from guestroot.config import GuestrootConfig, HostPaths
from guestroot.mounts import MountTable
from guestroot.output import Output


class FakeMountTable(MountTable):
    def __init__(self, points: tuple[str, ...] = ()):
        super().__init__("/nonexistent/mountinfo")
        self.points: list[str] = [os.path.normpath(p) for p in points]

    def mount_points(self) -> list[str]:
        return list(self.points)


class FakeRunner:
    """Records commands; mount/umount update the attached table."""

    def __init__(self, table: FakeMountTable | None = None):
        self.table = table
        self.calls: list[list[str]] = []
        self._failures: dict[str, tuple[int, str]] = {}

    def fail(self, fragment: str, returncode: int = 1, stderr: str = "failed") -> None:
        """Make every command whose text contains ``fragment`` fail."""
        self._failures[fragment] = (returncode, stderr)

    def __call__(
        self, cmd: Any, check: bool = True, capture: bool = False, **kwargs: Any
    ) -> subprocess.CompletedProcess[str]:
        argv = [os.fspath(c) for c in cmd]
        self.calls.append(argv)
        line = shlex.join(argv)
        for fragment, (code, stderr) in self._failures.items():
            if fragment in line:
                if check:
                    raise subprocess.CalledProcessError(code, argv, output="", stderr=stderr)
                return subprocess.CompletedProcess(argv, code, "", stderr)
        self._apply(argv)
        return subprocess.CompletedProcess(argv, 0, "", "")

    def _apply(self, argv: list[str]) -> None:
        if self.table is None:
            return
        points = self.table.points
        if argv[0] == "mount" and (argv[1] in ("--bind", "--rbind") or argv[1:3] == ["-t", "tmpfs"]):
            points.append(os.path.normpath(argv[-1]))
        elif argv[0] == "umount":
            target = os.path.normpath(argv[-1])
            if "-R" in argv:
                self.table.points = [p for p in points if p != target and not p.startswith(target + "/")]
            elif target in points:
                del points[len(points) - 1 - points[::-1].index(target)]

    def commands(self, program: str) -> list[list[str]]:
        return [c for c in self.calls if c[0] == program]

    def mounted_targets(self) -> list[str]:
        """Targets of the mount commands that created a mount, in order."""
        return [
            c[-1] for c in self.commands("mount")
            if c[1] in ("--bind", "--rbind") or c[1:3] == ["-t", "tmpfs"]
        ]


def quiet_output() -> tuple[Output, io.StringIO]:
    buf = io.StringIO()
    return Output(Console(file=buf, width=200, highlight=False)), buf


@pytest.fixture
def output() -> tuple[Output, io.StringIO]:
    return quiet_output()


@pytest.fixture
def table() -> FakeMountTable:
    return FakeMountTable()


@pytest.fixture
def runner(table: FakeMountTable) -> FakeRunner:
    return FakeRunner(table)


@pytest.fixture
def host_paths(tmp_path: Path) -> HostPaths:
    """A host tree with most optional resources present.

    There is no ``dev/dri``, so that device class gets filtered out.
    """
    host = tmp_path / "host"
    for d in (
        "dev/shm", "dev/pts", "dev/input", "dev/snd", "tmp", "proc", "sys",
        "run/dbus", "run/NetworkManager", "lib/modules/6.1.0", "media", "run/user/1000",
    ):
        (host / d).mkdir(parents=True)
    (host / "dev/urandom").touch()
    (host / "etc").mkdir()
    (host / "etc/localtime").write_text("TZif")
    (host / "etc/os-release").write_text('ID=hostos\nVERSION_ID="1"\n')
    return HostPaths(
        dev=str(host / "dev"),
        tmp=str(host / "tmp"),
        proc=str(host / "proc"),
        sys=str(host / "sys"),
        dbus=str(host / "run/dbus"),
        network=str(host / "run/NetworkManager"),
        timezone=str(host / "etc/localtime"),
        modules=str(host / "lib/modules"),
        media=str(host / "media"),
        runtime=str(host / "run/user"),
        os_release=str(host / "etc/os-release"),
    )


@pytest.fixture
def config(tmp_path: Path, host_paths: HostPaths) -> GuestrootConfig:
    (tmp_path / "chroots").mkdir()
    return GuestrootConfig(
        chroots_dir=tmp_path / "chroots",
        shared_dir=tmp_path / "shared",
        host=host_paths,
        reminder_interval=30.0,
    )


DEFAULT_PASSWD = """\
root:x:0:0:root:/root:/bin/bash
nobody:x:65534:65534:nobody:/nonexistent:/usr/sbin/nologin
alice:x:1000:1000:Alice:/home/alice:/bin/zsh
"""

DEFAULT_GROUP = """\
root:x:0:
audio:x:29:alice
video:x:988:alice
alice:x:1000:
"""


@pytest.fixture
def make_guest(config: GuestrootConfig) -> Callable[..., Path]:
    """Factory building a minimal guest tree in the chroots directory."""

    def _make(
        name: str = "focal",
        passwd: str | None = DEFAULT_PASSWD,
        group: str | None = DEFAULT_GROUP,
        release: str | None = "focal",
        targets: str | None = None,
        init: str | None = None,
    ) -> Path:
        root = config.chroots_dir / name
        (root / "etc/guestroot").mkdir(parents=True)
        if passwd is not None:
            (root / "etc/passwd").write_text(passwd)
        if group is not None:
            (root / "etc/group").write_text(group)
        if release is not None:
            (root / "etc/guestroot/release").write_text(f"{release}\n")
        if targets is not None:
            (root / "etc/guestroot/targets").write_text(f"{targets}\n")
        if init is not None:
            (root / "etc/guestroot/init").write_text(init)
        return root

    return _make
