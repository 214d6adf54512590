# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Context dataclasses passed through the session pipelines."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from ..chroots import ChrootDescriptor
from ..config import GuestrootConfig
from ..guestdb import GuestUser
from ..host_session import HostUser
from ..mounts import MountOrchestrator
from ..output import Output
from ..runner import Runner, run_cmd


@dataclass
class MountContext:
    """Context passed through the base mount pipeline.

    Steps set ``first_run`` when they find the guest's ``/run`` was not
    yet mounted.  Steps guard their own preconditions (e.g. skip
    ``/proc`` when the guest brings its own init).
    """

    descriptor: ChrootDescriptor
    mounts: MountOrchestrator
    config: GuestrootConfig
    progress: Output | None = None
    first_run: bool = False

    def info(self, msg: str) -> None:
        if self.progress:
            self.progress.info(msg)

    def dim(self, msg: str) -> None:
        if self.progress:
            self.progress.dim(msg)

    def warning(self, msg: str) -> None:
        if self.progress:
            self.progress.warning(msg)


@dataclass
class ServiceContext:
    """Context passed through the service launch pipeline."""

    descriptor: ChrootDescriptor
    mounts: MountOrchestrator
    config: GuestrootConfig
    host_user: HostUser | None
    guest_user: GuestUser | None
    first_run: bool
    progress: Output | None = None
    runner: Runner = run_cmd
    env: Mapping[str, str] = field(default_factory=lambda: dict[str, str]())
    # PIDs of guest daemons this session started; stopped at teardown.
    started_pids: list[int] = field(default_factory=lambda: list[int]())

    def info(self, msg: str) -> None:
        if self.progress:
            self.progress.info(msg)

    def dim(self, msg: str) -> None:
        if self.progress:
            self.progress.dim(msg)

    def warning(self, msg: str) -> None:
        if self.progress:
            self.progress.warning(msg)
