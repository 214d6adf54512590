# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Session lifecycle: from a request to a process inside the guest.

A :class:`SessionController` drives one entry into a guest through the
states in :class:`~guestroot.session.state.SessionState`.  Mounts made
along the way register their unmount with the controller's cleanup
registry, which runs on every exit path: normal return, a fatal error,
or an interrupting signal.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TextIO

from ..chroots import ChrootDescriptor, select_chroot
from ..cleanup import CleanupRegistry, InterruptGuard, signals_ignored
from ..config import GuestrootConfig
from ..errors import SessionError, UsageError
from ..groups import IdentityReconciler
from ..guestdb import GuestUser, find_user, read_passwd
from ..host_session import HostUser, find_host_user
from ..mounts import MountOrchestrator, MountTable, guest_in_use
from ..output import Output, out
from ..runner import Runner, run_cmd
from ..share_mounter import ShareMounter
from .background import BackgroundExecutor
from .base_mounts import base_mount_pipeline
from .constants import DEFAULT_TERM
from .contexts import MountContext, ServiceContext
from .execute import ROOT_USER, ExecPlan, ensure_guest_init, plan_chroot, plan_direct, plan_nsenter, run_foreground
from .services import services_pipeline
from .setup_script import run_setup_workflow
from .state import SessionState, can_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionOptions:
    """What the caller asked for."""

    name: str | None = None
    target: str | None = None
    user: str | None = None
    command: tuple[str, ...] = ()
    direct_script: str | None = None
    login: bool = False
    background: bool = False
    term: str = DEFAULT_TERM
    # Set for the nested session that runs the setup script.
    skip_setup: bool = False

    @property
    def mode(self) -> str:
        if self.direct_script:
            return "direct"
        if self.command:
            return "command"
        return "login"

    def validate(self) -> None:
        """Reject conflicting combinations.

        Raises:
            UsageError: describing the first conflict found.
        """
        if self.direct_script and self.command:
            raise UsageError("A direct script cannot be combined with a command")
        if self.direct_script and self.background:
            raise UsageError("A direct script cannot run in the background")
        if self.background and not self.command:
            raise UsageError("Background mode needs a command to run")
        if self.login and self.command:
            raise UsageError("--login starts an interactive shell and takes no command")


class SessionController:
    def __init__(
        self,
        config: GuestrootConfig,
        options: SessionOptions,
        runner: Runner | None = None,
        table: MountTable | None = None,
        progress: Output | None = None,
        host_user_lookup: Callable[[], HostUser | None] = find_host_user,
        is_root: Callable[[], bool] | None = None,
        proc: str = "/proc",
        stdin: TextIO | None = None,
        registry: CleanupRegistry | None = None,
        kill: Callable[[int, int], None] | None = None,
    ):
        self.config = config
        self.options = options
        self.runner: Runner = runner or run_cmd
        self.table = table or MountTable()
        self.progress = progress or out
        self.stdin = stdin if stdin is not None else sys.stdin
        self.proc = proc
        self._host_user_lookup = host_user_lookup
        self._is_root = is_root or (lambda: os.geteuid() == 0)
        self._kill = kill or os.kill

        self.state = SessionState.PARSING_ARGS
        # A nested session adds its mounts to its parent's registry and
        # leaves running it to the parent.
        self._owns_registry = registry is None
        self.registry = registry if registry is not None else CleanupRegistry()
        self.descriptor: ChrootDescriptor | None = None
        self.mounts: MountOrchestrator | None = None
        self.first_run = False
        self.guest_user: GuestUser | None = None
        self.host_user: HostUser | None = None
        self.guest_daemons: list[int] = []

    def advance(self, new: SessionState) -> None:
        if not can_transition(self.state, new):
            raise RuntimeError(f"Invalid session transition {self.state.name} -> {new.name}")
        logger.debug("Session state: %s -> %s", self.state.name, new.name)
        self.state = new

    def run(self) -> int:
        """Run the session and return the exit status of the guest process.

        Raises:
            SessionError: on a fatal precondition failure.
            UsageError: on conflicting options.
            SessionInterrupted: when a signal ends the session early.
        """
        with InterruptGuard():
            try:
                return self._run()
            finally:
                with signals_ignored():
                    self._teardown()

    def sub_session(self, script: str) -> SessionController:
        """A nested direct session that runs ``script``.

        It works through our mount orchestrator and cleanup registry, so
        whatever it mounts is torn down with the rest of this session
        instead of when it returns.
        """
        options = SessionOptions(
            name=self.chroot.root.name,
            direct_script=script,
            term=self.options.term,
            skip_setup=True,
        )
        nested = SessionController(
            self.config,
            options,
            runner=self.runner,
            table=self.table,
            progress=self.progress,
            host_user_lookup=self._host_user_lookup,
            is_root=self._is_root,
            proc=self.proc,
            stdin=self.stdin,
            registry=self.registry,
            kill=self._kill,
        )
        nested.mounts = self._orchestrator
        nested.guest_daemons = self.guest_daemons
        return nested

    @property
    def chroot(self) -> ChrootDescriptor:
        if self.descriptor is None:
            raise SessionError("No chroot has been selected for this session")
        return self.descriptor


    def _run(self) -> int:
        if not self._is_root():
            raise SessionError("guestroot needs to run as root")
        self.options.validate()

        self.advance(SessionState.RESOLVING_CHROOT)
        self.descriptor = select_chroot(self.config.chroots_dir, self.options.name, self.options.target)
        release = f" ({self.descriptor.release})" if self.descriptor.release else ""
        self.progress.dim(f"Entering {self.descriptor.name}{release}")

        self.advance(SessionState.MOUNTING_BASE)
        self._mount_base(self.descriptor)
        self.guest_user = self._resolve_guest_user(self.descriptor)

        mode = self.options.mode
        if mode == "login" and not self.options.skip_setup:
            run_setup_workflow(self)

        self.host_user = self._host_user_lookup()
        if mode != "direct":
            self.advance(SessionState.MOUNTING_SHARES)
            self._mount_shares(self.descriptor, self.guest_user)

        self.advance(SessionState.RECONCILING_GROUPS)
        IdentityReconciler(self.descriptor.root, self.runner, warn=self.progress.warning).reconcile()

        self.advance(SessionState.LAUNCHING_SERVICES)
        services_pipeline.run(
            ServiceContext(
                descriptor=self.descriptor,
                mounts=self._orchestrator,
                config=self.config,
                host_user=self.host_user,
                guest_user=self.guest_user,
                first_run=self.first_run,
                progress=self.progress,
                runner=self.runner,
                env=dict(os.environ),
                started_pids=self.guest_daemons,
            )
        )

        self.advance(SessionState.EXECUTING)
        plan = self._plan(self.descriptor, self.guest_user)
        if self.options.background:
            return BackgroundExecutor(self.registry).launch(plan)
        return run_foreground(plan)

    @property
    def _orchestrator(self) -> MountOrchestrator:
        if self.mounts is None:
            raise SessionError("The guest has not been mounted yet")
        return self.mounts

    def _mount_base(self, descriptor: ChrootDescriptor) -> None:
        if self.mounts is None:
            self.mounts = MountOrchestrator(
                descriptor.root,
                runner=self.runner,
                table=self.table,
                registry=self.registry if self.config.auto_unmount else None,
            )
        ctx = MountContext(descriptor, self.mounts, self.config, self.progress)
        base_mount_pipeline.run(ctx)
        self.first_run = ctx.first_run
        if self.first_run:
            logger.debug("First entry into %s since boot", descriptor.name)

    def _resolve_guest_user(self, descriptor: ChrootDescriptor) -> GuestUser:
        """The user to run as: requested, first regular user, or root."""
        try:
            users = read_passwd(descriptor.root)
        except OSError as e:
            if self.options.mode == "direct":
                return ROOT_USER
            raise SessionError(f"Cannot read the guest user database: {e}") from e

        user = find_user(users, self.options.user)
        if user is not None:
            return user
        if self.options.user:
            raise SessionError(f"User '{self.options.user}' does not exist in {descriptor.name}")

        root = next((u for u in users if u.uid == 0), ROOT_USER)
        if self.options.mode != "direct":
            self.progress.warning(f"No regular user in {descriptor.name}, using {root.name}")
        return root

    def _mount_shares(self, descriptor: ChrootDescriptor, guest_user: GuestUser) -> None:
        mounter = ShareMounter(
            descriptor.root,
            self._orchestrator,
            self.config,
            self.host_user,
            guest_user.home,
            warn=self.progress.warning,
            info=self.progress.dim,
        )
        mounter.mount_all()

    def _plan(self, descriptor: ChrootDescriptor, guest_user: GuestUser) -> ExecPlan:
        if self.options.direct_script:
            return plan_direct(descriptor.root, self.options.direct_script, self.options.term)
        if descriptor.external_init:
            pid = ensure_guest_init(descriptor, self.proc)
            return plan_nsenter(pid, guest_user, self.options.command)
        return plan_chroot(descriptor.root, guest_user, self.options.command)

    def _teardown(self) -> None:
        """Unmount what this session mounted, unless the guest is busy.

        Called with the session signals ignored.  Daemons this session
        started inside the guest do not count as keeping it busy; they
        are stopped when nothing else is left.
        """
        if self.state is not SessionState.TEARING_DOWN:
            self.advance(SessionState.TEARING_DOWN)
        if not self._owns_registry:
            return
        if self.mounts is not None and self.registry.owned and len(self.registry):
            busy = guest_in_use(self.mounts.root, self.proc, exclude=self.guest_daemons)
            if busy:
                self.mounts.retain = True
                self.progress.dim(
                    f"{self.descriptor.name if self.descriptor else 'Guest'} is still in use "
                    f"by {len(busy)} process(es), leaving it mounted"
                )
            else:
                self._stop_guest_daemons()
        self.registry.run_all()

    def _stop_guest_daemons(self) -> None:
        for pid in self.guest_daemons:
            try:
                self._kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                continue
            except OSError as e:
                self.progress.warning(f"Could not stop guest process {pid}: {e}")
                continue
            logger.debug("Stopped guest daemon %d", pid)
