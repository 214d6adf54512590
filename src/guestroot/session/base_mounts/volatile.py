# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Base mount steps: /tmp, /proc and the fresh /run tmpfs."""

from ...errors import MountError
from ..constants import LOCK_TMPFS_OPTIONS, RUN_TMPFS_OPTIONS
from ..contexts import MountContext
from . import base_mount_pipeline, optional_bind


@base_mount_pipeline.step(order=300)
def tmp_and_proc(ctx: MountContext) -> None:
    """Share /tmp (X11 sockets live there) and /proc with the host.

    Guests with their own init get a private /proc from the init's PID
    namespace instead, so both are left to it.
    """
    if ctx.descriptor.external_init:
        ctx.dim("Guest init manages /tmp and /proc")
        return
    optional_bind(ctx, ctx.config.host.tmp, "/tmp")
    optional_bind(ctx, ctx.config.host.proc, "/proc")


@base_mount_pipeline.step(order=400)
def run_tmpfs(ctx: MountContext) -> None:
    """Mount a fresh /run.

    Whether /run was already mounted is how a first entry since boot is
    told apart from re-entering a guest that another session prepared.
    """
    ctx.first_run = not ctx.mounts.is_mounted("/run")
    try:
        ctx.mounts.tmpfs_mount("/run", RUN_TMPFS_OPTIONS)
    except MountError as e:
        ctx.warning(f"Could not mount /run: {e}")


@base_mount_pipeline.step(order=500)
def lock_tmpfs(ctx: MountContext) -> None:
    try:
        ctx.mounts.tmpfs_mount("/run/lock", LOCK_TMPFS_OPTIONS)
    except MountError as e:
        ctx.warning(f"Could not mount /run/lock: {e}")
