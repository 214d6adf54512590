# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Base mount steps: device nodes, shared memory and pseudo-terminals."""

import os

from ...errors import MountError, SessionError
from ..contexts import MountContext
from . import base_mount_pipeline, optional_bind


@base_mount_pipeline.step(order=100)
def device_nodes(ctx: MountContext) -> None:
    """Bind the host's /dev.  A guest without device nodes is unusable."""
    host = ctx.config.host
    try:
        ctx.mounts.bind_mount(host.dev, "/dev")
    except MountError as e:
        raise SessionError(f"Failed to mount /dev into {ctx.descriptor.root}: {e}") from e

    if ctx.config.weak_random:
        urandom = os.path.join(host.dev, "urandom")
        if optional_bind(ctx, urandom, "/dev/random"):
            ctx.dim("Using /dev/urandom as /dev/random")


@base_mount_pipeline.step(order=200)
def shm_and_pts(ctx: MountContext) -> None:
    host = ctx.config.host
    optional_bind(ctx, os.path.join(host.dev, "shm"), "/dev/shm")
    optional_bind(ctx, os.path.join(host.dev, "pts"), "/dev/pts")
