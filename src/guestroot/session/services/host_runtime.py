# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Service step: expose the host user's runtime directory."""

import os

from ...errors import MountError
from ..constants import HOST_MOUNT_BASE
from ..contexts import ServiceContext
from . import services_pipeline


@services_pipeline.step(order=200)
def host_runtime_dir(ctx: ServiceContext) -> None:
    """Bind ``/run/user/<uid>`` so the guest reaches the host's sockets.

    The audio server and session bus of the host user live there.
    """
    if ctx.host_user is None:
        ctx.dim("No interactive host user, skipping runtime directory")
        return

    source = os.path.join(ctx.config.host.runtime, str(ctx.host_user.uid))
    if not os.path.isdir(source):
        ctx.dim(f"{source} not present on host, skipping")
        return
    try:
        ctx.mounts.bind_mount(source, f"{HOST_MOUNT_BASE}/runtime", propagation="rslave")
    except MountError as e:
        ctx.warning(f"Could not mount {source}: {e}")
