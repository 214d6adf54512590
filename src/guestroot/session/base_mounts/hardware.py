# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Base mount steps: hot-pluggable hardware trees.

Device-class directories and removable media are mounted recursively
and marked shared, so devices the host sees appear in the guest.  /sys
is marked slave as well: host changes come in, guest changes stay put.
"""

import logging
import os

from ...errors import MountError
from ..constants import HOST_MOUNT_BASE, SELINUX_PLACEHOLDER
from ..contexts import MountContext
from . import base_mount_pipeline, optional_bind

logger = logging.getLogger(__name__)


@base_mount_pipeline.step(order=1000)
def device_classes(ctx: MountContext) -> None:
    host_dev = ctx.config.host.dev
    for device_class in ctx.config.device_classes:
        source = os.path.join(host_dev, device_class)
        if not os.path.isdir(source):
            # No such hardware on this host.
            logger.debug("Skipping device class %s", device_class)
            continue
        optional_bind(ctx, source, f"/dev/{device_class}", recursive=True, propagation="rshared")


@base_mount_pipeline.step(order=1100)
def sysfs(ctx: MountContext) -> None:
    """Recursive /sys, with the host's SELinux filesystem covered.

    Guest tools that find selinuxfs assume SELinux policy applies to
    them; an empty read-only tmpfs with ``enforce`` set to 0 makes them
    see a permissive system instead.
    """
    if not optional_bind(ctx, ctx.config.host.sys, "/sys", recursive=True, propagation="rslave"):
        return

    placeholder = ctx.mounts.target(SELINUX_PLACEHOLDER)
    if not placeholder.is_dir():
        return
    try:
        ctx.mounts.tmpfs_mount(SELINUX_PLACEHOLDER, "mode=0755", stack=True)
        (placeholder / "enforce").write_text("0\n")
        ctx.mounts.remount(SELINUX_PLACEHOLDER, "ro")
    except (MountError, OSError) as e:
        ctx.warning(f"Could not neutralize {SELINUX_PLACEHOLDER}: {e}")


@base_mount_pipeline.step(order=1200)
def removable_media(ctx: MountContext) -> None:
    optional_bind(
        ctx, ctx.config.host.media, f"{HOST_MOUNT_BASE}/media",
        recursive=True, propagation="rshared",
    )
