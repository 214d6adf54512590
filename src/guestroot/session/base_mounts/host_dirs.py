# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Base mount steps: host service directories and kernel modules."""

import os

from ..constants import HOST_MOUNT_BASE
from ..contexts import MountContext
from . import base_mount_pipeline, optional_bind

GUEST_MODULES_DIR = "/lib/modules"


@base_mount_pipeline.step(order=600)
def ipc_bus(ctx: MountContext) -> None:
    """Host system bus socket directory, for talking to host services."""
    optional_bind(ctx, ctx.config.host.dbus, f"{HOST_MOUNT_BASE}/dbus")


@base_mount_pipeline.step(order=700)
def network_state(ctx: MountContext) -> None:
    optional_bind(ctx, ctx.config.host.network, f"{HOST_MOUNT_BASE}/network")


@base_mount_pipeline.step(order=800)
def timezone(ctx: MountContext) -> None:
    optional_bind(ctx, ctx.config.host.timezone, f"{HOST_MOUNT_BASE}/timezone")


@base_mount_pipeline.step(order=900)
def kernel_modules(ctx: MountContext) -> None:
    """Expose the running kernel's module trees read-only."""
    modules = ctx.config.host.modules
    try:
        versions = sorted(os.listdir(modules))
    except OSError:
        ctx.warning(f"{modules} not present on host, skipping")
        return

    for version in versions:
        source = os.path.join(modules, version)
        if os.path.isdir(source):
            optional_bind(ctx, source, f"{GUEST_MODULES_DIR}/{version}", remount="ro")
