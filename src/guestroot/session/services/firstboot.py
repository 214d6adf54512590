# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Service step: run the guest's first-boot scripts.

Scripts in ``etc/guestroot/firstboot.d`` run once per host boot, on the
first entry after ``/run`` was freshly mounted.  They run inside the
guest in lexical order; a failing script is reported and the rest still
run.
"""

import os
from pathlib import Path

from ...runner import in_guest
from ..constants import FIRSTBOOT_DIR
from ..contexts import ServiceContext
from ..watchdog import Watchdog
from . import services_pipeline


def firstboot_scripts(root: Path) -> list[str]:
    """Executable regular files in the first-boot directory, sorted."""
    directory = root / FIRSTBOOT_DIR
    try:
        names = sorted(os.listdir(directory))
    except OSError:
        return []
    return [
        n for n in names
        if (directory / n).is_file() and os.access(directory / n, os.X_OK)
    ]


@services_pipeline.step(order=400)
def run_firstboot(ctx: ServiceContext) -> None:
    if not ctx.first_run:
        return
    root = ctx.descriptor.root
    for name in firstboot_scripts(root):
        script = f"/{FIRSTBOOT_DIR}/{name}"
        ctx.info(f"Running first-boot script {name}")
        reminder = f"Still waiting for first-boot script {name}..."
        try:
            with Watchdog(ctx.config.reminder_interval, reminder, ctx.progress):
                result = ctx.runner(in_guest(root, [script]), check=False)
        except OSError as e:
            ctx.warning(f"Could not run first-boot script {name}: {e}")
            continue
        if result.returncode != 0:
            ctx.warning(f"First-boot script {name} exited with status {result.returncode}")
