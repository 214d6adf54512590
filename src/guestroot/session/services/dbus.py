# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Service step: start the guest's own system bus."""

import logging
from pathlib import Path

from ...runner import in_guest
from ..contexts import ServiceContext
from . import services_pipeline

logger = logging.getLogger(__name__)

DBUS_DAEMON = "usr/bin/dbus-daemon"
DBUS_PIDFILE = "run/dbus/pid"


def read_pidfile(path: Path) -> int | None:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


@services_pipeline.step(order=300)
def system_bus(ctx: ServiceContext) -> None:
    """Start ``dbus-daemon --system`` unless it is already running.

    The daemon forks into the background.  Its pid is recorded on the
    context so teardown can tell it apart from other guest processes
    and stop it once nothing else is left in the guest.
    """
    if "dbus" not in ctx.config.services:
        return
    root = ctx.descriptor.root
    if not (root / DBUS_DAEMON).exists():
        ctx.dim("Guest has no dbus-daemon, skipping system bus")
        return
    if (root / DBUS_PIDFILE).exists():
        return

    ctx.info("Starting guest system bus")
    try:
        result = ctx.runner(
            in_guest(root, ["/" + DBUS_DAEMON, "--system", "--fork"]),
            check=False,
            capture=True,
        )
    except OSError as e:
        ctx.warning(f"Could not start the guest system bus: {e}")
        return
    if result.returncode != 0:
        detail = (result.stderr or "").strip() or f"exit status {result.returncode}"
        ctx.warning(f"Guest system bus failed to start: {detail}")
        return

    pid = read_pidfile(root / DBUS_PIDFILE)
    if pid is None:
        logger.debug("dbus-daemon left no readable %s", DBUS_PIDFILE)
        return
    ctx.started_pids.append(pid)
