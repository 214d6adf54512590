# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Base mount pipeline: the host resources every guest session sees.

Importing this package registers all steps with the pipeline.  The
step orders fix the mount sequence: devices, volatile filesystems, host
service directories, then hardware trees.
"""

from __future__ import annotations

import os

from ...errors import MountError
from ...pipeline import Pipeline
from ..contexts import MountContext

base_mount_pipeline = Pipeline[MountContext]("base_mounts")


def optional_bind(ctx: MountContext, source: str, destination: str, **kwargs: object) -> bool:
    """Bind a host resource that may be missing on this host.

    A missing source or a failed mount is reported and skipped.
    """
    if not os.path.exists(source):
        ctx.warning(f"{source} not present on host, skipping")
        return False
    try:
        return ctx.mounts.bind_mount(source, destination, **kwargs)  # type: ignore[arg-type]
    except MountError as e:
        ctx.warning(f"Could not mount {source}: {e}")
        return False


# Import step modules so their decorators register with the pipeline.
from . import devices as _  # noqa: F401, E402
from . import volatile as _  # noqa: F401, E402
from . import host_dirs as _  # noqa: F401, E402
from . import hardware as _  # noqa: F401, E402
