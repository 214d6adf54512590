# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Service pipeline: guest-side state and daemons a session relies on.

Importing this package registers all steps with the pipeline.
"""

from ...pipeline import Pipeline
from ..contexts import ServiceContext

services_pipeline = Pipeline[ServiceContext]("services")

# Import step modules so their decorators register with the pipeline.
from . import metadata as _  # noqa: F401, E402
from . import host_runtime as _  # noqa: F401, E402
from . import dbus as _  # noqa: F401, E402
from . import firstboot as _  # noqa: F401, E402
