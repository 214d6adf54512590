# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Guest session orchestration."""

from .controller import SessionController, SessionOptions
from .state import SessionState

__all__ = ["SessionController", "SessionOptions", "SessionState"]
