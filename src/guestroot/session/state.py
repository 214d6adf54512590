# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Session states, in the order a session passes through them."""

from __future__ import annotations

import enum


class SessionState(enum.IntEnum):
    PARSING_ARGS = 0
    RESOLVING_CHROOT = 1
    MOUNTING_BASE = 2
    RUNNING_SETUP = 3
    MOUNTING_SHARES = 4
    RECONCILING_GROUPS = 5
    LAUNCHING_SERVICES = 6
    EXECUTING = 7
    TEARING_DOWN = 8


def can_transition(current: SessionState, new: SessionState) -> bool:
    """States only move forward (skipping is fine).

    Teardown is reachable from anywhere, and the setup step may repeat
    itself while the setup script still reports pending work.
    """
    if new is SessionState.TEARING_DOWN:
        return current is not SessionState.TEARING_DOWN
    if current is new is SessionState.RUNNING_SETUP:
        return True
    return new > current
