# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Exception types and the exit codes they map to.

Two classes of failure exist.  Fatal ones (:class:`SessionError`,
:class:`UsageError`, :class:`ConfigError`) abort the session with a
nonzero exit code.  Recoverable ones (:class:`MountError` for a single
optional resource) are caught by the step that owns the resource and
reported as a warning.
"""

from __future__ import annotations


class GuestrootError(Exception):
    """Base class for errors the CLI reports and exits on."""

    exit_code = 1


class SessionError(GuestrootError):
    """Resolvable precondition failure (no guest, bad mount state, setup failed)."""


class UsageError(GuestrootError):
    """Conflicting or invalid arguments."""

    exit_code = 2


class ConfigError(GuestrootError):
    """Invalid value in a configuration file."""


class MountError(GuestrootError):
    """A mount or unmount command failed."""

    def __init__(self, message: str, target: str | None = None):
        super().__init__(message)
        self.target = target


class SessionInterrupted(BaseException):
    """Raised from a signal handler when the session is interrupted.

    Derives from :class:`BaseException` so per-resource ``except``
    clauses never absorb it on the way out to the teardown path.
    """

    exit_code = 130

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum
