# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Enter guest root filesystems that share the host kernel and services."""

__version__ = "0.3.0"
