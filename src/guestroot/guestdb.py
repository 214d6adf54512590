# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Read the guest's ``/etc/passwd`` and ``/etc/group``.

The host's ``pwd``/``grp`` modules describe the host; the guest has its
own databases which we read directly from the guest tree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

# Lowest uid handed out to regular users by useradd.
FIRST_USER_UID = 1000
NOBODY_UID = 65534


@dataclass(frozen=True)
class GuestUser:
    name: str
    uid: int
    gid: int
    home: str
    shell: str


@dataclass
class GuestGroup:
    name: str
    gid: int | None
    members: list[str] = field(default_factory=lambda: list[str]())


def _records(path: Path, min_fields: int) -> list[list[str]]:
    records: list[list[str]] = []
    for line in path.read_text().splitlines():
        if not line or line.startswith("#"):
            continue
        fields = line.split(":")
        if len(fields) >= min_fields:
            records.append(fields)
    return records


def read_passwd(root: Path) -> list[GuestUser]:
    """Parse the guest passwd file.  Raises ``OSError`` if unreadable."""
    users: list[GuestUser] = []
    for f in _records(root / "etc" / "passwd", 7):
        try:
            uid, gid = int(f[2]), int(f[3])
        except ValueError:
            continue
        users.append(GuestUser(f[0], uid, gid, f[5], f[6] or "/bin/sh"))
    return users


def read_group(root: Path) -> list[GuestGroup]:
    """Parse the guest group file.  Raises ``OSError`` if unreadable."""
    groups: list[GuestGroup] = []
    for f in _records(root / "etc" / "group", 4):
        try:
            gid = int(f[2])
        except ValueError:
            continue
        members = [m for m in f[3].split(",") if m]
        groups.append(GuestGroup(f[0], gid, members))
    return groups


def find_user(users: list[GuestUser], requested: str | None) -> GuestUser | None:
    """Pick the guest user for a session.

    ``requested`` may be a name or a numeric uid.  Without a request the
    first regular user (uid >= 1000, not nobody) is used.
    """
    if requested:
        for user in users:
            if user.name == requested:
                return user
        if requested.isdigit():
            for user in users:
                if user.uid == int(requested):
                    return user
        return None

    for user in users:
        if user.uid >= FIRST_USER_UID and user.uid != NOBODY_UID:
            return user
    return None
