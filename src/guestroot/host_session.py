"""Find the user logged in at the host's seat.

Shares from the host user's home directory only make sense while that
user has a session.  systemd-logind knows, and is asked over the system
D-Bus; without logind the user that invoked ``sudo`` is used instead.
"""

from __future__ import annotations

import asyncio
import logging
import os
import pwd
from collections.abc import Mapping
from dataclasses import dataclass

from dbus_fast import AuthError, BusType, DBusError
from dbus_fast.aio import MessageBus

logger = logging.getLogger(__name__)

LOGIND_BUS_NAME = "org.freedesktop.login1"
LOGIND_PATH = "/org/freedesktop/login1"
LOGIND_MANAGER = "org.freedesktop.login1.Manager"


@dataclass(frozen=True)
class HostUser:
    name: str
    uid: int
    gid: int
    home: str


async def _list_sessions() -> list[tuple[str, int, str, str, str]]:
    """Call logind's ``ListSessions`` (signature ``a(susso)``)."""
    bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
    try:
        introspection = await bus.introspect(LOGIND_BUS_NAME, LOGIND_PATH)
        proxy = bus.get_proxy_object(LOGIND_BUS_NAME, LOGIND_PATH, introspection)
        manager = proxy.get_interface(LOGIND_MANAGER)
        sessions = await manager.call_list_sessions()  # type: ignore[attr-defined]
    finally:
        bus.disconnect()
    return [tuple(s) for s in sessions]  # type: ignore[misc]


def _seat_user() -> str | None:
    try:
        sessions = asyncio.run(_list_sessions())
    except (AuthError, DBusError, OSError, EOFError) as e:
        logger.debug("logind unavailable: %s", e)
        return None

    for _session_id, uid, user, seat, _path in sorted(sessions, key=lambda s: s[1]):
        if seat and uid != 0:
            return user
    return None


def _from_pwd(name: str) -> HostUser | None:
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        return None
    return HostUser(entry.pw_name, entry.pw_uid, entry.pw_gid, entry.pw_dir)


def find_host_user(env: Mapping[str, str] | None = None) -> HostUser | None:
    """Return the interactive host user, or None when nobody is logged in."""
    env = os.environ if env is None else env
    name = _seat_user() or env.get("SUDO_USER")
    if not name or name == "root":
        return None
    return _from_pwd(name)
