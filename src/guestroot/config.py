# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Layered guestroot configuration.

Configuration is read from (highest to lowest priority):

1. ``$XDG_CONFIG_HOME/guestroot/guestroot.conf`` (user)
2. ``/etc/guestroot/guestroot.conf`` (system)
3. the defaults in :data:`DEFAULTS`

The files are INI files with ``[guestroot]``, ``[host]`` and ``[shares]``
sections.  A couple of environment toggles are folded in on top so that
nothing downstream needs to look at the environment:

``GUESTROOT_NO_UNMOUNT``
    Leave mounts in place when the session ends.
``GUESTROOT_WEAK_RANDOM``
    Bind the guest's ``/dev/random`` to ``/dev/urandom``.
``GUESTROOT_CHROOTS``
    Override the chroots directory.
"""

from __future__ import annotations

import configparser
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger(__name__)

SYSTEM_CONFIG = Path("/etc/guestroot/guestroot.conf")

DEFAULTS: dict[str, dict[str, str]] = {
    "guestroot": {
        "chroots_dir": "/usr/local/chroots",
        "shared_dir": "/usr/local/shared",
        "auto_unmount": "true",
        "weak_random": "false",
        "reminder_interval": "60",
        "services": "dbus",
        "device_classes": "input, snd, dri",
    },
    "host": {
        "dev": "/dev",
        "tmp": "/tmp",
        "proc": "/proc",
        "sys": "/sys",
        "dbus": "/run/dbus",
        "network": "/run/NetworkManager",
        "timezone": "/etc/localtime",
        "modules": "/lib/modules",
        "media": "/media",
        "runtime": "/run/user",
        "os_release": "/etc/os-release",
    },
    "shares": {
        "myfiles": "{home}",
        "downloads": "{home}/Downloads",
        "encrypted": "{home}/Private",
    },
}


@dataclass(frozen=True)
class HostPaths:
    """Host locations exposed to guests."""

    dev: str = "/dev"
    tmp: str = "/tmp"
    proc: str = "/proc"
    sys: str = "/sys"
    dbus: str = "/run/dbus"
    network: str = "/run/NetworkManager"
    timezone: str = "/etc/localtime"
    modules: str = "/lib/modules"
    media: str = "/media"
    runtime: str = "/run/user"
    os_release: str = "/etc/os-release"


@dataclass(frozen=True)
class GuestrootConfig:
    chroots_dir: Path = Path("/usr/local/chroots")
    shared_dir: Path = Path("/usr/local/shared")
    auto_unmount: bool = True
    weak_random: bool = False
    reminder_interval: float = 60.0
    services: tuple[str, ...] = ("dbus",)
    device_classes: tuple[str, ...] = ("input", "snd", "dri")
    host: HostPaths = field(default_factory=HostPaths)
    # Host base directory templates per share category; ``{home}`` is the
    # interactive host user's home directory.
    share_bases: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULTS["shares"])
    )


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(v for v in value.replace(",", " ").split() if v)


def _env_flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "") not in ("", "0", "false", "no")


def user_config_path(home_dir: str | None = None, env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    xdg = env.get("XDG_CONFIG_HOME")
    if xdg:
        base = Path(xdg)
    else:
        base = Path(home_dir or os.path.expanduser("~")) / ".config"
    return base / "guestroot" / "guestroot.conf"


def load_config(
    home_dir: str | None = None,
    env: Mapping[str, str] | None = None,
    files: list[Path] | None = None,
) -> GuestrootConfig:
    """Load and merge configuration.

    Args:
        home_dir: Home directory used to locate the user config.
        env: Environment to read toggles from (default ``os.environ``).
        files: Explicit list of config files, lowest priority first.
            Defaults to the system file followed by the user file.

    Raises:
        ConfigError: On unparsable files or invalid values.
    """
    env = os.environ if env is None else env
    if files is None:
        files = [SYSTEM_CONFIG, user_config_path(home_dir, env)]

    cfg = configparser.ConfigParser(interpolation=None)
    cfg.read_dict(DEFAULTS)
    try:
        read = cfg.read([os.fspath(f) for f in files])
    except configparser.Error as e:
        raise ConfigError(f"Cannot parse configuration: {e}") from e
    for path in read:
        logger.debug("Loaded config: %s", path)

    main = cfg["guestroot"]
    try:
        auto_unmount = main.getboolean("auto_unmount")
        weak_random = main.getboolean("weak_random")
        reminder_interval = main.getfloat("reminder_interval")
    except ValueError as e:
        raise ConfigError(f"guestroot.conf: {e}") from e
    if reminder_interval <= 0:
        raise ConfigError("guestroot.conf: reminder_interval must be positive")

    known_host = {f.name for f in fields(HostPaths)}
    unknown = set(cfg["host"]) - known_host
    if unknown:
        raise ConfigError(f"guestroot.conf: unknown [host] keys: {', '.join(sorted(unknown))}")
    host = HostPaths(**{k: cfg["host"][k] for k in known_host})

    chroots_dir = env.get("GUESTROOT_CHROOTS") or main["chroots_dir"]
    if _env_flag(env, "GUESTROOT_NO_UNMOUNT"):
        auto_unmount = False
    if _env_flag(env, "GUESTROOT_WEAK_RANDOM"):
        weak_random = True

    return GuestrootConfig(
        chroots_dir=Path(chroots_dir),
        shared_dir=Path(main["shared_dir"]),
        auto_unmount=bool(auto_unmount),
        weak_random=bool(weak_random),
        reminder_interval=reminder_interval,
        services=_split_list(main["services"]),
        device_classes=_split_list(main["device_classes"]),
        host=host,
        share_bases=dict(cfg["shares"]),
    )
