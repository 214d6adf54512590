# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Service step: refresh the host information copied into the guest.

Guest-side scripts read these to adapt to the host they run on: which
name the guest was entered under, the host's OS release, the host audio
server version (so a matching client library can be picked) and the
display authority token of the host user.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path

from ..constants import HOST_COPY_DIR
from ..contexts import ServiceContext
from . import services_pipeline

logger = logging.getLogger(__name__)

AUDIO_SERVERS = ("pipewire", "pulseaudio")


def audio_server_version() -> str | None:
    """First line of ``--version`` from the host's audio server, if any."""
    for server in AUDIO_SERVERS:
        path = shutil.which(server)
        if not path:
            continue
        try:
            result = subprocess.run([path, "--version"], capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("%s --version failed: %s", server, e)
            continue
        lines = result.stdout.strip().splitlines()
        if result.returncode == 0 and lines:
            return lines[0]
    return None


def _xauthority_source(ctx: ServiceContext) -> Path | None:
    xauth = ctx.env.get("XAUTHORITY")
    if xauth:
        return Path(xauth)
    if ctx.host_user is not None:
        return Path(ctx.host_user.home) / ".Xauthority"
    return None


@services_pipeline.step(order=100)
def refresh_metadata(ctx: ServiceContext) -> None:
    root = ctx.descriptor.root
    host_dir = root / HOST_COPY_DIR
    try:
        host_dir.mkdir(parents=True, exist_ok=True)
        (ctx.descriptor.meta_dir / "name").write_text(f"{ctx.descriptor.name}\n")
    except OSError as e:
        ctx.warning(f"Cannot write guest metadata: {e}")
        return

    try:
        shutil.copyfile(ctx.config.host.os_release, host_dir / "os-release")
    except OSError as e:
        logger.debug("Not copying os-release: %s", e)

    version = audio_server_version()
    if version:
        (host_dir / "audio-version").write_text(f"{version}\n")

    source = _xauthority_source(ctx)
    if source is None or not source.is_file():
        return
    dest = host_dir / "Xauthority"
    try:
        shutil.copyfile(source, dest)
        os.chmod(dest, 0o600)
        if ctx.guest_user is not None:
            os.chown(dest, ctx.guest_user.uid, ctx.guest_user.gid)
    except OSError as e:
        ctx.warning(f"Cannot copy display authority: {e}")
