# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Constants shared across the session package."""

from __future__ import annotations

# Host resources appear under this guest directory.
HOST_MOUNT_BASE = "/var/host"

# Guest metadata, relative to the guest root.
META_DIR = "etc/guestroot"
HOST_COPY_DIR = f"{META_DIR}/host"
FIRSTBOOT_DIR = f"{META_DIR}/firstboot.d"

# Setup script left in the guest by provisioning.
SETUP_SCRIPT = "/prepare.sh"
# Mode a setup script sets on itself once it completed but has not been
# removed yet.
SETUP_DONE_MODE = 0o500
SETUP_MAX_PASSES = 3

# mount options
RUN_TMPFS_OPTIONS = "noexec,nosuid,mode=0755,size=10%"
LOCK_TMPFS_OPTIONS = "noexec,nosuid,nodev,size=5120k"
SELINUX_PLACEHOLDER = "sys/fs/selinux"

DEFAULT_TERM = "xterm"

# Attempts (0.1 s apart) to find a freshly started guest init.
INIT_POLL_ATTEMPTS = 50
