# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Discover guests in the chroots directory and read their metadata.

Each guest is a directory below the chroots directory.  Its metadata
lives in ``etc/guestroot/`` inside the guest:

``release``
    Release tag of the guest distribution.
``targets``
    Capability tags (e.g. ``audio xorg``), comma or whitespace separated.
``init``
    Present when the guest runs its own init system; the content is the
    init path (default ``/sbin/init``).
``name``
    Written on every entry so the guest can tell which name it was
    entered under.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .errors import SessionError

logger = logging.getLogger(__name__)

META_DIR = "etc/guestroot"
ENCRYPTION_MARKER = ".ecryptfs"
DEFAULT_INIT = "/sbin/init"


@dataclass(frozen=True)
class ChrootDescriptor:
    name: str
    root: Path
    release: str = ""
    external_init: bool = False
    init_path: str = DEFAULT_INIT
    targets: frozenset[str] = field(default_factory=lambda: frozenset[str]())

    @property
    def meta_dir(self) -> Path:
        return self.root / META_DIR


def _read_meta(root: Path, name: str) -> str | None:
    try:
        return (root / META_DIR / name).read_text().strip()
    except OSError:
        return None


def is_usable(root: Path) -> bool:
    return (root / "etc").is_dir()


def is_encrypted_only(root: Path) -> bool:
    return (root / ENCRYPTION_MARKER).exists() and not is_usable(root)


def read_descriptor(root: Path, name: str | None = None) -> ChrootDescriptor:
    targets = _read_meta(root, "targets") or ""
    init = _read_meta(root, "init")
    return ChrootDescriptor(
        name=name or root.name,
        root=root,
        release=_read_meta(root, "release") or "",
        external_init=init is not None,
        init_path=init or DEFAULT_INIT,
        targets=frozenset(t for t in targets.replace(",", " ").split() if t),
    )


def list_chroots(chroots_dir: Path) -> list[Path]:
    """Candidate guest roots in a deterministic order.

    Entries with neither a usable tree nor an encryption marker are
    left out.
    """
    try:
        entries = sorted(chroots_dir.iterdir())
    except OSError:
        return []
    found: list[Path] = []
    for entry in entries:
        if not entry.is_dir():
            continue
        if is_usable(entry) or (entry / ENCRYPTION_MARKER).exists():
            found.append(entry)
        else:
            logger.debug("Skipping %s: not a guest root", entry)
    return found


def select_chroot(
    chroots_dir: Path,
    name: str | None = None,
    target: str | None = None,
) -> ChrootDescriptor:
    """Resolve the guest to enter.

    Raises:
        SessionError: if no matching guest exists.
    """
    if name:
        if "/" in name or name in (".", ".."):
            raise SessionError(f"Invalid chroot name: {name!r}")
        root = chroots_dir / name
        if not root.is_dir():
            raise SessionError(f"Chroot '{name}' not found in {chroots_dir}")
        if is_encrypted_only(root):
            raise SessionError(f"Chroot '{name}' is encrypted and not unlocked")
        if not is_usable(root):
            raise SessionError(f"'{root}' is not a valid chroot")
        descriptor = read_descriptor(root, name)
        if target and target not in descriptor.targets:
            raise SessionError(f"Chroot '{name}' does not provide target '{target}'")
        return descriptor

    candidates = list_chroots(chroots_dir)
    if not candidates:
        raise SessionError(f"No chroots found in {chroots_dir}")

    for root in candidates:
        if not target:
            if is_encrypted_only(root):
                raise SessionError(f"Chroot '{root.name}' is encrypted and not unlocked")
            return read_descriptor(root)
        if not is_usable(root):
            # Encrypted guests cannot be inspected for targets.
            continue
        descriptor = read_descriptor(root)
        if target in descriptor.targets:
            return descriptor

    raise SessionError(f"No chroots with target '{target}' found in {chroots_dir}")
