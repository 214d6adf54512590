# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Keep hardware-access group ids in the guest aligned with the host.

Device nodes are shared with the host, so their group ownership uses the
host's numeric ids.  A guest user in ``video`` only gets access to
``/dev/dri/*`` if the guest's ``video`` group has the same gid as the
host's.  For each group pair the guest group is renumbered (or created)
to match, moving any unrelated guest group that already owns the id out
of the way first.
"""

from __future__ import annotations

import grp
import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .guestdb import GuestGroup, read_group
from .runner import Runner, in_guest, run_cmd

logger = logging.getLogger(__name__)

# (host group, guest group)
GROUP_PAIRS: tuple[tuple[str, str], ...] = (
    ("video", "video"),
    ("audio", "audio"),
    ("input", "input"),
    ("render", "render"),
)


def host_gid(name: str) -> int | None:
    try:
        return grp.getgrnam(name).gr_gid
    except KeyError:
        return None


@dataclass
class ReconcileReport:
    changed: list[str] = field(default_factory=lambda: list[str]())
    failed: list[tuple[str, str]] = field(default_factory=lambda: list[tuple[str, str]]())


class IdentityReconciler:
    """Synchronize the gids of :data:`GROUP_PAIRS` between host and guest."""

    def __init__(
        self,
        root: Path,
        runner: Runner | None = None,
        lookup_host_gid: Callable[[str], int | None] = host_gid,
        pairs: tuple[tuple[str, str], ...] = GROUP_PAIRS,
        warn: Callable[[str], None] | None = None,
    ):
        self.root = Path(root)
        self.pairs = pairs
        self._run: Runner = runner or run_cmd
        self._host_gid = lookup_host_gid
        self._warn = warn or logger.warning
        self._groups: list[GuestGroup] = []

    def reconcile(self) -> ReconcileReport:
        report = ReconcileReport()
        try:
            self._groups = read_group(self.root)
        except OSError as e:
            self._warn(f"Cannot read guest group database: {e}")
            report.failed.append(("*", str(e)))
            return report

        for host_name, guest_name in self.pairs:
            try:
                if self._reconcile_pair(host_name, guest_name):
                    report.changed.append(guest_name)
            except (subprocess.CalledProcessError, OSError) as e:
                detail = getattr(e, "stderr", None) or str(e)
                self._warn(f"Could not reconcile group '{guest_name}': {detail.strip()}")
                report.failed.append((guest_name, detail.strip()))
        return report

    def _find(self, name: str) -> GuestGroup | None:
        for group in self._groups:
            if group.name == name:
                return group
        return None

    def _holder(self, gid: int) -> GuestGroup | None:
        for group in self._groups:
            if group.gid == gid:
                return group
        return None

    def next_free_gid(self, above: int) -> int:
        used = {g.gid for g in self._groups if g.gid is not None}
        candidate = above + 1
        while candidate in used:
            candidate += 1
        return candidate

    def _groupmod(self, group: GuestGroup, gid: int) -> None:
        self._run(in_guest(self.root, ["groupmod", "-g", str(gid), group.name]), check=True, capture=True)
        logger.debug("Guest group %s: %s -> %d", group.name, group.gid, gid)
        group.gid = gid

    def _groupadd(self, name: str, gid: int | None) -> None:
        cmd = ["groupadd", "-r", name] if gid is None else ["groupadd", "-g", str(gid), name]
        self._run(in_guest(self.root, cmd), check=True, capture=True)
        self._groups.append(GuestGroup(name, gid))

    def _reconcile_pair(self, host_name: str, guest_name: str) -> bool:
        """Returns True when the guest database was changed."""
        target = self._host_gid(host_name)
        existing = self._find(guest_name)

        if target is None:
            if existing is not None:
                return False
            # Host lacks the group; still give the guest a local one.
            self._groupadd(guest_name, None)
            return True

        if existing is not None and existing.gid == target:
            return False

        holder = self._holder(target)
        if holder is not None and holder is not existing:
            self._groupmod(holder, self.next_free_gid(target))

        if existing is not None:
            self._groupmod(existing, target)
        else:
            self._groupadd(guest_name, target)
        return True
