# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Symlink resolution confined to a guest root.

Host tools follow an absolute symlink inside the guest (``/var/run ->
/run``) against the *host* root.  :class:`PathResolver` follows it the
way the guest would, against the guest root, so a mount destination
computed from guest paths can never land outside the guest tree.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from pathlib import Path

logger = logging.getLogger(__name__)

# Same order of magnitude as the kernel's MAXSYMLINKS.
DEFAULT_MAX_HOPS = 40


def _split(path: str) -> list[str]:
    return [p for p in path.split("/") if p not in ("", ".")]


class PathResolver:
    """Resolve guest paths to host paths below ``root``."""

    def __init__(self, root: str | os.PathLike[str], max_hops: int = DEFAULT_MAX_HOPS):
        self.root = Path(root)
        self.max_hops = max_hops

    def resolve(self, path: str | os.PathLike[str]) -> Path:
        """Return the host path that ``path`` (guest-relative) refers to.

        Every component is checked; a symlink component is replaced by
        its target, absolute targets restart from the guest root and
        ``..`` stops at the guest root.  When more than ``max_hops``
        links have been followed the remaining components are taken
        literally and the partial result is returned.
        """
        pending = deque(_split(os.fspath(path)))
        resolved: list[str] = []
        hops = 0
        cutoff_logged = False

        while pending:
            part = pending.popleft()
            if part == "..":
                if resolved:
                    resolved.pop()
                continue

            candidate = self.root.joinpath(*resolved, part)
            if not candidate.is_symlink():
                resolved.append(part)
                continue

            if hops >= self.max_hops:
                if not cutoff_logged:
                    logger.debug("Symlink limit reached resolving %s in %s", path, self.root)
                    cutoff_logged = True
                resolved.append(part)
                continue

            hops += 1
            target = os.readlink(candidate)
            if target.startswith("/"):
                resolved = []
            pending.extendleft(reversed(_split(target)))

        return self.root.joinpath(*resolved)

    def relative(self, path: str | os.PathLike[str]) -> str:
        """Resolve ``path`` and return it as an absolute guest path."""
        resolved = self.resolve(path)
        rel = resolved.relative_to(self.root).as_posix()
        return "/" if rel == "." else f"/{rel}"
