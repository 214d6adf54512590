# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Apply the guest's share file by bind-mounting host directories."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from .config import GuestrootConfig
from .errors import MountError
from .host_session import HostUser
from .mounts import MountOrchestrator, MountRecord
from .shares import ShareCategory, ShareParseResult, ShareRule, ensure_shares_file, parse_shares

logger = logging.getLogger(__name__)

SHARES_FILE = "etc/guestroot/shares"


class ShareMounter:
    """Expand share rules into mounts for one session.

    A share whose host side is unavailable, or whose mount fails, is
    reported through ``warn`` and skipped; it never stops the others.
    """

    def __init__(
        self,
        root: Path,
        mounts: MountOrchestrator,
        config: GuestrootConfig,
        host_user: HostUser | None,
        guest_home: str,
        warn: Callable[[str], None] | None = None,
        info: Callable[[str], None] | None = None,
    ):
        self.root = Path(root)
        self.mounts = mounts
        self.config = config
        self.host_user = host_user
        self.guest_home = guest_home.rstrip("/") or "/"
        self._warn = warn or logger.warning
        self._info = info or logger.info

    @property
    def shares_file(self) -> Path:
        return self.root / SHARES_FILE

    def load(self) -> ShareParseResult:
        if ensure_shares_file(self.shares_file):
            self._info(f"Created default share file at /{SHARES_FILE}")
        result = parse_shares(self.shares_file.read_text())
        for issue in result.issues:
            self._warn(f"/{SHARES_FILE}: invalid share on {issue}")
        return result

    def host_base(self, category: ShareCategory) -> Path | None:
        """Host directory backing a share category, or None if unavailable."""
        if category is ShareCategory.SHARED:
            shared = self.config.shared_dir
            shared.mkdir(parents=True, exist_ok=True)
            return shared
        if category is ShareCategory.INVALID or self.host_user is None:
            return None
        template = self.config.share_bases.get(category.value)
        if not template:
            return None
        return Path(template.replace("{home}", self.host_user.home))

    def destination(self, rule: ShareRule) -> str:
        """Guest path for a rule's destination, with ``~`` expanded."""
        dest = rule.destination
        if not dest.startswith("~"):
            return dest
        user, _, rest = dest[1:].partition("/")
        home = f"/home/{user}" if user else self.guest_home
        return f"{home.rstrip('/')}/{rest}"

    def mount_rule(self, rule: ShareRule) -> bool:
        if rule.category is ShareCategory.INVALID:
            self._warn(f"Unknown share source '{rule.source}', skipping")
            return False

        base = self.host_base(rule.category)
        if base is None:
            self._warn(f"Share source '{rule.category.value}' is not available in this session, skipping")
            return False

        source = base / rule.suffix if rule.suffix else base
        if not source.resolve().is_relative_to(base.resolve()):
            self._warn(f"Share source {source} leaves {base}, skipping")
            return False
        if not source.is_dir():
            self._warn(f"Share source {source} does not exist, skipping")
            return False

        dest = self.destination(rule)
        if self.mounts.bind_mount(source, dest, remount=",".join(rule.options)):
            self._info(f"Shared {source} at {dest}")
        return True

    def mount_all(self) -> list[MountRecord]:
        """Mount every valid share; returns the mounts actually made."""
        try:
            result = self.load()
        except OSError as e:
            self._warn(f"Cannot read /{SHARES_FILE}: {e}")
            return []

        before = len(self.mounts.records)
        for rule in result.rules:
            try:
                self.mount_rule(rule)
            except (MountError, OSError) as e:
                self._warn(f"Failed to share {rule.source} at {rule.destination}: {e}")
        return self.mounts.records[before:]
