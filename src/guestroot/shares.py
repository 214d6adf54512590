# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Parser for the guest's directory-sharing file.

The file is line oriented.  Each rule is::

    SOURCE DEST [OPTIONS]

``SOURCE`` starts with one of the share categories (``myfiles``,
``downloads``, ``encrypted``, ``shared``) optionally followed by a
subdirectory.  ``DEST`` is an absolute guest path or starts with ``~``.
``OPTIONS`` is a comma separated list of lowercase mount flags.  Either
path may be double or single quoted to include whitespace; quotes cannot
be nested or escaped.

A line that does not parse is reported with its line number and text
and skipped; the remaining lines are still parsed.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_OPTIONS = ("exec",)

_OPTIONS_RE = re.compile(r"[a-z,]*")
_QUOTES = "\"'"


class ShareCategory(enum.Enum):
    MYFILES = "myfiles"
    DOWNLOADS = "downloads"
    ENCRYPTED = "encrypted"
    SHARED = "shared"
    INVALID = "invalid"


class TokenizeError(ValueError):
    pass


@dataclass(frozen=True)
class ShareRule:
    category: ShareCategory
    suffix: str
    destination: str
    options: tuple[str, ...] = DEFAULT_OPTIONS

    @property
    def source(self) -> str:
        if self.category is ShareCategory.INVALID:
            return self.suffix
        return f"{self.category.value}/{self.suffix}"

    def to_line(self) -> str:
        """Render the rule back into share-file syntax."""
        return " ".join([_quote(self.source), _quote(self.destination), ",".join(self.options)])


@dataclass(frozen=True)
class ParseIssue:
    lineno: int
    text: str
    reason: str

    def __str__(self) -> str:
        return f"line {self.lineno}: {self.reason}: {self.text}"


@dataclass
class ShareParseResult:
    rules: list[ShareRule] = field(default_factory=lambda: list[ShareRule]())
    issues: list[ParseIssue] = field(default_factory=lambda: list[ParseIssue]())


def _quote(token: str) -> str:
    if token and not any(c.isspace() for c in token):
        return token
    return f"'{token}'" if '"' in token else f'"{token}"'


def tokenize(line: str) -> list[str]:
    """Split a rule line into bare and quoted tokens."""
    tokens: list[str] = []
    i, n = 0, len(line)
    while i < n:
        c = line[i]
        if c.isspace():
            i += 1
            continue
        if c in _QUOTES:
            end = line.find(c, i + 1)
            if end < 0:
                raise TokenizeError("unterminated quote")
            if end + 1 < n and not line[end + 1].isspace():
                raise TokenizeError("text directly after closing quote")
            tokens.append(line[i + 1:end])
            i = end + 1
            continue
        start = i
        while i < n and not line[i].isspace():
            if line[i] in _QUOTES:
                raise TokenizeError("quote inside unquoted token")
            i += 1
        tokens.append(line[start:i])
    return tokens


def _has_parent_segment(path: str) -> bool:
    return ".." in path.split("/")


def _with_trailing_slash(path: str) -> str:
    return path if path.endswith("/") else path + "/"


def classify_source(source: str) -> tuple[ShareCategory, str]:
    """Split a normalized source into its category and suffix.

    Empty segments are dropped, so the suffix is always relative to the
    category's host base (``downloads//etc`` names ``downloads/etc``).
    """
    head, _, rest = source.partition("/")
    try:
        category = ShareCategory(head)
    except ValueError:
        category = ShareCategory.INVALID
    if category is ShareCategory.INVALID:
        return category, source
    parts = [p for p in rest.split("/") if p]
    return category, ("/".join(parts) + "/" if parts else "")


def parse_line(line: str) -> ShareRule:
    """Parse a single non-comment line, raising ``ValueError`` on bad syntax."""
    tokens = tokenize(line)
    if len(tokens) < 2:
        raise ValueError("expected SOURCE DEST [OPTIONS]")
    if len(tokens) > 3:
        raise ValueError("too many fields")

    source, dest = tokens[0], tokens[1]
    raw_options = tokens[2] if len(tokens) == 3 else ""

    if not source:
        raise ValueError("empty source")
    if not dest.startswith(("/", "~")):
        raise ValueError("destination must start with / or ~")
    if _has_parent_segment(source) or _has_parent_segment(dest):
        raise ValueError("'..' is not allowed in share paths")
    if not _OPTIONS_RE.fullmatch(raw_options):
        raise ValueError("options may only contain a-z and commas")

    options = tuple(o for o in raw_options.split(",") if o) or DEFAULT_OPTIONS
    category, suffix = classify_source(_with_trailing_slash(source))
    return ShareRule(category, suffix, _with_trailing_slash(dest), options)


def parse_shares(text: str) -> ShareParseResult:
    """Parse a whole share file."""
    result = ShareParseResult()
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            result.rules.append(parse_line(line))
        except ValueError as e:
            result.issues.append(ParseIssue(lineno, raw, str(e)))
    return result


DEFAULT_SHARES_TEMPLATE = """\
# Directories shared from the host into this guest.
#
# Each line maps a host directory to a guest directory:
#
#     SOURCE DEST [OPTIONS]
#
# SOURCE starts with one of:
#     myfiles     the home directory of the logged-in host user
#     downloads   that user's Downloads directory
#     encrypted   that user's private (encrypted) directory
#     shared      a directory shared by every guest on this host
# optionally followed by a subdirectory, e.g. downloads/music.
#
# DEST is an absolute guest path, or starts with ~ for the guest user's
# home (~/dir) or another user's home (~name/dir).
#
# OPTIONS is a comma separated list of mount flags (default: exec),
# e.g. ro,noexec.  Quote paths that contain spaces.
#
# Paths may not contain '..'.  The first three sources are only
# available while a host user is logged in.
#
# Examples:
#     downloads ~/Downloads
#     downloads/music "~/Host Music" ro,noexec
#     shared /mnt/shared
"""


def ensure_shares_file(path: Path) -> bool:
    """Write the default template to ``path`` if it does not exist.

    Returns True when the file was created.
    """
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_SHARES_TEMPLATE)
    return True
