"""User-facing output for guestroot.

All diagnostics go to stderr so that commands run inside a guest keep
a clean stdout.
"""

from __future__ import annotations

import sys
from typing import TextIO

from rich.console import Console
from rich.markup import escape


class Output:
    """Small wrapper around a rich console with message levels."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True, highlight=False)

    def info(self, msg: str) -> None:
        self.console.print(escape(msg))

    def dim(self, msg: str) -> None:
        self.console.print(f"[dim]{escape(msg)}[/dim]")

    def success(self, msg: str) -> None:
        self.console.print(f"[green]{escape(msg)}[/green]")

    def warning(self, msg: str) -> None:
        self.console.print(f"[yellow]Warning:[/yellow] {escape(msg)}")

    def error(self, msg: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {escape(msg)}")

    def hint(self, msg: str) -> None:
        """Print a hint.  ``msg`` may contain rich markup."""
        self.console.print(f"[dim]Hint:[/dim] {msg}")

    def confirm(self, question: str, default: bool = True, stream: TextIO | None = None) -> bool:
        """Ask a yes/no question.

        Reads a single line, and only when ``stream`` is a terminal.
        Otherwise the default is returned without reading anything.
        """
        stream = stream if stream is not None else sys.stdin
        if not stream.isatty():
            return default

        suffix = "[Y/n]" if default else "[y/N]"
        self.console.print(f"{escape(question)} {escape(suffix)} ", end="")
        answer = stream.readline().strip().lower()
        if not answer:
            return default
        return answer.startswith("y")


out = Output()
