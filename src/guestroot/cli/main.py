#!/usr/bin/env python3
"""
guestroot CLI - Main entry point.

Usage:
    guestroot [OPTIONS] COMMAND [ARGS]...

Enter guest root filesystems that share the host's kernel, devices,
audio and display.
"""

import logging
import os
from typing import List, Optional

import typer
from rich.logging import RichHandler
from rich.table import Table

from .. import __version__
from ..chroots import is_encrypted_only, list_chroots, read_descriptor
from ..config import load_config
from ..mounts import MountTable
from ..output import out
from ..session import SessionController, SessionOptions
from ..session.constants import DEFAULT_TERM
from .decorators import handle_errors


app = typer.Typer(
    name="guestroot",
    help="Enter and prepare chroots that share the host's hardware and session",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        out.info(f"guestroot version {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=out.console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every command that is run."),
) -> None:
    """
    guestroot - enter chroots with the host's devices and session.

    Must be run as root.
    """
    _configure_logging(verbose)


@app.command(context_settings={"allow_interspersed_args": False})
@handle_errors
def enter(
    command: Optional[List[str]] = typer.Argument(
        None, help="Command to run instead of an interactive login shell"
    ),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Chroot to enter (default: first found)"),
    target: Optional[str] = typer.Option(
        None, "--target", "-t", help="Pick the first chroot providing this target"
    ),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Guest user name or uid"),
    direct: Optional[str] = typer.Option(
        None, "--direct", "-d", help="Run this guest script directly, without a login"
    ),
    login: bool = typer.Option(False, "--login", "-l", help="Start an interactive login shell"),
    background: bool = typer.Option(
        False, "--background", "-b", help="Detach and run the command in the background"
    ),
) -> None:
    """Enter a chroot.

    Without a command an interactive login shell of the chroot's first
    regular user is started:

        guestroot enter -n focal
        guestroot enter -n focal -- ls -la
    """
    options = SessionOptions(
        name=name,
        target=target,
        user=user,
        command=tuple(command or ()),
        direct_script=direct,
        login=login,
        background=background,
        term=os.environ.get("TERM") or DEFAULT_TERM,
    )
    code = SessionController(load_config(), options).run()
    if code:
        raise typer.Exit(code)


@app.command(name="list")
@handle_errors
def list_chroots_cmd() -> None:
    """List chroots in the chroots directory."""
    config = load_config()
    roots = list_chroots(config.chroots_dir)
    if not roots:
        out.dim(f"No chroots found in {config.chroots_dir}")
        return

    table_probe = MountTable()
    table = Table(title="Chroots")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Release", style="yellow")
    table.add_column("Targets", style="green")
    table.add_column("Init", style="magenta")
    table.add_column("Status", style="dim")

    for root in roots:
        if is_encrypted_only(root):
            table.add_row(root.name, "", "", "", "encrypted")
            continue
        desc = read_descriptor(root)
        mounted = table_probe.is_mounted(root / "run")
        table.add_row(
            desc.name,
            desc.release or "-",
            ", ".join(sorted(desc.targets)) or "-",
            desc.init_path if desc.external_init else "-",
            "mounted" if mounted else "",
        )

    out.console.print(table)


def cli() -> None:
    """CLI entry point."""
    prog_name = os.environ.get("GUESTROOT_PROG_NAME", "guestroot")
    app(prog_name=prog_name)


if __name__ == "__main__":
    cli()
