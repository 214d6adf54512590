"""Entry point for running guestroot as a module.

Usage:
    python -m guestroot enter [OPTIONS] [COMMAND]...
"""

from .cli.main import cli

if __name__ == "__main__":
    cli()
