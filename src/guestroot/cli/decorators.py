"""Decorators for CLI commands."""

from functools import wraps
from typing import Callable, TypeVar

import typer

from ..errors import GuestrootError, SessionInterrupted
from ..output import out

R = TypeVar("R")


def handle_errors(func: Callable[..., R]) -> Callable[..., R]:
    """Decorator that reports guestroot errors and exits with their code."""
    @wraps(func)
    def wrapper(*args: object, **kwargs: object) -> R:
        try:
            return func(*args, **kwargs)
        except GuestrootError as e:
            out.error(str(e))
            raise typer.Exit(e.exit_code)
        except SessionInterrupted as e:
            out.error(str(e))
            raise typer.Exit(e.exit_code)
    return wrapper
