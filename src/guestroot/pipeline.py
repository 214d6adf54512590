# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Fixed-order step lists for entering a guest.

Mounting a guest has to happen in a set sequence (``/dev`` before
``/dev/pts``, ``/sys`` before the SELinux placeholder on top of it),
yet the steps are spread over several modules by topic.  Each of those
modules imports a shared :class:`Pipeline` and tags its functions with
a numeric position; the pipeline sorts them at run time.  Positions
are spaced by 100, and two steps at the same position keep the order
in which their modules defined them.

    services = Pipeline[ServiceContext]("services")

    @services.step(order=300)
    def system_bus(ctx: ServiceContext) -> None: ...
"""

from __future__ import annotations

from collections.abc import Callable
from itertools import count
from operator import attrgetter
from typing import Generic, NamedTuple, TypeVar, overload

_Ctx = TypeVar("_Ctx")

_StepFn = Callable[[_Ctx], None]

_DEFAULT_ORDER = 500


class _Entry(NamedTuple):
    order: int
    seq: int
    fn: Callable[..., None]


class Pipeline(Generic[_Ctx]):
    def __init__(self, name: str) -> None:
        self.name = name
        self._entries: list[_Entry] = []
        self._counter = count()

    @overload
    def step(self, fn: _StepFn[_Ctx]) -> _StepFn[_Ctx]: ...
    @overload
    def step(self, *, order: int) -> Callable[[_StepFn[_Ctx]], _StepFn[_Ctx]]: ...

    def step(
        self,
        fn: _StepFn[_Ctx] | None = None,
        *,
        order: int = _DEFAULT_ORDER,
    ) -> _StepFn[_Ctx] | Callable[[_StepFn[_Ctx]], _StepFn[_Ctx]]:
        """Decorator adding a step at ``order`` (500 when used bare)."""
        if fn is None:
            return lambda f: self._add(f, order)
        return self._add(fn, order)

    def _add(self, fn: _StepFn[_Ctx], order: int) -> _StepFn[_Ctx]:
        self._entries.append(_Entry(order, next(self._counter), fn))
        return fn

    def _sorted(self) -> list[_Entry]:
        return sorted(self._entries, key=attrgetter("order", "seq"))

    def steps(self) -> list[_StepFn[_Ctx]]:
        return [e.fn for e in self._sorted()]

    def run(self, ctx: _Ctx) -> None:
        """Call each step with ``ctx``.

        A step that raises ends the run; the remaining steps are not
        called.
        """
        for fn in self.steps():
            fn(ctx)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        listing = " -> ".join(f"{e.fn.__name__}@{e.order}" for e in self._sorted())
        return f"<Pipeline {self.name}: {listing}>"
