"""Tests for guestroot.pipeline and the registered session pipelines."""

import pytest

from guestroot.pipeline import Pipeline
from guestroot.session.base_mounts import base_mount_pipeline
from guestroot.session.services import services_pipeline


class TestPipeline:
    """Tests for Pipeline ordering and execution."""

    def test_runs_in_order(self) -> None:
        p = Pipeline[list[str]]("test")

        @p.step(order=300)
        def third(ctx: list[str]) -> None:
            ctx.append("third")

        @p.step(order=100)
        def first(ctx: list[str]) -> None:
            ctx.append("first")

        @p.step
        def default(ctx: list[str]) -> None:
            ctx.append("default")

        ran: list[str] = []
        p.run(ran)
        assert ran == ["first", "third", "default"]
        assert len(p) == 3

    def test_equal_orders_keep_registration_order(self) -> None:
        p = Pipeline[list[str]]("test")
        for name in ("a", "b", "c"):
            p.step(order=100)(lambda ctx, n=name: ctx.append(n))
        ran: list[str] = []
        p.run(ran)
        assert ran == ["a", "b", "c"]

    def test_exception_stops_pipeline(self) -> None:
        p = Pipeline[list[str]]("test")

        @p.step(order=100)
        def boom(ctx: list[str]) -> None:
            raise RuntimeError("boom")

        @p.step(order=200)
        def after(ctx: list[str]) -> None:
            ctx.append("after")

        ran: list[str] = []
        with pytest.raises(RuntimeError):
            p.run(ran)
        assert ran == []

    def test_repr(self) -> None:
        p = Pipeline[None]("demo")

        @p.step(order=200)
        def second(ctx: None) -> None:
            pass

        @p.step(order=100)
        def first(ctx: None) -> None:
            pass

        assert repr(p) == "<Pipeline demo: first@100 -> second@200>"


class TestRegisteredPipelines:
    """The session pipelines register their steps in a fixed order."""

    def test_base_mount_order(self) -> None:
        assert [s.__name__ for s in base_mount_pipeline.steps()] == [
            "device_nodes",
            "shm_and_pts",
            "tmp_and_proc",
            "run_tmpfs",
            "lock_tmpfs",
            "ipc_bus",
            "network_state",
            "timezone",
            "kernel_modules",
            "device_classes",
            "sysfs",
            "removable_media",
        ]

    def test_service_order(self) -> None:
        assert [s.__name__ for s in services_pipeline.steps()] == [
            "refresh_metadata",
            "host_runtime_dir",
            "system_bus",
            "run_firstboot",
        ]
