"""End-to-end tests for guestroot.session.controller with fake mounts."""

import dataclasses
import io
import os
import signal
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from conftest import FakeMountTable, FakeRunner
from guestroot.config import GuestrootConfig
from guestroot.errors import SessionError, SessionInterrupted, UsageError
from guestroot.host_session import HostUser
from guestroot.output import Output
from guestroot.session import SessionController, SessionOptions, SessionState, controller
from guestroot.session.execute import ExecPlan
from guestroot.session.services import metadata
from test_base_mounts import EXPECTED_ORDER


class TtyInput(io.StringIO):
    def isatty(self) -> bool:
        return True


class DaemonStartingRunner(FakeRunner):
    """Fakes ``dbus-daemon --fork``: a pid file plus a /proc entry rooted in the guest."""

    def __init__(self, table: FakeMountTable | None, root: Path, proc: Path, pid: int = 4242):
        super().__init__(table)
        self.root = root
        self.proc = proc
        self.pid = pid

    def __call__(self, cmd: Any, check: bool = True, capture: bool = False, **kwargs: Any) -> Any:
        result = super().__call__(cmd, check=check, capture=capture, **kwargs)
        if any(os.fspath(c).endswith("dbus-daemon") for c in cmd):
            (self.root / "run/dbus").mkdir(parents=True, exist_ok=True)
            (self.root / "run/dbus/pid").write_text(f"{self.pid}\n")
            add_guest_process(self.proc, self.pid, self.root)
        return result


def add_guest_process(proc: Path, pid: int, root: Path) -> None:
    entry = proc / str(pid)
    entry.mkdir()
    (entry / "root").symlink_to(os.path.realpath(root))


class Harness:
    """Builds controllers wired to fakes and records execution plans."""

    def __init__(
        self,
        config: GuestrootConfig,
        runner: FakeRunner,
        output: tuple[Output, io.StringIO],
        proc: Path,
    ):
        self.config = config
        self.runner = runner
        self.output = output
        self.proc = proc
        self.plans: list[ExecPlan] = []
        self.exec_result: Callable[[ExecPlan], int] = lambda plan: 0
        self.killed: list[tuple[int, int]] = []

    def foreground(self, plan: ExecPlan) -> int:
        self.plans.append(plan)
        return self.exec_result(plan)

    def controller(
        self, options: SessionOptions | None = None, stdin: io.StringIO | None = None, **kwargs: Any
    ) -> SessionController:
        kwargs.setdefault("is_root", lambda: True)
        kwargs.setdefault("host_user_lookup", lambda: None)
        kwargs.setdefault("kill", lambda pid, sig: self.killed.append((pid, sig)))
        return SessionController(
            kwargs.pop("config", self.config),
            options or SessionOptions(),
            runner=self.runner,
            table=self.runner.table,
            progress=self.output[0],
            proc=str(self.proc),
            stdin=stdin or io.StringIO(),
            **kwargs,
        )

    @property
    def text(self) -> str:
        return self.output[1].getvalue()

    def mounted(self, root: Path) -> list[str]:
        return ["/" + Path(t).relative_to(root).as_posix() for t in self.runner.mounted_targets()]


@pytest.fixture
def harness(
    config: GuestrootConfig,
    runner: FakeRunner,
    output: tuple[Output, io.StringIO],
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Harness:
    proc = tmp_path / "proc-empty"
    proc.mkdir()
    h = Harness(config, runner, output, proc)
    monkeypatch.setattr(controller, "run_foreground", h.foreground)
    monkeypatch.setattr(metadata, "audio_server_version", lambda: None)
    monkeypatch.delenv("XAUTHORITY", raising=False)
    return h


class TestSessionLifecycle:
    """A full entry into an unmounted guest."""

    def test_login_session(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        root = make_guest()
        session = harness.controller()
        assert session.run() == 0

        assert harness.mounted(root) == EXPECTED_ORDER
        assert session.first_run is True
        assert session.state is SessionState.TEARING_DOWN
        assert harness.plans == [
            ExecPlan(["chroot", str(root), "su", "--login", "--shell", "/bin/zsh", "alice"])
        ]
        assert (root / "etc/guestroot/shares").is_file()
        assert (root / "etc/guestroot/name").read_text() == "focal\n"

    def test_everything_unmounted_on_exit(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        root = make_guest()
        harness.controller().run()
        unmounted = ["/" + Path(c[-1]).relative_to(root).as_posix() for c in harness.runner.commands("umount")]
        assert unmounted == list(reversed(EXPECTED_ORDER))
        assert harness.runner.table is not None and harness.runner.table.points == []

    def test_exit_status_is_passed_through(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest()
        harness.exec_result = lambda plan: 42
        assert harness.controller(SessionOptions(command=("false",))).run() == 42

    def test_command_mode(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest()
        harness.controller(SessionOptions(command=("ls", "-la", "my dir"))).run()
        assert harness.plans[0].argv[-2:] == ["--command", "ls -la 'my dir'"]

    def test_requested_user(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest()
        harness.controller(SessionOptions(user="0")).run()
        assert harness.plans[0].argv[-1] == "root"

    def test_unknown_user_is_fatal(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest()
        with pytest.raises(SessionError, match="User 'bob' does not exist"):
            harness.controller(SessionOptions(user="bob")).run()
        assert harness.runner.table is not None and harness.runner.table.points == []

    def test_no_regular_user_falls_back_to_root(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest(passwd="root:x:0:0:root:/root:/bin/bash\n")
        harness.controller().run()
        assert harness.plans[0].argv[-3:] == ["--shell", "/bin/bash", "root"]
        assert "No regular user" in harness.text

    def test_unreadable_passwd_is_fatal(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest(passwd=None)
        with pytest.raises(SessionError, match="guest user database"):
            harness.controller().run()
        assert harness.runner.commands("umount")
        assert harness.runner.table is not None and harness.runner.table.points == []

    def test_external_init(
        self, harness: Harness, make_guest: Callable[..., Path], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        root = make_guest(init="/sbin/init")
        monkeypatch.setattr(controller, "ensure_guest_init", lambda desc, proc: 777)
        harness.controller().run()
        assert harness.plans[0].argv[:7] == ["nsenter", "--target", "777", "--all", "--root", "--wd", "--"]
        assert "/proc" not in harness.mounted(root)


class TestPreconditions:
    """Fatal checks before anything is mounted."""

    def test_requires_root(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest()
        with pytest.raises(SessionError, match="root"):
            harness.controller(is_root=lambda: False).run()
        assert harness.runner.calls == []

    @pytest.mark.parametrize(
        "options",
        [
            SessionOptions(direct_script="/x.sh", command=("ls",)),
            SessionOptions(direct_script="/x.sh", background=True),
            SessionOptions(background=True),
            SessionOptions(login=True, command=("ls",)),
        ],
    )
    def test_conflicting_options(
        self, harness: Harness, make_guest: Callable[..., Path], options: SessionOptions
    ) -> None:
        make_guest()
        with pytest.raises(UsageError) as exc_info:
            harness.controller(options).run()
        assert exc_info.value.exit_code == 2
        assert harness.runner.calls == []

    def test_missing_chroot(self, harness: Harness) -> None:
        with pytest.raises(SessionError, match="No chroots found"):
            harness.controller().run()


class TestTeardown:
    """Teardown on every exit path."""

    def test_interrupt_during_execution(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest()

        def interrupted(plan: ExecPlan) -> int:
            raise SessionInterrupted(15)

        harness.exec_result = interrupted
        with pytest.raises(SessionInterrupted):
            harness.controller().run()
        assert len(harness.runner.commands("umount")) == len(EXPECTED_ORDER)
        assert harness.runner.table is not None and harness.runner.table.points == []

    def test_no_unmount_when_disabled(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest()
        config = dataclasses.replace(harness.config, auto_unmount=False)
        harness.controller(config=config).run()
        assert harness.runner.commands("umount") == []

    def test_reentry_mounts_nothing(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        make_guest()
        config = dataclasses.replace(harness.config, auto_unmount=False)
        harness.controller(config=config).run()
        harness.runner.calls.clear()

        second = harness.controller()
        second.run()
        assert harness.runner.commands("mount") == []
        assert harness.runner.commands("umount") == []
        assert second.first_run is False

    def test_busy_guest_keeps_mounts(
        self, harness: Harness, make_guest: Callable[..., Path], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        make_guest()
        monkeypatch.setattr(controller, "guest_in_use", lambda root, proc, exclude=(): [99])
        harness.controller().run()
        assert harness.runner.commands("umount") == []
        assert "still in use" in harness.text

    def test_background_hands_over_cleanup(
        self, harness: Harness, make_guest: Callable[..., Path], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        make_guest()
        launched: list[ExecPlan] = []

        class FakeExecutor:
            def __init__(self, registry: Any):
                self.registry = registry

            def launch(self, plan: ExecPlan) -> int:
                launched.append(plan)
                self.registry.disown()
                return 0

        monkeypatch.setattr(controller, "BackgroundExecutor", FakeExecutor)
        assert harness.controller(SessionOptions(command=("sleep", "60"), background=True)).run() == 0
        assert launched and harness.plans == []
        assert harness.runner.commands("umount") == []


    def test_started_daemon_is_stopped_and_guest_unmounted(
        self, harness: Harness, make_guest: Callable[..., Path]
    ) -> None:
        root = make_guest()
        (root / "usr/bin").mkdir(parents=True)
        (root / "usr/bin/dbus-daemon").touch()
        harness.runner = DaemonStartingRunner(harness.runner.table, root, harness.proc)

        session = harness.controller()
        assert session.run() == 0
        assert session.guest_daemons == [4242]
        assert harness.killed == [(4242, signal.SIGTERM)]
        assert len(harness.runner.commands("umount")) == len(EXPECTED_ORDER)
        assert harness.runner.table is not None and harness.runner.table.points == []

    def test_other_guest_process_keeps_daemon_and_mounts(
        self, harness: Harness, make_guest: Callable[..., Path]
    ) -> None:
        root = make_guest()
        (root / "usr/bin").mkdir(parents=True)
        (root / "usr/bin/dbus-daemon").touch()
        harness.runner = DaemonStartingRunner(harness.runner.table, root, harness.proc)
        add_guest_process(harness.proc, 99, root)

        harness.controller().run()
        assert harness.killed == []
        assert harness.runner.commands("umount") == []
        assert "by 1 process(es)" in harness.text

    def test_signal_during_teardown_does_not_skip_unmounts(
        self, harness: Harness, make_guest: Callable[..., Path], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        make_guest()

        def scan_interrupted(root: Path, proc: str, exclude: Any = ()) -> list[int]:
            signal.raise_signal(signal.SIGTERM)
            signal.raise_signal(signal.SIGINT)
            return []

        monkeypatch.setattr(controller, "guest_in_use", scan_interrupted)
        assert harness.controller().run() == 0
        assert len(harness.runner.commands("umount")) == len(EXPECTED_ORDER)
        assert harness.runner.table is not None and harness.runner.table.points == []


class TestSetupScript:
    """The pending /prepare.sh workflow."""

    def _script(self, root: Path, mode: int = 0o755) -> Path:
        script = root / "prepare.sh"
        script.write_text("#!/bin/sh\n")
        script.chmod(mode)
        return script

    def test_runs_pending_script_then_removes_it(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        root = make_guest()
        script = self._script(root)

        def run(plan: ExecPlan) -> int:
            if plan.argv[-1] == "/prepare.sh":
                script.chmod(0o500)
            return 0

        harness.exec_result = run
        harness.controller().run()

        assert harness.plans[0] == ExecPlan(["chroot", str(root), "/prepare.sh"], {"TERM": "xterm"})
        assert harness.plans[1].argv[-1] == "alice"
        assert not script.exists()
        # The nested run leaves the outer session's mounts alone.
        unmounted = harness.runner.commands("umount")
        assert len(unmounted) == len(EXPECTED_ORDER)

    def test_finished_script_is_deleted(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        root = make_guest()
        script = self._script(root, mode=0o500)
        harness.controller().run()
        assert not script.exists()
        assert len(harness.plans) == 1

    def test_declined_script_is_deleted(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        root = make_guest()
        script = self._script(root)
        harness.controller(stdin=TtyInput("n\n")).run()
        assert not script.exists()
        assert [p.argv[-1] for p in harness.plans] == ["alice"]

    def test_failing_script_is_fatal(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        root = make_guest()
        self._script(root)
        harness.exec_result = lambda plan: 1
        with pytest.raises(SessionError, match="Setup failed"):
            harness.controller().run()
        assert harness.runner.table is not None and harness.runner.table.points == []

    def test_pending_script_is_retried_a_bounded_number_of_times(
        self, harness: Harness, make_guest: Callable[..., Path]
    ) -> None:
        root = make_guest()
        script = self._script(root)
        harness.controller().run()
        assert [p.argv[-1] for p in harness.plans] == ["/prepare.sh"] * 3 + ["alice"]
        assert script.exists()
        assert "still pending" in harness.text

    def test_not_offered_for_commands(self, harness: Harness, make_guest: Callable[..., Path]) -> None:
        root = make_guest()
        script = self._script(root)
        harness.controller(SessionOptions(command=("true",))).run()
        assert script.exists()
        assert len(harness.plans) == 1

    def test_setup_run_mounts_are_torn_down_with_the_session(
        self, harness: Harness, make_guest: Callable[..., Path], tmp_path: Path
    ) -> None:
        root = make_guest()
        script = self._script(root)
        host_user = HostUser("ann", 1000, 1000, str(tmp_path / "annhome"))

        def run(plan: ExecPlan) -> int:
            if plan.argv[-1] == "/prepare.sh":
                script.chmod(0o500)
            return 0

        harness.exec_result = run
        harness.controller(host_user_lookup=lambda: host_user).run()

        runtime = str(root / "var/host/runtime")
        assert runtime in harness.runner.mounted_targets()
        assert [runtime] == [c[-1] for c in harness.runner.commands("umount") if c[-1] == runtime]
        assert harness.runner.table is not None and harness.runner.table.points == []
