"""Tests for tusd_supervisor.supervisor._supervisor module."""

import os
import signal
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import anyio
import anyio.to_thread
import pytest
from rich.console import Console

from tests.conftest import RecordingNotificationSink, console_text, is_executable
from tusd_supervisor.config import (
    HooksConfig,
    ServerConfig,
    SupervisionConfig,
    SupervisorConfig,
)
from tusd_supervisor.supervisor import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    ApplyResult,
    BufferOutputSink,
    ChildProcessHandle,
    Notification,
    OutputKind,
    ShutdownPhase,
    ShutdownReason,
    ShutdownTrigger,
    Supervisor,
    UploaderStarted,
)

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

pytestmark = [pytest.mark.anyio, pytest.mark.slow]


def _config(
    binary: Path | str,
    hooks_dir: Path,
    *,
    hooks_enabled: bool = True,
    shutdown_timeout: float = 5.0,
) -> SupervisorConfig:
    return SupervisorConfig(
        server=ServerConfig(binary=str(binary)),
        hooks=HooksConfig(enabled=hooks_enabled, directory=hooks_dir),
        supervisor=SupervisionConfig(shutdown_timeout=shutdown_timeout),
    )


def _signal_self_on_start(signum: signal.Signals) -> Callable[[Notification], None]:
    def _on_publish(notification: Notification) -> None:
        if isinstance(notification, UploaderStarted):
            os.kill(os.getpid(), signum)

    return _on_publish


class SignalOnOutputSink:
    """Output sink that signals the test process once a marker is printed."""

    def __init__(self, marker: bytes, signum: signal.Signals) -> None:
        self.buffer = BufferOutputSink()
        self._marker = marker
        self._signum = signum
        self._sent = False

    def accept(self, kind: OutputKind, data: bytes) -> None:
        self.buffer.accept(kind, data)
        if not self._sent and self._marker in data:
            self._sent = True
            os.kill(os.getpid(), self._signum)


class RefusingApplier:
    def is_executable(self, path: Path) -> bool:
        return False

    def apply(self, path: Path) -> ApplyResult:
        return ApplyResult(success=False, diagnostic="Operation not permitted")


class TestNaturalExit:
    async def test_clean_exit_reports_normal(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script("tusd", "echo listening", "exit 0")
        sink = BufferOutputSink()
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=sink,
            notifications=notifications,
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert len(notifications.started) == 1
        assert notifications.started[0].pid > 0
        (stopped,) = notifications.stopped
        assert stopped.reason == ShutdownReason.NORMAL
        assert stopped.error is None
        assert isinstance(notifications.notifications[0], UploaderStarted)
        assert sink.read(OutputKind.STANDARD) == b"listening\n"
        assert supervisor.coordinator.phase == ShutdownPhase.DONE

    async def test_failing_child_is_still_a_normal_shutdown(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script("tusd", "echo 'address already in use' >&2", "exit 1")
        sink = BufferOutputSink()
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=sink,
            notifications=notifications,
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert [n.reason for n in notifications.stopped] == [ShutdownReason.NORMAL]
        assert supervisor.handle.exit_status is not None
        assert supervisor.handle.exit_status.returncode == 1
        assert sink.read(OutputKind.ERROR) == b"address already in use\n"

    async def test_operator_messages_in_order(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script("tusd", "exit 0")
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            console=console,
            error_console=console,
        )

        _ = await supervisor.run()

        output = console_text(console)
        positions = [
            output.index("Starting upload server..."),
            output.index("Hooks directory not found"),
            output.index("Going to shutdown..."),
            output.index("Shutdown upload server [normal]."),
        ]
        assert positions == sorted(positions)


class TestSignals:
    async def test_sigint_reports_user_action(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        console: Console,
    ) -> None:
        binary = write_script("tusd", "exec sleep 30")
        notifications = RecordingNotificationSink(
            on_publish=_signal_self_on_start(signal.SIGINT)
        )
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert len(notifications.started) == 1
        assert [n.reason for n in notifications.stopped] == [ShutdownReason.USER_ACTION]
        assert supervisor.handle.exit_status is not None
        assert supervisor.handle.exit_status.terminating_signal is signal.SIGTERM
        assert "Shutdown upload server [user-action]." in console_text(console)

    async def test_sigterm_reports_user_action(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        console: Console,
    ) -> None:
        binary = write_script("tusd", "exec sleep 30")
        notifications = RecordingNotificationSink(
            on_publish=_signal_self_on_start(signal.SIGTERM)
        )
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert [n.reason for n in notifications.stopped] == [ShutdownReason.USER_ACTION]

    async def test_stubborn_child_is_killed_after_timeout(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script(
            "tusd",
            "trap '' TERM",
            "echo ready",
            "while :; do sleep 0.1; done",
        )
        sink = SignalOnOutputSink(b"ready", signal.SIGINT)
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks", shutdown_timeout=0.5),
            output_sink=sink,
            notifications=notifications,
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert [n.reason for n in notifications.stopped] == [ShutdownReason.USER_ACTION]
        assert supervisor.handle.exit_status is not None
        assert supervisor.handle.exit_status.terminating_signal is signal.SIGKILL


class TestErrors:
    async def test_missing_binary_reports_error(
        self,
        tmp_path: Path,
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        supervisor = Supervisor(
            _config(tmp_path / "no-such-tusd", tmp_path / "hooks"),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_FAILURE
        assert notifications.started == []
        (stopped,) = notifications.stopped
        assert stopped.reason == ShutdownReason.ERROR
        assert stopped.error is not None
        assert stopped.error.type == "ProcessSpawnError"
        assert "Shutdown upload server [error]." in console_text(console)

    async def test_hook_repair_failure_prevents_start(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script("tusd", "exit 0")
        hooks_dir = tmp_path / "hooks"
        _ = write_script("hooks/pre-create", "exit 0", executable=False)
        supervisor = Supervisor(
            _config(binary, hooks_dir),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            applier=RefusingApplier(),
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_FAILURE
        assert notifications.started == []
        (stopped,) = notifications.stopped
        assert stopped.reason == ShutdownReason.ERROR
        assert stopped.error is not None
        assert stopped.error.type == "PermissionApplyError"
        assert "pre-create" in console_text(console)


class TestHooks:
    async def test_repairs_hooks_before_start(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script("tusd", 'echo "$@"', "exit 0")
        hooks_dir = tmp_path / "hooks"
        hook = write_script("hooks/post-finish", "exit 0", executable=False)
        sink = BufferOutputSink()
        supervisor = Supervisor(
            _config(binary, hooks_dir),
            output_sink=sink,
            notifications=notifications,
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert is_executable(hook)
        args = sink.read(OutputKind.STANDARD).decode().split()
        assert args[args.index("-hooks-dir") + 1] == str(hooks_dir)
        assert "repaired 1" in console_text(console)

    async def test_disabled_hooks_skip_repair_and_flag(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script("tusd", 'echo "$@"', "exit 0")
        hook = write_script("hooks/post-finish", "exit 0", executable=False)
        sink = BufferOutputSink()
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks", hooks_enabled=False),
            output_sink=sink,
            notifications=notifications,
            console=console,
            error_console=console,
        )

        code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert not is_executable(hook)
        assert "-hooks-dir" not in sink.read(OutputKind.STANDARD).decode()


class TestErrorBoundary:
    async def test_signal_receiver_failure_reports_error(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script("tusd", "exit 0")
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            console=console,
            error_console=console,
        )

        # Signal handlers can only be installed on the main thread
        code = await anyio.to_thread.run_sync(anyio.run, supervisor.run)

        assert code == EXIT_FAILURE
        assert notifications.started == []
        (stopped,) = notifications.stopped
        assert stopped.reason == ShutdownReason.ERROR
        assert stopped.error is not None
        assert stopped.error.type == "RuntimeError"
        assert supervisor.coordinator.phase == ShutdownPhase.DONE
        assert "Shutdown upload server [error]." in console_text(console)

    async def test_signal_watcher_failure_reports_error(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        console: Console,
        mocker: MockerFixture,
    ) -> None:
        binary = write_script("tusd", "exec sleep 30")
        started = anyio.Event()

        def _on_publish(notification: Notification) -> None:
            if isinstance(notification, UploaderStarted):
                started.set()

        async def broken_watcher(_self: Supervisor, _signals: object) -> None:
            await started.wait()
            msg = "watcher broke"
            raise RuntimeError(msg)

        _ = mocker.patch.object(Supervisor, "_watch_signals", broken_watcher)
        notifications = RecordingNotificationSink(on_publish=_on_publish)
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            console=console,
            error_console=console,
        )

        with anyio.fail_after(15):
            code = await supervisor.run()

        assert code == EXIT_FAILURE
        assert len(notifications.started) == 1
        (stopped,) = notifications.stopped
        assert stopped.reason == ShutdownReason.ERROR
        assert stopped.error is not None
        assert stopped.error.type == "RuntimeError"
        assert stopped.error.message == "watcher broke"
        assert supervisor.handle.exit_status is not None
        assert supervisor.handle.exit_status.terminating_signal is signal.SIGTERM


class ClaimingApplier:
    """Applier that claims shutdown in the middle of a repair."""

    def __init__(self) -> None:
        self.supervisor: Supervisor | None = None
        self._repaired: set[Path] = set()

    def is_executable(self, path: Path) -> bool:
        return path in self._repaired

    def apply(self, path: Path) -> ApplyResult:
        assert self.supervisor is not None
        self._repaired.add(path)
        _ = self.supervisor.coordinator.trigger(ShutdownTrigger.SIGNAL)
        return ApplyResult(success=True)


class TestStartupRaces:
    async def test_shutdown_during_hook_repair_skips_launch(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
    ) -> None:
        binary = write_script("tusd", "exec sleep 30")
        _ = write_script("hooks/pre-create", "exit 0", executable=False)
        applier = ClaimingApplier()
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            applier=applier,
            console=console,
            error_console=console,
        )
        applier.supervisor = supervisor

        code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert notifications.started == []
        assert [n.reason for n in notifications.stopped] == [ShutdownReason.USER_ACTION]
        assert supervisor.handle.command == ()
        assert supervisor.handle.exit_status is None
        assert "Going to shutdown..." not in console_text(console)

    async def test_shutdown_during_launch_stops_fresh_child(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        notifications: RecordingNotificationSink,
        console: Console,
        mocker: MockerFixture,
    ) -> None:
        binary = write_script(
            "tusd",
            "trap '' TERM",
            "echo ready",
            "while :; do sleep 0.1; done",
        )
        sink = BufferOutputSink()
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks", shutdown_timeout=0.5),
            output_sink=sink,
            notifications=notifications,
            console=console,
            error_console=console,
        )
        original_start = ChildProcessHandle.start

        async def start_then_claim(
            handle: ChildProcessHandle, *args: object, **kwargs: object
        ) -> int:
            pid = await original_start(handle, *args, **kwargs)  # pyright: ignore[reportArgumentType]
            while b"ready" not in sink.read(OutputKind.STANDARD):
                await anyio.sleep(0.01)
            _ = supervisor.coordinator.trigger(ShutdownTrigger.SIGNAL)
            return pid

        _ = mocker.patch.object(ChildProcessHandle, "start", start_then_claim)

        with anyio.fail_after(15):
            code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert notifications.started == []
        assert [n.reason for n in notifications.stopped] == [ShutdownReason.USER_ACTION]
        assert supervisor.handle.exit_status is not None
        assert supervisor.handle.exit_status.terminating_signal is signal.SIGKILL

    async def test_second_signal_during_shutdown_is_ignored(
        self,
        tmp_path: Path,
        write_script: Callable[..., Path],
        console: Console,
    ) -> None:
        binary = write_script("tusd", "exec sleep 30")

        def _on_publish(_notification: Notification) -> None:
            # Once when the server starts and again while shutdown is running
            os.kill(os.getpid(), signal.SIGINT)

        notifications = RecordingNotificationSink(on_publish=_on_publish)
        supervisor = Supervisor(
            _config(binary, tmp_path / "hooks"),
            output_sink=BufferOutputSink(),
            notifications=notifications,
            console=console,
            error_console=console,
        )

        with anyio.fail_after(15):
            code = await supervisor.run()

        assert code == EXIT_SUCCESS
        assert len(notifications.started) == 1
        assert [n.reason for n in notifications.stopped] == [ShutdownReason.USER_ACTION]
        assert console_text(console).count("Shutdown upload server") == 1
        assert supervisor.coordinator.phase == ShutdownPhase.DONE
