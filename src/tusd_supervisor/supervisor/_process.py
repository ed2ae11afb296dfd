"""Child process handle for the upload server.

This module provides the ChildProcessHandle class that owns a single
external process: spawning it, relaying its output, checking liveness,
waiting for it, and requesting termination.
"""

import contextlib
import signal
import subprocess
from typing import TYPE_CHECKING, final

import anyio
import anyio.abc
import structlog

from tusd_supervisor.exceptions import (
    ProcessAlreadyRunningError,
    ProcessNotStartedError,
    ProcessSpawnError,
)

from ._models import ExitStatus, OutputKind
from ._output import relay_output

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from structlog.typing import FilteringBoundLogger

    from ._protocol import OutputSink

# Seconds to keep relaying output once the child has exited
OUTPUT_DRAIN_TIMEOUT: float = 2.0


@final
class ChildProcessHandle:
    """Owns at most one live child process at a time.

    ``start`` returns as soon as the OS has launched the child; its stdout
    and stderr are relayed to the output sink by tasks running in the
    caller's task group. ``wait`` may be called any number of times and
    returns the cached exit status once the child has ended.
    """

    __slots__ = (
        "_command",
        "_drain_timeout",
        "_drained",
        "_exit_status",
        "_logger",
        "_process",
    )

    def __init__(
        self,
        logger: FilteringBoundLogger | None = None,
        *,
        drain_timeout: float = OUTPUT_DRAIN_TIMEOUT,
    ) -> None:
        """Initialize an empty handle.

        Args:
            logger: Structured logger for process events.
            drain_timeout: Seconds to keep reading output after the child exits.
        """
        self._drain_timeout = drain_timeout
        self._logger: FilteringBoundLogger = logger or structlog.get_logger()
        self._process: anyio.abc.Process | None = None
        self._command: tuple[str, ...] = ()
        self._drained: list[anyio.Event] = []
        self._exit_status: ExitStatus | None = None

    @property
    def command(self) -> tuple[str, ...]:
        """Return the command line of the most recent child."""
        return self._command

    @property
    def pid(self) -> int | None:
        """Return the process ID while the child is running, None otherwise."""
        if self._process is None or not self.is_running():
            return None
        return self._process.pid

    @property
    def exit_status(self) -> ExitStatus | None:
        """Return the cached exit status once ``wait`` has observed the exit."""
        return self._exit_status

    async def start(
        self,
        command: Sequence[str],
        output_sink: OutputSink,
        task_group: anyio.abc.TaskGroup,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> int:
        """Launch the child and begin relaying its output.

        Args:
            command: Executable and arguments.
            output_sink: Destination for the child's output chunks.
            task_group: Task group hosting the output relay tasks.
            cwd: Working directory for the child.
            env: Complete environment for the child. Inherits ours if None.

        Returns:
            The child's process ID.

        Raises:
            ProcessAlreadyRunningError: If this handle already owns a live child.
            ProcessSpawnError: If the executable cannot be located or launched.
        """
        if self.is_running():
            msg = f"A child process is already running (pid={self.pid})"
            raise ProcessAlreadyRunningError(msg, pid=self.pid)

        command = tuple(command)
        if not command:
            msg = "Cannot start a child process without a command"
            raise ProcessSpawnError(msg)

        try:
            process = await anyio.open_process(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except OSError as e:
            msg = f"Failed to launch {command[0]}: {e}"
            raise ProcessSpawnError(msg, command=command, cause=e) from e

        self._process = process
        self._command = command
        self._exit_status = None
        self._drained = []

        streams = (
            (process.stdout, OutputKind.STANDARD),
            (process.stderr, OutputKind.ERROR),
        )
        for stream, kind in streams:
            if stream is None:
                continue
            drained = anyio.Event()
            self._drained.append(drained)
            task_group.start_soon(self._relay, stream, kind, output_sink, drained)

        self._logger.info("child_started", pid=process.pid, command=list(command))
        return process.pid

    async def _relay(
        self,
        stream: anyio.abc.ByteReceiveStream,
        kind: OutputKind,
        output_sink: OutputSink,
        drained: anyio.Event,
    ) -> None:
        try:
            await relay_output(stream, kind, output_sink, logger=self._logger)
        finally:
            drained.set()

    def is_running(self) -> bool:
        """Check whether the child is still alive without blocking or reaping."""
        return self._process is not None and self._process.returncode is None

    async def wait(self) -> ExitStatus:
        """Wait for the child to exit and its output to be drained.

        Output still held open by a grandchild is given up after the drain
        timeout; its pipes are closed with the process.

        Returns:
            The child's exit status. Once observed, the same status is
            returned immediately on every later call.

        Raises:
            ProcessNotStartedError: If no child was ever started.
        """
        if self._exit_status is not None:
            return self._exit_status

        process = self._process
        if process is None:
            msg = "No child process has been started"
            raise ProcessNotStartedError(msg)

        returncode = await process.wait()
        # A grandchild holding an inherited pipe must not keep us here
        with anyio.move_on_after(self._drain_timeout) as scope:
            for drained in self._drained:
                await drained.wait()
        if scope.cancelled_caught:
            self._logger.warning(
                "child_output_drain_timeout",
                pid=process.pid,
                timeout=self._drain_timeout,
            )

        if self._exit_status is None:
            self._exit_status = ExitStatus(returncode)
            await process.aclose()
            self._logger.info("child_exited", pid=process.pid, returncode=returncode)

        return self._exit_status

    def stop(self) -> None:
        """Request termination of the child with SIGTERM.

        Does nothing when no child is running. Returns without waiting;
        use ``wait`` or ``is_running`` to observe the exit.
        """
        self._send_signal(signal.SIGTERM)

    def kill(self) -> None:
        """Force the child to exit with SIGKILL. Does nothing if not running."""
        self._send_signal(signal.SIGKILL)

    def _send_signal(self, signum: signal.Signals) -> None:
        process = self._process
        if process is None or not self.is_running():
            return

        self._logger.info("child_signal", pid=process.pid, signal=signum.name)
        # The child may exit between the liveness check and the signal
        with contextlib.suppress(ProcessLookupError):
            process.send_signal(signum)
