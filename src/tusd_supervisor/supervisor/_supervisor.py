"""Main supervisor loop for the upload server.

This module provides the Supervisor class that repairs hook permissions,
starts the upload server, keeps the controller alive while it runs, and
drives the shutdown coordinator from the signal receiver, the exit of the
child, or an error.
"""

import signal
from typing import TYPE_CHECKING, final

import anyio
import anyio.abc
import structlog
from rich.console import Console
from rich.style import Style
from rich.text import Text

from ._models import ShutdownTrigger, UploaderStarted
from ._output import ConsoleOutputSink, LoggingNotificationSink
from ._permissions import repair_hook_permissions
from ._process import ChildProcessHandle
from ._shutdown import ShutdownCoordinator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from structlog.typing import FilteringBoundLogger

    from tusd_supervisor.config import SupervisorConfig

    from ._protocol import NotificationSink, OutputSink, PermissionApplier

EXIT_SUCCESS: int = 0
"""The child was supervised and shut down cleanly, whatever the reason."""

EXIT_FAILURE: int = 1
"""Startup or supervision failed."""

SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


def _unwrap_group(error: Exception) -> Exception:
    """Return the lone exception inside nested single-member exception groups."""
    while isinstance(error, ExceptionGroup) and len(error.exceptions) == 1:
        error = error.exceptions[0]
    return error


@final
class Supervisor:
    """Supervises one upload server process for the lifetime of a run.

    ``run`` arms the shutdown coordinator and the signal receiver before
    doing anything else, so a signal delivered during startup still leads
    to an orderly shutdown.
    """

    __slots__ = (
        "_applier",
        "_config",
        "_console",
        "_coordinator",
        "_error_console",
        "_handle",
        "_logger",
        "_notifications",
        "_output_sink",
    )

    def __init__(  # noqa: PLR0913
        self,
        config: SupervisorConfig,
        *,
        output_sink: OutputSink | None = None,
        notifications: NotificationSink | None = None,
        applier: PermissionApplier | None = None,
        console: Console | None = None,
        error_console: Console | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            config: Supervisor configuration.
            output_sink: Sink for child output. Uses ConsoleOutputSink if None.
            notifications: Sink for lifecycle notifications. Uses
                LoggingNotificationSink if None.
            applier: Permission applier for hook repair. Uses the default if None.
            console: Rich Console for operator messages.
            error_console: Rich Console for operator error messages.
            logger: Structured logger for supervisor events.
        """
        self._config = config
        self._console = console or Console()
        self._error_console = error_console or Console(stderr=True)
        self._logger: FilteringBoundLogger = logger or structlog.get_logger()
        self._output_sink: OutputSink = output_sink or ConsoleOutputSink(self._console)
        self._notifications: NotificationSink = notifications or LoggingNotificationSink(
            self._logger
        )
        self._applier = applier
        self._handle = ChildProcessHandle(logger=self._logger)
        self._coordinator = ShutdownCoordinator(
            self._handle,
            self._notifications,
            console=self._console,
            logger=self._logger,
        )

    @property
    def handle(self) -> ChildProcessHandle:
        """Return the handle owning the upload server process."""
        return self._handle

    @property
    def coordinator(self) -> ShutdownCoordinator:
        """Return the shutdown coordinator for this run."""
        return self._coordinator

    async def run(self) -> int:
        """Run the upload server until it exits or shutdown is requested.

        Every exception escaping the signal receiver, the supervision loop or
        the signal watcher is caught here and turned into an error shutdown.

        Returns:
            EXIT_SUCCESS after a clean shutdown, EXIT_FAILURE if an error
            escaped startup or supervision.
        """
        self._coordinator.arm()
        failure: Exception | None = None

        try:
            with anyio.open_signal_receiver(*SHUTDOWN_SIGNALS) as signals:
                async with anyio.create_task_group() as tg:
                    tg.start_soon(self._watch_signals, signals)
                    await self._supervise(tg)
                    tg.cancel_scope.cancel()
        except Exception as e:  # noqa: BLE001
            failure = _unwrap_group(e)
        finally:
            if failure is not None:
                self._report_failure(failure)
                _ = self._coordinator.trigger(ShutdownTrigger.ERROR, failure)
                try:
                    await self._reap()
                except Exception:  # noqa: BLE001
                    self._logger.exception("child_reap_failed")
            else:
                _ = self._coordinator.trigger(ShutdownTrigger.NATURAL_EXIT)
            self._coordinator.disarm()

        return EXIT_FAILURE if failure is not None else EXIT_SUCCESS

    async def _supervise(self, tg: anyio.abc.TaskGroup) -> None:
        self._console.print("Starting upload server...")

        hooks_dir = self._config.hooks_dir
        if hooks_dir is None:
            self._logger.info("hooks_disabled")
        else:
            result = repair_hook_permissions(
                hooks_dir, applier=self._applier, logger=self._logger
            )
            if result.note:
                self._console.print(result.note)

        if self._coordinator.shutdown_requested:
            return

        pid = await self._handle.start(
            self._config.command_line(), self._output_sink, tg
        )
        if self._coordinator.shutdown_requested:
            # Shutdown was claimed while the child was launching
            self._handle.stop()
            await self._reap()
        else:
            self._notifications.publish(UploaderStarted(pid=pid))

        # Keep running until the upload server exits
        while self._handle.is_running():
            _ = await self._handle.wait()

        self._console.print("Going to shutdown...")

    async def _watch_signals(self, signals: AsyncIterator[int]) -> None:
        async for signum in signals:
            self._logger.info("signal_received", signal=signal.Signals(signum).name)
            if self._coordinator.trigger(ShutdownTrigger.SIGNAL):
                await self._reap()

    async def _reap(self) -> None:
        """Wait for a stopped child, killing it once the shutdown timeout passes."""
        if not self._handle.is_running():
            return

        with anyio.move_on_after(self._config.supervisor.shutdown_timeout):
            _ = await self._handle.wait()

        if self._handle.is_running():
            self._logger.warning(
                "child_kill",
                pid=self._handle.pid,
                timeout=self._config.supervisor.shutdown_timeout,
            )
            self._handle.kill()
        _ = await self._handle.wait()

    def _report_failure(self, error: Exception) -> None:
        self._logger.error("supervision_failed", error=str(error), exc_info=error)
        self._error_console.print(Text(str(error), style=Style(color="red", bold=True)))
