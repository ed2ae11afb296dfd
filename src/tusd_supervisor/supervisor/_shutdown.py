"""Shutdown coordination for the supervisor.

The shutdown sequence can be requested from three places: the signal
receiver, the supervision loop once the child has exited, and the error
boundary (or interpreter exit after an uncaught error). Whichever arrives
first runs the sequence; every later request is ignored.
"""

import atexit
import sys
import threading
from typing import TYPE_CHECKING, final

import structlog
from rich.console import Console
from rich.style import Style
from rich.text import Text

from ._models import (
    ErrorDetail,
    ShutdownPhase,
    ShutdownReason,
    ShutdownTrigger,
    UploaderStopped,
)

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.typing import FilteringBoundLogger

    from ._process import ChildProcessHandle
    from ._protocol import NotificationSink

_TRIGGER_REASONS: dict[ShutdownTrigger, ShutdownReason] = {
    ShutdownTrigger.SIGNAL: ShutdownReason.USER_ACTION,
    ShutdownTrigger.NATURAL_EXIT: ShutdownReason.NORMAL,
    ShutdownTrigger.ERROR: ShutdownReason.ERROR,
}


def resolve_reason(
    trigger: ShutdownTrigger, error: ErrorDetail | None
) -> ShutdownReason:
    """Map a trigger to a shutdown reason.

    A captured runtime error always wins, whatever path requested shutdown.
    """
    if error is not None:
        return ShutdownReason.ERROR
    return _TRIGGER_REASONS[trigger]


@final
class ShutdownCoordinator:
    """Runs the shutdown sequence exactly once per run.

    The sequence stops the child, publishes ``UploaderStopped`` and prints a
    confirmation. Entry is guarded by a lock that is acquired without
    blocking and never released: the first trigger to acquire it owns the
    shutdown, every other trigger returns immediately.

    Attributes:
        phase: Current coordinator phase.
        reason: Reason chosen by the winning trigger, once shutdown began.
        error: Captured error detail, if any.
    """

    __slots__ = (
        "_armed",
        "_console",
        "_guard",
        "_handle",
        "_logger",
        "_notifications",
        "_previous_excepthook",
        "error",
        "phase",
        "reason",
    )

    def __init__(
        self,
        handle: ChildProcessHandle,
        notifications: NotificationSink,
        *,
        console: Console | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            handle: The child process to stop during shutdown.
            notifications: Sink receiving the stopped notification.
            console: Rich Console for the shutdown confirmation.
            logger: Structured logger for shutdown events.
        """
        self._handle = handle
        self._notifications = notifications
        self._console = console or Console()
        self._logger: FilteringBoundLogger = logger or structlog.get_logger()
        self._guard = threading.Lock()
        self._armed = False
        self._previous_excepthook = sys.excepthook
        self.phase = ShutdownPhase.ARMED
        self.reason: ShutdownReason | None = None
        self.error: ErrorDetail | None = None

    @property
    def shutdown_requested(self) -> bool:
        """Return True once any trigger has claimed the shutdown."""
        return self.phase != ShutdownPhase.ARMED

    @property
    def done(self) -> bool:
        """Return True once the shutdown sequence has finished."""
        return self.phase == ShutdownPhase.DONE

    def arm(self) -> None:
        """Register the process-exit and uncaught-error hooks.

        Interpreter exit fires the natural-exit trigger, so a run that never
        reached its own shutdown still gets one. Uncaught errors are captured
        first, which turns that shutdown into an error shutdown.
        """
        if self._armed:
            return
        self._armed = True
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._excepthook
        atexit.register(self._at_exit)
        self._logger.debug("shutdown_armed")

    def disarm(self) -> None:
        """Remove the hooks installed by ``arm``."""
        if not self._armed:
            return
        self._armed = False
        atexit.unregister(self._at_exit)
        if sys.excepthook == self._excepthook:
            sys.excepthook = self._previous_excepthook
        self._logger.debug("shutdown_disarmed")

    def capture_error(self, error: BaseException) -> ErrorDetail:
        """Record a runtime error to report with the shutdown.

        The first captured error is kept.

        Args:
            error: The exception that escaped supervision.

        Returns:
            The recorded error detail.
        """
        if self.error is None:
            self.error = ErrorDetail.from_exception(error)
        return self.error

    def trigger(
        self,
        trigger: ShutdownTrigger,
        error: BaseException | None = None,
    ) -> bool:
        """Request the shutdown sequence.

        Args:
            trigger: Which path is requesting shutdown.
            error: Exception to capture before choosing the reason.

        Returns:
            True if this call ran the sequence, False if shutdown had
            already been claimed by an earlier trigger.
        """
        if error is not None:
            _ = self.capture_error(error)

        if not self._guard.acquire(blocking=False):
            self._logger.debug(
                "shutdown_ignored", trigger=trigger.value, phase=self.phase.value
            )
            return False

        self.phase = ShutdownPhase.SHUTTING_DOWN
        self.reason = resolve_reason(trigger, self.error)
        self._logger.info(
            "shutdown_triggered", trigger=trigger.value, reason=self.reason.value
        )

        try:
            self._run_sequence(self.reason)
        finally:
            self.phase = ShutdownPhase.DONE
        return True

    def _run_sequence(self, reason: ShutdownReason) -> None:
        try:
            self._handle.stop()
        except Exception:  # noqa: BLE001
            self._logger.exception("shutdown_stop_failed")

        error = self.error if reason == ShutdownReason.ERROR else None
        try:
            self._notifications.publish(UploaderStopped(reason=reason, error=error))
        except Exception:  # noqa: BLE001
            self._logger.exception("shutdown_publish_failed")

        self._console.print(
            Text(f"Shutdown upload server [{reason.value}].", style=Style(color="yellow"))
        )

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        _ = self.capture_error(exc)
        self._previous_excepthook(exc_type, exc, tb)

    def _at_exit(self) -> None:
        _ = self.trigger(ShutdownTrigger.NATURAL_EXIT)
