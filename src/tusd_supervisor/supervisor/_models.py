"""Data models for the supervisor system.

This module defines the core data types for supervising the upload server:
- OutputKind: Which child stream a chunk of output came from
- ShutdownReason: Why the shutdown sequence ran
- ShutdownTrigger: Which path requested the shutdown
- ShutdownPhase: Shutdown coordinator state
- ExitStatus: Immutable child exit record
- ErrorDetail: Captured runtime error information
- UploaderStarted / UploaderStopped: Lifecycle notifications
- HookScript / RepairResult: Hook permission repair records
"""

import signal
import traceback
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from typing import Self

HOOK_SCRIPT_NAMES: tuple[str, ...] = (
    "pre-create",
    "post-receive",
    "post-terminate",
    "post-finish",
)
"""Hook scripts the upload server may invoke, in processing order."""


def _get_timestamp() -> str:
    """Get current timestamp in ISO 8601 format."""
    import pendulum  # noqa: PLC0415

    return pendulum.now("UTC").to_iso8601_string()


class OutputKind(StrEnum):
    """Origin of a chunk of child output."""

    STANDARD = "standard"
    ERROR = "error"


class ShutdownReason(StrEnum):
    """Classification of why the shutdown sequence ran."""

    NORMAL = "normal"
    USER_ACTION = "user-action"
    ERROR = "error"


class ShutdownTrigger(StrEnum):
    """Paths that can request the shutdown sequence.

    - SIGNAL: The controller received SIGINT or SIGTERM
    - NATURAL_EXIT: The child stopped running and the controller is unwinding
    - ERROR: An uncaught error escaped supervision
    """

    SIGNAL = "signal"
    NATURAL_EXIT = "natural-exit"
    ERROR = "error"


class ShutdownPhase(StrEnum):
    """Shutdown coordinator states.

    ARMED is left exactly once; DONE is terminal.
    """

    ARMED = "armed"
    SHUTTING_DOWN = "shutting-down"
    DONE = "done"


class RepairStatus(StrEnum):
    """Outcome category of a hook permission repair pass."""

    SKIPPED = "skipped"
    NO_SCRIPTS = "no-scripts"
    CHECKED = "checked"


@dataclass(frozen=True, slots=True)
class ExitStatus:
    """Immutable record of how the child process ended.

    Attributes:
        returncode: Process return code. Negative values mean the child was
            ended by that signal number.
    """

    returncode: int

    @property
    def success(self) -> bool:
        """Return True if the child exited with status 0."""
        return self.returncode == 0

    @property
    def terminating_signal(self) -> signal.Signals | None:
        """Return the signal that ended the child, if any."""
        if self.returncode >= 0:
            return None
        try:
            return signal.Signals(-self.returncode)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class ErrorDetail:
    """Runtime error captured for the stopped notification.

    Attributes:
        message: Error message.
        type: Exception class name.
        file: Source file of the innermost traceback frame, if known.
        line: Line number of the innermost traceback frame, if known.
        stack: Formatted traceback text, if available.
    """

    message: str
    type: str
    file: str | None = None
    line: int | None = None
    stack: str | None = None

    @classmethod
    def from_exception(cls, error: BaseException) -> Self:
        """Build an error detail record from an exception.

        Args:
            error: The exception to describe.

        Returns:
            ErrorDetail with the innermost frame location when a traceback
            is attached.
        """
        file: str | None = None
        line: int | None = None
        formatted: str | None = None

        if error.__traceback__ is not None:
            frames = traceback.extract_tb(error.__traceback__)
            if frames:
                file = frames[-1].filename
                line = frames[-1].lineno
            formatted = "".join(traceback.format_exception(error))

        return cls(
            message=str(error) or type(error).__name__,
            type=type(error).__name__,
            file=file,
            line=line,
            stack=formatted,
        )

    def to_dict(self) -> dict[str, object]:
        """Return the detail as a plain dictionary for log payloads."""
        return {
            "message": self.message,
            "type": self.type,
            "file": self.file,
            "line": self.line,
        }


@dataclass(frozen=True, slots=True)
class UploaderStarted:
    """Published once the child process is launched and its output attached.

    Attributes:
        pid: Process ID of the upload server.
        timestamp: ISO 8601 formatted timestamp.
    """

    pid: int
    timestamp: str = field(default_factory=_get_timestamp)


@dataclass(frozen=True, slots=True)
class UploaderStopped:
    """Published once per run when the shutdown sequence executes.

    Attributes:
        reason: Why the shutdown sequence ran.
        error: Captured error detail, present only when reason is ERROR.
        timestamp: ISO 8601 formatted timestamp.
    """

    reason: ShutdownReason
    error: ErrorDetail | None = None
    timestamp: str = field(default_factory=_get_timestamp)


type Notification = UploaderStarted | UploaderStopped


@dataclass(frozen=True, slots=True)
class HookScript:
    """A hook script found in the hooks directory.

    Attributes:
        name: Logical hook name, e.g. ``pre-create``.
        path: Resolved filesystem path.
        executable: Whether the script was executable when last checked.
    """

    name: str
    path: Path
    executable: bool


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """Result of applying the execute bit to one script.

    Attributes:
        success: Whether the permission change reported success.
        diagnostic: Captured error output when the change failed.
    """

    success: bool
    diagnostic: str = ""


@dataclass(frozen=True, slots=True)
class RepairResult:
    """Outcome of a hook permission repair pass.

    Attributes:
        status: Outcome category.
        directory: The hooks directory that was inspected.
        note: Human-readable description of the outcome.
        scripts: Scripts found, with their state before repair.
        repaired: Names of scripts whose execute bit was set.
        unverified: Names of scripts still non-executable after a nominal fix.
    """

    status: RepairStatus
    directory: Path
    note: str = ""
    scripts: tuple[HookScript, ...] = ()
    repaired: tuple[str, ...] = ()
    unverified: tuple[str, ...] = ()

    @property
    def skipped(self) -> bool:
        """Return True if the hooks directory was missing."""
        return self.status == RepairStatus.SKIPPED
