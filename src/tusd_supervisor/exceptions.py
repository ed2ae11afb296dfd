"""tusd-supervisor exceptions."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


class TusdSupervisorError(Exception):
    """Base exception for tusd-supervisor errors."""


class ConfigError(TusdSupervisorError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


class ConfigValidationError(ConfigError):
    """Raised when configuration fails validation."""

    def __init__(
        self,
        message: str,
        *,
        key: str,
        value: Any,  # pyright: ignore[reportAny,reportExplicitAny]
        expected: str,
        source: str | None = None,
    ) -> None:
        """Initialize with error message and validation context."""
        super().__init__(message)
        self.key: str = key
        self.value: Any = value  # pyright: ignore[reportExplicitAny]
        self.expected: str = expected
        self.source: str | None = source


# =============================================================================
# Supervisor Exceptions
# =============================================================================


class SupervisorError(TusdSupervisorError):
    """Base exception for supervisor operations."""


class ProcessSpawnError(SupervisorError):
    """Raised when the child process cannot be located or launched.

    Attributes:
        command: The command line that failed to launch.
        cause: The underlying exception that caused the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        command: tuple[str, ...] = (),
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and launch context.

        Args:
            message: Human-readable error message.
            command: The command line that failed to launch.
            cause: The underlying exception that caused the failure.
        """
        super().__init__(message)
        self.command: tuple[str, ...] = command
        self.cause: Exception | None = cause


class ProcessAlreadyRunningError(SupervisorError):
    """Raised when starting a handle that already owns a live child.

    Attributes:
        pid: Process ID of the child that is still running.
    """

    def __init__(self, message: str, *, pid: int | None = None) -> None:
        """Initialize with error message and the live child's pid."""
        super().__init__(message)
        self.pid: int | None = pid


class ProcessNotStartedError(SupervisorError):
    """Raised when waiting on a handle that never started a child."""


# =============================================================================
# Hook Permission Exceptions
# =============================================================================


class PermissionRepairError(TusdSupervisorError):
    """Base exception for hook permission repair."""


class PermissionApplyError(PermissionRepairError):
    """Raised when the execute bit could not be set on a hook script.

    Attributes:
        script_name: Name of the first script that could not be fixed.
        diagnostic: Output captured from the failed permission change.
        failures: Every (script name, diagnostic) pair that failed in the batch.
    """

    def __init__(
        self,
        message: str,
        *,
        script_name: str,
        diagnostic: str = "",
        failures: tuple[tuple[str, str], ...] = (),
    ) -> None:
        """Initialize with error message and failing script context.

        Args:
            message: Human-readable error message.
            script_name: Name of the first script that could not be fixed.
            diagnostic: Output captured from the failed permission change.
            failures: Every (script name, diagnostic) pair that failed.
        """
        super().__init__(message)
        self.script_name: str = script_name
        self.diagnostic: str = diagnostic
        self.failures: tuple[tuple[str, str], ...] = failures or (
            (script_name, diagnostic),
        )


class PermissionVerifyWarning(UserWarning):
    """Issued when a hook script still looks non-executable after a fix."""
