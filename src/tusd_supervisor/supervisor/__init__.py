"""Supervisor package for running the tusd upload server.

This package starts the upload server as a child process, relays its
output, and guarantees exactly one orderly shutdown per run, whether the
server exits on its own, the controller is signalled, or an error escapes.

Key Components:
    - repair_hook_permissions: Ensures hook scripts are executable
    - ChildProcessHandle: Owns the upload server process
    - relay_output: Forwards child output chunks to an OutputSink
    - ShutdownCoordinator: Runs the shutdown sequence exactly once
    - Supervisor: Orchestrates a full run

Example:
    >>> from tusd_supervisor.config import SupervisorConfig
    >>> from tusd_supervisor.supervisor import Supervisor
    >>> supervisor = Supervisor(SupervisorConfig())
    >>> exit_code = await supervisor.run()  # Blocks until shutdown
"""

from ._models import (
    HOOK_SCRIPT_NAMES,
    ApplyResult,
    ErrorDetail,
    ExitStatus,
    HookScript,
    Notification,
    OutputKind,
    RepairResult,
    RepairStatus,
    ShutdownPhase,
    ShutdownReason,
    ShutdownTrigger,
    UploaderStarted,
    UploaderStopped,
)
from ._output import (
    BufferOutputSink,
    ConsoleOutputSink,
    LoggingNotificationSink,
    relay_output,
)
from ._permissions import (
    ChmodCommandApplier,
    ModeBitApplier,
    find_hook_scripts,
    repair_hook_permissions,
)
from ._process import ChildProcessHandle
from ._protocol import NotificationSink, OutputSink, PermissionApplier
from ._shutdown import ShutdownCoordinator, resolve_reason
from ._supervisor import EXIT_FAILURE, EXIT_SUCCESS, SHUTDOWN_SIGNALS, Supervisor

__all__ = [
    "EXIT_FAILURE",
    "EXIT_SUCCESS",
    "HOOK_SCRIPT_NAMES",
    "SHUTDOWN_SIGNALS",
    "ApplyResult",
    "BufferOutputSink",
    "ChildProcessHandle",
    "ChmodCommandApplier",
    "ConsoleOutputSink",
    "ErrorDetail",
    "ExitStatus",
    "HookScript",
    "LoggingNotificationSink",
    "ModeBitApplier",
    "Notification",
    "NotificationSink",
    "OutputKind",
    "OutputSink",
    "PermissionApplier",
    "RepairResult",
    "RepairStatus",
    "ShutdownCoordinator",
    "ShutdownPhase",
    "ShutdownReason",
    "ShutdownTrigger",
    "Supervisor",
    "UploaderStarted",
    "UploaderStopped",
    "find_hook_scripts",
    "relay_output",
    "repair_hook_permissions",
    "resolve_reason",
]
