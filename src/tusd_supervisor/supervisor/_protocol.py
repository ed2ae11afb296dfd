"""Protocol definitions for the supervisor system.

This module defines the narrow interfaces that decouple the supervisor core
from output, notification and filesystem implementations:
- OutputSink: Consumes chunks of child output
- NotificationSink: Observes lifecycle notifications
- PermissionApplier: Checks and sets the execute bit on hook scripts
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

    from ._models import ApplyResult, Notification, OutputKind


@runtime_checkable
class OutputSink(Protocol):
    """Protocol for consuming child output.

    Chunks arrive exactly as read from the child's pipes: no framing, no
    merging. Implementations must return promptly so the child never stalls
    on a full pipe.
    """

    def accept(self, kind: OutputKind, data: bytes) -> None:
        """Consume one chunk of child output.

        Args:
            kind: Which child stream the chunk came from.
            data: The raw bytes read from the stream.
        """
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Protocol for observing uploader lifecycle notifications."""

    def publish(self, notification: Notification) -> None:
        """Publish a lifecycle notification.

        Args:
            notification: UploaderStarted or UploaderStopped record.
        """
        ...


@runtime_checkable
class PermissionApplier(Protocol):
    """Protocol for checking and applying execute permission."""

    def is_executable(self, path: Path) -> bool:
        """Return True if the file at path is executable."""
        ...

    def apply(self, path: Path) -> ApplyResult:
        """Mark the file at path executable.

        Args:
            path: The script to change.

        Returns:
            ApplyResult describing whether the change reported success.
        """
        ...
