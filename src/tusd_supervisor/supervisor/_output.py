"""Output relay and sink implementations for the supervisor system.

This module forwards the upload server's output to OutputSinks as it
arrives, and provides the concrete output and notification sinks used by
the command line.
"""

from typing import TYPE_CHECKING, final

import anyio
import structlog
from rich.console import Console
from rich.style import Style
from rich.text import Text

from ._models import OutputKind, UploaderStarted, UploaderStopped

if TYPE_CHECKING:
    from anyio.abc import ByteReceiveStream
    from structlog.typing import FilteringBoundLogger

    from ._models import Notification
    from ._protocol import OutputSink


async def relay_output(
    stream: ByteReceiveStream,
    kind: OutputKind,
    sink: OutputSink,
    *,
    logger: FilteringBoundLogger | None = None,
) -> None:
    """Forward every chunk read from a child stream to an output sink.

    Chunks are passed on as read, one ``accept`` call per chunk. The relay
    returns when the stream reaches end of file or is closed.

    Args:
        stream: The child's stdout or stderr byte stream.
        kind: Tag applied to every chunk from this stream.
        sink: Destination for the chunks.
        logger: Structured logger for sink failures.
    """
    log: FilteringBoundLogger = logger or structlog.get_logger()
    try:
        async for chunk in stream:
            try:
                sink.accept(kind, chunk)
            except Exception:  # noqa: BLE001
                # A failing sink must not stop the pipe from being drained
                log.exception("output_sink_failed", kind=kind.value)
    except (anyio.ClosedResourceError, anyio.BrokenResourceError):
        # Stream closed, which is expected on process exit
        pass


@final
class ConsoleOutputSink:
    """Output sink that writes child output to a rich console.

    Standard output is printed as-is. Error output is preceded by an
    ``ERROR output`` banner and styled red.
    """

    __slots__ = ("_banner_style", "_console", "_encoding", "_error_style")

    def __init__(
        self,
        console: Console | None = None,
        *,
        encoding: str = "utf-8",
    ) -> None:
        """Initialize the output sink.

        Args:
            console: Rich Console instance for output. If None, creates a new one.
            encoding: Encoding used to decode output chunks.
        """
        self._console = console or Console()
        self._encoding = encoding
        self._error_style = Style(color="red")
        self._banner_style = Style(color="red", bold=True)

    def accept(self, kind: OutputKind, data: bytes) -> None:
        """Write one chunk of child output to the console.

        Args:
            kind: Which child stream the chunk came from.
            data: The raw bytes read from the stream.
        """
        content = data.decode(self._encoding, errors="replace").rstrip("\r\n")
        if kind == OutputKind.ERROR:
            self._console.print(
                Text("ERROR output -----------------", style=self._banner_style)
            )
            self._console.print(Text(content, style=self._error_style))
        else:
            self._console.print(Text(content))


@final
class BufferOutputSink:
    """Output sink that keeps every chunk in memory, in arrival order."""

    __slots__ = ("chunks",)

    def __init__(self) -> None:
        self.chunks: list[tuple[OutputKind, bytes]] = []

    def accept(self, kind: OutputKind, data: bytes) -> None:
        self.chunks.append((kind, data))

    def read(self, kind: OutputKind | None = None) -> bytes:
        """Return the concatenated output, optionally for one stream only."""
        return b"".join(
            data for chunk_kind, data in self.chunks if kind in (None, chunk_kind)
        )


@final
class LoggingNotificationSink:
    """Notification sink that records lifecycle notifications as log events."""

    __slots__ = ("_logger",)

    def __init__(self, logger: FilteringBoundLogger | None = None) -> None:
        """Initialize the notification sink.

        Args:
            logger: Structured logger to write to. Uses structlog's default if None.
        """
        self._logger: FilteringBoundLogger = logger or structlog.get_logger()

    def publish(self, notification: Notification) -> None:
        """Write a lifecycle notification to the log.

        Args:
            notification: UploaderStarted or UploaderStopped record.
        """
        match notification:
            case UploaderStarted(pid=pid, timestamp=timestamp):
                self._logger.info("uploader_started", pid=pid, at=timestamp)
            case UploaderStopped(reason=reason, error=None, timestamp=timestamp):
                self._logger.info("uploader_stopped", reason=reason.value, at=timestamp)
            case UploaderStopped(reason=reason, error=error, timestamp=timestamp):
                self._logger.error(
                    "uploader_stopped",
                    reason=reason.value,
                    error=error.to_dict() if error is not None else None,
                    at=timestamp,
                )
