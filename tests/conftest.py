"""Shared test fixtures for tusd-supervisor tests."""

import io
import stat
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from rich.console import Console

from tusd_supervisor.supervisor import Notification, UploaderStarted, UploaderStopped


@dataclass(slots=True)
class RecordingNotificationSink:
    """Notification sink that keeps every published notification."""

    notifications: list[Notification] = field(default_factory=list)
    on_publish: Callable[[Notification], None] | None = None

    def publish(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self.on_publish is not None:
            self.on_publish(notification)

    @property
    def started(self) -> list[UploaderStarted]:
        return [n for n in self.notifications if isinstance(n, UploaderStarted)]

    @property
    def stopped(self) -> list[UploaderStopped]:
        return [n for n in self.notifications if isinstance(n, UploaderStopped)]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def console() -> Console:
    return Console(
        file=io.StringIO(),
        width=70,
        force_terminal=True,
        highlight=False,
        color_system=None,
        legacy_windows=False,
    )


def console_text(console: Console) -> str:
    """Return everything written to a console created by the fixture."""
    file = console.file
    assert isinstance(file, io.StringIO)
    return file.getvalue()


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[..., Path]:
    """Write a shell script into tmp_path and make it executable.

    Returns a callable taking the script name and body lines.
    """

    def _write(name: str, *lines: str, executable: bool = True) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        _ = path.write_text("#!/bin/sh\n" + "\n".join(lines) + "\n")
        mode = 0o755 if executable else 0o644
        path.chmod(mode)
        return path

    return _write


def is_executable(path: Path) -> bool:
    """Return True if any execute bit is set on path."""
    return bool(path.stat().st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))
