from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from tusd_supervisor.cli import create_app


@pytest.fixture
def cli_with_exit_code(console: Console) -> Callable[..., int]:
    """Create CLI app for testing that returns the exit code.

    The app is run through its meta entrypoint so commands see the test
    console in their CLI context.
    """

    app = create_app(console=console, error_console=console)

    def _run(*args: str) -> int:
        """Run CLI app and return exit code (0 if no SystemExit)."""

        try:
            app.meta(list(args))
        except SystemExit as e:
            return e.code if isinstance(e.code, int) else 1
        else:
            return 0

    return _run


@pytest.fixture
def config_file(tmp_path: Path) -> Callable[..., Path]:
    """Write a supervisor TOML config pointing at files under tmp_path.

    Returns a callable taking the server binary and extra TOML lines.
    """

    def _write(binary: Path, *extra: str) -> Path:
        path = tmp_path / "supervisor.toml"
        lines = [
            "[server]",
            f'binary = "{binary}"',
            "",
            "[hooks]",
            f'directory = "{tmp_path / "hooks"}"',
            "",
            "[logging]",
            f'file = "{tmp_path / "logs" / "supervisor.log"}"',
            *extra,
        ]
        _ = path.write_text("\n".join(lines) + "\n")
        return path

    return _write
