"""tusd-supervisor CLI commands."""
# pyright: reportUnusedCallResult=false

from typing import TYPE_CHECKING

from ._start import app as start_app

if TYPE_CHECKING:
    from cyclopts import App

__all__ = ["register_commands", "start_app"]


def register_commands(app: App) -> None:
    """Register all subcommands on the root app."""
    app.command(start_app)
