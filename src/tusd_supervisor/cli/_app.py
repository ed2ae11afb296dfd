"""The command-line interface for tusd-supervisor."""

from typing import Annotated

from cyclopts import App, Parameter
from rich.console import Console

from ._commands import register_commands
from ._context import CLIContext

APP_HELP = "Run the tus resumable-upload server under supervision."


def create_app(
    console: Console | None = None,
    error_console: Console | None = None,
    *,
    exit_on_error: bool = True,
) -> App:
    """Create the CLI application.

    Args:
        console: Console for regular output. Creates one if None.
        error_console: Console for errors. Creates a stderr console if None.
        exit_on_error: Exit the process on parse errors.

    Returns:
        The cyclopts App. Invoke ``app.meta(tokens)`` to run with the
        consoles bound to the command context.
    """
    if console is None:
        console = Console()
    if error_console is None:
        error_console = Console(stderr=True)
    app = App(
        name="tusd-supervisor",
        help=APP_HELP,
        help_on_error=True,
        console=console,
        error_console=error_console,
        exit_on_error=exit_on_error,
    )

    @app.meta.default
    def _default(  # pyright: ignore[reportUnusedFunction]
        *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    ) -> None:
        """Launch tusd-supervisor with the configured consoles.

        Args:
            tokens: Command tokens to pass to subcommands.
        """
        CLIContext.set_current(
            CLIContext(console=console, error_console=error_console)
        )
        try:
            app(tokens)
        finally:
            CLIContext.reset()

    register_commands(app)
    return app


def main() -> None:
    """Default entrypoint for the `tusd-supervisor` CLI."""
    app = create_app()
    app.meta()


if __name__ == "__main__":
    main()
