# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing
"""tusd-supervisor start command - runs the upload server under supervision."""

from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal, cast

import anyio
from cyclopts import App, Parameter

from tusd_supervisor.cli._context import CLIContext
from tusd_supervisor.exceptions import ConfigError

if TYPE_CHECKING:
    from tusd_supervisor.utils import LogFormatType

LogLevel = Literal["debug", "info", "warning", "error"]

EXIT_CONFIG_ERROR: int = 1
"""Configuration could not be loaded or validated."""

app = App(
    name="start",
    help="Start the tus upload server with the configured options",
    help_on_error=True,
)


@app.default
def start(
    *,
    no_hooks: Annotated[
        bool,
        Parameter(
            name="--no-hooks",
            help="Disable tus hooks, upload progress will not be tracked.",
        ),
    ] = False,
    config: Annotated[
        Path | None,
        Parameter(name="--config", help="Path to a TOML config file."),
    ] = None,
    log_level: Annotated[
        LogLevel | None,
        Parameter(name="--log-level", help="Log level threshold."),
    ] = None,
) -> None:
    """Start the tus upload server and supervise it until shutdown.

    Hook scripts are made executable before the server starts unless
    --no-hooks is given. The command exits with 0 after a clean shutdown
    and 1 if startup or supervision failed.
    """
    from tusd_supervisor.config import load_config
    from tusd_supervisor.supervisor import Supervisor
    from tusd_supervisor.utils import create_supervisor_logger

    ctx = CLIContext.get_current()

    cli_overrides: dict[str, object] = {}
    if no_hooks:
        cli_overrides["hooks.enabled"] = False
    if log_level is not None:
        cli_overrides["logging.level"] = log_level

    try:
        loaded = load_config(config_path=config, cli_overrides=cli_overrides)
    except ConfigError as e:
        ctx.error_console.print(f"Error: {e}")
        raise SystemExit(EXIT_CONFIG_ERROR) from None

    logger = create_supervisor_logger(
        level=loaded.logging.level.value,
        log_format=cast("LogFormatType", loaded.logging.format.value),
        log_file=loaded.logging.file,
        command="start",
    )

    supervisor = Supervisor(
        loaded,
        console=ctx.console,
        error_console=ctx.error_console,
        logger=logger,
    )
    raise SystemExit(anyio.run(supervisor.run))
