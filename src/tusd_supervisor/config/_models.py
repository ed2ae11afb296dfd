"""Configuration models.

This module provides the Pydantic models for supervisor settings:
- ServerConfig: How to launch the upload server
- HooksConfig: Hook script location and enablement
- SupervisionConfig: Supervisor timing
- LoggingConfig: Log level, format and destination
- SupervisorConfig: Root container
"""

from enum import StrEnum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(StrEnum):
    """Log level threshold values.

    Values are ordered from most verbose (debug) to least verbose (error).
    """

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


class ServerConfig(BaseModel):
    """Upload server launch settings.

    Attributes:
        binary: Path or name of the tusd executable.
        host: Interface the server binds to.
        port: Port the server listens on.
        base_path: URL path uploads are served under.
        upload_dir: Directory uploaded files are stored in.
        behind_proxy: Trust X-Forwarded-* headers from a reverse proxy.
        extra_args: Additional arguments appended verbatim.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    binary: str = Field(default="tusd", min_length=1)
    host: str = "127.0.0.1"
    port: int = Field(default=1080, ge=1, le=65535)
    base_path: str = "/uploads/"
    upload_dir: Path = Path("uploads")
    behind_proxy: bool = False
    extra_args: tuple[str, ...] = ()

    def command_line(self, hooks_dir: Path | None = None) -> tuple[str, ...]:
        """Build the command line that launches the upload server.

        Args:
            hooks_dir: Hooks directory to pass to the server, or None to run
                without hooks.

        Returns:
            The executable followed by its arguments.
        """
        command: list[str] = [
            self.binary,
            "-host",
            self.host,
            "-port",
            str(self.port),
            "-base-path",
            self.base_path,
            "-upload-dir",
            str(self.upload_dir),
        ]
        if hooks_dir is not None:
            command.extend(["-hooks-dir", str(hooks_dir)])
        if self.behind_proxy:
            command.append("-behind-proxy")
        command.extend(self.extra_args)
        return tuple(command)


class HooksConfig(BaseModel):
    """Hook script settings.

    Attributes:
        enabled: Whether the server is given a hooks directory at all.
        directory: Directory holding the hook scripts.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    directory: Path = Path("hooks")


class SupervisionConfig(BaseModel):
    """Supervisor timing settings.

    Attributes:
        shutdown_timeout: Seconds to wait after a termination request before
            the child is killed.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    shutdown_timeout: float = Field(default=5.0, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration section.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Path to log file (empty uses the default log file).
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    file: str = ""


class SupervisorConfig(BaseModel):
    """Root configuration for a supervised upload server."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    server: ServerConfig = Field(default_factory=ServerConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    supervisor: SupervisionConfig = Field(default_factory=SupervisionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def hooks_dir(self) -> Path | None:
        """Return the hooks directory, or None when hooks are disabled."""
        return self.hooks.directory if self.hooks.enabled else None

    def command_line(self) -> tuple[str, ...]:
        """Build the upload server command line for this configuration."""
        return self.server.command_line(self.hooks_dir)
