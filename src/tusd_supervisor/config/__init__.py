"""Configuration for the upload server supervisor."""

from ._loader import (
    ENV_PREFIX,
    deep_merge,
    load_config,
    parse_env_vars,
    read_toml_file,
)
from ._models import (
    HooksConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    ServerConfig,
    SupervisionConfig,
    SupervisorConfig,
)

__all__ = [
    "ENV_PREFIX",
    "HooksConfig",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "ServerConfig",
    "SupervisionConfig",
    "SupervisorConfig",
    "deep_merge",
    "load_config",
    "parse_env_vars",
    "read_toml_file",
]
