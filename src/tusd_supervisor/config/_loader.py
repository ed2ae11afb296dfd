# pyright: reportAny=false, reportUnknownVariableType=false, reportUnknownArgumentType=false
"""Configuration loading and merging.

Sources are merged in increasing precedence: built-in defaults, an optional
TOML file, ``TUSD_SUPERVISOR_*`` environment variables, CLI overrides.
"""

import json
import os
import tomllib
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from tusd_supervisor.exceptions import ConfigLoadError, ConfigValidationError

from ._models import SupervisorConfig

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

ENV_PREFIX = "TUSD_SUPERVISOR_"


def read_toml_file(path: Path) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Read and parse a TOML file.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML content as dictionary.

    Raises:
        ConfigLoadError: If the file is missing or cannot be parsed.
    """
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        msg = f"Config file not found: {path}"
        raise ConfigLoadError(msg, path=path) from e
    except tomllib.TOMLDecodeError as e:
        msg = f"Failed to parse TOML file: {e}"
        raise ConfigLoadError(
            msg,
            path=path,
            line=e.lineno,
            column=e.colno,
        ) from e


def deep_merge(
    base: Mapping[str, Any],  # pyright: ignore[reportExplicitAny]
    override: Mapping[str, Any],  # pyright: ignore[reportExplicitAny]
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Deep merge two configuration dictionaries.

    Dictionaries merge recursively; any other value in ``override`` replaces
    the one in ``base``. Neither input is modified.
    """
    result: dict[str, Any] = dict(base)  # pyright: ignore[reportExplicitAny]
    for key, override_val in override.items():
        base_val = result.get(key)
        if isinstance(base_val, dict) and isinstance(override_val, dict):
            result[key] = deep_merge(base_val, override_val)
        else:
            result[key] = override_val
    return result


def set_nested_key(
    data: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    dotted_key: str,
    value: Any,  # pyright: ignore[reportExplicitAny]
) -> None:
    """Set ``value`` at a dotted key path, creating tables as needed."""
    *parents, leaf = dotted_key.split(".")
    current = data
    for part in parents:
        current = current.setdefault(part, {})
    current[leaf] = value


def parse_env_vars(
    environ: Mapping[str, str] | None = None,
    prefix: str = ENV_PREFIX,
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Parse environment variables into a config dictionary.

    Environment variable naming:
        - Add prefix (TUSD_SUPERVISOR_)
        - Replace dots with double underscores
        - Example: server.port -> TUSD_SUPERVISOR_SERVER__PORT
        - Names without a section separator are ignored

    Args:
        environ: Environment to read. Uses os.environ if None.
        prefix: Environment variable prefix.

    Returns:
        Nested dictionary of parsed values.
    """
    environ = os.environ if environ is None else environ
    result: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]

    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        config_key = key[len(prefix) :]
        # Only SECTION__KEY names are settings; flags like _DEBUG are not
        if "__" not in config_key:
            continue
        set_nested_key(result, config_key.replace("__", ".").lower(), _parse_env_value(value))

    return result


def _parse_env_value(value: str) -> Any:  # pyright: ignore[reportExplicitAny]
    # JSON arrays for list settings such as server.extra_args
    if value.startswith("[") and value.endswith("]"):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass
    # Everything else is validated (and coerced) by the pydantic models
    return value


def load_config(
    *,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,  # pyright: ignore[reportExplicitAny]
) -> SupervisorConfig:
    """Load and validate the supervisor configuration.

    Args:
        config_path: Optional TOML file to read.
        environ: Environment to read overrides from. Uses os.environ if None.
        cli_overrides: Dotted keys set on the command line, e.g.
            ``{"hooks.enabled": False}``.

    Returns:
        The validated, immutable configuration.

    Raises:
        ConfigLoadError: If the TOML file is missing or malformed.
        ConfigValidationError: If the merged values fail validation.
    """
    data: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
    source = "defaults"

    if config_path is not None:
        data = deep_merge(data, read_toml_file(config_path))
        source = str(config_path)

    env_values = parse_env_vars(environ)
    if env_values:
        data = deep_merge(data, env_values)

    if cli_overrides:
        overrides: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
        for key, value in cli_overrides.items():
            set_nested_key(overrides, key, value)
        data = deep_merge(data, overrides)

    try:
        return SupervisorConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first["loc"])
        msg = f"Invalid configuration value for '{key}': {first['msg']}"
        raise ConfigValidationError(
            msg,
            key=key,
            value=first.get("input"),
            expected=first["type"],
            source=source,
        ) from e
