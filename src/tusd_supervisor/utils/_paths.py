"""Filesystem locations used by tusd-supervisor."""

from pathlib import Path

import platformdirs

APP_NAME = "tusd-supervisor"


def get_log_dir() -> Path:
    """Get the per-user log directory."""
    return platformdirs.user_log_path(APP_NAME)


def get_default_log_file() -> Path:
    """Get the default supervisor log file inside the user log directory."""
    return get_log_dir() / "supervisor.log"
