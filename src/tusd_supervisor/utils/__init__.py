"""Shared utilities for tusd-supervisor."""

from ._logging import LogFormatType, create_supervisor_logger
from ._paths import get_default_log_file, get_log_dir

__all__ = [
    "LogFormatType",
    "create_supervisor_logger",
    "get_default_log_file",
    "get_log_dir",
]
