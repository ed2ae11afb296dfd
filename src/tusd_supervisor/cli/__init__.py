"""Utilities used by the tusd-supervisor CLI."""

from ._app import create_app, main
from ._context import CLIContext

__all__ = ["CLIContext", "create_app", "main"]
