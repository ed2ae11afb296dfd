"""Hook script permission repair.

The upload server runs hook scripts from a hooks directory at upload
lifecycle points. A script without its execute bit makes the server fail
every hook invocation, so the supervisor checks the bit on each known script
before the server starts and sets it where missing.
"""

import os
import stat
import subprocess
import warnings
from pathlib import Path
from typing import TYPE_CHECKING, final

import structlog

from tusd_supervisor.exceptions import PermissionApplyError, PermissionVerifyWarning

from ._models import (
    HOOK_SCRIPT_NAMES,
    ApplyResult,
    HookScript,
    RepairResult,
    RepairStatus,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from structlog.typing import FilteringBoundLogger

    from ._protocol import PermissionApplier

# Seconds to wait for an external chmod before giving up
CHMOD_TIMEOUT: float = 10.0

_EXECUTE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


@final
class ModeBitApplier:
    """Sets execute permission by changing the file mode directly.

    Mirrors ``chmod +x``: the execute bit is added for owner, group and
    others, leaving the remaining mode bits untouched.
    """

    __slots__ = ()

    def is_executable(self, path: Path) -> bool:
        return os.access(path, os.X_OK)

    def apply(self, path: Path) -> ApplyResult:
        try:
            mode = path.stat().st_mode
            path.chmod(stat.S_IMODE(mode) | _EXECUTE_BITS)
        except OSError as e:
            return ApplyResult(success=False, diagnostic=str(e))
        return ApplyResult(success=True)


@final
class ChmodCommandApplier:
    """Sets execute permission by running ``chmod +x`` as an external command.

    The command's stderr becomes the diagnostic when it exits non-zero.
    """

    __slots__ = ("_chmod", "_timeout")

    def __init__(self, chmod: str = "chmod", timeout: float = CHMOD_TIMEOUT) -> None:
        """Initialize the applier.

        Args:
            chmod: The chmod executable to run.
            timeout: Seconds to wait for the command to finish.
        """
        self._chmod = chmod
        self._timeout = timeout

    def is_executable(self, path: Path) -> bool:
        return os.access(path, os.X_OK)

    def apply(self, path: Path) -> ApplyResult:
        try:
            result = subprocess.run(  # noqa: S603
                [self._chmod, "+x", str(path)],
                capture_output=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return ApplyResult(
                success=False,
                diagnostic=f"{self._chmod} timed out after {self._timeout}s",
            )
        except OSError as e:
            return ApplyResult(success=False, diagnostic=str(e))

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            return ApplyResult(
                success=False,
                diagnostic=stderr or f"{self._chmod} exited with {result.returncode}",
            )
        return ApplyResult(success=True)


def find_hook_scripts(
    directory: Path,
    applier: PermissionApplier,
    script_names: Sequence[str] = HOOK_SCRIPT_NAMES,
) -> tuple[HookScript, ...]:
    """Find the named hook scripts present in a directory.

    Args:
        directory: The hooks directory.
        applier: Used to check each script's execute bit.
        script_names: Hook names to look for, in processing order.

    Returns:
        The scripts that exist, in the order of script_names.
    """
    scripts: list[HookScript] = []
    for name in script_names:
        path = directory / name
        if path.is_file():
            scripts.append(
                HookScript(name=name, path=path, executable=applier.is_executable(path))
            )
    return tuple(scripts)


def repair_hook_permissions(
    directory: Path | str,
    script_names: Sequence[str] = HOOK_SCRIPT_NAMES,
    *,
    applier: PermissionApplier | None = None,
    logger: FilteringBoundLogger | None = None,
) -> RepairResult:
    """Ensure every hook script present in a directory is executable.

    Each script is processed independently. A script whose execute bit
    cannot be applied does not stop the remaining scripts from being
    checked; the failures are raised together once the batch is done.
    A script that still looks non-executable after a successful change
    only produces a warning.

    Args:
        directory: The hooks directory to inspect.
        script_names: Hook names to look for, in processing order.
        applier: Permission applier. Uses ModeBitApplier if None.
        logger: Structured logger for repair events.

    Returns:
        RepairResult describing what was found and changed. A missing
        directory yields a SKIPPED result rather than an error.

    Raises:
        PermissionApplyError: If setting the execute bit failed for any script.
    """
    hooks_dir = Path(directory)
    applier = applier or ModeBitApplier()
    log: FilteringBoundLogger = logger or structlog.get_logger()

    if not hooks_dir.is_dir():
        note = f"Hooks directory not found: {hooks_dir}. Skipping permissions check."
        log.warning("hooks_directory_missing", directory=str(hooks_dir))
        return RepairResult(status=RepairStatus.SKIPPED, directory=hooks_dir, note=note)

    log.info("hook_permissions_check", directory=str(hooks_dir))

    scripts = find_hook_scripts(hooks_dir, applier, script_names)
    if not scripts:
        log.info("hook_scripts_missing", directory=str(hooks_dir))
        return RepairResult(
            status=RepairStatus.NO_SCRIPTS,
            directory=hooks_dir,
            note="No hook scripts found in hooks directory.",
        )

    repaired: list[str] = []
    unverified: list[str] = []
    failures: list[tuple[str, str]] = []

    for script in scripts:
        if script.executable:
            continue

        log.info("hook_permission_apply", script=script.name)
        result = applier.apply(script.path)
        if not result.success:
            log.error(
                "hook_permission_apply_failed",
                script=script.name,
                diagnostic=result.diagnostic,
            )
            failures.append((script.name, result.diagnostic))
            continue

        repaired.append(script.name)

        # Some filesystems (bind mounts, squashfs) accept the change but
        # keep reporting the old mode
        if not applier.is_executable(script.path):
            message = (
                f"Execute permission may not be properly set for {script.name}. "
                "Manual intervention may be required."
            )
            log.warning("hook_permission_unverified", script=script.name)
            warnings.warn(message, PermissionVerifyWarning, stacklevel=2)
            unverified.append(script.name)

    if failures:
        name, diagnostic = failures[0]
        msg = f"Failed to set execute permission for {name}: {diagnostic}"
        raise PermissionApplyError(
            msg,
            script_name=name,
            diagnostic=diagnostic,
            failures=tuple(failures),
        )

    return RepairResult(
        status=RepairStatus.CHECKED,
        directory=hooks_dir,
        note=f"Checked {len(scripts)} hook script(s), repaired {len(repaired)}.",
        scripts=scripts,
        repaired=tuple(repaired),
        unverified=tuple(unverified),
    )
