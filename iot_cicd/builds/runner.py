"""Build runner for executing the repository's build script.

This module handles:
- Selecting the build script arguments for a branch
- Executing the script from the published workspace
- Streaming combined stdout/stderr into an output sink as it is produced
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from iot_cicd.builds.stream import copy_output
from iot_cicd.types import ErrorCode

if TYPE_CHECKING:
    from iot_cicd.builds.stream import OutputSink

logger = logging.getLogger(__name__)

MASTER_BRANCH = "master"


class BuildExecutionError(Exception):
    """Raised when the build script cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: ErrorCode = ErrorCode.EXECUTION_SPAWN_FAILED,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class BuildResult:
    """Result of a build script execution.

    Attributes:
        success: Whether the script exited with status zero.
        exit_code: Process exit code.
        command: The command that was executed.
        started_at: Execution start time.
        finished_at: Execution finish time.
        output_bytes: Number of output bytes forwarded to the sink.
        error_message: Error message if the build failed.
    """

    success: bool
    exit_code: int
    command: str
    started_at: datetime
    finished_at: datetime
    output_bytes: int = 0
    error_message: str | None = None


def select_build_args(
    branch: str,
    default_args: Sequence[str],
    master_args: Sequence[str],
) -> list[str]:
    """Pick the argument list for the resolved branch.

    Args:
        branch: Resolved branch name ("" if unknown).
        default_args: Arguments for every branch but master.
        master_args: Arguments for master.

    Returns:
        Copy of the selected argument list.
    """
    if branch == MASTER_BRANCH:
        return list(master_args)
    return list(default_args)


def run_build_script(
    workspace_root: Path,
    script: str,
    args: Sequence[str],
    output: OutputSink,
    env_override: dict[str, str] | None = None,
) -> BuildResult:
    """Execute the build script against the published workspace.

    Args:
        workspace_root: Published workspace path; also the working directory.
        script: Script path relative to the workspace root.
        args: Script arguments.
        output: Sink receiving the interleaved stdout/stderr.
        env_override: Optional environment variable overrides.

    Returns:
        BuildResult with execution details.

    Raises:
        BuildExecutionError: If the script cannot be started (missing,
            not executable).
    """
    script_path = workspace_root / script
    cmd = [str(script_path), *args]
    cmd_str = shlex.join(cmd)
    logger.info("Executing build: %s", cmd_str)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    try:
        process = subprocess.Popen(
            cmd,
            cwd=workspace_root,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=env,
        )
    except OSError as e:
        error_message = f"Failed to execute build: {e}"
        logger.error(error_message)
        raise BuildExecutionError(
            error_message,
            code=ErrorCode.EXECUTION_SPAWN_FAILED,
        ) from e

    assert process.stdout is not None
    with process.stdout:
        output_bytes = copy_output(process.stdout, output)
    exit_code = process.wait()
    finished_at = datetime.now(timezone.utc)

    success = exit_code == 0
    error_message: str | None = None
    if not success:
        error_message = f"Build failed with exit code {exit_code}"
        logger.error("%s: %s", error_message, cmd_str)
    else:
        duration = (finished_at - started_at).total_seconds()
        logger.info("Build finished in %.1fs", duration)

    return BuildResult(
        success=success,
        exit_code=exit_code,
        command=cmd_str,
        started_at=started_at,
        finished_at=finished_at,
        output_bytes=output_bytes,
        error_message=error_message,
    )


__all__ = [
    "MASTER_BRANCH",
    "BuildExecutionError",
    "BuildResult",
    "run_build_script",
    "select_build_args",
]
