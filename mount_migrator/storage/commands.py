"""Subprocess wrapper shared by the storage and service helpers."""

from __future__ import annotations

import shutil
import subprocess
from typing import Sequence

from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.exceptions import CommandError


log = LoggerFactory.for_storage()
output_log = LoggerFactory.for_command()


def run_command(
    command: Sequence[str],
    check: bool = True,
    log_output: bool = True,
    log_command: bool = True,
) -> subprocess.CompletedProcess:
    """Run ``command`` with captured text output.

    Args:
        command: Argument list (never passed through a shell)
        check: Raise CommandError on a non-zero exit status
        log_output: Log stdout/stderr at TRACE
        log_command: Log the command line at DEBUG

    Raises:
        CommandError: If check is True and the command fails, or the
            executable is missing
    """
    command = list(command)
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(command, check=False, text=True, capture_output=True)
    except FileNotFoundError as error:
        if check:
            raise CommandError(command, 127, str(error)) from error
        return subprocess.CompletedProcess(command, 127, "", str(error))

    if result.stdout and (log_output or result.returncode != 0):
        output_log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        output_log.trace(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stderr or result.stdout or "")
    return result


def command_available(name: str) -> bool:
    return shutil.which(name) is not None
