"""Custom exceptions for migration runs.

Every exception below except IntegrityMismatchError and
OperatorDeclinedError marks a fatal condition: the sequencer stops at the
failing phase and the CLI exits with status 1. The two operator-facing
exceptions are raised only after the operator has declined to continue.

Exception Hierarchy:
    MigrationError (base)
        ├── PermissionDeniedError
        ├── DeviceNotFoundError
        ├── ConcurrentRunDetectedError
        ├── CommandError
        ├── PartitionOrFormatError
        ├── UnmountFailedError
        ├── CopyError
        ├── IntegrityMismatchError
        ├── MountSwapError
        ├── UUIDResolutionError
        ├── ConfigUpdateError
        └── OperatorDeclinedError

Usage:
    from mount_migrator.storage.exceptions import DeviceNotFoundError

    if not os.path.exists(device):
        raise DeviceNotFoundError(device)
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for all migration failures."""


class PermissionDeniedError(MigrationError):
    """The run was started without root privileges."""

    def __init__(self, euid: int):
        self.euid = euid
        super().__init__(
            f"This tool must be run with root privileges (euid={euid}). "
            "Please use 'sudo'."
        )


class DeviceNotFoundError(MigrationError):
    """Target block device does not exist."""

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"Device not found: {device}")


class ConcurrentRunDetectedError(MigrationError):
    """A lock record from another run is present."""

    def __init__(self, lock_path: str, holder: str = ""):
        self.lock_path = lock_path
        self.holder = holder
        msg = f"Another migration appears to be running (lock file {lock_path} exists)"
        if holder:
            msg += f": {holder}"
        super().__init__(msg)


class CommandError(MigrationError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed ({returncode}): {' '.join(command)}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message)


class PartitionOrFormatError(MigrationError):
    """Partitioning or formatting the device failed."""

    def __init__(self, message: str, device: str | None = None):
        self.device = device
        super().__init__(message)


class UnmountFailedError(MigrationError):
    """A mount point stayed active after plain, forced and lazy unmount."""

    def __init__(self, device: str, mountpoints: list[str]):
        self.device = device
        self.mountpoints = mountpoints
        super().__init__(
            f"Failed to unmount {device}. Active mountpoints: {', '.join(mountpoints)}"
        )


class CopyError(MigrationError):
    """Copying the live mount point to the new partition failed."""

    def __init__(self, message: str, source: str | None = None, destination: str | None = None):
        self.source = source
        self.destination = destination
        super().__init__(message)


class IntegrityMismatchError(MigrationError):
    """Destination file count fell below the threshold and the operator declined."""

    def __init__(self, mount_point: str, source_files: int, destination_files: int, temp_mount: str):
        self.mount_point = mount_point
        self.source_files = source_files
        self.destination_files = destination_files
        self.temp_mount = temp_mount
        super().__init__(
            f"File count mismatch for {mount_point}: {destination_files} copied of "
            f"{source_files}. Data remains on new partition at {temp_mount}"
        )


class MountSwapError(MigrationError):
    """The original mount point could not be moved aside or remounted."""

    def __init__(self, message: str, mount_point: str | None = None):
        self.mount_point = mount_point
        super().__init__(message)


class UUIDResolutionError(MigrationError):
    """blkid returned no UUID for the new partition."""

    def __init__(self, partition: str):
        self.partition = partition
        super().__init__(f"Failed to get UUID for {partition}")


class ConfigUpdateError(MigrationError):
    """The persistent mount configuration could not be rewritten."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class OperatorDeclinedError(MigrationError):
    """The operator answered no at a confirmation prompt."""

    def __init__(self, question: str):
        self.question = question
        super().__init__(f"Aborted by operator: {question}")
