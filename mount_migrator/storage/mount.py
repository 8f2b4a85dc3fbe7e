"""Mount and unmount helpers with escalating unmount fallbacks.

Unmounting tries, in order, a plain ``umount``, a forced ``umount -f`` and a
lazy ``umount -l``. A target that is already unmounted counts as success at
every step. Nothing is retried with the same flags.
"""

from __future__ import annotations

from pathlib import Path

from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.commands import run_command
from mount_migrator.storage.devices import (
    is_mountpoint_active,
    mounted_entries,
    validate_device_path,
)
from mount_migrator.storage.exceptions import CommandError, UnmountFailedError


log = LoggerFactory.for_storage()

UNMOUNT_STRATEGIES = (
    ("plain", []),
    ("forced", ["-f"]),
    ("lazy", ["-l"]),
)

_NOT_MOUNTED_MARKERS = ("not mounted", "no mount point specified", "not found")


def _is_not_mounted_error(error: CommandError) -> bool:
    stderr = (error.stderr or "").lower()
    return any(marker in stderr for marker in _NOT_MOUNTED_MARKERS)


def mount_partition(partition: str, path: str | Path) -> None:
    """Mount ``partition`` at ``path``, creating the directory first.

    Raises:
        CommandError: If mount fails
    """
    validate_device_path(partition)
    Path(path).mkdir(parents=True, exist_ok=True)
    run_command(["mount", partition, str(path)])
    log.info(f"Mounted {partition} at {path}")


def unmount_path(target: str | Path) -> str:
    """Unmount a mountpoint or device node, escalating on failure.

    Returns:
        The strategy that succeeded ("plain", "forced", "lazy") or
        "not-mounted"

    Raises:
        CommandError: If even the lazy unmount fails
    """
    target = str(target)
    last_error: CommandError | None = None
    for name, flags in UNMOUNT_STRATEGIES:
        try:
            run_command(["umount", *flags, target])
        except CommandError as error:
            if _is_not_mounted_error(error):
                log.debug(f"{target} is not mounted")
                return "not-mounted"
            log.debug(f"{name} unmount of {target} failed: {error}")
            last_error = error
            continue
        if name != "plain":
            log.warning(f"{target} needed a {name} unmount")
        else:
            log.info(f"Unmounted {target}")
        return name
    assert last_error is not None
    raise last_error


def unmount_device(device: str, mounts_path: Path | None = None) -> list[str]:
    """Unmount every mounted node of ``device`` and its partitions.

    Nested mountpoints are released before their parents.

    Returns:
        The mountpoints that were active before the call

    Raises:
        UnmountFailedError: If any mountpoint is still active afterwards
    """
    validate_device_path(device)
    entries = mounted_entries(device, mounts_path)
    if not entries:
        log.info(f"{device} is not currently mounted")
        return []

    run_command(["sync"], check=False)
    mountpoints = sorted({mp for _source, mp in entries}, key=len, reverse=True)
    for mountpoint in mountpoints:
        try:
            unmount_path(mountpoint)
        except CommandError as error:
            log.error(f"Could not unmount {mountpoint}: {error}")

    still_active = [mp for mp in mountpoints if is_mountpoint_active(mp, mounts_path)]
    if still_active:
        raise UnmountFailedError(device, still_active)
    log.info(f"{device} or its partitions successfully unmounted")
    return mountpoints


def mount_all() -> None:
    """Mount every fstab entry (``mount -a``).

    Raises:
        CommandError: If mount -a reports a failure
    """
    run_command(["mount", "-a"])
