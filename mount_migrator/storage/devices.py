"""Block device queries: existence, mounts, UUIDs and usage.

Mount state is read from /proc/mounts rather than lsblk so that bind mounts
and mounts of partitions that lsblk has not yet rescanned are still seen.

Operations:
    - device_exists(): Check that a /dev node is present
    - mounted_entries(): (source, mountpoint) pairs for a device and its partitions
    - is_mountpoint_active(): Check whether a path is currently mounted
    - resolve_uuid(): Filesystem UUID of a partition via blkid
    - wait_for_node(): Wait for a new partition node to appear
    - disk_usage() / largest_directories(): df and du snapshots for the report
"""

from __future__ import annotations

import os
import re
import time
from pathlib import Path

from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.commands import run_command
from mount_migrator.storage.exceptions import CommandError, UUIDResolutionError


log = LoggerFactory.for_storage()

PROC_MOUNTS = Path("/proc/mounts")


def validate_device_path(device: str) -> None:
    if not isinstance(device, str) or not device.startswith("/dev/"):
        raise ValueError(f"Invalid device path: {device}")
    if any(char in device for char in [";", "&", "|", "$", "`", "\n", "\r", " "]):
        raise ValueError(f"Device path contains invalid characters: {device}")


def device_exists(device: str) -> bool:
    validate_device_path(device)
    return os.path.exists(device)  # noqa: PTH110


def _decode_mount_field(value: str) -> str:
    # /proc/mounts escapes whitespace as octal (e.g. \040 for a space)
    return re.sub(r"\\([0-7]{3})", lambda match: chr(int(match.group(1), 8)), value)


def read_mounts(mounts_path: Path | None = None) -> list[tuple[str, str]]:
    """Return (source, mountpoint) pairs from /proc/mounts."""
    mounts_path = mounts_path or PROC_MOUNTS
    entries: list[tuple[str, str]] = []
    try:
        with open(mounts_path, encoding="utf-8") as mounts_file:
            for line in mounts_file:
                parts = line.split()
                if len(parts) > 1:
                    entries.append(
                        (_decode_mount_field(parts[0]), _decode_mount_field(parts[1]))
                    )
    except FileNotFoundError:
        log.debug(f"{mounts_path} not available")
    return entries


def belongs_to_device(source: str, device: str) -> bool:
    """True if ``source`` is ``device`` itself or one of its partitions."""
    if source == device:
        return True
    if not source.startswith(device):
        return False
    remainder = source[len(device):]
    if device[-1].isdigit():
        # nvme0n1 -> nvme0n1p1, mmcblk0 -> mmcblk0p1 (but not nvme0n10)
        return re.fullmatch(r"p\d+", remainder) is not None
    return remainder.isdigit()


def mounted_entries(device: str, mounts_path: Path | None = None) -> list[tuple[str, str]]:
    return [
        (source, mountpoint)
        for source, mountpoint in read_mounts(mounts_path)
        if belongs_to_device(source, device)
    ]


def is_mountpoint_active(mountpoint: str, mounts_path: Path | None = None) -> bool:
    mountpoint = str(mountpoint)
    if mounts_path is None and not PROC_MOUNTS.exists():
        return os.path.ismount(mountpoint)
    return any(mp == mountpoint for _source, mp in read_mounts(mounts_path))


def resolve_uuid(partition: str) -> str:
    """Return the filesystem UUID of ``partition``.

    Raises:
        UUIDResolutionError: If blkid fails or reports nothing
    """
    validate_device_path(partition)
    try:
        result = run_command(["blkid", "-s", "UUID", "-o", "value", partition])
    except CommandError as error:
        log.debug(f"blkid failed for {partition}: {error}")
        raise UUIDResolutionError(partition) from error
    uuid = result.stdout.strip()
    if not uuid:
        raise UUIDResolutionError(partition)
    log.info(f"UUID for {partition}: {uuid}")
    return uuid


def wait_for_node(path: str, timeout_seconds: float = 5.0, interval: float = 0.5) -> bool:
    deadline = time.monotonic() + timeout_seconds
    while True:
        if os.path.exists(path):  # noqa: PTH110
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)


def disk_usage(paths: list[str] | None = None) -> str:
    """Human-readable df output, or an empty string if df fails."""
    command = ["df", "-h", *(paths or [])]
    result = run_command(command, check=False, log_output=False)
    if result.returncode != 0:
        log.debug(f"df failed: {result.stderr.strip()}")
    return result.stdout.rstrip()


def largest_directories(path: str, count: int = 5) -> list[str]:
    """Return the ``count`` largest entries below ``path`` as du lines."""
    directory = Path(path)
    if not directory.is_dir():
        return []
    children = sorted(str(child) for child in directory.iterdir())
    if not children:
        return []
    result = run_command(["du", "-sh", *children], check=False, log_output=False)
    lines = [line for line in result.stdout.splitlines() if line.strip()]
    return sorted(lines, key=lambda line: _parse_human_size(line.split()[0]), reverse=True)[
        :count
    ]


def _parse_human_size(value: str) -> float:
    units = {"K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4, "P": 1024**5}
    match = re.fullmatch(r"([\d.,]+)([KMGTP]?)", value.strip())
    if not match:
        return 0.0
    number = float(match.group(1).replace(",", "."))
    return number * units.get(match.group(2), 1)
