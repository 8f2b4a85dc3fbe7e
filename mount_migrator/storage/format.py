"""Partitioning and ext4 formatting of the migration target device.

Layout:
    - The first 10 MiB of the device are zeroed to destroy any existing
      partition table and filesystem signatures
    - A fresh GPT label is written with ``parted -s <dev> mklabel gpt``
    - One primary partition is created per plan target, spanning the
      target's percentage range of the device
    - Each partition is formatted with ``mkfs.ext4 -F`` plus the target's
      tuning flags (inode ratio, reserved-block percentage)

Any failure raises PartitionOrFormatError. Once the signature wipe has
started there is no safe state to return to, so nothing here is retried.

Example:
    >>> from mount_migrator.domain.plans import home_plan
    >>> partitions = partition_and_format(home_plan("/dev/sdb"))
    >>> partitions
    ['/dev/sdb1']
"""

from __future__ import annotations

import contextlib
import shutil
import time

from mount_migrator.domain.models import FormatOptions, MigrationPlan, PartitionTarget
from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.commands import run_command
from mount_migrator.storage.devices import validate_device_path, wait_for_node
from mount_migrator.storage.exceptions import CommandError, PartitionOrFormatError


log = LoggerFactory.for_storage()

WIPE_MEBIBYTES = 10


def wipe_signatures(device: str) -> None:
    """Zero the start of ``device`` so no old label or superblock survives."""
    validate_device_path(device)
    log.debug(f"Clearing existing partition table on {device}")
    try:
        run_command(
            ["dd", "if=/dev/zero", f"of={device}", "bs=1M", f"count={WIPE_MEBIBYTES}"],
            log_output=False,
        )
    except CommandError as error:
        raise PartitionOrFormatError(
            f"Failed to clear partition table on {device}: {error}", device=device
        ) from error


def create_partition_table(device: str) -> None:
    log.info(f"Creating new GPT partition table on {device}")
    try:
        run_command(["parted", "-s", device, "mklabel", "gpt"])
    except CommandError as error:
        raise PartitionOrFormatError(
            f"Failed to create GPT label on {device}: {error}", device=device
        ) from error


def create_partition(device: str, target: PartitionTarget, fs_type: str = "ext4") -> None:
    start = f"{target.start_percent}%"
    end = f"{target.end_percent}%"
    log.info(f"Creating partition {target.number} on {device} ({start} - {end})")
    try:
        run_command(["parted", "-s", device, "mkpart", "primary", fs_type, start, end])
    except CommandError as error:
        raise PartitionOrFormatError(
            f"Failed to create partition {target.number} on {device}: {error}",
            device=device,
        ) from error


def settle_device(device: str, settle_seconds: float = 2.0) -> None:
    """Give the kernel a moment to pick up the new partition table."""
    for cmd in (
        ["sync"],
        ["partprobe", device],
        ["udevadm", "settle", "--timeout=10"],
    ):
        if shutil.which(cmd[0]):
            with contextlib.suppress(CommandError, OSError):
                run_command(cmd, log_command=False)
    if settle_seconds > 0:
        time.sleep(settle_seconds)


def format_partition(
    partition: str, fs_type: str = "ext4", options: FormatOptions | None = None
) -> None:
    """Format ``partition`` with ``mkfs.<fs_type> -F`` and tuning flags.

    Raises:
        PartitionOrFormatError: If mkfs fails
    """
    options = options or FormatOptions()
    command = [f"mkfs.{fs_type}", "-F", *options.mkfs_args(), partition]
    log.info(f"Formatting {partition} as {fs_type}")
    try:
        run_command(command, log_output=False)
    except CommandError as error:
        log.error(f"Command: {' '.join(command)}")
        raise PartitionOrFormatError(
            f"Failed to format {partition}: {error}", device=partition
        ) from error
    log.info(f"Partition {partition} successfully formatted")


def partition_and_format(plan: MigrationPlan, settle_seconds: float = 2.0) -> list[str]:
    """Repartition ``plan.device`` and format one partition per target.

    Returns:
        Partition node paths in target order

    Raises:
        PartitionOrFormatError: On the first failing step
    """
    device = plan.device
    wipe_signatures(device)
    create_partition_table(device)
    for target in plan.targets:
        create_partition(device, target, plan.fs_type)
    settle_device(device, settle_seconds)

    partitions = [plan.partition_path(target) for target in plan.targets]
    for partition in partitions:
        if not wait_for_node(partition):
            raise PartitionOrFormatError(
                f"Partition node {partition} did not appear after creation",
                device=device,
            )

    for target, partition in zip(plan.targets, partitions):
        format_partition(partition, plan.fs_type, target.format_options)
    return partitions
