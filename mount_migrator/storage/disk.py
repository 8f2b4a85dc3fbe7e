"""Device and filesystem capability used by the migration phases.

DiskOperations is a thin object over the storage helpers so that the
sequencer can be driven against a fake in tests instead of a real block
device.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from mount_migrator.domain.models import CopyResult, ExclusionRule, MigrationPlan
from mount_migrator.storage import devices, format as format_ops, mount, sync
from mount_migrator.storage.commands import run_command


class DiskOperations:
    """Real implementation backed by parted, mkfs, mount, rsync and blkid."""

    def __init__(self, settle_seconds: float = 2.0):
        self.settle_seconds = settle_seconds

    def device_exists(self, device: str) -> bool:
        return devices.device_exists(device)

    def mounted_entries(self, device: str) -> list[tuple[str, str]]:
        return devices.mounted_entries(device)

    def unmount_device(self, device: str) -> list[str]:
        return mount.unmount_device(device)

    def partition_and_format(self, plan: MigrationPlan) -> list[str]:
        return format_ops.partition_and_format(plan, settle_seconds=self.settle_seconds)

    def mount(self, partition: str, path: Path) -> None:
        mount.mount_partition(partition, path)

    def unmount(self, path: Path) -> str:
        return mount.unmount_path(path)

    def mount_all(self) -> None:
        mount.mount_all()

    def sync_tree(
        self, source: Path, destination: Path, exclusions: Iterable[ExclusionRule]
    ) -> CopyResult:
        return sync.sync_tree(source, destination, exclusions)

    def resolve_uuid(self, partition: str) -> str:
        return devices.resolve_uuid(partition)

    def disk_usage(self, paths: list[str] | None = None) -> str:
        return devices.disk_usage(paths)

    def largest_directories(self, path: str) -> list[str]:
        return devices.largest_directories(path)

    def mount_status(self, path: str) -> str:
        result = run_command(
            ["findmnt", "-n", "-o", "SOURCE,TARGET,FSTYPE,OPTIONS", path],
            check=False,
            log_output=False,
        )
        return result.stdout.strip() or f"{path} is not a mount point"
