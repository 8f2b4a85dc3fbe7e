"""Domain model for mount point migrations.

Plans are immutable for the whole run. Phases never mutate MigrationState;
they return a copy built with dataclasses.replace().
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from mount_migrator.storage.devices import validate_device_path


# ==============================================================================
# Plan Domain
# ==============================================================================


@dataclass(frozen=True)
class FormatOptions:
    """Format-time tuning passed to mkfs.ext4."""

    inode_ratio: int | None = None  # bytes per inode (-i)
    reserved_percent: int | None = None  # reserved block percentage (-m)

    def mkfs_args(self) -> list[str]:
        args: list[str] = []
        if self.inode_ratio is not None:
            args.extend(["-i", str(self.inode_ratio)])
        if self.reserved_percent is not None:
            args.extend(["-m", str(self.reserved_percent)])
        return args


@dataclass(frozen=True)
class ExclusionRule:
    """A path skipped by the copy and recreated empty on the destination.

    ``path`` is relative to the mount point (e.g. "tmp" for /var/tmp).
    """

    path: str
    mode: int = 0o755

    @property
    def rsync_pattern(self) -> str:
        # Leading slash anchors the pattern to the transfer root
        return "/" + self.path.strip("/")


@dataclass(frozen=True)
class PartitionTarget:
    """One partition of the new device and the mount point it replaces."""

    number: int
    mount_point: Path
    start_percent: int
    end_percent: int
    temp_mount: Path
    backup_dir: Path
    mount_options: str = "defaults"
    dump: int = 0
    pass_number: int = 2
    format_options: FormatOptions = field(default_factory=FormatOptions)
    exclusions: tuple[ExclusionRule, ...] = ()
    skeleton_dirs: tuple[str, ...] = ()
    skeleton_files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.start_percent < self.end_percent <= 100:
            raise ValueError(
                f"Invalid partition range {self.start_percent}%-{self.end_percent}% "
                f"for {self.mount_point}"
            )


@dataclass(frozen=True)
class MigrationPlan:
    """Everything a run needs to know, fixed before the first phase."""

    name: str
    device: str
    targets: tuple[PartitionTarget, ...]
    fs_type: str = "ext4"
    verify_package_manager: bool = False

    def __post_init__(self) -> None:
        if not self.targets:
            raise ValueError(f"Plan {self.name} has no targets")
        validate_device_path(self.device)
        mount_points = [target.mount_point for target in self.targets]
        if len(set(mount_points)) != len(mount_points):
            raise ValueError(f"Plan {self.name} repeats a mount point")

    def partition_path(self, target: PartitionTarget) -> str:
        """Partition node for a target (e.g., /dev/sdb1 or /dev/nvme0n1p1)."""
        suffix = "p" if self.device[-1].isdigit() else ""
        return f"{self.device}{suffix}{target.number}"

    @property
    def mount_points(self) -> list[Path]:
        return [target.mount_point for target in self.targets]


# ==============================================================================
# Lock Domain
# ==============================================================================


@dataclass(frozen=True)
class LockRecord:
    """Advisory record written to the lock file for the run's lifetime."""

    pid: int
    started_at: float
    device: str

    @classmethod
    def for_current_process(cls, device: str) -> LockRecord:
        return cls(pid=os.getpid(), started_at=time.time(), device=device)

    def to_json(self) -> str:
        return json.dumps(
            {"pid": self.pid, "started_at": self.started_at, "device": self.device}
        )

    @classmethod
    def from_json(cls, text: str) -> LockRecord:
        """Parse a lock file body.

        Raises:
            ValueError: If the body is not a lock record
        """
        try:
            data = json.loads(text)
            return cls(
                pid=int(data["pid"]),
                started_at=float(data["started_at"]),
                device=str(data["device"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError) as error:
            raise ValueError(f"Malformed lock record: {error}") from error

    def describe(self) -> str:
        started = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(self.started_at))
        return f"pid {self.pid} migrating {self.device} since {started}"


# ==============================================================================
# Fstab Domain
# ==============================================================================


@dataclass
class FstabEntry:
    """A single fstab line (data or comment/blank)."""

    raw: str
    device: str = ""
    mount_point: str = ""
    fs_type: str = ""
    options: str = ""
    dump: str = "0"
    pass_number: str = "0"
    is_data: bool = False

    @classmethod
    def parse(cls, line: str) -> FstabEntry:
        """Parse a single fstab line. Non-data lines are preserved as-is."""
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            return cls(raw=line)

        parts = stripped.split()
        if len(parts) < 2:
            return cls(raw=line)

        return cls(
            raw=line,
            device=parts[0],
            mount_point=parts[1],
            fs_type=parts[2] if len(parts) > 2 else "",
            options=parts[3] if len(parts) > 3 else "defaults",
            dump=parts[4] if len(parts) > 4 else "0",
            pass_number=parts[5] if len(parts) > 5 else "0",
            is_data=True,
        )

    @classmethod
    def for_uuid(
        cls,
        uuid: str,
        mount_point: str,
        fs_type: str,
        options: str,
        dump: int,
        pass_number: int,
    ) -> FstabEntry:
        line = f"UUID={uuid} {mount_point} {fs_type} {options} {dump} {pass_number}\n"
        return cls.parse(line)

    def format(self) -> str:
        """Format entry back to an fstab line, keeping the original text."""
        if self.raw.endswith("\n"):
            return self.raw
        return self.raw + "\n"


# ==============================================================================
# Run Domain
# ==============================================================================


@dataclass(frozen=True)
class IntegrityReport:
    """Regular file counts on both sides of the staged copy."""

    mount_point: str
    source_files: int
    destination_files: int

    @property
    def threshold(self) -> int:
        return self.source_files * 90 // 100

    @property
    def passed(self) -> bool:
        # Fewer than 90% is a mismatch; exactly 90% passes
        return self.destination_files >= self.threshold


@dataclass(frozen=True)
class CopyResult:
    """Outcome of copying one mount point to its temporary mount."""

    source: str
    destination: str
    method: str  # "rsync" or "cp"
    duration_seconds: float


class PhaseStatus(Enum):
    """How a phase ended."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationState:
    """Facts accumulated by the phases of one run."""

    run_id: str = "-"
    usage_before: str = ""
    largest_dirs: dict[str, list[str]] = field(default_factory=dict)
    device_was_mounted: bool = False
    lock: LockRecord | None = None
    docker_was_active: bool = False
    stopped_containers: tuple[str, ...] = ()
    stopped_services: tuple[str, ...] = ()
    unmounted: tuple[str, ...] = ()
    partitions: tuple[str, ...] = ()
    copies: tuple[CopyResult, ...] = ()
    integrity: tuple[IntegrityReport, ...] = ()
    backups: dict[str, str] = field(default_factory=dict)
    uuids: dict[str, str] = field(default_factory=dict)
    fstab_backup: str | None = None
    restart_failures: tuple[str, ...] = ()
    package_manager_ok: bool | None = None
    phases: tuple[tuple[str, PhaseStatus], ...] = ()

    def with_phase(self, name: str, status: PhaseStatus) -> MigrationState:
        return replace(self, phases=self.phases + ((name, status),))

    def phase_status(self, name: str) -> PhaseStatus | None:
        for phase_name, status in self.phases:
            if phase_name == name:
                return status
        return None

