"""Compiled-in migration plans.

One plan per migration target. The /var plan formats with a
denser inode table and no reserved blocks while the combined /root+/var plan
keeps mkfs defaults.
"""

from __future__ import annotations

from pathlib import Path

from .models import ExclusionRule, FormatOptions, MigrationPlan, PartitionTarget


DEFAULT_DEVICE = "/dev/sdb"

VAR_EXCLUSIONS = (
    ExclusionRule("run", 0o755),
    ExclusionRule("lock", 0o755),
    ExclusionRule("tmp", 0o1777),
    ExclusionRule("cache/apt/archives", 0o755),
)

# Without these apt and dpkg refuse to run on a freshly populated /var
PACKAGE_MANAGER_DIRS = (
    "lib/dpkg/updates",
    "lib/apt/lists/partial",
    "cache/apt/archives/partial",
)
PACKAGE_MANAGER_FILES = ("lib/dpkg/status",)

# Docker-heavy /var: more inodes, no reserved space
VAR_FORMAT_OPTIONS = FormatOptions(inode_ratio=8192, reserved_percent=0)


def _root_target(number: int, start: int, end: int) -> PartitionTarget:
    return PartitionTarget(
        number=number,
        mount_point=Path("/root"),
        start_percent=start,
        end_percent=end,
        temp_mount=Path("/mnt/tmp_root"),
        backup_dir=Path("/root_old"),
    )


def _var_target(
    number: int,
    start: int,
    end: int,
    *,
    temp_mount: str,
    mount_options: str = "defaults",
    pass_number: int = 2,
    format_options: FormatOptions | None = None,
) -> PartitionTarget:
    return PartitionTarget(
        number=number,
        mount_point=Path("/var"),
        start_percent=start,
        end_percent=end,
        temp_mount=Path(temp_mount),
        backup_dir=Path("/var_old"),
        mount_options=mount_options,
        pass_number=pass_number,
        format_options=format_options or FormatOptions(),
        exclusions=VAR_EXCLUSIONS,
        skeleton_dirs=PACKAGE_MANAGER_DIRS,
        skeleton_files=PACKAGE_MANAGER_FILES,
    )


def root_plan(device: str = DEFAULT_DEVICE) -> MigrationPlan:
    return MigrationPlan(name="root", device=device, targets=(_root_target(1, 0, 100),))


def home_plan(device: str = DEFAULT_DEVICE) -> MigrationPlan:
    target = PartitionTarget(
        number=1,
        mount_point=Path("/home"),
        start_percent=0,
        end_percent=100,
        temp_mount=Path("/mnt/tmp_home"),
        backup_dir=Path("/home_old"),
    )
    return MigrationPlan(name="home", device=device, targets=(target,))


def var_plan(device: str = DEFAULT_DEVICE) -> MigrationPlan:
    target = _var_target(
        1,
        0,
        100,
        temp_mount="/mnt/tempvar",
        mount_options="defaults,noatime,nodiratime",
        pass_number=1,
        format_options=VAR_FORMAT_OPTIONS,
    )
    return MigrationPlan(name="var", device=device, targets=(target,))


def root_var_plan(device: str = DEFAULT_DEVICE) -> MigrationPlan:
    return MigrationPlan(
        name="root-var",
        device=device,
        targets=(
            _root_target(1, 0, 50),
            _var_target(2, 50, 100, temp_mount="/mnt/tmp_var"),
        ),
        verify_package_manager=True,
    )


PLAN_BUILDERS = {
    "root": root_plan,
    "root-var": root_var_plan,
    "home": home_plan,
    "var": var_plan,
}


def build_plan(name: str, device: str = DEFAULT_DEVICE) -> MigrationPlan:
    """Return the compiled-in plan called ``name`` for ``device``.

    Raises:
        KeyError: If no plan has that name
    """
    try:
        builder = PLAN_BUILDERS[name]
    except KeyError:
        raise KeyError(
            f"Unknown plan {name!r}; expected one of {', '.join(sorted(PLAN_BUILDERS))}"
        ) from None
    return builder(device)
