"""Final summary printed after a successful migration."""

from __future__ import annotations

from mount_migrator.domain.models import MigrationPlan, MigrationState
from mount_migrator.services.controller import ContainerRuntime, ServiceController
from mount_migrator.services.quiesce import SERVICE_STOP_ORDER
from mount_migrator.storage.disk import DiskOperations


def _section(title: str) -> list[str]:
    return ["", f"=== {title} ==="]


def build_report(
    plan: MigrationPlan,
    state: MigrationState,
    disk: DiskOperations,
    services: ServiceController,
    containers: ContainerRuntime,
) -> list[str]:
    mount_points = [str(mp) for mp in plan.mount_points]
    lines = [f"Migration '{plan.name}' to {plan.device} (run {state.run_id})"]

    if state.usage_before:
        lines += _section("Disk usage before")
        lines += state.usage_before.splitlines()
    for mount_point, entries in state.largest_dirs.items():
        if entries:
            lines += _section(f"Largest directories in {mount_point} before")
            lines += entries
    lines += _section("Disk usage after")
    lines += disk.disk_usage(mount_points).splitlines()

    lines += _section("Mount status")
    lines += [disk.mount_status(mp) for mp in mount_points]

    lines += _section("Service status")
    for name in ("docker", *SERVICE_STOP_ORDER):
        if name == "docker" or name in state.stopped_services or services.is_installed(name):
            lines.append(f"{name}: {services.status(name)}")
    if containers.available():
        lines += _section("Docker containers")
        lines += containers.status_table().splitlines()

    if state.restart_failures:
        lines += _section("Failed to restart")
        lines += list(state.restart_failures)

    if state.package_manager_ok is not None:
        verdict = "functional" if state.package_manager_ok else "NOT functional, check /var/lib/dpkg"
        lines.append(f"Package manager: {verdict}")

    lines += _section("Recovery")
    for mount_point, backup in state.backups.items():
        lines.append(f"Old {mount_point} is preserved at {backup}")
    for mount_point, uuid in state.uuids.items():
        lines.append(f"{mount_point} -> UUID={uuid}")
    if state.fstab_backup:
        lines.append(f"fstab backup: {state.fstab_backup}")

    lines += _section("Next steps")
    lines.append("1. Verify all services are working correctly")
    lines.append("2. Reboot to confirm the new mounts come up from fstab")
    step = 3
    for backup in state.backups.values():
        lines.append(f"{step}. After 24-48 hours of stable operation: rm -rf {backup}")
        step += 1
    if "/var" in mount_points:
        lines.append(
            f"{step}. Consider setting Docker storage limits in /etc/docker/daemon.json:"
        )
        lines.append('   {"storage-driver": "overlay2", "storage-opts": ["overlay2.size=50G"]}')
    return lines
