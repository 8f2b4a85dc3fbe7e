"""Phase sequencer for a mount point migration.

The run is an ordered list of phases. Each phase is a function of
(plan, state, env) that returns a new MigrationState; none of them mutate
their inputs. Phases are individually safe to repeat but the run as a whole
is not transactional: the first exception stops the sequence and nothing is
rolled back. The backup directory and the fstab backup are the manual
recovery path.

Phases:
    preflight -> lock -> quiesce -> unmount -> partition_format -> copy ->
    verify -> swap -> fstab -> restart -> package_check -> report

Once ``lock`` has run the lock file is removed on every exit path through
the run's ExitStack.

Example:
    >>> from mount_migrator.domain.plans import build_plan
    >>> state = Migrator(build_plan("home")).run()
"""

from __future__ import annotations

import os
import time
from contextlib import ExitStack
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

from mount_migrator.config import settings
from mount_migrator.domain.models import (
    FstabEntry,
    IntegrityReport,
    MigrationPlan,
    MigrationState,
    PartitionTarget,
    PhaseStatus,
)
from mount_migrator.logging import LoggerFactory, new_run_id, phase_context
from mount_migrator.prompt import confirm
from mount_migrator.report import build_report
from mount_migrator.services.controller import ContainerRuntime, ServiceController
from mount_migrator.services.packages import check_package_manager
from mount_migrator.services.quiesce import QuiesceResult, restart_services, stop_services
from mount_migrator.storage.disk import DiskOperations
from mount_migrator.storage.exceptions import (
    CommandError,
    CopyError,
    DeviceNotFoundError,
    IntegrityMismatchError,
    MountSwapError,
    OperatorDeclinedError,
    PermissionDeniedError,
)
from mount_migrator.storage.fstab import update_fstab
from mount_migrator.storage.lock import migration_lock
from mount_migrator.storage.sync import count_regular_files, prepare_destination


log = LoggerFactory.for_migration()


@dataclass
class MigrationEnvironment:
    """Capabilities and paths the phases act through."""

    disk: DiskOperations
    services: ServiceController
    containers: ContainerRuntime
    lock_path: Path
    fstab_path: Path
    confirm: Callable[[str], bool] = confirm
    output: Callable[[str], None] = print
    geteuid: Callable[[], int] = os.geteuid
    package_check: Callable[[], bool] = check_package_manager
    container_grace_seconds: float = 5.0
    sleep: Callable[[float], None] = time.sleep
    timestamp: Callable[[], str] = lambda: time.strftime("%Y%m%d%H%M%S")
    cleanup: ExitStack | None = None

    @classmethod
    def from_settings(cls) -> MigrationEnvironment:
        return cls(
            disk=DiskOperations(settle_seconds=settings.get_float("settle_seconds")),
            services=ServiceController(),
            containers=ContainerRuntime(),
            lock_path=settings.get_path("lock_path"),
            fstab_path=settings.get_path("fstab_path"),
            container_grace_seconds=settings.get_float("container_grace_seconds"),
        )


PhaseFunc = Callable[[MigrationPlan, MigrationState, MigrationEnvironment], MigrationState]


@dataclass(frozen=True)
class Phase:
    name: str
    description: str
    run: PhaseFunc
    applies: Callable[[MigrationPlan], bool] = field(default=lambda plan: True)


def _pairs(plan: MigrationPlan) -> list[tuple[PartitionTarget, str]]:
    return [(target, plan.partition_path(target)) for target in plan.targets]


def _excluded_paths(target: PartitionTarget) -> list[str]:
    return [rule.path for rule in target.exclusions]


# ==============================================================================
# Phases
# ==============================================================================


def preflight(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    euid = env.geteuid()
    if euid != 0:
        raise PermissionDeniedError(euid)
    if not env.disk.device_exists(plan.device):
        raise DeviceNotFoundError(plan.device)

    log.info(f"Starting migration of {', '.join(map(str, plan.mount_points))} to new disk {plan.device}")
    log.warning(f"All data on {plan.device} will be erased")

    usage = env.disk.disk_usage()
    largest: dict[str, list[str]] = {}
    for mount_point in plan.mount_points:
        largest[str(mount_point)] = env.disk.largest_directories(str(mount_point))
        for line in largest[str(mount_point)]:
            log.info(f"Largest in {mount_point}: {line}")

    mounted = env.disk.mounted_entries(plan.device)
    if mounted:
        described = ", ".join(f"{source} on {mp}" for source, mp in mounted)
        log.warning(f"{plan.device} is currently mounted: {described}")
        question = f"{plan.device} is in use ({described}). Erase it anyway?"
        if not env.confirm(question):
            raise OperatorDeclinedError(question)

    return replace(
        state,
        usage_before=usage,
        largest_dirs=largest,
        device_was_mounted=bool(mounted),
    )


def acquire_lock(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    if env.cleanup is None:
        raise RuntimeError("acquire_lock needs the run's ExitStack")
    record = env.cleanup.enter_context(migration_lock(env.lock_path, plan.device))
    return replace(state, lock=record)


def quiesce(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    log.info(f"Stopping services that use {', '.join(map(str, plan.mount_points))}...")
    result = stop_services(
        env.services,
        env.containers,
        grace_seconds=env.container_grace_seconds,
        sleep=env.sleep,
    )
    return replace(
        state,
        docker_was_active=result.docker_was_active,
        stopped_containers=result.stopped_containers,
        stopped_services=result.stopped_services,
    )


def unmount(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    log.info(f"Unmounting {plan.device} if mounted...")
    unmounted = env.disk.unmount_device(plan.device)
    return replace(state, unmounted=tuple(unmounted))


def partition_format(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    partitions = env.disk.partition_and_format(plan)
    return replace(state, partitions=tuple(partitions))


def copy_data(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    copies = list(state.copies)
    for target, partition in _pairs(plan):
        try:
            env.disk.mount(partition, target.temp_mount)
        except CommandError as error:
            raise CopyError(
                f"Failed to mount {partition} at {target.temp_mount}: {error}",
                destination=str(target.temp_mount),
            ) from error

        if target.mount_point.is_dir():
            copies.append(
                env.disk.sync_tree(target.mount_point, target.temp_mount, target.exclusions)
            )
        else:
            log.warning(f"{target.mount_point} does not exist, nothing to copy")

        log.info(f"Creating required directories under {target.temp_mount}...")
        try:
            prepare_destination(target.mount_point, target.temp_mount, target)
        except OSError as error:
            raise CopyError(
                f"Failed to prepare {target.temp_mount}: {error}",
                destination=str(target.temp_mount),
            ) from error
    return replace(state, copies=tuple(copies))


def verify_copy(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    reports = []
    for target in plan.targets:
        excluded = _excluded_paths(target)
        report = IntegrityReport(
            mount_point=str(target.mount_point),
            source_files=count_regular_files(target.mount_point, excluded),
            destination_files=count_regular_files(target.temp_mount, excluded),
        )
        log.info(f"Source files: {report.source_files}")
        log.info(f"Destination files: {report.destination_files}")
        if not report.passed:
            log.warning(
                f"Significant file count mismatch for {target.mount_point}! "
                f"{report.destination_files} < {report.threshold}"
            )
            if not env.confirm("Continue anyway?"):
                log.info(f"Aborting. Data remains on new partition at {target.temp_mount}")
                raise IntegrityMismatchError(
                    str(target.mount_point),
                    report.source_files,
                    report.destination_files,
                    str(target.temp_mount),
                )
        reports.append(report)
    return replace(state, integrity=tuple(reports))


def _backup_path(target: PartitionTarget, timestamp: str) -> Path:
    backup = target.backup_dir
    if backup.exists() or backup.is_symlink():
        backup = backup.with_name(f"{backup.name}.{timestamp}")
    return backup


def swap_mounts(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    backups = dict(state.backups)
    for target, partition in _pairs(plan):
        mount_point = target.mount_point
        mode, owner = 0o755, None
        if mount_point.exists():
            info = mount_point.stat()
            mode, owner = info.st_mode & 0o7777, (info.st_uid, info.st_gid)
            backup = _backup_path(target, env.timestamp())
            log.info(f"Backing up old {mount_point} to {backup}...")
            try:
                os.rename(mount_point, backup)
            except OSError as error:
                raise MountSwapError(
                    f"Failed to move old {mount_point} to {backup}: {error}",
                    mount_point=str(mount_point),
                ) from error
            backups[str(mount_point)] = str(backup)

        log.info(f"Creating new {mount_point} directory...")
        try:
            mount_point.mkdir(parents=True)
            os.chmod(mount_point, mode)
        except OSError as error:
            raise MountSwapError(
                f"Failed to create {mount_point}: {error}", mount_point=str(mount_point)
            ) from error
        if owner is not None:
            try:
                os.chown(mount_point, *owner)
            except OSError as error:
                log.warning(f"Could not restore ownership of {mount_point}: {error}")

        log.info(f"Remounting {partition} to {mount_point}...")
        try:
            env.disk.unmount(target.temp_mount)
            env.disk.mount(partition, mount_point)
        except CommandError as error:
            raise MountSwapError(
                f"Failed to mount {partition} at {mount_point}: {error}",
                mount_point=str(mount_point),
            ) from error

        try:
            target.temp_mount.rmdir()
        except OSError as error:
            log.warning(f"Could not remove temporary mount {target.temp_mount}: {error}")
    return replace(state, backups=backups)


def write_fstab(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    log.info(f"Updating {env.fstab_path} for permanent mount...")
    uuids = dict(state.uuids)
    entries = []
    for target, partition in _pairs(plan):
        uuid = env.disk.resolve_uuid(partition)
        uuids[str(target.mount_point)] = uuid
        entries.append(
            FstabEntry.for_uuid(
                uuid,
                str(target.mount_point),
                plan.fs_type,
                target.mount_options,
                target.dump,
                target.pass_number,
            )
        )
    backup = update_fstab(env.fstab_path, entries, env.timestamp())
    return replace(state, uuids=uuids, fstab_backup=str(backup))


def restart(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    log.info("Activating fstab entries...")
    try:
        env.disk.mount_all()
    except CommandError as error:
        log.warning(f"mount -a reported a failure: {error}")

    log.info("Restarting services...")
    quiesced = QuiesceResult(
        docker_was_active=state.docker_was_active,
        stopped_containers=state.stopped_containers,
        stopped_services=state.stopped_services,
    )
    failures = restart_services(
        env.services,
        env.containers,
        quiesced,
        grace_seconds=env.container_grace_seconds,
        sleep=env.sleep,
    )
    return replace(state, restart_failures=failures)


def package_check(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    return replace(state, package_manager_ok=env.package_check())


def report(plan: MigrationPlan, state: MigrationState, env: MigrationEnvironment) -> MigrationState:
    log.success("=== MIGRATION COMPLETE ===")
    for line in build_report(plan, state, env.disk, env.services, env.containers):
        env.output(line)
    return state


PHASES: tuple[Phase, ...] = (
    Phase("preflight", "Checking privileges and target device", preflight),
    Phase("lock", "Acquiring migration lock", acquire_lock),
    Phase("quiesce", "Stopping services", quiesce),
    Phase("unmount", "Unmounting target device", unmount),
    Phase("partition_format", "Partitioning and formatting", partition_format),
    Phase("copy", "Copying data to new partitions", copy_data),
    Phase("verify", "Verifying data integrity", verify_copy),
    Phase("swap", "Swapping mount points", swap_mounts),
    Phase("fstab", "Updating fstab", write_fstab),
    Phase("restart", "Restarting services", restart),
    Phase(
        "package_check",
        "Testing package manager",
        package_check,
        applies=lambda plan: plan.verify_package_manager,
    ),
    Phase("report", "Reporting", report),
)


class Migrator:
    """Run the phases of ``plan`` in order, stopping at the first failure."""

    def __init__(
        self,
        plan: MigrationPlan,
        env: MigrationEnvironment | None = None,
        phases: tuple[Phase, ...] = PHASES,
    ):
        self.plan = plan
        self.env = env or MigrationEnvironment.from_settings()
        self.phases = phases
        self.state = MigrationState(run_id=new_run_id(plan.name))

    def run(self) -> MigrationState:
        """Execute every applicable phase.

        Raises:
            MigrationError: From the first phase that fails
        """
        with ExitStack() as stack:
            env = replace(self.env, cleanup=stack)
            for phase in self.phases:
                if not phase.applies(self.plan):
                    self.state = self.state.with_phase(phase.name, PhaseStatus.SKIPPED)
                    continue
                log.info(f"==> {phase.description}")
                try:
                    with phase_context(
                        phase.name, run_id=self.state.run_id, device=self.plan.device
                    ):
                        new_state = phase.run(self.plan, self.state, env)
                except BaseException:
                    self.state = self.state.with_phase(phase.name, PhaseStatus.FAILED)
                    raise
                self.state = new_state.with_phase(phase.name, PhaseStatus.COMPLETED)
        return self.state
