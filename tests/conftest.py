"""
Pytest configuration and shared fixtures for mount-migrator tests.

The migration phases act on a device only through DiskOperations,
ServiceController and ContainerRuntime. The fakes below stand in for those
so that full runs can be exercised against directories under tmp_path.
"""

import shutil
from pathlib import Path
from typing import Dict, List
from unittest.mock import Mock

import pytest

from mount_migrator.domain.models import (
    CopyResult,
    ExclusionRule,
    MigrationPlan,
    PartitionTarget,
)
from mount_migrator.domain.plans import PACKAGE_MANAGER_DIRS, PACKAGE_MANAGER_FILES
from mount_migrator.migrator import MigrationEnvironment
from mount_migrator.storage.exceptions import CommandError


# ==============================================================================
# Capability Fakes
# ==============================================================================


class FakeDisk:
    """In-memory stand-in for DiskOperations.

    Each partition is backed by a directory under ``store``. Unmounting a
    path saves its contents to the backing directory and empties it;
    mounting copies the backing directory into the mount path.
    """

    def __init__(self, store: Path):
        self.store = store
        self.mounts: Dict[str, str] = {}
        self.device_present = True
        self.device_mounts: List[tuple] = []
        self.lost_files = 0
        self.partitioned: List[str] = []
        self.calls: List[str] = []
        self.fail_partitioning = None
        self.fail_mount_at = None

    def _backing(self, partition: str) -> Path:
        path = self.store / partition.replace("/", "_")
        path.mkdir(parents=True, exist_ok=True)
        return path

    def device_exists(self, device):
        return self.device_present

    def mounted_entries(self, device):
        return list(self.device_mounts)

    def unmount_device(self, device):
        self.calls.append("unmount_device")
        return [mp for _source, mp in self.device_mounts]

    def partition_and_format(self, plan):
        self.calls.append("partition_and_format")
        if self.fail_partitioning is not None:
            raise self.fail_partitioning
        self.partitioned = [plan.partition_path(t) for t in plan.targets]
        for partition in self.partitioned:
            backing = self._backing(partition)
            shutil.rmtree(backing)
            backing.mkdir()
        return list(self.partitioned)

    def mount(self, partition, path):
        path = Path(path)
        if self.fail_mount_at is not None and path == Path(self.fail_mount_at):
            raise CommandError(["mount", partition, str(path)], 32, "mount failed")
        path.mkdir(parents=True, exist_ok=True)
        shutil.copytree(self._backing(partition), path, symlinks=True, dirs_exist_ok=True)
        self.mounts[str(path)] = partition

    def unmount(self, path):
        path = Path(path)
        partition = self.mounts.pop(str(path), None)
        if partition is None:
            return "not-mounted"
        backing = self._backing(partition)
        shutil.rmtree(backing)
        shutil.copytree(path, backing, symlinks=True)
        for child in path.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
        return "plain"

    def mount_all(self):
        self.calls.append("mount_all")

    def sync_tree(self, source, destination, exclusions):
        excluded = {rule.path for rule in exclusions}

        def ignore(directory, names):
            relative = Path(directory).relative_to(source)
            return [name for name in names if str(relative / name) in excluded]

        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True, ignore=ignore)
        if self.lost_files:
            files = sorted(p for p in Path(destination).rglob("*") if p.is_file())
            for path in files[: self.lost_files]:
                path.unlink()
        return CopyResult(str(source), str(destination), "cp", 0.0)

    def resolve_uuid(self, partition):
        return f"uuid-{partition.rsplit('/', 1)[-1]}"

    def disk_usage(self, paths=None):
        return "Filesystem Size Used Avail Use% Mounted on"

    def largest_directories(self, path):
        return []

    def mount_status(self, path):
        partition = self.mounts.get(str(path), "none")
        return f"{partition} {path} ext4 rw,relatime"


class FakeServices:
    """ServiceController fake driven by a set of active unit names."""

    def __init__(self, active=()):
        self.active = set(active)
        self.stopped: List[str] = []
        self.started: List[str] = []
        self.killed: List[str] = []
        self.failing_start = set()
        self.systemd = True

    def available(self):
        return self.systemd

    def is_active(self, name):
        return name in self.active

    def is_installed(self, name):
        return name in self.active or name in self.stopped

    def stop(self, name):
        self.stopped.append(name)
        self.active.discard(name)
        return True

    def start(self, name):
        self.started.append(name)
        if name in self.failing_start:
            return False
        self.active.add(name)
        return True

    def kill(self, name):
        self.killed.append(name)
        self.active.discard(name)
        return True

    def status(self, name):
        return "active" if name in self.active else "inactive"


class FakeContainers:
    """ContainerRuntime fake; ``stubborn`` ids survive docker stop."""

    def __init__(self, running=(), stubborn=()):
        self.running_ids = list(running)
        self.stubborn = set(stubborn)
        self.stop_calls: List[List[str]] = []
        self.kill_calls: List[List[str]] = []
        self.started: List[str] = []

    def available(self):
        return True

    def running(self):
        return list(self.running_ids)

    def stop(self, ids):
        ids = list(ids)
        self.stop_calls.append(ids)
        self.running_ids = [cid for cid in self.running_ids if cid in self.stubborn]
        return True

    def kill(self, ids):
        ids = list(ids)
        self.kill_calls.append(ids)
        self.running_ids = [cid for cid in self.running_ids if cid not in ids]
        return True

    def start(self, container_id):
        self.started.append(container_id)
        self.running_ids.append(container_id)
        return True

    def status_table(self):
        return "NAMES STATUS RUNNING FOR"


# ==============================================================================
# Plan Fixtures
# ==============================================================================


def make_target(root: Path, name: str, number: int = 1, start: int = 0, end: int = 100, **kwargs):
    return PartitionTarget(
        number=number,
        mount_point=root / name,
        start_percent=start,
        end_percent=end,
        temp_mount=root / "mnt" / f"tmp_{name}",
        backup_dir=root / f"{name}_old",
        **kwargs,
    )


def make_var_target(root: Path, number: int = 1, start: int = 0, end: int = 100):
    return make_target(
        root,
        "var",
        number=number,
        start=start,
        end=end,
        mount_options="defaults,noatime,nodiratime",
        pass_number=1,
        exclusions=(
            ExclusionRule("run", 0o755),
            ExclusionRule("lock", 0o755),
            ExclusionRule("tmp", 0o1777),
            ExclusionRule("cache/apt/archives", 0o755),
        ),
        skeleton_dirs=PACKAGE_MANAGER_DIRS,
        skeleton_files=PACKAGE_MANAGER_FILES,
    )


def populate(directory: Path, count: int, prefix: str = "file"):
    directory.mkdir(parents=True, exist_ok=True)
    for index in range(count):
        (directory / f"{prefix}{index:03d}.txt").write_text(f"data {index}\n")


@pytest.fixture
def system_root(tmp_path) -> Path:
    """Directory standing in for / during a migration."""
    root = tmp_path / "system"
    root.mkdir()
    return root


@pytest.fixture
def home_plan(system_root) -> MigrationPlan:
    populate(system_root / "home" / "alice", 10)
    return MigrationPlan(
        name="home", device="/dev/sdb", targets=(make_target(system_root, "home"),)
    )


@pytest.fixture
def root_var_plan(system_root) -> MigrationPlan:
    populate(system_root / "root", 4)
    populate(system_root / "var" / "log", 6)
    populate(system_root / "var" / "tmp", 3, prefix="scratch")
    (system_root / "var" / "lib" / "dpkg").mkdir(parents=True)
    (system_root / "var" / "lib" / "dpkg" / "status").write_text("Package: base-files\n")
    return MigrationPlan(
        name="root-var",
        device="/dev/sdb",
        targets=(
            make_target(system_root, "root", number=1, start=0, end=50),
            make_var_target(system_root, number=2, start=50, end=100),
        ),
        verify_package_manager=True,
    )


# ==============================================================================
# Environment Fixtures
# ==============================================================================


@pytest.fixture
def fstab_file(tmp_path) -> Path:
    path = tmp_path / "etc" / "fstab"
    path.parent.mkdir(parents=True)
    path.write_text(
        "# /etc/fstab: static file system information.\n"
        "UUID=aaaa-root / ext4 errors=remount-ro 0 1\n"
        "/dev/sdc1 /home ext4 defaults 0 2\n"
        "UUID=bbbb-boot /boot/efi vfat umask=0077 0 1\n"
    )
    return path


@pytest.fixture
def lock_file(tmp_path) -> Path:
    return tmp_path / "run" / "mount-migrator.lock"


@pytest.fixture
def fake_disk(tmp_path) -> FakeDisk:
    return FakeDisk(tmp_path / "partitions")


@pytest.fixture
def fake_services() -> FakeServices:
    return FakeServices(active={"docker", "nginx", "postgresql"})


@pytest.fixture
def fake_containers() -> FakeContainers:
    return FakeContainers(running=["c1" * 32, "c2" * 32])


@pytest.fixture
def answers() -> List[bool]:
    """Scripted operator answers, consumed in order; empty means 'no'."""
    return []


@pytest.fixture
def env(fake_disk, fake_services, fake_containers, fstab_file, lock_file, answers):
    questions: List[str] = []
    output: List[str] = []

    def confirm(question):
        questions.append(question)
        return answers.pop(0) if answers else False

    environment = MigrationEnvironment(
        disk=fake_disk,
        services=fake_services,
        containers=fake_containers,
        lock_path=lock_file,
        fstab_path=fstab_file,
        confirm=confirm,
        output=output.append,
        geteuid=lambda: 0,
        package_check=Mock(return_value=True),
        container_grace_seconds=0,
        sleep=lambda seconds: None,
        timestamp=lambda: "20240101120000",
    )
    environment.questions = questions
    environment.lines = output
    return environment
