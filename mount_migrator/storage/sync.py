"""Staged copy of a live mount point onto its new partition.

rsync is preferred (resumable, preserves hard links, ACLs and xattrs); when it
is not installed the tree is copied with ``cp -a`` and the excluded paths are
pruned from the destination afterwards. Both paths stay on the source
filesystem and never follow symlinks.
"""

from __future__ import annotations

import os
import shutil
import stat
import time
from pathlib import Path
from typing import Iterable

from mount_migrator.domain.models import CopyResult, ExclusionRule, PartitionTarget
from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.commands import command_available, run_command
from mount_migrator.storage.exceptions import CommandError, CopyError


log = LoggerFactory.for_storage()

# rsync: "some files vanished before they could be transferred"
RSYNC_PARTIAL_VANISHED = 24


def _as_dir_arg(path: str | Path) -> str:
    return str(path).rstrip("/") + "/"


def build_rsync_command(
    source: str | Path, destination: str | Path, exclusions: Iterable[ExclusionRule]
) -> list[str]:
    command = ["rsync", "-aHAXx", "--numeric-ids", "--stats"]
    for rule in exclusions:
        command.extend(["--exclude", rule.rsync_pattern])
    command.extend([_as_dir_arg(source), _as_dir_arg(destination)])
    return command


def _rsync(source: Path, destination: Path, exclusions: tuple[ExclusionRule, ...]) -> None:
    command = build_rsync_command(source, destination, exclusions)
    try:
        run_command(command, log_output=False)
    except CommandError as error:
        if error.returncode == RSYNC_PARTIAL_VANISHED:
            log.warning(f"Some files under {source} vanished during the copy")
            return
        raise CopyError(
            f"rsync from {source} to {destination} failed: {error}",
            source=str(source),
            destination=str(destination),
        ) from error


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _copy_archive(source: Path, destination: Path, exclusions: tuple[ExclusionRule, ...]) -> None:
    try:
        run_command(
            ["cp", "-a", "--one-file-system", f"{source}/.", f"{destination}/"],
            log_output=False,
        )
    except CommandError as error:
        raise CopyError(
            f"cp from {source} to {destination} failed: {error}",
            source=str(source),
            destination=str(destination),
        ) from error
    for rule in exclusions:
        excluded = destination / rule.path
        if excluded.exists() or excluded.is_symlink():
            log.debug(f"Pruning excluded path {excluded}")
            _remove_path(excluded)


def sync_tree(
    source: str | Path,
    destination: str | Path,
    exclusions: Iterable[ExclusionRule] = (),
    prefer_rsync: bool = True,
) -> CopyResult:
    """Copy ``source`` into ``destination`` preserving ownership and metadata.

    Raises:
        CopyError: If the copy command fails
    """
    source = Path(source)
    destination = Path(destination)
    exclusions = tuple(exclusions)
    if not source.is_dir():
        raise CopyError(f"Source {source} is not a directory", source=str(source))

    use_rsync = prefer_rsync and command_available("rsync")
    method = "rsync" if use_rsync else "cp"
    log.info(f"Copying {source} to {destination} using {method} (this may take a while)")

    start_time = time.monotonic()
    if use_rsync:
        _rsync(source, destination, exclusions)
    else:
        _copy_archive(source, destination, exclusions)
    duration = time.monotonic() - start_time

    log.info(f"Data copy completed in {duration:.0f} seconds")
    return CopyResult(
        source=str(source),
        destination=str(destination),
        method=method,
        duration_seconds=round(duration, 2),
    )


def prepare_destination(source: str | Path, destination: str | Path, target: PartitionTarget) -> None:
    """Recreate excluded paths and the required directory skeleton.

    An excluded path that is a symlink on the source (e.g. /var/run -> /run)
    is recreated as the same symlink instead of an empty directory.
    """
    source = Path(source)
    destination = Path(destination)

    for rule in target.exclusions:
        src_path = source / rule.path
        dst_path = destination / rule.path
        if dst_path.exists() or dst_path.is_symlink():
            continue
        dst_path.parent.mkdir(parents=True, exist_ok=True)
        if src_path.is_symlink():
            os.symlink(os.readlink(src_path), dst_path)
            continue
        dst_path.mkdir()
        os.chmod(dst_path, rule.mode)

    for relative in target.skeleton_dirs:
        (destination / relative).mkdir(parents=True, exist_ok=True)

    for relative in target.skeleton_files:
        path = destination / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        # touch: never truncate an existing dpkg status file
        path.touch(exist_ok=True)


def count_regular_files(root: str | Path, excluded: Iterable[str] = ()) -> int:
    """Count regular files below ``root`` without leaving its filesystem.

    Symlinks are neither followed nor counted. ``excluded`` holds paths
    relative to ``root`` whose subtrees are skipped.
    """
    root = Path(root)
    if not root.is_dir():
        return 0
    skipped = {str(Path(path)) for path in excluded}
    root_dev = root.stat().st_dev
    count = 0

    for dirpath, dirnames, filenames in os.walk(root):
        relative_dir = Path(dirpath).relative_to(root)
        kept = []
        for name in dirnames:
            relative = str(relative_dir / name)
            if relative in skipped:
                continue
            full = os.path.join(dirpath, name)
            try:
                info = os.lstat(full)
            except OSError:
                continue
            if stat.S_ISDIR(info.st_mode) and info.st_dev == root_dev:
                kept.append(name)
        dirnames[:] = kept

        for name in filenames:
            if str(relative_dir / name) in skipped:
                continue
            try:
                info = os.lstat(os.path.join(dirpath, name))
            except OSError:
                continue
            if stat.S_ISREG(info.st_mode):
                count += 1
    return count
