"""Safe /etc/fstab rewriting.

Safety features:
  - Copies the current file to ``<fstab>.backup.<YYYYmmddHHMMSS>`` first
  - Only removes non-comment lines whose mount-point field matches a
    migrated mount point; comments and unrelated entries are untouched
  - Writes to a temporary file in the same directory and renames it over
    the original, keeping the original mode
  - Re-reads the result and checks there is exactly one active entry per
    migrated mount point
"""

from __future__ import annotations

import os
import posixpath
import shutil
import time
from pathlib import Path
from typing import Iterable

from mount_migrator.domain.models import FstabEntry
from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.exceptions import ConfigUpdateError


log = LoggerFactory.for_storage()


def _normalize(mount_point: str) -> str:
    return posixpath.normpath(mount_point) if mount_point else mount_point


def read_entries(path: Path) -> list[FstabEntry]:
    with open(path, encoding="utf-8") as handle:
        return [FstabEntry.parse(line) for line in handle]


def active_entries(path: Path, mount_point: str) -> list[FstabEntry]:
    target = _normalize(mount_point)
    return [
        entry
        for entry in read_entries(path)
        if entry.is_data and _normalize(entry.mount_point) == target
    ]


def backup_fstab(path: Path, timestamp: str | None = None) -> Path:
    """Copy ``path`` next to itself with a timestamp suffix.

    Raises:
        ConfigUpdateError: If the copy fails
    """
    timestamp = timestamp or time.strftime("%Y%m%d%H%M%S")
    backup = path.with_name(f"{path.name}.backup.{timestamp}")
    try:
        shutil.copy2(path, backup)
    except OSError as error:
        raise ConfigUpdateError(
            f"Failed to back up {path} to {backup}: {error}", path=str(path)
        ) from error
    log.info(f"Backed up {path} to {backup}")
    return backup


def rewrite_entries(entries: list[FstabEntry], replacements: Iterable[FstabEntry]) -> list[FstabEntry]:
    """Drop active entries for each replacement's mount point, then append it."""
    replacements = list(replacements)
    targets = {_normalize(entry.mount_point) for entry in replacements}
    kept = [
        entry
        for entry in entries
        if not (entry.is_data and _normalize(entry.mount_point) in targets)
    ]
    return kept + replacements


def _atomic_write(path: Path, content: str) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        mode = path.stat().st_mode & 0o7777
    except OSError:
        mode = 0o644
    with open(tmp_path, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.chmod(tmp_path, mode)
    os.replace(tmp_path, path)


def update_fstab(path: Path, replacements: Iterable[FstabEntry], timestamp: str | None = None) -> Path:
    """Back up ``path`` and replace the entries for each migrated mount point.

    Returns:
        Path of the backup copy

    Raises:
        ConfigUpdateError: If the file cannot be read, written or verified
    """
    path = Path(path)
    replacements = list(replacements)
    try:
        entries = read_entries(path)
    except OSError as error:
        raise ConfigUpdateError(f"Failed to read {path}: {error}", path=str(path)) from error

    backup = backup_fstab(path, timestamp)
    for entry in replacements:
        target = _normalize(entry.mount_point)
        for old in entries:
            if old.is_data and _normalize(old.mount_point) == target:
                log.info(f"Removing old fstab entry: {old.raw.strip()}")
        log.info(f"Adding fstab entry: {entry.raw.strip()}")

    new_entries = rewrite_entries(entries, replacements)
    try:
        _atomic_write(path, "".join(entry.format() for entry in new_entries))
    except OSError as error:
        raise ConfigUpdateError(f"Failed to write {path}: {error}", path=str(path)) from error

    for entry in replacements:
        if len(active_entries(path, entry.mount_point)) != 1:
            raise ConfigUpdateError(
                f"Verification failed: {path} does not hold exactly one entry for "
                f"{entry.mount_point}; original saved at {backup}",
                path=str(path),
            )
    log.info(f"{path} successfully updated")
    return backup
