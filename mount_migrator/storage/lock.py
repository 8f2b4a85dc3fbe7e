"""Lock file that keeps two migrations from running at the same time.

The lock is advisory: a plain file created with O_CREAT|O_EXCL at a fixed
path. Its removal is tied to the context manager, so it happens on normal
completion, on any exception and on SystemExit/KeyboardInterrupt.

Usage:
    from mount_migrator.storage.lock import migration_lock

    with migration_lock(Path("/run/mount-migrator.lock"), "/dev/sdb") as record:
        # Run the phases
        ...
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from mount_migrator.domain.models import LockRecord
from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.exceptions import ConcurrentRunDetectedError


log = LoggerFactory.for_system()


def read_lock(lock_path: Path) -> LockRecord | None:
    """Return the record in ``lock_path``, or None if absent or unreadable."""
    try:
        return LockRecord.from_json(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def acquire_lock(lock_path: Path, device: str) -> LockRecord:
    """Create the lock file for this process.

    Raises:
        ConcurrentRunDetectedError: If the lock file already exists
    """
    record = LockRecord.for_current_process(device)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        holder = read_lock(lock_path)
        raise ConcurrentRunDetectedError(
            str(lock_path), holder.describe() if holder else ""
        ) from None
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(record.to_json())
    except OSError:
        lock_path.unlink(missing_ok=True)
        raise
    log.debug(f"Lock acquired at {lock_path} ({record.describe()})")
    return record


def release_lock(lock_path: Path, record: LockRecord) -> None:
    """Remove ``lock_path`` if it still belongs to ``record``'s process."""
    current = read_lock(lock_path)
    if current is not None and current.pid != record.pid:
        log.warning(f"Lock {lock_path} now held by pid {current.pid}; leaving it")
        return
    try:
        lock_path.unlink()
    except FileNotFoundError:
        log.debug(f"Lock {lock_path} already removed")
    except OSError as error:
        log.warning(f"Failed to remove lock {lock_path}: {error}")
        return
    log.debug(f"Lock released at {lock_path}")


@contextmanager
def migration_lock(lock_path: Path, device: str) -> Generator[LockRecord, None, None]:
    record = acquire_lock(lock_path, device)
    try:
        yield record
    finally:
        release_lock(lock_path, record)
