from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "MOUNT_MIGRATOR_LOG_DIR",
        # /run is tmpfs and never one of the migrated mount points
        "/run/log/mount-migrator",
    )
)


def _should_log_command_output(record) -> bool:
    """Keep raw command stdout/stderr out of the console unless tracing."""
    tags = record["extra"].get("tags", [])

    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "command-output" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console and file logging for a migration run.

    Logging Tiers:
    - ERROR: Fatal phase failures (the run stops)
    - WARNING: Downgraded failures (service stop/start, cleanup)
    - SUCCESS/INFO: Phase progress and operator-facing events
    - DEBUG: Command execution and intermediate values
    - TRACE: Raw command output

    Log Files:
    - operations.log: INFO+ events (14 day retention)
    - debug.log: DEBUG+ events when --debug or --trace is enabled (3 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to /run/log/mount-migrator)
    """
    logger.remove()
    logger.configure(extra={"run_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr)
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_should_log_command_output if not trace else None,
        colorize=True,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        logger.warning(f"Log directory {log_dir} unavailable, file logging disabled: {error}")
        return logger

    # SINK 2: Operations Log
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="14 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[run_id]: <18} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[run_id]: <18} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    return logger


def get_logger(
    *,
    run_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        run_id: Migration run identifier
        tags: Tags for filtering (e.g., ["storage", "command-output"])
        source: Source component (e.g., "storage", "services")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if run_id is not None:
        extras["run_id"] = run_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


def new_run_id(plan_name: str) -> str:
    return f"{plan_name}-{uuid.uuid4().hex[:8]}"


@contextmanager
def phase_context(phase: str, run_id: str = "-", **details):
    """
    Context manager for a single migration phase with automatic timing.

    Logs phase start, completion and failure with the elapsed time. The
    exception is always re-raised; the caller decides whether it is fatal.

    Example:
        with phase_context("unmount", run_id=run_id, device="/dev/sdb") as log:
            log.debug("Unmounting partitions")
    """
    with logger.contextualize(run_id=run_id, phase=phase, **details):
        start_time = time.monotonic()
        log = logger.bind(source="migration", run_id=run_id, tags=["migration", phase])

        log.info(f"Phase {phase} started")

        try:
            yield log
            duration = time.monotonic() - start_time
            log.success(f"Phase {phase} completed in {duration:.2f}s")
        except Exception as e:
            duration = time.monotonic() - start_time
            log.bind(error_type=type(e).__name__).error(
                f"Phase {phase} failed after {duration:.2f}s: {e}"
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_migration(run_id: str | None = None) -> Logger:
        """Logger for the phase sequencer."""
        return get_logger(run_id=run_id or "-", source="migration", tags=["migration"])

    @staticmethod
    def for_storage() -> Logger:
        """Logger for partitioning, formatting, mounting and copying."""
        return get_logger(source="storage", tags=["storage"])

    @staticmethod
    def for_command() -> Logger:
        """Logger for raw subprocess output."""
        return get_logger(source="command", tags=["storage", "command-output"])

    @staticmethod
    def for_services() -> Logger:
        """Logger for systemd units and containers."""
        return get_logger(source="services", tags=["services"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for startup, settings and lock handling."""
        return get_logger(source="system", tags=["system"])
