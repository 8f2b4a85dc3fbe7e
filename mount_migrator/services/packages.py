"""Post-migration sanity check of the package manager."""

from __future__ import annotations

from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.commands import command_available, run_command


log = LoggerFactory.for_services()


def check_package_manager() -> bool:
    """Run ``apt-get clean`` and ``apt-get update`` against the new /var.

    Returns:
        True if both commands succeed, False otherwise (including hosts
        without apt)
    """
    if not command_available("apt-get"):
        log.debug("apt-get not installed, skipping package manager check")
        return False
    log.info("Testing APT package manager...")
    for command in (["apt-get", "clean"], ["apt-get", "update"]):
        result = run_command(command, check=False, log_output=False)
        if result.returncode != 0:
            log.warning(f"{' '.join(command)} failed: {result.stderr.strip()}")
            return False
    log.success("SUCCESS: APT is functional!")
    return True
