"""Service and container control over systemctl and the docker CLI.

Both controllers report failures as return values rather than exceptions:
stopping or starting a service is never fatal to a migration, the caller
logs a warning and moves on.

Classes:
    - ServiceController: is_active / is_installed / stop / start / kill /
      status for systemd units
    - ContainerRuntime: running / stop / kill / start containers, plus the
      status table for the report
"""

from __future__ import annotations

from typing import Iterable

from mount_migrator.logging import LoggerFactory
from mount_migrator.storage.commands import command_available, run_command


log = LoggerFactory.for_services()


class ServiceController:
    """systemd-backed implementation."""

    def available(self) -> bool:
        return command_available("systemctl")

    def is_active(self, name: str) -> bool:
        result = run_command(
            ["systemctl", "is-active", "--quiet", name],
            check=False,
            log_output=False,
            log_command=False,
        )
        return result.returncode == 0

    def is_installed(self, name: str) -> bool:
        result = run_command(
            ["systemctl", "list-unit-files", f"{name}.service", "--no-legend"],
            check=False,
            log_output=False,
            log_command=False,
        )
        return result.returncode == 0 and bool(result.stdout.strip())

    def stop(self, name: str) -> bool:
        result = run_command(["systemctl", "stop", name], check=False)
        if result.returncode != 0:
            log.debug(f"systemctl stop {name}: {result.stderr.strip()}")
        return result.returncode == 0

    def start(self, name: str) -> bool:
        result = run_command(["systemctl", "start", name], check=False)
        if result.returncode != 0:
            log.debug(f"systemctl start {name}: {result.stderr.strip()}")
        return result.returncode == 0

    def kill(self, name: str) -> bool:
        result = run_command(
            ["systemctl", "kill", "--signal=SIGKILL", name], check=False
        )
        return result.returncode == 0

    def status(self, name: str) -> str:
        result = run_command(
            ["systemctl", "is-active", name],
            check=False,
            log_output=False,
            log_command=False,
        )
        return result.stdout.strip() or "unknown"


class ContainerRuntime:
    """docker CLI-backed implementation."""

    def __init__(self, binary: str = "docker"):
        self.binary = binary

    def available(self) -> bool:
        return command_available(self.binary)

    def running(self) -> list[str]:
        result = run_command(
            [self.binary, "ps", "-q", "--no-trunc"],
            check=False,
            log_output=False,
        )
        if result.returncode != 0:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def stop(self, container_ids: Iterable[str]) -> bool:
        ids = list(container_ids)
        if not ids:
            return True
        result = run_command([self.binary, "stop", *ids], check=False)
        return result.returncode == 0

    def kill(self, container_ids: Iterable[str]) -> bool:
        ids = list(container_ids)
        if not ids:
            return True
        result = run_command([self.binary, "kill", *ids], check=False)
        return result.returncode == 0

    def start(self, container_id: str) -> bool:
        result = run_command([self.binary, "start", container_id], check=False)
        return result.returncode == 0

    def status_table(self) -> str:
        result = run_command(
            [
                self.binary,
                "ps",
                "--format",
                "table {{.Names}}\t{{.Status}}\t{{.RunningFor}}",
            ],
            check=False,
            log_output=False,
        )
        if result.returncode != 0:
            return "Docker not running"
        return result.stdout.rstrip()
