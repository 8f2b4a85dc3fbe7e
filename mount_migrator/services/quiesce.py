"""Stop everything that may hold the migrated mount open, and bring it back.

Stop order:
    1. Running containers (graceful ``docker stop``, then ``docker kill`` for
       any that survive the grace period)
    2. The docker units (SIGKILL if the unit is still active afterwards)
    3. SERVICE_STOP_ORDER, each only if currently active

Restart order:
    1. docker, if it was active, followed by each previously running
       container individually
    2. Every service stopped in step 3, in reverse stop order

Every failure in either direction is logged as a warning.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from mount_migrator.logging import LoggerFactory
from mount_migrator.services.controller import ContainerRuntime, ServiceController


log = LoggerFactory.for_services()

DOCKER_UNITS = ("docker", "docker.socket")

# Database engines, caches and brokers, then web servers
SERVICE_STOP_ORDER = (
    "mysql",
    "mariadb",
    "postgresql",
    "redis",
    "redis-server",
    "mongod",
    "rabbitmq-server",
    "nginx",
    "apache2",
)


@dataclass(frozen=True)
class QuiesceResult:
    docker_was_active: bool = False
    stopped_containers: tuple[str, ...] = ()
    stopped_services: tuple[str, ...] = ()


def _stop_containers(
    containers: ContainerRuntime, grace_seconds: float, sleep: Callable[[float], None]
) -> tuple[str, ...]:
    if not containers.available():
        return ()
    running = containers.running()
    if not running:
        log.debug("No running containers")
        return ()

    log.info(f"Stopping {len(running)} Docker container(s)...")
    if not containers.stop(running):
        log.warning("docker stop reported a failure")
    sleep(grace_seconds)

    survivors = [cid for cid in containers.running() if cid in running]
    if survivors:
        log.warning(f"{len(survivors)} container(s) ignored docker stop, killing them")
        if not containers.kill(survivors):
            log.warning("docker kill reported a failure")
    return tuple(running)


def _stop_docker(services: ServiceController) -> bool:
    if not services.is_active("docker"):
        return False
    log.info("Stopping Docker service...")
    for unit in DOCKER_UNITS:
        if not services.stop(unit):
            log.warning(f"Failed to stop {unit}")
    if services.is_active("docker"):
        log.warning("Docker is still active after stop, sending SIGKILL")
        if not services.kill("docker"):
            log.warning("Failed to kill Docker")
    return True


def stop_services(
    services: ServiceController,
    containers: ContainerRuntime,
    grace_seconds: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> QuiesceResult:
    stopped_containers = _stop_containers(containers, grace_seconds, sleep)
    if not services.available():
        log.warning("systemctl not found, leaving services running")
        return QuiesceResult(stopped_containers=stopped_containers)
    docker_was_active = _stop_docker(services)

    stopped: list[str] = []
    for name in SERVICE_STOP_ORDER:
        if not services.is_active(name):
            continue
        log.info(f"Stopping {name}...")
        if services.stop(name):
            stopped.append(name)
        else:
            log.warning(f"Failed to stop {name}")

    return QuiesceResult(
        docker_was_active=docker_was_active,
        stopped_containers=stopped_containers,
        stopped_services=tuple(stopped),
    )


def restart_services(
    services: ServiceController,
    containers: ContainerRuntime,
    quiesced: QuiesceResult,
    grace_seconds: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[str, ...]:
    """Restart what ``stop_services`` stopped.

    Returns:
        Names (services) and ids (containers) that failed to start
    """
    failures: list[str] = []

    if quiesced.docker_was_active:
        log.info("Starting Docker...")
        if services.start("docker"):
            sleep(grace_seconds)
        else:
            log.warning("Failed to start Docker")
            failures.append("docker")

    if quiesced.stopped_containers:
        log.info("Restarting Docker containers...")
        for container_id in quiesced.stopped_containers:
            if not containers.start(container_id):
                log.warning(f"Failed to start container {container_id[:12]}")
                failures.append(container_id)

    for name in reversed(quiesced.stopped_services):
        log.info(f"Starting {name}...")
        if not services.start(name):
            log.warning(f"Failed to start {name}")
            failures.append(name)

    return tuple(failures)
