"""Checks of a runtime's container operations: lifecycle, exec, volumes, logs and stats."""

from __future__ import annotations

import logging
import os
import sys
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Iterable, Sequence

from .context import DEFAULT_ATTEMPT, TestContext
from .cri import (
    Container,
    ContainerConfig,
    ContainerFilter,
    ContainerState,
    ContainerStats,
    ContainerStatsFilter,
    ContainerStatus,
    ImageManagerService,
    ImageSpec,
    PodSandboxConfig,
    RuntimeService,
)
from .framework import build_container_metadata, create_container, new_uuid

__all__ = [
    "DEFAULT_LOG",
    "DEFAULT_STOP_CONTAINER_TIMEOUT",
    "DEFAULT_EXEC_SYNC_TIMEOUT",
    "ContainerCheckError",
    "container_found",
    "stat_found",
    "get_container_status",
    "wait_for_state",
    "start_container",
    "check_start_container",
    "stop_container",
    "check_stop_container",
    "remove_container",
    "list_container_for_id",
    "exec_sync_container",
    "verify_exec_sync_output",
    "create_host_path",
    "create_symlink",
    "path_exists",
    "create_log_container",
    "list_container_stats_for_id",
    "list_container_stats",
]

logger = logging.getLogger(__name__)

DEFAULT_STOP_CONTAINER_TIMEOUT = 60
DEFAULT_EXEC_SYNC_TIMEOUT = 30
DEFAULT_LOG = "hello World"

_STATE_TIMEOUT = 60.0
_STATE_INTERVAL = 4.0
_FLAG_FILE = "testVolume.file"

LOG_DEFAULT_LINUX_CMD = ["echo", DEFAULT_LOG]
LOG_DEFAULT_WINDOWS_CMD = ["powershell", "-c", "echo '" + DEFAULT_LOG + "'"]


class ContainerCheckError(AssertionError):
    """Raised when a container does not behave as a check expects."""


def container_found(containers: Iterable[Container], container_id: str) -> bool:
    """Return whether a container with *container_id* is among *containers*."""
    return any(container.id == container_id for container in containers)


def stat_found(stats: Iterable[ContainerStats], container_id: str) -> bool:
    """Return whether stats for *container_id* are among *stats*."""
    return any(stat.id == container_id for stat in stats)


def get_container_status(c: RuntimeService, container_id: str) -> ContainerStatus:
    """Return the status of a container, raising when the runtime reports none."""
    logger.info("Get container status for containerID: %s", container_id)
    status = c.container_status(container_id, False)
    if status is None:
        raise ContainerCheckError(f"no status for container {container_id!r}")
    return status


def wait_for_state(
    c: RuntimeService,
    container_id: str,
    state: ContainerState,
    timeout: float = _STATE_TIMEOUT,
    interval: float = _STATE_INTERVAL,
) -> ContainerStatus:
    """Poll a container until it reaches *state*; raise after *timeout* seconds."""
    deadline = time.monotonic() + timeout
    while True:
        status = get_container_status(c, container_id)
        if status.state == state:
            return status
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ContainerCheckError(
                f"container {container_id!r} is {status.state.name}, "
                f"expected {state.name} within {timeout}s"
            )
        time.sleep(min(interval, remaining))


def start_container(c: RuntimeService, container_id: str) -> None:
    """Start a container."""
    logger.info("Start container for containerID: %s", container_id)
    c.start_container(container_id)
    logger.info("Started container %r", container_id)


def check_start_container(
    c: RuntimeService,
    container_id: str,
    timeout: float = _STATE_TIMEOUT,
    interval: float = _STATE_INTERVAL,
) -> None:
    """Start a container and make sure it is running."""
    start_container(c, container_id)
    wait_for_state(c, container_id, ContainerState.CONTAINER_RUNNING, timeout, interval)


def stop_container(c: RuntimeService, container_id: str, timeout: float) -> None:
    """Stop a container, raising when the runtime takes longer than *timeout* seconds."""
    logger.info("Stop container for containerID: %s", container_id)
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        future = pool.submit(c.stop_container, container_id, timeout)
        try:
            future.result(timeout=timeout)
        except FuturesTimeoutError:
            raise ContainerCheckError(f"stop container {container_id!r} timeout.") from None
    finally:
        pool.shutdown(wait=False)
    logger.info("Stopped container %r", container_id)


def check_stop_container(
    c: RuntimeService,
    container_id: str,
    timeout: float = _STATE_TIMEOUT,
    interval: float = _STATE_INTERVAL,
) -> None:
    """Stop a container and make sure it has exited."""
    stop_container(c, container_id, DEFAULT_STOP_CONTAINER_TIMEOUT)
    wait_for_state(c, container_id, ContainerState.CONTAINER_EXITED, timeout, interval)


def remove_container(c: RuntimeService, container_id: str) -> None:
    """Remove a container."""
    logger.info("Remove container for containerID: %s", container_id)
    c.remove_container(container_id)
    logger.info("Removed container %r", container_id)


def list_container_for_id(c: RuntimeService, container_id: str) -> list[Container]:
    """List the containers whose id is *container_id*."""
    logger.info("List containers for containerID: %s", container_id)
    return c.list_containers(ContainerFilter(id=container_id))


def exec_sync_container(c: RuntimeService, container_id: str, command: Sequence[str]) -> str:
    """Run *command* in a container and return its stdout; stderr must be empty."""
    logger.info("execSync for containerID: %s", container_id)
    result = c.exec_sync(container_id, list(command), float(DEFAULT_EXEC_SYNC_TIMEOUT))
    if result.stderr:
        raise ContainerCheckError(
            f"The stderr should be empty, got {result.stderr.decode(errors='replace')!r}"
        )
    logger.info("Execsync succeed")
    return result.stdout.decode(errors="replace")


def verify_exec_sync_output(
    c: RuntimeService, container_id: str, command: Sequence[str], expected: str
) -> None:
    """Run *command* in a container and make sure its stdout is *expected*."""
    stdout = exec_sync_container(c, container_id, command)
    if stdout != expected:
        raise ContainerCheckError(
            f"The stdout output of execSync should be {expected!r}, got {stdout!r}"
        )
    logger.info("verify Execsync output succeed")


def create_host_path(pod_id: str) -> tuple[str, str]:
    """Create a temporary directory holding a flag file; return both names."""
    host_path = tempfile.mkdtemp(prefix="test" + pod_id)
    with open(os.path.join(host_path, _FLAG_FILE), "w", encoding="utf-8"):
        pass
    return host_path, _FLAG_FILE


def create_symlink(path: str) -> str:
    """Create a symlink to *path* next to it and return the link's path."""
    symlink_path = path + "-symlink"
    os.symlink(path, symlink_path)
    return symlink_path


def path_exists(path: str) -> bool:
    """Return whether *path* exists; other errors are raised."""
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def _log_default_command(context: TestContext) -> list[str]:
    if not sys.platform.startswith("win") or context.is_lcow:
        return list(LOG_DEFAULT_LINUX_CMD)
    return list(LOG_DEFAULT_WINDOWS_CMD)


def create_log_container(
    rc: RuntimeService,
    ic: ImageManagerService,
    prefix: str,
    pod_id: str,
    pod_config: PodSandboxConfig,
    context: TestContext,
) -> tuple[str, str]:
    """Create a container that writes the default log line; return its log path and id."""
    logger.info("create a container with log and name")
    container_name = prefix + new_uuid()
    config = ContainerConfig(
        metadata=build_container_metadata(container_name, DEFAULT_ATTEMPT),
        image=ImageSpec(image=context.test_image_list.default_test_container_image),
        command=_log_default_command(context),
        log_path=f"{container_name}.log",
    )
    container_id = create_container(rc, ic, config, pod_id, pod_config, context)
    return config.log_path, container_id


def list_container_stats_for_id(c: RuntimeService, container_id: str) -> ContainerStats:
    """Return the stats of one container."""
    logger.info("List container stats for containerID: %s", container_id)
    return c.container_stats(container_id)


def list_container_stats(
    c: RuntimeService, filter: ContainerStatsFilter | None
) -> list[ContainerStats]:
    """List stats of the containers matching *filter*."""
    logger.info("List container stats for all containers:")
    return c.list_container_stats(filter)