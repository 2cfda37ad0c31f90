"""Container runtime interface types, service protocols and the test framework holder."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

__all__ = [
    "ContainerState",
    "PodSandboxMetadata",
    "PodSandboxConfig",
    "ContainerMetadata",
    "ImageSpec",
    "Image",
    "Mount",
    "ContainerConfig",
    "Container",
    "ContainerStatus",
    "ContainerStats",
    "ContainerFilter",
    "ContainerStatsFilter",
    "ImageFilter",
    "ExecSyncResult",
    "RuntimeService",
    "ImageManagerService",
    "CRIClient",
    "Framework",
    "kube_describe",
]

_DESCRIBE_PREFIX = "[k8s.io] "


class ContainerState(enum.IntEnum):
    """Lifecycle state of a container as reported by the runtime."""

    CONTAINER_CREATED = 0
    CONTAINER_RUNNING = 1
    CONTAINER_EXITED = 2
    CONTAINER_UNKNOWN = 3


@dataclass
class PodSandboxMetadata:
    """Identity of a pod sandbox."""

    name: str = ""
    uid: str = ""
    namespace: str = ""
    attempt: int = 0


@dataclass
class PodSandboxConfig:
    """Configuration used to run a pod sandbox."""

    metadata: PodSandboxMetadata | None = None
    log_directory: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    port_mappings: list[dict[str, Any]] = field(default_factory=list)
    linux: dict[str, Any] | None = None


@dataclass
class ContainerMetadata:
    """Identity of a container inside a sandbox."""

    name: str = ""
    attempt: int = 0


@dataclass
class ImageSpec:
    """Reference to an image by name, tag, digest or id."""

    image: str = ""
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class Image:
    """An image known to the runtime."""

    id: str = ""
    repo_tags: list[str] = field(default_factory=list)
    repo_digests: list[str] = field(default_factory=list)
    size: int = 0
    uid: int | None = None
    username: str = ""


@dataclass
class Mount:
    """A host path mounted into a container."""

    container_path: str = ""
    host_path: str = ""
    readonly: bool = False
    selinux_relabel: bool = False
    propagation: int = 0


@dataclass
class ContainerConfig:
    """Configuration used to create a container."""

    metadata: ContainerMetadata | None = None
    image: ImageSpec | None = None
    command: list[str] = field(default_factory=list)
    args: list[str] = field(default_factory=list)
    working_dir: str = ""
    mounts: list[Mount] = field(default_factory=list)
    log_path: str = ""
    stdin: bool = False
    stdin_once: bool = False
    tty: bool = False
    linux: dict[str, Any] | None = None


@dataclass
class Container:
    """A container as listed by the runtime."""

    id: str = ""
    pod_sandbox_id: str = ""
    metadata: ContainerMetadata | None = None
    image: ImageSpec | None = None
    state: ContainerState = ContainerState.CONTAINER_UNKNOWN
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerStatus:
    """Detailed status of one container."""

    id: str = ""
    metadata: ContainerMetadata | None = None
    state: ContainerState = ContainerState.CONTAINER_UNKNOWN
    exit_code: int = 0
    log_path: str = ""
    mounts: list[Mount] = field(default_factory=list)


@dataclass
class ContainerStats:
    """Resource usage of one container."""

    id: str = ""
    metadata: ContainerMetadata | None = None
    cpu_timestamp: int = 0
    memory_timestamp: int = 0


@dataclass
class ContainerFilter:
    """Filter for listing containers."""

    id: str = ""
    state: ContainerState | None = None
    pod_sandbox_id: str = ""
    label_selector: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerStatsFilter:
    """Filter for listing container stats."""

    id: str = ""
    pod_sandbox_id: str = ""
    label_selector: dict[str, str] = field(default_factory=dict)


@dataclass
class ImageFilter:
    """Filter for listing images."""

    image: ImageSpec | None = None


@dataclass
class ExecSyncResult:
    """Output of a command run synchronously in a container."""

    stdout: bytes = b""
    stderr: bytes = b""
    exit_code: int = 0


@runtime_checkable
class RuntimeService(Protocol):
    """Operations a container runtime offers on sandboxes and containers.

    Failures are reported by raising an exception.
    """

    def run_pod_sandbox(self, config: PodSandboxConfig, runtime_handler: str) -> str:
        """Run a sandbox and return its id."""

    def pod_sandbox_status(self, pod_id: str, verbose: bool) -> Any:
        """Return the status of a sandbox."""

    def stop_pod_sandbox(self, pod_id: str) -> None:
        """Stop a sandbox and its containers."""

    def remove_pod_sandbox(self, pod_id: str) -> None:
        """Remove a sandbox."""

    def create_container(
        self, pod_id: str, config: ContainerConfig, pod_config: PodSandboxConfig
    ) -> str:
        """Create a container in a sandbox and return its id."""

    def start_container(self, container_id: str) -> None:
        """Start a created container."""

    def stop_container(self, container_id: str, timeout: int) -> None:
        """Stop a running container, waiting at most *timeout* seconds."""

    def remove_container(self, container_id: str) -> None:
        """Remove a container."""

    def container_status(self, container_id: str, verbose: bool) -> ContainerStatus | None:
        """Return the status of a container."""

    def list_containers(self, filter: ContainerFilter | None) -> list[Container]:
        """List containers matching *filter*."""

    def exec_sync(self, container_id: str, command: list[str], timeout: float) -> ExecSyncResult:
        """Run *command* in a container and wait for it to finish."""

    def container_stats(self, container_id: str) -> ContainerStats:
        """Return the stats of one container."""

    def list_container_stats(self, filter: ContainerStatsFilter | None) -> list[ContainerStats]:
        """List stats of containers matching *filter*."""

    def reopen_container_log(self, container_id: str) -> None:
        """Ask the runtime to reopen the log file of a container."""


@runtime_checkable
class ImageManagerService(Protocol):
    """Operations a container runtime offers on images.

    Failures are reported by raising an exception.
    """

    def pull_image(
        self, image: ImageSpec, auth: Any, pod_config: PodSandboxConfig | None
    ) -> str:
        """Pull an image and return its reference."""

    def image_status(self, image: ImageSpec, verbose: bool) -> Image | None:
        """Return the image, or None when it is not present."""

    def list_images(self, filter: ImageFilter | None) -> list[Image]:
        """List images matching *filter*."""

    def remove_image(self, image: ImageSpec) -> None:
        """Remove an image."""


@dataclass
class CRIClient:
    """The pair of services that make up a CRI client."""

    runtime_client: RuntimeService
    image_client: ImageManagerService


class Framework:
    """Holds a CRI client for the duration of one test.

    The client is created by *loader* on :meth:`before_each` when none is
    held, and dropped on :meth:`after_each`.
    """

    def __init__(
        self,
        client: CRIClient | None = None,
        loader: Callable[[], CRIClient] | None = None,
    ) -> None:
        self.cri_client = client
        self._loader = loader

    def before_each(self) -> CRIClient:
        """Make sure a client is held and return it."""
        if self.cri_client is None:
            if self._loader is None:
                raise RuntimeError("no CRI client is set and no loader is configured")
            self.cri_client = self._loader()
        return self.cri_client

    def after_each(self) -> None:
        """Drop the client held for the finished test."""
        self.cri_client = None

    def __enter__(self) -> CRIClient:
        return self.before_each()

    def __exit__(self, *exc_info: object) -> None:
        self.after_each()


def kube_describe(text: str) -> str:
    """Return the label under which a group of specs is described."""
    return _DESCRIBE_PREFIX + text