"""Helpers shared by the test suites: image references, sandboxes, containers and images."""

from __future__ import annotations

import logging
import re
import threading
import uuid
from dataclasses import dataclass

from .context import (
    DEFAULT_ATTEMPT,
    DEFAULT_NAMESPACE_PREFIX,
    DEFAULT_REGISTRY_PREFIX,
    DEFAULT_UID_PREFIX,
    TestContext,
)
from .cri import (
    ContainerConfig,
    ContainerMetadata,
    Image,
    ImageFilter,
    ImageManagerService,
    ImageSpec,
    PodSandboxConfig,
    PodSandboxMetadata,
    RuntimeService,
)

__all__ = [
    "ReferenceError_",
    "NameNotCanonicalError",
    "NamedReference",
    "parse_named",
    "new_uuid",
    "build_pod_sandbox_metadata",
    "build_container_metadata",
    "run_pod_sandbox",
    "run_default_pod_sandbox",
    "create_pod_sandbox_for_container",
    "create_container_with_error",
    "create_container",
    "create_default_container",
    "create_pause_container",
    "image_status",
    "list_image",
    "pull_public_image",
]

logger = logging.getLogger(__name__)

_DEFAULT_DOMAIN = "docker.io"
_LEGACY_DEFAULT_DOMAIN = "index.docker.io"
_OFFICIAL_REPO_NAME = "library"
_NAME_TOTAL_LENGTH_MAX = 255
_LATEST_TAG = ":latest"

_ALPHA_NUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]*)"
_NAME_COMPONENT = _ALPHA_NUMERIC + r"(?:" + _SEPARATOR + _ALPHA_NUMERIC + r")*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = _DOMAIN_COMPONENT + r"(?:\." + _DOMAIN_COMPONENT + r")*(?::[0-9]+)?"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*[:][0-9a-fA-F]{32,}"
_PATH = _NAME_COMPONENT + r"(?:/" + _NAME_COMPONENT + r")*"
_NAME = r"(?:" + _DOMAIN + r"/)?" + _PATH

_REFERENCE_RE = re.compile(
    r"(" + _NAME + r")(?::(" + _TAG + r"))?(?:@(" + _DIGEST + r"))?", re.ASCII
)
_ANCHORED_NAME_RE = re.compile(r"(?:(" + _DOMAIN + r")/)?(" + _PATH + r")", re.ASCII)
_ANCHORED_IDENTIFIER_RE = re.compile(r"[a-f0-9]{64}")
_HEX_RE = re.compile(r"[a-f0-9]+")
_DIGEST_SIZES = {"sha256": 64, "sha384": 96, "sha512": 128}

_uuid_lock = threading.Lock()
_last_uuid: uuid.UUID | None = None


class ReferenceError_(ValueError):
    """Raised when an image reference cannot be parsed."""


class NameNotCanonicalError(ReferenceError_):
    """Raised when an image reference is valid but not in its canonical form."""

    def __init__(self, message: str = "repository name must be canonical") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class NamedReference:
    """A parsed image reference: domain, repository path, tag and digest."""

    domain: str
    path: str
    tag: str = ""
    digest: str = ""

    @property
    def name(self) -> str:
        """The repository name including its domain."""
        return f"{self.domain}/{self.path}" if self.domain else self.path

    def __str__(self) -> str:
        text = self.name
        if self.tag:
            text += ":" + self.tag
        if self.digest:
            text += "@" + self.digest
        return text


def _validate_digest(digest: str) -> None:
    algorithm, _, encoded = digest.partition(":")
    size = _DIGEST_SIZES.get(algorithm)
    if size is None:
        raise ReferenceError_("unsupported digest algorithm")
    if len(encoded) != size:
        raise ReferenceError_("invalid checksum digest length")
    if not _HEX_RE.fullmatch(encoded):
        raise ReferenceError_("invalid checksum digest format")


def _parse(text: str) -> NamedReference:
    match = _REFERENCE_RE.fullmatch(text)
    if match is None:
        if not text:
            raise ReferenceError_("repository name must have at least one component")
        if _REFERENCE_RE.fullmatch(text.lower()) is not None:
            raise ReferenceError_(
                "invalid reference format: repository name must be lowercase"
            )
        raise ReferenceError_("invalid reference format")

    name, tag, digest = match.group(1), match.group(2) or "", match.group(3) or ""
    if len(name) > _NAME_TOTAL_LENGTH_MAX:
        raise ReferenceError_(
            f"repository name must not be more than {_NAME_TOTAL_LENGTH_MAX} characters"
        )
    name_match = _ANCHORED_NAME_RE.fullmatch(name)
    if name_match is None:
        raise ReferenceError_("invalid reference format")
    if digest:
        _validate_digest(digest)
    return NamedReference(
        domain=name_match.group(1) or "",
        path=name_match.group(2),
        tag=tag,
        digest=digest,
    )


def _split_docker_domain(name: str) -> tuple[str, str]:
    first, slash, rest = name.partition("/")
    if not slash or (not any(ch in first for ch in ".:") and first != "localhost"):
        domain, remainder = _DEFAULT_DOMAIN, name
    else:
        domain, remainder = first, rest
    if domain == _LEGACY_DEFAULT_DOMAIN:
        domain = _DEFAULT_DOMAIN
    if domain == _DEFAULT_DOMAIN and "/" not in remainder:
        remainder = f"{_OFFICIAL_REPO_NAME}/{remainder}"
    return domain, remainder


def _parse_normalized_named(text: str) -> NamedReference:
    if _ANCHORED_IDENTIFIER_RE.fullmatch(text):
        raise ReferenceError_(
            f"invalid repository name ({text}), cannot specify 64-byte hexadecimal strings"
        )
    domain, remainder = _split_docker_domain(text)
    remote_name = remainder.split(":", 1)[0]
    if remote_name.lower() != remote_name:
        raise ReferenceError_("invalid reference format: repository name must be lowercase")
    return _parse(f"{domain}/{remainder}")


def parse_named(name: str) -> NamedReference:
    """Parse a fully qualified image reference.

    Raises :class:`NameNotCanonicalError` when *name* is valid but would need
    normalising (for example ``busybox``), and :class:`ReferenceError_` when it
    is not a valid reference at all.
    """
    reference = _parse_normalized_named(name)
    if str(reference) != name:
        raise NameNotCanonicalError()
    return reference


def new_uuid() -> str:
    """Return a new time-based UUID, never equal to the previous one."""
    global _last_uuid
    with _uuid_lock:
        result = uuid.uuid1()
        while result == _last_uuid:
            result = uuid.uuid1()
        _last_uuid = result
        return str(result)


def build_pod_sandbox_metadata(
    pod_sandbox_name: str, uid: str, namespace: str, attempt: int
) -> PodSandboxMetadata:
    """Build the metadata of a pod sandbox."""
    return PodSandboxMetadata(
        name=pod_sandbox_name, uid=uid, namespace=namespace, attempt=attempt
    )


def build_container_metadata(container_name: str, attempt: int) -> ContainerMetadata:
    """Build the metadata of a container."""
    return ContainerMetadata(name=container_name, attempt=attempt)


def run_pod_sandbox(
    c: RuntimeService, config: PodSandboxConfig, context: TestContext
) -> str:
    """Run a pod sandbox with the context's runtime handler and return its id."""
    return c.run_pod_sandbox(config, context.runtime_handler)


def _default_sandbox_config(name_prefix: str, context: TestContext) -> PodSandboxConfig:
    return PodSandboxConfig(
        metadata=build_pod_sandbox_metadata(
            name_prefix + new_uuid(),
            DEFAULT_UID_PREFIX + new_uuid(),
            DEFAULT_NAMESPACE_PREFIX + new_uuid(),
            DEFAULT_ATTEMPT,
        ),
        linux={},
        labels=dict(context.default_pod_labels),
    )


def run_default_pod_sandbox(c: RuntimeService, prefix: str, context: TestContext) -> str:
    """Run a pod sandbox with default options and a name starting with *prefix*."""
    return run_pod_sandbox(c, _default_sandbox_config(prefix, context), context)


def create_pod_sandbox_for_container(
    c: RuntimeService, context: TestContext
) -> tuple[str, PodSandboxConfig]:
    """Run a pod sandbox to hold containers; return its id and configuration."""
    config = _default_sandbox_config("create-PodSandbox-for-container-", context)
    return run_pod_sandbox(c, config, context), config


def create_container_with_error(
    rc: RuntimeService,
    ic: ImageManagerService,
    config: ContainerConfig,
    pod_id: str,
    pod_config: PodSandboxConfig,
    context: TestContext,
) -> str:
    """Pull the container's image if it is missing, then create the container.

    Errors from the runtime are left for the caller to handle.
    """
    image_name = config.image.image if config.image is not None else ""
    if ":" not in image_name:
        image_name += _LATEST_TAG
        logger.info("Use latest as default image tag.")

    if image_status(ic, image_name) is None:
        pull_public_image(ic, image_name, pod_config, context)

    return rc.create_container(pod_id, config, pod_config)


def create_container(
    rc: RuntimeService,
    ic: ImageManagerService,
    config: ContainerConfig,
    pod_id: str,
    pod_config: PodSandboxConfig,
    context: TestContext,
) -> str:
    """Create a container and return its id."""
    container_id = create_container_with_error(rc, ic, config, pod_id, pod_config, context)
    logger.info("Created container %r", container_id)
    return container_id


def _create_with_command(
    rc: RuntimeService,
    ic: ImageManagerService,
    pod_id: str,
    pod_config: PodSandboxConfig,
    prefix: str,
    command: list[str],
    context: TestContext,
) -> str:
    config = ContainerConfig(
        metadata=build_container_metadata(prefix + new_uuid(), DEFAULT_ATTEMPT),
        image=ImageSpec(image=context.test_image_list.default_test_container_image),
        command=list(command),
        linux={},
    )
    return create_container(rc, ic, config, pod_id, pod_config, context)


def create_default_container(
    rc: RuntimeService,
    ic: ImageManagerService,
    pod_id: str,
    pod_config: PodSandboxConfig,
    prefix: str,
    context: TestContext,
) -> str:
    """Create a container running the default command."""
    return _create_with_command(
        rc, ic, pod_id, pod_config, prefix, context.default_container_command, context
    )


def create_pause_container(
    rc: RuntimeService,
    ic: ImageManagerService,
    pod_id: str,
    pod_config: PodSandboxConfig,
    prefix: str,
    context: TestContext,
) -> str:
    """Create a container running the default pause command."""
    return _create_with_command(
        rc, ic, pod_id, pod_config, prefix, context.default_pause_command, context
    )


def image_status(c: ImageManagerService, image_name: str) -> Image | None:
    """Return the image named *image_name*, or None when it is not present."""
    logger.info("Get image status for image: %s", image_name)
    return c.image_status(ImageSpec(image=image_name), False)


def list_image(c: ImageManagerService, filter: ImageFilter | None) -> list[Image]:
    """List the images matching *filter*."""
    return c.list_images(filter)


def pull_public_image(
    c: ImageManagerService,
    image_name: str,
    pod_config: PodSandboxConfig | None,
    context: TestContext,
) -> str:
    """Pull a public image, applying the context's registry prefix, and return its id."""
    try:
        reference = parse_named(image_name)
    except NameNotCanonicalError:
        image_name = f"{context.registry_prefix}/{image_name}"
    else:
        if context.registry_prefix != DEFAULT_REGISTRY_PREFIX:
            reference = parse_named(f"{context.registry_prefix}/{reference.path}")
        image_name = str(reference)
        if ":" not in image_name:
            image_name += _LATEST_TAG
            logger.info("Use latest as default image tag.")

    logger.info("Pull image : %s", image_name)
    return c.pull_image(ImageSpec(image=image_name), None, pod_config)