import uuid

import pytest

from critools.context import (
    DEFAULT_ATTEMPT,
    DEFAULT_LINUX_CONTAINER_IMAGE,
    DEFAULT_NAMESPACE_PREFIX,
    DEFAULT_UID_PREFIX,
    TestContext,
)
from critools.cri import (
    ContainerConfig,
    ContainerMetadata,
    Image,
    ImageFilter,
    ImageSpec,
    PodSandboxConfig,
)
from critools.framework import (
    NameNotCanonicalError,
    NamedReference,
    ReferenceError_,
    build_container_metadata,
    build_pod_sandbox_metadata,
    create_container,
    create_container_with_error,
    create_default_container,
    create_pause_container,
    create_pod_sandbox_for_container,
    image_status,
    list_image,
    new_uuid,
    parse_named,
    pull_public_image,
    run_default_pod_sandbox,
    run_pod_sandbox,
)

DIGEST_REF = (
    "gcr.io/k8s-staging-cri-tools/test-image-digest@sha256:"
    "9700f9a2f5bf2c45f2f605a0bd3bce7cf37420ec9d3ed50ac2758413308766bf"
)


class FakeImages:
    def __init__(self, present=()):
        self.present = {name: Image(id="id-" + name, repo_tags=[name]) for name in present}
        self.pulled = []
        self.filters = []

    def pull_image(self, image, auth, pod_config):
        self.pulled.append((image.image, auth, pod_config))
        return "id-" + image.image

    def image_status(self, image, verbose):
        return self.present.get(image.image)

    def list_images(self, filter):
        self.filters.append(filter)
        return list(self.present.values())

    def remove_image(self, image):
        self.present.pop(image.image, None)


class FakeRuntime:
    def __init__(self, fail=False):
        self.fail = fail
        self.sandboxes = []
        self.containers = []

    def run_pod_sandbox(self, config, runtime_handler):
        if self.fail:
            raise RuntimeError("sandbox failure")
        self.sandboxes.append((config, runtime_handler))
        return f"pod-{len(self.sandboxes)}"

    def create_container(self, pod_id, config, pod_config):
        if self.fail:
            raise RuntimeError("create failure")
        self.containers.append((pod_id, config, pod_config))
        return f"ctr-{len(self.containers)}"


@pytest.fixture
def context():
    ctx = TestContext(runtime_handler="runc")
    ctx.apply_platform_defaults("linux")
    return ctx


def test_parse_named_canonical_tag():
    ref = parse_named("docker.io/library/busybox:1.28")
    assert ref == NamedReference("docker.io", "library/busybox", "1.28", "")
    assert str(ref) == "docker.io/library/busybox:1.28"
    assert ref.name == "docker.io/library/busybox"


def test_parse_named_digest():
    ref = parse_named(DIGEST_REF)
    assert ref.domain == "gcr.io"
    assert ref.path == "k8s-staging-cri-tools/test-image-digest"
    assert ref.tag == ""
    assert str(ref) == DIGEST_REF


def test_parse_named_domain_with_port():
    ref = parse_named("localhost:5000/foo/bar:v1")
    assert ref.domain == "localhost:5000"
    assert ref.path == "foo/bar"
    assert ref.tag == "v1"


@pytest.mark.parametrize("name", ["busybox", "busybox:1.28", "library/busybox"])
def test_parse_named_not_canonical(name):
    with pytest.raises(NameNotCanonicalError):
        parse_named(name)


@pytest.mark.parametrize(
    "name",
    [
        "Busybox",
        "a" * 64 if False else "0123456789abcdef" * 4,
        "gcr.io/foo@md5:" + "a" * 32,
        "gcr.io/foo@sha256:abc" + "0" * 29,
        "",
    ],
)
def test_parse_named_invalid(name):
    with pytest.raises(ReferenceError_) as info:
        parse_named(name)
    assert not isinstance(info.value, NameNotCanonicalError)


def test_new_uuid_unique_and_valid():
    ids = [new_uuid() for _ in range(50)]
    assert len(set(ids)) == len(ids)
    assert all(str(uuid.UUID(value)) == value for value in ids)


def test_build_metadata():
    meta = build_pod_sandbox_metadata("pod", "uid", "ns", 3)
    assert (meta.name, meta.uid, meta.namespace, meta.attempt) == ("pod", "uid", "ns", 3)
    cmeta = build_container_metadata("ctr", 4)
    assert cmeta == ContainerMetadata(name="ctr", attempt=4)


def test_run_pod_sandbox_uses_runtime_handler(context):
    rt = FakeRuntime()
    config = PodSandboxConfig()
    assert run_pod_sandbox(rt, config, context) == "pod-1"
    assert rt.sandboxes == [(config, "runc")]


def test_run_pod_sandbox_propagates_error(context):
    with pytest.raises(RuntimeError):
        run_pod_sandbox(FakeRuntime(fail=True), PodSandboxConfig(), context)


def test_run_default_pod_sandbox(context):
    context.is_lcow = True
    context.apply_platform_defaults("windows")
    rt = FakeRuntime()
    pod_id = run_default_pod_sandbox(rt, "my-prefix-", context)
    config, handler = rt.sandboxes[0]
    assert pod_id == "pod-1"
    assert config.metadata.name.startswith("my-prefix-")
    assert config.metadata.uid.startswith(DEFAULT_UID_PREFIX)
    assert config.metadata.namespace.startswith(DEFAULT_NAMESPACE_PREFIX)
    assert config.metadata.attempt == DEFAULT_ATTEMPT
    assert config.labels == {"sandbox-platform": "linux/amd64"}


def test_create_pod_sandbox_for_container(context):
    rt = FakeRuntime()
    pod_id, config = create_pod_sandbox_for_container(rt, context)
    assert pod_id == "pod-1"
    assert rt.sandboxes[0][0] is config
    assert config.metadata.name.startswith("create-PodSandbox-for-container-")


def test_pull_public_image_non_canonical(context):
    images = FakeImages()
    pod_config = PodSandboxConfig()
    result = pull_public_image(images, "busybox:1.28", pod_config, context)
    assert images.pulled == [("docker.io/library/busybox:1.28", None, pod_config)]
    assert result == "id-docker.io/library/busybox:1.28"


def test_pull_public_image_canonical_default_prefix(context):
    images = FakeImages()
    pull_public_image(images, DIGEST_REF, None, context)
    assert images.pulled[0][0] == DIGEST_REF


def test_pull_public_image_custom_prefix(context):
    context.registry_prefix = "registry.example.com"
    images = FakeImages()
    pull_public_image(images, "gcr.io/k8s-staging-cri-tools/test-image-tag:test", None, context)
    assert images.pulled[0][0] == (
        "registry.example.com/k8s-staging-cri-tools/test-image-tag:latest"
    )


def test_pull_public_image_invalid(context):
    images = FakeImages()
    with pytest.raises(ReferenceError_):
        pull_public_image(images, "Not/Valid", None, context)
    assert images.pulled == []


def test_create_container_with_error_pulls_missing_image(context):
    rt, images = FakeRuntime(), FakeImages()
    pod_config = PodSandboxConfig()
    config = ContainerConfig(image=ImageSpec(image="busybox"))
    container_id = create_container_with_error(rt, images, config, "pod-1", pod_config, context)
    assert container_id == "ctr-1"
    assert images.pulled[0][0] == "docker.io/library/busybox:latest"
    assert rt.containers == [("pod-1", config, pod_config)]


def test_create_container_skips_present_image(context):
    rt, images = FakeRuntime(), FakeImages(present=["busybox:1.28"])
    config = ContainerConfig(image=ImageSpec(image="busybox:1.28"))
    assert create_container(rt, images, config, "pod-1", PodSandboxConfig(), context) == "ctr-1"
    assert images.pulled == []


def test_create_container_propagates_error(context):
    rt, images = FakeRuntime(fail=True), FakeImages(present=["busybox:1.28"])
    config = ContainerConfig(image=ImageSpec(image="busybox:1.28"))
    with pytest.raises(RuntimeError):
        create_container(rt, images, config, "pod-1", PodSandboxConfig(), context)


def test_create_default_and_pause_containers(context):
    rt = FakeRuntime()
    images = FakeImages(present=[DEFAULT_LINUX_CONTAINER_IMAGE])
    create_default_container(rt, images, "pod-1", PodSandboxConfig(), "ctr-prefix-", context)
    create_pause_container(rt, images, "pod-1", PodSandboxConfig(), "pause-prefix-", context)
    default_config = rt.containers[0][1]
    pause_config = rt.containers[1][1]
    assert default_config.command == ["top"]
    assert pause_config.command == ["sh", "-c", "top"]
    assert default_config.image.image == DEFAULT_LINUX_CONTAINER_IMAGE
    assert default_config.metadata.name.startswith("ctr-prefix-")
    assert pause_config.metadata.attempt == DEFAULT_ATTEMPT


def test_image_status_and_list_image():
    images = FakeImages(present=["a:1"])
    assert image_status(images, "missing:1") is None
    assert image_status(images, "a:1").id == "id-a:1"
    flt = ImageFilter()
    assert [img.id for img in list_image(images, flt)] == ["id-a:1"]
    assert images.filters == [flt]