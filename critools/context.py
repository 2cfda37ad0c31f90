"""Test context: command-line settings, platform defaults and YAML overrides."""

from __future__ import annotations

import argparse
import logging
import ntpath
import os
import re
import sys
from dataclasses import dataclass, field, fields
from datetime import timedelta
from fractions import Fraction
from typing import Any, Sequence

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

__all__ = [
    "DEFAULT_UID_PREFIX",
    "DEFAULT_NAMESPACE_PREFIX",
    "DEFAULT_ATTEMPT",
    "DEFAULT_STOP_CONTAINER_TIMEOUT",
    "DEFAULT_LINUX_CONTAINER_IMAGE",
    "DEFAULT_WINDOWS_CONTAINER_IMAGE",
    "DEFAULT_REGISTRY_PREFIX",
    "DOCKERSHIM_SOCK_PATH_UNIX",
    "DOCKERSHIM_SOCK_PATH_WINDOWS",
    "TestImageList",
    "BenchmarkingParams",
    "TestContext",
    "build_arg_parser",
    "parse_test_context",
    "load_yaml_file",
]

logger = logging.getLogger(__name__)

DEFAULT_UID_PREFIX = "cri-test-uid"
DEFAULT_NAMESPACE_PREFIX = "cri-test-namespace"
DEFAULT_ATTEMPT = 2
DEFAULT_STOP_CONTAINER_TIMEOUT = 60
DEFAULT_LINUX_CONTAINER_IMAGE = "busybox:1.28"
DEFAULT_WINDOWS_CONTAINER_IMAGE = "k8s.gcr.io/e2e-test-images/busybox:1.29-2"
DEFAULT_REGISTRY_PREFIX = "docker.io/library"
DOCKERSHIM_SOCK_PATH_UNIX = "unix:///var/run/dockershim.sock"
DOCKERSHIM_SOCK_PATH_WINDOWS = "npipe:////./pipe/dockershim"

DEFAULT_LINUX_POD_LABELS: dict[str, str] = {}
DEFAULT_LINUX_CONTAINER_COMMAND = ["top"]
DEFAULT_LINUX_PAUSE_COMMAND = ["sh", "-c", "top"]
DEFAULT_LCOW_POD_LABELS = {"sandbox-platform": "linux/amd64"}
DEFAULT_WINDOWS_POD_LABELS: dict[str, str] = {}
DEFAULT_WINDOWS_CONTAINER_COMMAND = ["cmd", "/c", "ping -t localhost"]
DEFAULT_WINDOWS_PAUSE_COMMAND = ["powershell", "-c", "ping -t localhost"]

_DEFAULT_SERVICE_TIMEOUT = timedelta(seconds=300)
_DEFAULT_UNIX_CONFIG_PATH = "/etc/crictl.yaml"


def _current_goos() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def _yaml_field(key: str, kind: type, default: Any = None) -> Any:
    metadata = {"yaml": key, "kind": kind}
    if kind is list:
        return field(default_factory=list, metadata=metadata)
    return field(default=default, metadata=metadata)


@dataclass
class TestImageList:
    """References to the images used by the tests."""

    __test__ = False

    default_test_container_image: str = _yaml_field("defaultTestContainerImage", str, "")
    web_server_test_image: str = _yaml_field("webServerTestImage", str, "")


@dataclass
class BenchmarkingParams:
    """Settings of the benchmark suites."""

    containers_number: int = _yaml_field("containersNumber", int, 0)
    containers_number_parallel: int = _yaml_field("containersNumberParallel", int, 0)
    container_benchmark_timeout_seconds: int = _yaml_field(
        "containerBenchmarkTimeoutSeconds", int, 0
    )
    pods_number: int = _yaml_field("podsNumber", int, 0)
    pods_number_parallel: int = _yaml_field("podsNumberParallel", int, 0)
    pod_benchmark_timeout_seconds: int = _yaml_field("podBenchmarkTimeoutSeconds", int, 0)
    images_number: int = _yaml_field("imagesNumber", int, 0)
    images_number_parallel: int = _yaml_field("imagesNumberParallel", int, 0)
    image_benchmark_timeout_seconds: int = _yaml_field("imageBenchmarkTimeoutSeconds", int, 0)
    image_pulling_benchmark_image: str = _yaml_field("imagePullingBenchmarkImage", str, "")
    image_listing_benchmark_images: list[str] = _yaml_field("imageListingBenchmarkImages", list)
    pod_container_start_benchmark_timeout_seconds: int = _yaml_field(
        "podContainerStartBenchmarkTimeoutSeconds", int, 0
    )


@dataclass
class TestContext:
    """Everything a test run is configured with."""

    __test__ = False

    report_dir: str = ""
    report_prefix: str = ""
    config_path: str = ""
    image_service_addr: str = ""
    image_service_timeout: timedelta = _DEFAULT_SERVICE_TIMEOUT
    runtime_service_addr: str = DOCKERSHIM_SOCK_PATH_UNIX
    runtime_service_timeout: timedelta = _DEFAULT_SERVICE_TIMEOUT
    runtime_handler: str = ""
    test_image_list: TestImageList = field(default_factory=TestImageList)
    benchmarking_output_dir: str = ""
    benchmarking_params: BenchmarkingParams = field(default_factory=BenchmarkingParams)
    is_lcow: bool = False
    registry_prefix: str = DEFAULT_REGISTRY_PREFIX
    test_images_file_path: str = ""
    benchmarking_params_file_path: str = ""
    default_pod_labels: dict[str, str] = field(default_factory=dict)
    default_container_command: list[str] = field(default_factory=list)
    default_pause_command: list[str] = field(default_factory=list)

    def apply_platform_defaults(self, goos: str | None = None) -> None:
        """Set pod labels, commands and the default image for the target platform."""
        goos = goos or _current_goos()
        if goos != "windows" or self.is_lcow:
            self.default_pod_labels = dict(DEFAULT_LINUX_POD_LABELS)
            self.default_container_command = list(DEFAULT_LINUX_CONTAINER_COMMAND)
            self.default_pause_command = list(DEFAULT_LINUX_PAUSE_COMMAND)
            self.test_image_list.default_test_container_image = DEFAULT_LINUX_CONTAINER_IMAGE
            if self.is_lcow:
                self.default_pod_labels = dict(DEFAULT_LCOW_POD_LABELS)
        else:
            self.default_pod_labels = dict(DEFAULT_WINDOWS_POD_LABELS)
            self.default_container_command = list(DEFAULT_WINDOWS_CONTAINER_COMMAND)
            self.default_pause_command = list(DEFAULT_WINDOWS_PAUSE_COMMAND)
            self.test_image_list.default_test_container_image = DEFAULT_WINDOWS_CONTAINER_IMAGE

    def load_yaml_config_files(self) -> None:
        """Load the custom image list and benchmark settings files, when given."""
        if self.test_images_file_path:
            try:
                load_yaml_file(self.test_images_file_path, self.test_image_list)
            except (OSError, ValueError) as exc:
                raise ValueError(f"Error loading custom test images file: {exc}") from exc
        logger.info("Testing context container image list: %s", self.test_image_list)

        if self.benchmarking_params_file_path:
            load_yaml_file(self.benchmarking_params_file_path, self.benchmarking_params)
        logger.info("Testing context benchmarking params: %s", self.benchmarking_params)


_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}


def _parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``300s``, ``1m30s`` or ``250ms``."""
    rest = text.strip()
    sign = 1
    if rest[:1] in ("+", "-"):
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART.match(rest, pos)
        if match is None:
            raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
        total += Fraction(match.group(1)) * _DURATION_UNITS_NS[match.group(2)]
        pos = match.end()
    return timedelta(microseconds=float(sign * total / 1000))


def build_arg_parser(goos: str | None = None) -> argparse.ArgumentParser:
    """Return the parser for the test suites' command-line flags."""
    goos = goos or _current_goos()
    parser = argparse.ArgumentParser(allow_abbrev=False)

    def add(name: str, **kwargs: Any) -> None:
        parser.add_argument(f"-{name}", f"--{name}", **kwargs)

    add("report-prefix", dest="report_prefix", default="",
        help="Optional prefix for JUnit XML reports.")
    add("report-dir", dest="report_dir", default="",
        help="Directory where the JUnit XML reports should be saved.")
    add("image-endpoint", dest="image_service_addr", default="",
        help="Image service socket for client to connect.")
    add("test-images-file", dest="test_images_file_path", default="",
        help="Optional path to a YAML file with custom container images to use in tests.")
    add("image-service-timeout", dest="image_service_timeout", type=_parse_duration,
        default=_DEFAULT_SERVICE_TIMEOUT,
        help="Timeout when trying to connect to image service.")

    if goos == "windows":
        service_addr = DOCKERSHIM_SOCK_PATH_WINDOWS
        config_path = ntpath.join(os.environ.get("USERPROFILE", ""), ".crictl", "crictl.yaml")
    else:
        service_addr = DOCKERSHIM_SOCK_PATH_UNIX
        config_path = _DEFAULT_UNIX_CONFIG_PATH

    add("config", dest="config_path", default=config_path,
        help="Location of the client config file.")
    add("runtime-endpoint", dest="runtime_service_addr", default=service_addr,
        help="Runtime service socket for client to connect.")
    add("runtime-service-timeout", dest="runtime_service_timeout", type=_parse_duration,
        default=_DEFAULT_SERVICE_TIMEOUT,
        help="Timeout when trying to connect to a runtime service.")
    add("runtime-handler", dest="runtime_handler", default="",
        help="Runtime handler to use in the test.")
    add("benchmarking-params-file", dest="benchmarking_params_file_path", default="",
        help="Optional path to a YAML file specifying benchmarking configuration options.")
    add("benchmarking-output-dir", dest="benchmarking_output_dir", default="",
        help="Optional path to a directory in which benchmarking data should be placed.")
    if goos == "windows":
        add("lcow", dest="is_lcow", action="store_true", default=False,
            help="Run Linux container on Windows tests instead of Windows container tests.")
    add("registry-prefix", dest="registry_prefix", default=DEFAULT_REGISTRY_PREFIX,
        help="A registry prefix added to all images, like 'localhost:5000/'.")
    return parser


def parse_test_context(
    argv: Sequence[str] | None = None, goos: str | None = None
) -> TestContext:
    """Build a :class:`TestContext` from command-line flags."""
    namespace = build_arg_parser(goos).parse_args(argv)
    return TestContext(
        report_dir=namespace.report_dir,
        report_prefix=namespace.report_prefix,
        config_path=namespace.config_path,
        image_service_addr=namespace.image_service_addr,
        image_service_timeout=namespace.image_service_timeout,
        runtime_service_addr=namespace.runtime_service_addr,
        runtime_service_timeout=namespace.runtime_service_timeout,
        runtime_handler=namespace.runtime_handler,
        benchmarking_output_dir=namespace.benchmarking_output_dir,
        is_lcow=getattr(namespace, "is_lcow", False),
        registry_prefix=namespace.registry_prefix,
        test_images_file_path=namespace.test_images_file_path,
        benchmarking_params_file_path=namespace.benchmarking_params_file_path,
    )


def _coerce(key: str, kind: type, value: Any) -> Any:
    if kind is int:
        if value is None:
            return 0
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"cannot use {value!r} as an integer for {key!r}")
        return int(value)
    if kind is str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float, str)):
            return str(value)
        raise ValueError(f"cannot use {value!r} as a string for {key!r}")
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"cannot use {value!r} as a list for {key!r}")
    return [_coerce(key, str, item) for item in value]


def load_yaml_file(filepath: str | os.PathLike[str], obj: Any) -> Any:
    """Load the YAML file at *filepath* into the dataclass *obj* and return it.

    Keys the object does not know are ignored; keys it lacks keep their values.
    """
    path = os.fspath(filepath)
    logger.info("Attempting to load YAML file %r into %s", path, obj)
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise OSError(f"error reading {path!r} file contents: {exc}") from exc

    try:
        data = YAML(typ="safe").load(text)
        if data is not None:
            if not isinstance(data, dict):
                raise ValueError("document is not a mapping")
            known = {f.metadata["yaml"]: f for f in fields(obj) if "yaml" in f.metadata}
            for key, value in data.items():
                target = known.get(key)
                if target is not None:
                    setattr(obj, target.name, _coerce(key, target.metadata["kind"], value))
    except (YAMLError, ValueError) as exc:
        raise ValueError(f"error unmarshalling {path!r} YAML file: {exc}") from exc

    logger.info("Successfully loaded YAML file %r into %s", path, obj)
    return obj