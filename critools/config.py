"""Reading and writing the client configuration file."""

from __future__ import annotations

import io
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap
from ruamel.yaml.error import YAMLError

__all__ = [
    "ConfigError",
    "Config",
    "ServerConfiguration",
    "read_config",
    "write_config",
    "get_server_config_from_file",
]

_FALLBACK_CONFIG_NAME = "crictl.yaml"

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


class ConfigError(Exception):
    """Raised when a configuration file cannot be loaded or parsed."""


@dataclass
class Config:
    """Options held in the client configuration file."""

    runtime_endpoint: str = ""
    image_endpoint: str = ""
    timeout: int = 0
    debug: bool = False
    pull_image_on_create: bool = False
    disable_pull_on_run: bool = False
    _yaml_data: Any = field(default=None, init=False, repr=False, compare=False)


@dataclass
class ServerConfiguration:
    """Settings for connecting to and using a CRI server."""

    runtime_endpoint: str = ""
    image_endpoint: str = ""
    timeout: timedelta = timedelta(0)
    debug: bool = False
    pull_image_on_create: bool = False
    disable_pull_on_run: bool = False


def _yaml() -> YAML:
    yaml = YAML()
    yaml.default_flow_style = False
    return yaml


def _scalar_text(value: Any) -> str:
    """Return the text a scalar value was written with in the document."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return ""
    if isinstance(value, int):
        return str(int(value))
    return str(value)


def _parse_int(name: str, text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        raise ConfigError(f"parsing config option '{name}': invalid integer {text!r}")
    return int(text)


def _parse_bool(name: str, text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ConfigError(f"parsing config option '{name}': invalid boolean {text!r}")


def _config_from_yaml(data: Any) -> Config:
    config = Config()
    if data is None or not isinstance(data, (dict, list)):
        config._yaml_data = data if isinstance(data, CommentedMap) else None
        return config
    if not isinstance(data, dict):
        raise ConfigError("Config file must hold a mapping of options")

    for key, value in data.items():
        name = _scalar_text(key)
        text = _scalar_text(value)
        if name == "runtime-endpoint":
            config.runtime_endpoint = text
        elif name == "image-endpoint":
            config.image_endpoint = text
        elif name == "timeout":
            config.timeout = _parse_int(name, text)
        elif name == "debug":
            config.debug = _parse_bool(name, text)
        elif name == "pull-image-on-create":
            config.pull_image_on_create = _parse_bool(name, text)
        elif name == "disable-pull-on-run":
            config.disable_pull_on_run = _parse_bool(name, text)
        else:
            raise ConfigError(f"Config option '{name}' is not valid")

    config._yaml_data = data
    return config


def read_config(filepath: str | os.PathLike[str]) -> Config:
    """Read the configuration file at *filepath*.

    Missing files raise ``OSError``; malformed content raises ``ConfigError``.
    """
    with open(filepath, encoding="utf-8") as handle:
        text = handle.read()
    try:
        data = _yaml().load(text)
    except YAMLError as exc:
        raise ConfigError(f"parsing config file {os.fspath(filepath)!r}: {exc}") from exc
    return _config_from_yaml(data)


def _apply_options(config: Config) -> CommentedMap:
    data = config._yaml_data
    if not isinstance(data, CommentedMap):
        data = CommentedMap()
    options: dict[str, Any] = {
        "runtime-endpoint": config.runtime_endpoint,
        "image-endpoint": config.image_endpoint,
        "timeout": int(config.timeout),
        "debug": bool(config.debug),
        "pull-image-on-create": bool(config.pull_image_on_create),
        "disable-pull-on-run": bool(config.disable_pull_on_run),
    }
    for name, value in options.items():
        data[name] = value
    config._yaml_data = data
    return data


def write_config(config: Config | None, filepath: str | os.PathLike[str]) -> None:
    """Write *config* to *filepath*, keeping comments of a previously read file."""
    if config is None:
        config = Config()
    data = _apply_options(config)

    stream = io.StringIO()
    _yaml().dump(data, stream)

    directory = os.path.dirname(os.fspath(filepath))
    if directory:
        os.makedirs(directory, mode=0o755, exist_ok=True)
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(stream.getvalue())


def get_server_config_from_file(
    config_file_name: str | os.PathLike[str], current_dir: str | os.PathLike[str]
) -> ServerConfiguration:
    """Load server settings, falling back to ``crictl.yaml`` beside *current_dir*."""
    path = os.fspath(config_file_name)
    try:
        os.stat(path)
    except FileNotFoundError:
        path = os.path.join(os.path.dirname(os.fspath(current_dir)), _FALLBACK_CONFIG_NAME)
        try:
            os.stat(path)
        except OSError as exc:
            raise ConfigError(f"load config file: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"load config file: {exc}") from exc

    try:
        config = read_config(path)
    except (OSError, ConfigError) as exc:
        raise ConfigError(f"load config file: {exc}") from exc

    return ServerConfiguration(
        runtime_endpoint=config.runtime_endpoint,
        image_endpoint=config.image_endpoint,
        timeout=timedelta(seconds=config.timeout),
        debug=config.debug,
        pull_image_on_create=config.pull_image_on_create,
        disable_pull_on_run=config.disable_pull_on_run,
    )