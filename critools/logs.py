"""Parsing of container log files in Docker JSON and CRI formats."""

from __future__ import annotations

import enum
import json
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

__all__ = [
    "StreamType",
    "LogMessage",
    "LogParseError",
    "parse_docker_json_log",
    "parse_cri_log",
    "parse_log_file",
    "log_contains",
]

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)


class StreamType(str, enum.Enum):
    """The output stream a log line was written to."""

    STDOUT = "stdout"
    STDERR = "stderr"


class LogParseError(ValueError):
    """Raised when a log line cannot be parsed."""


@dataclass
class LogMessage:
    """One parsed log line."""

    timestamp: datetime | None
    stream: StreamType | str
    log: str


def _stream(value: str) -> StreamType | str:
    try:
        return StreamType(value)
    except ValueError:
        return value


def _parse_timestamp(text: str) -> datetime:
    match = _RFC3339.fullmatch(text)
    if match is None:
        raise LogParseError(f"failed to parse timestamp {text!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micro = int((fraction or "").ljust(6, "0")[:6])
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        hours, minutes = zone[1:].split(":")
        tz = timezone(sign * timedelta(hours=int(hours), minutes=int(minutes)))
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tz
        )
    except ValueError as exc:
        raise LogParseError(f"failed to parse timestamp {text!r}: {exc}") from exc


def parse_docker_json_log(line: str | bytes) -> LogMessage:
    """Parse a line in Docker JSON log format.

    Example: ``{"log":"content 1","stream":"stdout","time":"2016-10-20T18:39:20.57606443Z"}``
    """
    try:
        data = json.loads(line)
    except ValueError as exc:
        raise LogParseError(f"failed to unmarshal log {line!r}: {exc}") from exc
    if not isinstance(data, dict):
        raise LogParseError(f"failed to unmarshal log {line!r}: not an object")
    created = data.get("time")
    return LogMessage(
        timestamp=_parse_timestamp(created) if created else None,
        stream=_stream(str(data.get("stream") or "")),
        log=str(data.get("log") or ""),
    )


def parse_cri_log(line: str) -> LogMessage:
    """Parse a line in CRI log format.

    Example: ``2016-10-06T00:17:09.669794202Z stdout P The content of the log entry 1``.
    The tag field is skipped and a newline is appended to the content.
    """
    parts = line.split(" ", 3)
    if len(parts) < 4:
        raise LogParseError(f"failed to parse CRI log: invalid CRI log {line!r}")
    timestamp, stream, _tag, content = parts
    return LogMessage(
        timestamp=_parse_timestamp(timestamp),
        stream=_stream(stream),
        log=content + "\n",
    )


def parse_log_file(
    log_directory: str | os.PathLike[str], log_path: str | os.PathLike[str]
) -> list[LogMessage]:
    """Parse every line of the log file *log_path* inside *log_directory*."""
    path = os.path.join(os.fspath(log_directory), os.fspath(log_path))
    messages = []
    with open(path, encoding="utf-8", newline="") as handle:
        for raw in handle:
            line = raw[:-1] if raw.endswith("\n") else raw
            if line.endswith("\r"):
                line = line[:-1]
            if line.startswith("{"):
                messages.append(parse_docker_json_log(line))
            else:
                messages.append(parse_cri_log(line))
    return messages


def log_contains(
    messages: Iterable[LogMessage], log: str, stream: StreamType | str
) -> bool:
    """Return whether a message with content *log* was written to *stream*."""
    return any(msg.log == log and msg.stream == stream for msg in messages)