"""Collection and storage of lifecycle benchmark results."""

from __future__ import annotations

import json
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "ResultsError",
    "LifecycleBenchmarkDatapoint",
    "LifecycleBenchmarksResultsSet",
    "LifecycleBenchmarksResultsManager",
]

logger = logging.getLogger(__name__)


class ResultsError(Exception):
    """Raised when benchmark results cannot be gathered or saved."""


@dataclass
class LifecycleBenchmarkDatapoint:
    """One benchmarked lifecycle: the durations in nanoseconds of its operations."""

    sample_index: int = 0
    start_time: int = 0
    end_time: int = 0
    operations_durations_ns: list[int] = field(default_factory=list)
    meta_info: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the datapoint."""
        return {
            "sampleIndex": self.sample_index,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "operationsDurationsNs": list(self.operations_durations_ns),
            "metaInfo": None if self.meta_info is None else dict(self.meta_info),
        }


@dataclass
class LifecycleBenchmarksResultsSet:
    """Results of several benchmarked iterations of a resource lifecycle."""

    operations_names: list[str] = field(default_factory=list)
    num_parallel: int = 1
    datapoints: list[LifecycleBenchmarkDatapoint] | None = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the results set."""
        return {
            "operationsNames": list(self.operations_names),
            "numParallel": self.num_parallel,
            "datapoints": [point.to_dict() for point in self.datapoints or []],
        }


class LifecycleBenchmarksResultsManager:
    """Gathers datapoints from a queue on a background consumer thread.

    Results are put on the queue returned by :meth:`start_results_consumer`;
    a ``None`` marks the end of the stream.
    """

    def __init__(
        self,
        initial_results_set: LifecycleBenchmarksResultsSet,
        results_channel_timeout_seconds: float,
    ) -> None:
        if initial_results_set.datapoints is None:
            initial_results_set.datapoints = []
        self._results_set = initial_results_set
        self._timeout = results_channel_timeout_seconds
        self._queue: queue.Queue[LifecycleBenchmarkDatapoint | None] = queue.Queue()
        self._done = threading.Event()
        self._running = False
        self._failure: ResultsError | None = None
        self._thread: threading.Thread | None = None

    @property
    def results_set(self) -> LifecycleBenchmarksResultsSet:
        """The results registered so far."""
        return self._results_set

    def _consume(self) -> None:
        expected = len(self._results_set.operations_names)
        while True:
            try:
                result = self._queue.get(timeout=self._timeout)
            except queue.Empty:
                self._failure = ResultsError(
                    f"Timed out after waiting {self._timeout} seconds for new results."
                )
                logger.error("%s", self._failure)
                self._done.set()
                return

            if result is None:
                logger.info("Results ended.")
                self._done.set()
                return

            if len(result.operations_durations_ns) != expected:
                logger.warning(
                    "Received improper number of datapoints for operations %s: %s",
                    self._results_set.operations_names,
                    result.operations_durations_ns,
                )
            self._results_set.datapoints.append(result)

    def start_results_consumer(self) -> queue.Queue:
        """Start the consumer if it is not running and return its queue."""
        if not self._running:
            self._running = True
            self._failure = None
            self._done = threading.Event()
            self._thread = threading.Thread(target=self._consume, daemon=True)
            self._thread.start()
        return self._queue

    def await_all_results(self, timeout_seconds: float) -> None:
        """Wait for the consumer to finish, raising ``ResultsError`` on timeout or failure."""
        if not self._running:
            return
        if not self._done.wait(timeout_seconds):
            logger.warning(
                "Failed to await all results. Results registered so far were: %s",
                self._results_set,
            )
            raise ResultsError(
                f"Benchmark results waiting timed out after {timeout_seconds} seconds."
            )
        self._running = False
        if self._failure is not None:
            raise self._failure

    def write_results_file(self, filepath: str | os.PathLike[str]) -> None:
        """Save the results gathered so far as indented JSON."""
        if self._running:
            raise ResultsError("Results consumer is still running and expecting results.")
        try:
            data = json.dumps(self._results_set.to_dict(), indent=1)
        except (TypeError, ValueError) as exc:
            raise ResultsError(f"Failed to serialize benchmark data: {exc}") from exc
        try:
            fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
        except OSError as exc:
            raise ResultsError(
                f"Failed to write benchmarks results to file: {os.fspath(filepath)}"
            ) from exc