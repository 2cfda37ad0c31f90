import json

import pytest

from critools.results import (
    LifecycleBenchmarkDatapoint,
    LifecycleBenchmarksResultsManager,
    LifecycleBenchmarksResultsSet,
    ResultsError,
)


def _results_set(names=("CreatePod", "StatusPod", "StopPod", "RemovePod")):
    return LifecycleBenchmarksResultsSet(operations_names=list(names), num_parallel=2)


def _point(index):
    return LifecycleBenchmarkDatapoint(
        sample_index=index,
        start_time=100 + index,
        end_time=200 + index,
        operations_durations_ns=[1, 2, 3, 4],
        meta_info={"podId": f"pod-{index}"},
    )


def test_datapoint_json_keys():
    data = _point(3).to_dict()
    assert data == {
        "sampleIndex": 3,
        "startTime": 103,
        "endTime": 203,
        "operationsDurationsNs": [1, 2, 3, 4],
        "metaInfo": {"podId": "pod-3"},
    }


def test_missing_datapoints_become_empty_list():
    results = LifecycleBenchmarksResultsSet(operations_names=["ListImages"], datapoints=None)
    manager = LifecycleBenchmarksResultsManager(results, 5)
    assert manager.results_set.datapoints == []


def test_consumer_collects_all_results():
    manager = LifecycleBenchmarksResultsManager(_results_set(), 5)
    channel = manager.start_results_consumer()
    points = [_point(i) for i in range(3)]
    for point in points:
        channel.put(point)
    channel.put(None)
    manager.await_all_results(5)
    assert manager.results_set.datapoints == points


def test_start_twice_returns_same_queue():
    manager = LifecycleBenchmarksResultsManager(_results_set(), 5)
    first = manager.start_results_consumer()
    second = manager.start_results_consumer()
    assert first is second
    first.put(None)
    manager.await_all_results(5)
    assert manager.results_set.datapoints == []


def test_improper_count_is_still_registered():
    manager = LifecycleBenchmarksResultsManager(_results_set(), 5)
    channel = manager.start_results_consumer()
    short = LifecycleBenchmarkDatapoint(sample_index=0, operations_durations_ns=[5])
    channel.put(short)
    channel.put(None)
    manager.await_all_results(5)
    assert manager.results_set.datapoints == [short]


def test_await_without_consumer_returns():
    manager = LifecycleBenchmarksResultsManager(_results_set(), 5)
    assert manager.await_all_results(0.01) is None


def test_await_times_out():
    manager = LifecycleBenchmarksResultsManager(_results_set(), 10)
    channel = manager.start_results_consumer()
    with pytest.raises(ResultsError, match="waiting timed out"):
        manager.await_all_results(0.05)
    channel.put(None)
    manager.await_all_results(5)
    assert manager.results_set.datapoints == []


def test_consumer_times_out_without_results():
    manager = LifecycleBenchmarksResultsManager(_results_set(), 0.05)
    manager.start_results_consumer()
    with pytest.raises(ResultsError, match="Timed out after waiting"):
        manager.await_all_results(5)


def test_write_while_running_is_refused(tmp_path):
    manager = LifecycleBenchmarksResultsManager(_results_set(), 10)
    channel = manager.start_results_consumer()
    with pytest.raises(ResultsError, match="still running"):
        manager.write_results_file(tmp_path / "out.json")
    channel.put(None)
    manager.await_all_results(5)


def test_write_results_file_round_trip(tmp_path):
    manager = LifecycleBenchmarksResultsManager(_results_set(), 5)
    channel = manager.start_results_consumer()
    channel.put(_point(0))
    channel.put(None)
    manager.await_all_results(5)

    path = tmp_path / "pod_benchmark_data.json"
    manager.write_results_file(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == manager.results_set.to_dict()
    assert data["operationsNames"] == ["CreatePod", "StatusPod", "StopPod", "RemovePod"]
    assert data["numParallel"] == 2


def test_write_to_missing_directory_fails(tmp_path):
    manager = LifecycleBenchmarksResultsManager(_results_set(), 5)
    with pytest.raises(ResultsError, match="Failed to write benchmarks results"):
        manager.write_results_file(tmp_path / "no" / "such" / "out.json")