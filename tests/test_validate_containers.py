import os
import shutil
import threading

import pytest

from critools.context import TestContext
from critools.cri import (
    Container,
    ContainerState,
    ContainerStats,
    ContainerStatsFilter,
    ContainerStatus,
    ExecSyncResult,
    Image,
)
from critools.validate_containers import (
    DEFAULT_LOG,
    ContainerCheckError,
    check_start_container,
    check_stop_container,
    container_found,
    create_host_path,
    create_log_container,
    create_symlink,
    exec_sync_container,
    get_container_status,
    list_container_for_id,
    list_container_stats,
    list_container_stats_for_id,
    path_exists,
    remove_container,
    stat_found,
    stop_container,
    verify_exec_sync_output,
    wait_for_state,
)


class FakeRuntime:
    def __init__(self, exec_result=None, stop_event=None):
        self.statuses = {}
        self.configs = {}
        self.exec_result = exec_result or ExecSyncResult()
        self.stop_event = stop_event
        self.stats_filters = []

    def add(self, container_id, state=ContainerState.CONTAINER_CREATED):
        self.statuses[container_id] = ContainerStatus(id=container_id, state=state)

    def create_container(self, pod_id, config, pod_config):
        container_id = "c-" + config.metadata.name
        self.configs[container_id] = config
        self.add(container_id)
        return container_id

    def start_container(self, container_id):
        self.statuses[container_id].state = ContainerState.CONTAINER_RUNNING

    def stop_container(self, container_id, timeout):
        if self.stop_event is not None:
            self.stop_event.wait()
        self.statuses[container_id].state = ContainerState.CONTAINER_EXITED

    def remove_container(self, container_id):
        del self.statuses[container_id]

    def container_status(self, container_id, verbose):
        return self.statuses.get(container_id)

    def list_containers(self, filter):
        return [Container(id=cid) for cid in self.statuses if not filter.id or cid == filter.id]

    def exec_sync(self, container_id, command, timeout):
        return self.exec_result

    def container_stats(self, container_id):
        return ContainerStats(id=container_id)

    def list_container_stats(self, filter):
        self.stats_filters.append(filter)
        return [ContainerStats(id=cid) for cid in self.statuses]


class FakeImages:
    def image_status(self, image, verbose):
        return Image(id="img", repo_tags=[image.image])


def test_container_and_stat_found():
    containers = [Container(id="a"), Container(id="b")]
    assert container_found(containers, "b")
    assert not container_found(containers, "z")
    stats = [ContainerStats(id="a")]
    assert stat_found(stats, "a")
    assert not stat_found(stats, "b")


def test_get_container_status_missing_raises():
    with pytest.raises(ContainerCheckError):
        get_container_status(FakeRuntime(), "nope")


def test_start_stop_remove_lifecycle():
    rt = FakeRuntime()
    rt.add("c1")
    check_start_container(rt, "c1", timeout=1, interval=0.01)
    assert rt.statuses["c1"].state == ContainerState.CONTAINER_RUNNING
    check_stop_container(rt, "c1", timeout=1, interval=0.01)
    assert rt.statuses["c1"].state == ContainerState.CONTAINER_EXITED
    remove_container(rt, "c1")
    assert list_container_for_id(rt, "c1") == []


def test_wait_for_state_times_out():
    rt = FakeRuntime()
    rt.add("c1")
    with pytest.raises(ContainerCheckError):
        wait_for_state(rt, "c1", ContainerState.CONTAINER_RUNNING, timeout=0.05, interval=0.01)


def test_stop_container_times_out():
    release = threading.Event()
    rt = FakeRuntime(stop_event=release)
    rt.add("c1", ContainerState.CONTAINER_RUNNING)
    try:
        with pytest.raises(ContainerCheckError):
            stop_container(rt, "c1", 0.05)
    finally:
        release.set()


def test_exec_sync_container_returns_stdout():
    rt = FakeRuntime(exec_result=ExecSyncResult(stdout=b"hello"))
    assert exec_sync_container(rt, "c1", ["echo", "-n", "hello"]) == "hello"
    verify_exec_sync_output(rt, "c1", ["echo", "-n", "hello"], "hello")
    with pytest.raises(ContainerCheckError):
        verify_exec_sync_output(rt, "c1", ["echo"], "other")


def test_exec_sync_container_rejects_stderr():
    rt = FakeRuntime(exec_result=ExecSyncResult(stdout=b"x", stderr=b"boom"))
    with pytest.raises(ContainerCheckError):
        exec_sync_container(rt, "c1", ["true"])


def test_create_host_path_and_symlink():
    host_path, flag = create_host_path("pod1")
    try:
        assert os.path.basename(host_path).startswith("testpod1")
        assert os.path.isfile(os.path.join(host_path, flag))
        link = create_symlink(host_path)
        try:
            assert link == host_path + "-symlink"
            assert os.path.realpath(link) == os.path.realpath(host_path)
        finally:
            os.remove(link)
    finally:
        shutil.rmtree(host_path)


def test_path_exists(tmp_path):
    assert path_exists(str(tmp_path))
    assert not path_exists(str(tmp_path / "missing"))


def test_create_log_container():
    rt = FakeRuntime()
    context = TestContext()
    context.apply_platform_defaults("linux")
    log_path, container_id = create_log_container(
        rt, FakeImages(), "container-with-log-test-", "pod", None, context
    )
    config = rt.configs[container_id]
    assert log_path == config.metadata.name + ".log"
    assert config.metadata.name.startswith("container-with-log-test-")
    assert DEFAULT_LOG in config.command[-1]


def test_container_stats_listing():
    rt = FakeRuntime()
    rt.add("a")
    rt.add("b")
    assert list_container_stats_for_id(rt, "a").id == "a"
    flt = ContainerStatsFilter(id="a")
    stats = list_container_stats(rt, flt)
    assert stat_found(stats, "b")
    assert rt.stats_filters == [flt]