import os
from unittest.mock import patch

import pytest

from minimr.coordinator import (
    Coordinator,
    KeyValue,
    Task,
    TaskType,
    coordinator_sock,
    default_map,
    default_reduce,
    reset_coordinator_sock,
)
from minimr.worker import RPCError, call


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def fresh_sock():
    reset_coordinator_sock()
    yield
    reset_coordinator_sock()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def files():
    return ["a.txt", "b.txt", "c.txt"]


def test_no_task_before_timeout(files, clock):
    c = Coordinator(files, 2, clock=clock)
    assert c.request_task().type is TaskType.NO_TASK


def test_map_task_after_timeout(files, clock):
    c = Coordinator(files, 2, clock=clock)
    clock.advance(11)
    assert c.request_task() == Task(TaskType.MAP, 0, "a.txt", 2, 3)


def test_timeout_is_strict(files, clock):
    c = Coordinator(files, 2, clock=clock)
    clock.advance(10)
    assert c.request_task().type is TaskType.NO_TASK


def test_assigned_task_reissued_only_after_timeout(files, clock):
    c = Coordinator(files, 2, clock=clock)
    clock.advance(11)
    assert [c.request_task().task_id for _ in range(3)] == [0, 1, 2]
    assert c.request_task().type is TaskType.NO_TASK
    clock.advance(11)
    assert c.request_task().task_id == 0


def test_failed_report_does_not_complete(files, clock):
    c = Coordinator(["a.txt"], 1, clock=clock)
    c.report_task(0, False)
    clock.advance(11)
    assert c.request_task() == Task(TaskType.MAP, 0, "a.txt", 1, 1)


def test_transition_to_reduce_phase(files, clock):
    c = Coordinator(files, 2, clock=clock)
    for task_id in range(3):
        c.report_task(task_id, True)
    assert c.request_task().type is TaskType.NO_TASK
    clock.advance(11)
    assert c.request_task() == Task(TaskType.REDUCE, 0, "", 2, 3)
    assert c.request_task() == Task(TaskType.REDUCE, 1, "", 2, 3)


def test_duplicate_reports_counted_once(files, clock):
    c = Coordinator(files, 2, clock=clock)
    c.report_task(0, True)
    c.report_task(0, True)
    c.report_task(1, True)
    clock.advance(11)
    assert c.request_task() == Task(TaskType.MAP, 2, "c.txt", 2, 3)


def test_unknown_task_id_ignored(files, clock):
    c = Coordinator(["a.txt"], 1, clock=clock)
    c.report_task(99, True)
    clock.advance(11)
    assert c.request_task().type is TaskType.MAP


def test_done_after_all_reduces(files, clock):
    c = Coordinator(files, 2, clock=clock)
    for task_id in range(3):
        c.report_task(task_id, True)
    c.report_task(0, True)
    assert not c.done()
    c.report_task(1, True)
    assert c.done()
    clock.advance(11)
    assert c.request_task().type is TaskType.NO_TASK


def test_default_map_and_reduce():
    assert default_map("f", "the quick  the\nfox") == [
        KeyValue("the", "1"),
        KeyValue("quick", "1"),
        KeyValue("the", "1"),
        KeyValue("fox", "1"),
    ]
    assert default_reduce("the", ["1", "1", "1"]) == "3"
    assert default_reduce("x", []) == "0"


def test_coordinator_sock_is_stable_until_reset():
    first = coordinator_sock()
    assert first.startswith(f"/tmp/824-mr-{os.getuid()}-")
    assert coordinator_sock() == first
    reset_coordinator_sock()
    assert coordinator_sock() != first


def test_rpc_round_trip(files, clock):
    c = Coordinator(files, 2, clock=clock, serve=True)
    path = coordinator_sock()
    try:
        assert os.path.exists(path)
        reply = call("Coordinator.RequestTask", {})
        assert reply["task"]["type"] == int(TaskType.NO_TASK)
        clock.advance(11)
        reply = call("Coordinator.RequestTask", {})
        assert reply["task"] == {
            "type": int(TaskType.MAP),
            "task_id": 0,
            "filename": "a.txt",
            "n_reduce": 2,
            "n_map": 3,
            "completed": False,
        }
        assert call("Coordinator.ReportTask", {"task_id": 0, "success": True}) == {}
        with patch("minimr.worker.time.sleep"):
            with pytest.raises(RPCError):
                call("Coordinator.Unknown", {})
    finally:
        c.cleanup()
    assert not os.path.exists(path)


def test_context_manager_cleans_up(files, clock):
    coordinator = Coordinator(files, 1, clock=clock, serve=True)
    with coordinator:
        path = coordinator_sock()
        assert os.path.exists(path)
        clock.advance(11)
        reply = call("Coordinator.RequestTask", {})
        assert reply["task"]["type"] == int(TaskType.MAP)
        assert reply["task"]["filename"] == "a.txt"
    assert not os.path.exists(path)
    assert coordinator.done() is False