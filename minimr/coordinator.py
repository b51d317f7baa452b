"""Coordinator: hands out map and reduce tasks and tracks their completion."""

from __future__ import annotations

import json
import logging
import os
import socketserver
import threading
import time
from dataclasses import asdict, dataclass
from enum import IntEnum
from typing import Any, Callable, Iterable, NamedTuple

log = logging.getLogger(__name__)

_sock_lock = threading.Lock()
_sock_path: str | None = None


class TaskType(IntEnum):
    MAP = 0
    REDUCE = 1
    NO_TASK = 2


@dataclass
class Task:
    type: TaskType
    task_id: int = 0
    filename: str = ""
    n_reduce: int = 0
    n_map: int = 0
    completed: bool = False


@dataclass
class TaskStatus:
    task_id: int
    start_time: float
    completed: bool = False
    filename: str = ""


class KeyValue(NamedTuple):
    key: str
    value: str


def coordinator_sock() -> str:
    """Return the coordinator's socket path, choosing one on first use."""
    global _sock_path
    with _sock_lock:
        if not _sock_path:
            _sock_path = f"/tmp/824-mr-{os.getuid()}-{time.time_ns()}"
        return _sock_path


def reset_coordinator_sock() -> None:
    """Forget the socket path so that the next call picks a fresh one."""
    global _sock_path
    with _sock_lock:
        _sock_path = None


def default_map(filename: str, contents: str) -> list[KeyValue]:
    return [KeyValue(word, "1") for word in contents.split()]


def default_reduce(key: str, values: list[str]) -> str:
    return str(len(values))


class _Handler(socketserver.StreamRequestHandler):
    """Serves newline-delimited JSON requests."""

    def handle(self) -> None:
        for line in self.rfile:
            try:
                request = json.loads(line)
                result = self.server.coordinator._dispatch(  # type: ignore[attr-defined]
                    request["method"], request.get("args") or {}
                )
                response: dict[str, Any] = {"result": result}
            except (ValueError, KeyError, TypeError) as exc:
                response = {"error": str(exc)}
            self.wfile.write((json.dumps(response) + "\n").encode("utf-8"))
            self.wfile.flush()


class Coordinator:
    """Master node that assigns tasks to workers and tracks the job's phase."""

    def __init__(
        self,
        files: Iterable[str],
        n_reduce: int,
        *,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        serve: bool = False,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._timeout = timeout
        now = clock()
        self._map_tasks = {
            i: TaskStatus(i, now, filename=name) for i, name in enumerate(files)
        }
        self._reduce_tasks: dict[int, TaskStatus] = {}
        self.n_map = len(self._map_tasks)
        self.n_reduce = n_reduce
        self._phase = TaskType.MAP
        self._completed = 0
        self._server: socketserver.ThreadingUnixStreamServer | None = None
        self._thread: threading.Thread | None = None
        if serve:
            self._serve()

    def _pending(self) -> dict[int, TaskStatus]:
        if self._phase is TaskType.MAP:
            return self._map_tasks
        if self._phase is TaskType.REDUCE:
            return self._reduce_tasks
        return {}

    def request_task(self) -> Task:
        """Hand out a task whose previous assignment has timed out, or NO_TASK."""
        with self._lock:
            now = self._clock()
            for task_id, status in self._pending().items():
                if not status.completed and now - status.start_time > self._timeout:
                    status.start_time = now
                    return Task(self._phase, task_id, status.filename, self.n_reduce, self.n_map)
            return Task(TaskType.NO_TASK)

    def report_task(self, task_id: int, success: bool) -> None:
        """Record that a worker finished a task; failures are ignored."""
        if not success:
            return
        with self._lock:
            status = self._pending().get(task_id)
            if status is None or status.completed:
                return
            status.completed = True
            self._completed += 1
            if self._phase is TaskType.MAP and self._completed == self.n_map:
                self._phase = TaskType.REDUCE
                self._completed = 0
                now = self._clock()
                self._reduce_tasks = {i: TaskStatus(i, now) for i in range(self.n_reduce)}
            elif self._phase is TaskType.REDUCE and self._completed == self.n_reduce:
                self._phase = TaskType.NO_TASK

    def done(self) -> bool:
        """Return True once every reduce task has completed."""
        with self._lock:
            return self._phase is TaskType.NO_TASK

    def cleanup(self) -> None:
        """Stop the RPC server and remove its socket file."""
        with self._lock:
            server, thread = self._server, self._thread
            self._server = self._thread = None
        if server is not None:
            server.shutdown()
            server.server_close()
        if thread is not None:
            thread.join()
        try:
            os.remove(coordinator_sock())
        except FileNotFoundError:
            pass

    def __enter__(self) -> Coordinator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

    def _dispatch(self, method: str, args: dict[str, Any]) -> dict[str, Any]:
        if method == "Coordinator.RequestTask":
            task = self.request_task()
            return {"task": {**asdict(task), "type": int(task.type)}}
        if method == "Coordinator.ReportTask":
            self.report_task(int(args["task_id"]), bool(args["success"]))
            return {}
        raise ValueError(f"unknown method {method!r}")

    def _serve(self) -> None:
        path = coordinator_sock()
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("remove socket file error: %s", exc)
        server = socketserver.ThreadingUnixStreamServer(path, _Handler)
        server.daemon_threads = True
        server.coordinator = self  # type: ignore[attr-defined]
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        with self._lock:
            self._server, self._thread = server, thread
        thread.start()


def make_coordinator(files: Iterable[str], n_reduce: int) -> Coordinator:
    """Create a coordinator for the given input files and start serving it."""
    return Coordinator(files, n_reduce, serve=True)