"""Worker: fetches tasks from the coordinator and runs map or reduce on them."""

from __future__ import annotations

import json
import logging
import os
import socket
import tempfile
import threading
import time
from dataclasses import dataclass, field
from itertools import groupby
from operator import itemgetter
from typing import Any, Iterable, Iterator

from minimr.coordinator import KeyValue, Task, TaskType, coordinator_sock
from minimr.options import MapFunc, Option, Options, ReduceFunc

log = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_DELAY = 1.0


class RPCError(Exception):
    """Raised when a call to the coordinator cannot be completed."""


def ihash(key: str) -> int:
    """FNV-1a 32-bit hash of the key, masked to a non-negative int."""
    h = 0x811C9DC5
    for byte in key.encode("utf-8"):
        h ^= byte
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h & 0x7FFFFFFF


def _exchange(payload: bytes) -> dict[str, Any]:
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.connect(coordinator_sock())
        sock.sendall(payload)
        with sock.makefile("rb") as stream:
            line = stream.readline()
    if not line:
        raise RPCError("connection closed by coordinator")
    reply = json.loads(line)
    if "error" in reply:
        raise RPCError(reply["error"])
    return reply["result"]


def call(rpcname: str, args: dict[str, Any]) -> dict[str, Any]:
    """Send one request to the coordinator, retrying a few times before giving up."""
    payload = (json.dumps({"method": rpcname, "args": args}) + "\n").encode("utf-8")
    for attempt in range(1, _MAX_RETRIES + 1):
        try:
            return _exchange(payload)
        except (OSError, ValueError, RPCError) as exc:
            log.warning("call error (attempt %d/%d): %s", attempt, _MAX_RETRIES, exc)
            time.sleep(_RETRY_DELAY)
    raise RPCError(f"{rpcname} failed after {_MAX_RETRIES} attempts")


def _write_atomically(path: str, text: str) -> bool:
    directory = os.path.dirname(path) or "."
    try:
        fd, tmp = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", dir=directory)
    except OSError:
        log.warning("cannot create file %s", path)
        return False
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp, path)
    except OSError:
        log.warning("cannot create file %s", path)
        try:
            os.remove(tmp)
        except OSError:
            pass
        return False
    return True


def _decode_pairs(lines: Iterable[str]) -> Iterator[KeyValue]:
    """Yield pairs until the first record that does not decode."""
    for line in lines:
        try:
            record = json.loads(line)
            pair = KeyValue(record["Key"], record["Value"])
        except (ValueError, KeyError, TypeError):
            return
        yield pair


@dataclass
class Worker:
    """A process-local worker that loops asking the coordinator for work."""

    id: int = 0
    idle_interval: float = 1.0
    stop: threading.Event = field(default_factory=threading.Event)

    def run(self, mapf: MapFunc, reducef: ReduceFunc) -> None:
        """Request, execute and report tasks until the stop event is set."""
        while not self.stop.is_set():
            task = self.request_task()
            if task.type is TaskType.NO_TASK:
                self.stop.wait(self.idle_interval)
                continue
            if task.type is TaskType.MAP:
                success = self.map(mapf, task)
            elif task.type is TaskType.REDUCE:
                success = self.reduce(reducef, task)
            else:
                success = False
            self.report_task(task.task_id, success)

    def request_task(self) -> Task:
        """Ask the coordinator for a task."""
        reply = call("Coordinator.RequestTask", {})
        data = dict(reply["task"])
        data["type"] = TaskType(data["type"])
        return Task(**data)

    def report_task(self, task_id: int, success: bool) -> None:
        """Tell the coordinator how a task went."""
        call("Coordinator.ReportTask", {"task_id": task_id, "success": success})

    def map(self, mapf: MapFunc, task: Task) -> bool:
        """Run a map task, writing intermediate files mr-<map>-<reduce>."""
        try:
            with open(task.filename, encoding="utf-8", errors="replace") as handle:
                content = handle.read()
        except OSError:
            log.warning("cannot read file %s", task.filename)
            return False

        buckets: list[list[KeyValue]] = [[] for _ in range(task.n_reduce)]
        for key, value in mapf(task.filename, content):
            buckets[ihash(key) % task.n_reduce].append(KeyValue(key, value))

        for index, bucket in enumerate(buckets):
            text = "".join(
                json.dumps({"Key": key, "Value": value}, separators=(",", ":")) + "\n"
                for key, value in bucket
            )
            if not _write_atomically(f"mr-{task.task_id}-{index}", text):
                return False
        return True

    def reduce(self, reducef: ReduceFunc, task: Task) -> bool:
        """Run a reduce task over every map's output, writing mr-out-<reduce>."""
        intermediate: list[KeyValue] = []
        for map_id in range(task.n_map):
            filename = f"mr-{map_id}-{task.task_id}"
            try:
                with open(filename, encoding="utf-8") as handle:
                    intermediate.extend(_decode_pairs(handle))
            except OSError:
                log.warning("cannot open file %s", filename)
                return False

        intermediate.sort(key=itemgetter(0))
        lines = [
            f"{key} {reducef(key, [value for _, value in group])}\n"
            for key, group in groupby(intermediate, key=itemgetter(0))
        ]
        return _write_atomically(f"mr-out-{task.task_id}", "".join(lines))


def worker_main(*args: Option) -> None:
    """Start a worker with the given options and run it forever."""
    options = Options()
    for apply in args:
        apply(options)
    Worker().run(options.map_func, options.reduce_func)