# minimr

minimr is a small MapReduce framework. A coordinator hands out map and reduce
tasks over a local Unix socket. Workers fetch those tasks, run them and report
the result.

## Modules

- `minimr.coordinator` provides `Coordinator`, `make_coordinator`, `Task`,
  `TaskType`, `TaskStatus`, `KeyValue`, `default_map`, `default_reduce`,
  `coordinator_sock` and `reset_coordinator_sock`.
- `minimr.options` provides `Options`, `with_map_func` and `with_reduce_func`.
- `minimr.worker` provides `Worker`, `worker_main`, `call`, `ihash` and
  `RPCError`.

## How a job runs

1. `make_coordinator(files, n_reduce)` creates a `Coordinator` and starts
   serving it on the socket path given by `coordinator_sock()`. Each input file
   becomes one map task.
2. A worker asks for a task. A task is handed out only when it is not completed
   and more than `timeout` seconds have passed since it was created or last
   handed out. `timeout` defaults to 10 seconds, so the first task is handed
   out ten seconds after it was created. If no task qualifies, the worker gets
   a `TaskType.NO_TASK` and waits `idle_interval` seconds, which default to one.
3. A map worker reads the input file and calls the map function, which returns
   a list of `KeyValue(key, value)` pairs. It uses `ihash(key) % n_reduce`
   (32-bit FNV-1a, masked to be non-negative) to place each pair in a bucket.
   It writes bucket `r` of map task `m` to `mr-<m>-<r>`, one JSON object
   `{"Key": ..., "Value": ...}` per line.
4. When every map task has reported success, the coordinator creates the
   `n_reduce` reduce tasks. A reduce worker reads `mr-<m>-<r>` for every map
   task `m` and stops reading a file at the first line that does not decode. It
   sorts the pairs by key and calls the reduce function once for each key. It
   writes `key result` lines to `mr-out-<r>`.
5. Once every reduce task has reported success, `Coordinator.done()` returns
   `True`.

Reports of failure are ignored, and so are reports for unknown or already
completed tasks. A failed task is handed out again once its timeout has passed.
Output files are written to a temporary file first and then moved into place,
in the current working directory.

## Usage

```python
import threading
import time

from minimr.coordinator import KeyValue, make_coordinator
from minimr.options import with_map_func, with_reduce_func
from minimr.worker import worker_main


def map_words(filename, contents):
    return [KeyValue(word, "1") for word in set(contents.split())]


def count(key, values):
    return str(len(values))


coordinator = make_coordinator(["a.txt", "b.txt"], 10)
for _ in range(3):
    threading.Thread(
        target=worker_main,
        args=(with_map_func(map_words), with_reduce_func(count)),
        daemon=True,
    ).start()

while not coordinator.done():
    time.sleep(1)
coordinator.cleanup()
```

If `worker_main` gets no options, it uses `default_map` and `default_reduce`.
Together these make a plain word count. Every whitespace-separated word is
emitted with the value `"1"`, and each key is reduced to the number of its
values.

`worker_main` runs forever. To stop a worker, create a `Worker` yourself, call
`run(mapf, reducef)` on it, and set its `stop` event. If the coordinator still
cannot be reached after three attempts, one second apart, `call` raises
`RPCError`, and the worker stops with that error.

A `Coordinator` can also be built directly:
`Coordinator(files, n_reduce, timeout=10.0, clock=time.monotonic, serve=False)`.
With `serve=False` it opens no socket, and `request_task()` and
`report_task(task_id, success)` can be called on it directly. It is a context
manager, and leaving the `with` block calls `cleanup()`. `cleanup()` stops the
server and removes the socket file.

## Wire format

Requests and replies are single lines of JSON sent over the Unix socket.

- A request is `{"method": ..., "args": {...}}`. The methods are
  `Coordinator.RequestTask` and `Coordinator.ReportTask`. `ReportTask` takes
  `task_id` and `success`.
- A reply is `{"result": ...}` or `{"error": "..."}`.

## Limitations

- The package has no command-line program. You start a job from Python, as
  shown above.
- The socket path is chosen once per process. It is
  `/tmp/824-mr-<uid>-<nanoseconds>`. `reset_coordinator_sock()` makes the next
  call to `coordinator_sock()` choose a new path. Workers find the coordinator
  only through this path, so they must run in the same process as the
  coordinator, for example as threads.
- Communication uses a local Unix socket only. Nothing runs across machines.
- Task state is kept in memory only and is lost when the process exits.

## Tests

```
pip install -e ".[test]"
pytest
```