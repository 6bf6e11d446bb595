"""Pool of worker threads that runs a task function across task ids."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .registry import RuntimeAPIError, get_last_error, register_global
from .threading_backend import AffinityMode, ThreadGroup, max_concurrency

__all__ = [
    "ParallelGroupEnv",
    "ParallelLaunchError",
    "ThreadPool",
    "parallel_launch",
    "parallel_barrier",
    "config_threadpool",
]


class _SyncCounters:
    """One arrival counter per task, used by :func:`parallel_barrier`."""

    def __init__(self, num_task: int) -> None:
        self._counts = [0] * num_task
        self._cond = threading.Condition()

    def arrive(self, task_id: int) -> int:
        with self._cond:
            old = self._counts[task_id]
            self._counts[task_id] = old + 1
            self._cond.notify_all()
            return old

    def wait_past(self, task_id: int, old: int) -> None:
        with self._cond:
            self._cond.wait_for(
                lambda: all(
                    count > old
                    for index, count in enumerate(self._counts)
                    if index != task_id
                )
            )


@dataclass
class ParallelGroupEnv:
    """What a task sees of the group it runs in."""

    num_task: int
    sync_handle: Optional[_SyncCounters] = None


class ParallelLaunchError(RuntimeAPIError):
    """One or more tasks of a parallel launch failed."""

    def __init__(self, message: str, errors: dict[int, str]) -> None:
        super().__init__(message)
        self.errors = errors


TaskFunc = Callable[[int, ParallelGroupEnv, Any], Optional[int]]


class _Launcher:
    """Per-thread state of the launch a thread has started."""

    def __init__(self) -> None:
        self.is_worker = False
        self.func: Optional[TaskFunc] = None
        self.cdata: Any = None
        self.env = ParallelGroupEnv(0)
        self._cond = threading.Condition()
        self._pending = 0
        self._errors: dict[int, str] = {}

    def init(self, func: TaskFunc, cdata: Any, num_task: int, need_sync: bool) -> None:
        self.func = func
        self.cdata = cdata
        self.env = ParallelGroupEnv(
            num_task, _SyncCounters(num_task) if need_sync else None
        )
        with self._cond:
            self._pending = num_task
            self._errors = {}

    def run_task(self, task_id: int) -> None:
        message: Optional[str] = None
        try:
            status = self.func(task_id, self.env, self.cdata)
            if status:
                message = get_last_error()
        except Exception as exc:  # a failing task must not kill its worker
            message = str(exc) or type(exc).__name__
        with self._cond:
            if message is not None:
                self._errors[task_id] = message
            self._pending -= 1
            if self._pending == 0:
                self._cond.notify_all()

    def wait_for_jobs(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._pending == 0)
            errors, self._errors = self._errors, {}
        if errors:
            message = "".join(
                f"Task {task_id} error: {text}\n"
                for task_id, text in sorted(errors.items())
                if text
            )
            raise ParallelLaunchError(message, errors)


_launcher_local = threading.local()


def _launcher() -> _Launcher:
    launcher = getattr(_launcher_local, "launcher", None)
    if launcher is None:
        launcher = _launcher_local.launcher = _Launcher()
    return launcher


_STOP = object()


class ThreadPool:
    """Worker threads fed one queue each; the caller runs task 0 itself."""

    def __init__(self, num_workers: Optional[int] = None) -> None:
        self.num_workers = max_concurrency() if num_workers is None else num_workers
        self._exclude_worker0 = True
        self._closed = False
        self._queues: list[queue.SimpleQueue] = [
            queue.SimpleQueue() for _ in range(self.num_workers)
        ]
        self._threads = ThreadGroup(
            self.num_workers, self._run_worker, self._exclude_worker0
        )
        self._num_workers_used = self._threads.configure(
            AffinityMode.BIG, 0, self._exclude_worker0
        )

    @property
    def num_workers_used(self) -> int:
        """Number of workers a launch of zero tasks is spread over."""
        return self._num_workers_used

    def launch(
        self, func: TaskFunc, cdata: Any = None, num_task: int = 0, need_sync: bool = False
    ) -> None:
        """Run ``func(task_id, env, cdata)`` for every task id and wait.

        A task fails by raising or by returning a non-zero status, in which
        case the thread's last error is its message. Raises
        ParallelLaunchError if any task failed.
        """
        if self._closed:
            raise RuntimeAPIError("thread pool has been shut down")
        launcher = _launcher()
        if launcher.is_worker:
            raise RuntimeAPIError(
                "Cannot launch parallel job inside worker, consider fuse then parallel"
            )
        if num_task == 0:
            num_task = self._num_workers_used
        if need_sync and num_task > self._num_workers_used:
            raise RuntimeAPIError(
                "Request parallel sync task larger than number of threads used "
                f" workers={self._num_workers_used} request={num_task}"
            )
        if num_task < 0 or num_task > self.num_workers:
            raise RuntimeAPIError(
                f"cannot run {num_task} tasks on {self.num_workers} workers"
            )
        if num_task == 0:
            return
        launcher.init(func, cdata, num_task, bool(need_sync))
        for task_id in range(int(self._exclude_worker0), num_task):
            self._queues[task_id].put((launcher, task_id))
        if self._exclude_worker0:
            launcher.run_task(0)
        launcher.wait_for_jobs()

    def update_worker_configuration(self, mode: int, nthreads: int) -> None:
        """Re-bind workers and change how many are used."""
        used = self._threads.configure(mode, nthreads, self._exclude_worker0)
        self._num_workers_used = min(self.num_workers, used)

    def shutdown(self) -> None:
        """Stop every worker and wait for it to exit."""
        if self._closed:
            return
        self._closed = True
        for task_queue in self._queues:
            task_queue.put(_STOP)
        self._threads.join()

    def __enter__(self) -> "ThreadPool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _run_worker(self, worker_id: int) -> None:
        task_queue = self._queues[worker_id]
        _launcher().is_worker = True
        while True:
            item = task_queue.get()
            if item is _STOP:
                return
            launcher, task_id = item
            launcher.run_task(task_id)


_pool_local = threading.local()


def _thread_pool() -> ThreadPool:
    pool = getattr(_pool_local, "pool", None)
    if pool is None:
        pool = _pool_local.pool = ThreadPool()
    return pool


def parallel_launch(func: TaskFunc, cdata: Any = None, num_task: int = 0) -> None:
    """Run a synchronised launch on the calling thread's pool."""
    _thread_pool().launch(func, cdata, num_task, True)


def parallel_barrier(task_id: int, env: ParallelGroupEnv) -> None:
    """Block until every task of the group has reached this barrier."""
    counters = env.sync_handle
    if counters is None:
        raise RuntimeAPIError("barrier needs a launch with synchronisation")
    old = counters.arrive(task_id)
    counters.wait_past(task_id, old)


def config_threadpool(mode: int, nthreads: int) -> None:
    """Reconfigure the calling thread's pool."""
    _thread_pool().update_worker_configuration(mode, nthreads)


register_global("runtime.config_threadpool", config_threadpool, override=True)