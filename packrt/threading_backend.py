"""Worker thread groups, core ranking and the concurrency limit."""

from __future__ import annotations

import contextlib
import logging
import os
import platform
import re
import threading
import time
from enum import IntEnum
from typing import Callable, Iterable, Optional

__all__ = [
    "AffinityMode",
    "ThreadGroup",
    "max_concurrency",
    "yield_thread",
    "rank_cores",
]

logger = logging.getLogger(__name__)

_ATOI_RE = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)")


class AffinityMode(IntEnum):
    """Which cores the workers prefer: the fastest or the slowest."""

    BIG = 1
    LITTLE = -1


def _atoi(text: str) -> int:
    """Parse a leading integer the way C's ``atoi`` does; 0 if there is none."""
    match = _ATOI_RE.match(text)
    return int(match.group(1)) if match else 0


def max_concurrency() -> int:
    """Return the number of worker threads to use, at least 1.

    ``PACKRT_NUM_THREADS`` wins, then ``OMP_NUM_THREADS``; otherwise the
    number of logical CPUs, halved on x86-64 to ignore hyper-threading.
    """
    value = os.environ.get("PACKRT_NUM_THREADS")
    if value is None:
        value = os.environ.get("OMP_NUM_THREADS")
    if value is not None:
        count = _atoi(value)
    else:
        count = os.cpu_count() or 0
        if platform.machine().lower() in ("x86_64", "amd64"):
            count //= 2
    return max(count, 1)


def yield_thread() -> None:
    """Let other threads run."""
    time.sleep(0)


def rank_cores(max_freqs: Iterable[tuple[int, int]]) -> tuple[list[int], int, int]:
    """Order cores by maximum frequency and count the big and little ones.

    ``max_freqs`` holds ``(core_id, frequency)`` pairs. Cores are sorted by
    frequency, highest first, ties by core id. Returns the core order, the
    number of cores at the highest frequency and, when that differs from the
    lowest, the number at the lowest.
    """
    ranked = sorted(max_freqs, key=lambda item: (-item[1], item[0]))
    if not ranked:
        return [], 0, 0
    big_freq = ranked[0][1]
    little_freq = ranked[-1][1]
    order = [core for core, _ in ranked]
    big_count = sum(1 for _, freq in ranked if freq == big_freq)
    little_count = 0
    if big_freq != little_freq:
        little_count = sum(1 for _, freq in ranked if freq == little_freq)
    if big_count + little_count != len(order):
        logger.warning("more than two frequencies detected!")
    return order, big_count, little_count


def _read_max_freqs() -> list[tuple[int, int]]:
    freqs = []
    for core in range(os.cpu_count() or 0):
        path = f"/sys/devices/system/cpu/cpu{core}/cpufreq/cpuinfo_max_freq"
        try:
            with open(path, encoding="ascii") as fh:
                content = fh.read().split()
        except OSError:
            freqs.append((core, 0))
            continue
        try:
            freqs.append((core, int(content[0])))
        except (IndexError, ValueError):
            freqs.append((core, -1))
    return freqs


def _bind(native_id: Optional[int], core: int) -> None:
    if native_id is None:
        return
    with contextlib.suppress(OSError, ValueError):
        os.sched_setaffinity(native_id, {core})


class ThreadGroup:
    """A fixed set of worker threads, each running ``worker_callback(index)``.

    With ``exclude_worker0`` the calling thread stands in for worker 0 and
    no thread is started for it.
    """

    def __init__(
        self,
        num_workers: int,
        worker_callback: Callable[[int], None],
        exclude_worker0: bool = False,
    ) -> None:
        if num_workers < 1:
            raise ValueError("Requested a non-positive number of worker threads.")
        self.num_workers = num_workers
        self._threads = [
            threading.Thread(
                target=worker_callback,
                args=(index,),
                name=f"packrt-worker-{index}",
                daemon=True,
            )
            for index in range(int(exclude_worker0), num_workers)
        ]
        for thread in self._threads:
            thread.start()
        self._sorted_order, self._big_count, self._little_count = rank_cores(
            _read_max_freqs()
        )

    def join(self) -> None:
        """Wait for every worker thread to finish."""
        for thread in self._threads:
            if thread.is_alive():
                thread.join()

    def configure(self, mode: int, nthreads: int, exclude_worker0: bool) -> int:
        """Choose how many workers to use and bind them to cores.

        Binding happens unless ``PACKRT_BIND_THREADS`` is set to something
        other than 1. Returns the number of workers to use.
        """
        if mode == AffinityMode.LITTLE:
            used = self._little_count
        elif mode == AffinityMode.BIG:
            used = self._big_count
        else:
            used = max_concurrency()
        if nthreads:
            used = nthreads
        used = min(self.num_workers, used)

        value = os.environ.get("PACKRT_BIND_THREADS")
        if value is None or _atoi(value) == 1:
            if len(self._sorted_order) >= self.num_workers:
                self._set_affinity(exclude_worker0, mode == AffinityMode.LITTLE)
            else:
                logger.warning(
                    "The thread affinity cannot be set when the number of workers "
                    "is larger than the number of available cores in the system."
                )
        return used

    def _set_affinity(self, exclude_worker0: bool, reverse: bool) -> None:
        if not hasattr(os, "sched_setaffinity"):
            return
        order = self._sorted_order
        offset = int(exclude_worker0)
        for index, thread in enumerate(self._threads):
            if reverse:
                core = order[len(order) - (index + offset) - 1]
            else:
                core = order[index + offset]
            _bind(thread.native_id, core)
        if exclude_worker0:
            _bind(threading.get_native_id(), order[-1] if reverse else order[0])