import threading

import pytest

from packrt.threading_backend import (
    AffinityMode,
    ThreadGroup,
    max_concurrency,
    rank_cores,
    yield_thread,
)


@pytest.fixture(autouse=True)
def _no_binding(monkeypatch):
    monkeypatch.setenv("PACKRT_BIND_THREADS", "0")


def test_max_concurrency_from_own_variable(monkeypatch):
    monkeypatch.setenv("PACKRT_NUM_THREADS", "3")
    monkeypatch.setenv("OMP_NUM_THREADS", "7")
    assert max_concurrency() == 3


def test_max_concurrency_falls_back_to_omp(monkeypatch):
    monkeypatch.delenv("PACKRT_NUM_THREADS", raising=False)
    monkeypatch.setenv("OMP_NUM_THREADS", "5")
    assert max_concurrency() == 5


@pytest.mark.parametrize("value", ["0", "-4", "abc", ""])
def test_max_concurrency_is_at_least_one(monkeypatch, value):
    monkeypatch.setenv("PACKRT_NUM_THREADS", value)
    assert max_concurrency() == 1


def test_max_concurrency_reads_leading_digits(monkeypatch):
    monkeypatch.setenv("PACKRT_NUM_THREADS", " 6threads")
    assert max_concurrency() == 6


def test_max_concurrency_default_is_positive(monkeypatch):
    monkeypatch.delenv("PACKRT_NUM_THREADS", raising=False)
    monkeypatch.delenv("OMP_NUM_THREADS", raising=False)
    assert max_concurrency() >= 1


def test_yield_thread_returns_none():
    assert yield_thread() is None


def test_rank_cores_big_and_little():
    order, big, little = rank_cores([(0, 100), (1, 200), (2, 200), (3, 100)])
    assert order == [1, 2, 0, 3]
    assert (big, little) == (2, 2)


def test_rank_cores_uniform_frequency():
    order, big, little = rank_cores([(2, 50), (0, 50), (1, 50)])
    assert order == [0, 1, 2]
    assert big == 3
    assert little == 0


def test_rank_cores_three_frequencies_count_extremes_only():
    order, big, little = rank_cores([(0, 10), (1, 30), (2, 20)])
    assert order == [1, 2, 0]
    assert big == 1 and little == 1
    assert big + little < len(order)


def test_rank_cores_empty():
    assert rank_cores([]) == ([], 0, 0)


def test_thread_group_runs_each_worker_once():
    seen = []
    lock = threading.Lock()

    def work(index):
        with lock:
            seen.append(index)

    group = ThreadGroup(3, work, exclude_worker0=False)
    group.join()
    assert sorted(seen) == [0, 1, 2]
    assert group.configure(AffinityMode.BIG, 3, False) == 3


def test_thread_group_excludes_worker_zero():
    seen = []
    lock = threading.Lock()

    def work(index):
        with lock:
            seen.append(index)

    group = ThreadGroup(3, work, exclude_worker0=True)
    group.join()
    assert sorted(seen) == [1, 2]
    assert group.configure(AffinityMode.BIG, 2, True) == 2


def test_thread_group_rejects_no_workers():
    with pytest.raises(ValueError):
        ThreadGroup(0, lambda index: None)


def test_configure_with_explicit_count_is_capped():
    group = ThreadGroup(2, lambda index: None, exclude_worker0=True)
    group.join()
    assert group.configure(AffinityMode.BIG, 1, True) == 1
    assert group.configure(AffinityMode.BIG, 10, True) == 2


def test_configure_modes_stay_within_workers():
    group = ThreadGroup(2, lambda index: None, exclude_worker0=True)
    group.join()
    for mode in (AffinityMode.BIG, AffinityMode.LITTLE, 0):
        assert 0 <= group.configure(mode, 0, True) <= 2