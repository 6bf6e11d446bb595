from collections import namedtuple

import pytest

from packrt.dtypes import DataType, TypeCode
from packrt.registry import RuntimeAPIError
from packrt.workspace_pool import WORKSPACE_PAGE_SIZE, WorkspacePool

Ctx = namedtuple("Ctx", "device_type device_id")


class FakeDevice:
    def __init__(self):
        self.allocs = []
        self.freed = []
        self.hints = []

    def alloc_data_space(self, ctx, nbytes, alignment, type_hint):
        buf = bytearray(nbytes)
        self.allocs.append(buf)
        self.hints.append(type_hint)
        return buf

    def free_data_space(self, ctx, ptr):
        self.freed.append(ptr)


CTX = Ctx(1, 0)


def test_page_rounding():
    dev = FakeDevice()
    pool = WorkspacePool(1, dev)
    assert len(pool.alloc_workspace(CTX, 1)) == 4096
    assert len(pool.alloc_workspace(CTX, 0)) == WORKSPACE_PAGE_SIZE
    assert len(pool.alloc_workspace(CTX, WORKSPACE_PAGE_SIZE + 1)) == 2 * WORKSPACE_PAGE_SIZE


def test_type_hint_is_bytes():
    dev = FakeDevice()
    WorkspacePool(1, dev).alloc_workspace(CTX, 10)
    assert dev.hints == [DataType(TypeCode.UINT, 8, 1)]


def test_reuse_after_free():
    dev = FakeDevice()
    pool = WorkspacePool(1, dev)
    first = pool.alloc_workspace(CTX, 100)
    pool.free_workspace(CTX, first)
    again = pool.alloc_workspace(CTX, 200)
    assert again is first
    assert len(dev.allocs) == 1


def test_grow_replaces_buffer():
    dev = FakeDevice()
    pool = WorkspacePool(1, dev)
    small = pool.alloc_workspace(CTX, WORKSPACE_PAGE_SIZE)
    pool.free_workspace(CTX, small)
    big = pool.alloc_workspace(CTX, 2 * WORKSPACE_PAGE_SIZE)
    assert big is not small
    assert dev.freed == [small]
    assert len(big) == 2 * WORKSPACE_PAGE_SIZE


def test_smallest_fit():
    dev = FakeDevice()
    pool = WorkspacePool(1, dev)
    a = pool.alloc_workspace(CTX, WORKSPACE_PAGE_SIZE)
    b = pool.alloc_workspace(CTX, 3 * WORKSPACE_PAGE_SIZE)
    c = pool.alloc_workspace(CTX, 2 * WORKSPACE_PAGE_SIZE)
    pool.free_workspace(CTX, a)
    pool.free_workspace(CTX, b)
    pool.free_workspace(CTX, c)
    assert pool.alloc_workspace(CTX, 2 * WORKSPACE_PAGE_SIZE) is c
    assert pool.alloc_workspace(CTX, 1) is a
    assert pool.alloc_workspace(CTX, 1) is b
    assert len(dev.allocs) == 3


def test_free_unknown_raises():
    pool = WorkspacePool(1, FakeDevice())
    pool.alloc_workspace(CTX, 1)
    with pytest.raises(RuntimeAPIError):
        pool.free_workspace(CTX, bytearray(4))


def test_free_on_unknown_device_raises():
    pool = WorkspacePool(1, FakeDevice())
    with pytest.raises(RuntimeAPIError):
        pool.free_workspace(Ctx(1, 3), bytearray(4))


def test_devices_have_separate_pools():
    dev = FakeDevice()
    pool = WorkspacePool(1, dev)
    x = pool.alloc_workspace(CTX, 1)
    pool.free_workspace(CTX, x)
    y = pool.alloc_workspace(Ctx(1, 1), 1)
    assert y is not x
    with pytest.raises(RuntimeAPIError):
        pool.free_workspace(CTX, y)


def test_release_requires_everything_freed():
    pool = WorkspacePool(1, FakeDevice())
    pool.alloc_workspace(CTX, 1)
    with pytest.raises(RuntimeAPIError):
        pool.release()


def test_release_frees_all_buffers():
    dev = FakeDevice()
    with WorkspacePool(1, dev) as pool:
        bufs = [pool.alloc_workspace(CTX, n * WORKSPACE_PAGE_SIZE) for n in (1, 2, 3)]
        for buf in reversed(bufs):
            pool.free_workspace(CTX, buf)
    assert sorted(map(id, dev.freed)) == sorted(map(id, dev.allocs))