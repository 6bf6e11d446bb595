"""Pool of temporary workspace buffers, reused across allocations."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Any

from .dtypes import DataType, TypeCode
from .registry import RuntimeAPIError

__all__ = ["WorkspacePool", "WORKSPACE_PAGE_SIZE", "TEMP_ALLOCA_ALIGNMENT"]

WORKSPACE_PAGE_SIZE = 4 << 10
TEMP_ALLOCA_ALIGNMENT = 64

_BYTE_TYPE = DataType(TypeCode.UINT, 8, 1)


@dataclass
class _Entry:
    data: Any
    size: int


class _Pool:
    """Free and allocated lists for one device, each headed by a sentinel."""

    def __init__(self, ctx: Any) -> None:
        self.ctx = ctx
        self.free_list = [_Entry(None, 0)]
        self.allocated = [_Entry(None, 0)]

    def _new_space(self, device: Any, nbytes: int) -> _Entry:
        data = device.alloc_data_space(self.ctx, nbytes, TEMP_ALLOCA_ALIGNMENT, _BYTE_TYPE)
        return _Entry(data, nbytes)

    def alloc(self, device: Any, nbytes: int) -> Any:
        pages = -(-nbytes // WORKSPACE_PAGE_SIZE)
        nbytes = max(pages, 1) * WORKSPACE_PAGE_SIZE
        free = self.free_list
        if len(free) == 1:
            entry = self._new_space(device, nbytes)
        elif len(free) > 2 and free[-1].size >= nbytes:
            index = len(free) - 2
            while free[index].size >= nbytes:
                index -= 1
            entry = free.pop(index + 1)
        else:
            entry = free.pop()
            if entry.size < nbytes:
                device.free_data_space(self.ctx, entry.data)
                entry = self._new_space(device, nbytes)
        self.allocated.append(entry)
        return entry.data

    def free(self, data: Any) -> None:
        for index in range(len(self.allocated) - 1, 0, -1):
            if self.allocated[index].data is data:
                entry = self.allocated.pop(index)
                break
        else:
            raise RuntimeAPIError("trying to free things that has not been allocated")
        free = self.free_list
        if free[-1].size < entry.size:
            free.append(entry)
        elif len(free) == 2:
            free.insert(1, entry)
        else:
            free.insert(bisect.bisect_right(free, entry.size, key=lambda e: e.size), entry)

    def release(self, device: Any) -> None:
        if len(self.allocated) != 1:
            raise RuntimeAPIError("cannot release a pool with workspaces still in use")
        for entry in self.free_list[1:]:
            device.free_data_space(self.ctx, entry.data)
        self.free_list.clear()


class WorkspacePool:
    """Per-device pools of page-aligned temporary buffers.

    Optimised for few allocations released in reverse order and repeated
    with the same sizes across runs.
    """

    def __init__(self, device_type: Any, device: Any) -> None:
        self.device_type = device_type
        self.device = device
        self._pools: dict[int, _Pool] = {}

    def alloc_workspace(self, ctx: Any, size: int) -> Any:
        """Return a buffer of at least ``size`` bytes on ``ctx``'s device."""
        pool = self._pools.get(ctx.device_id)
        if pool is None:
            pool = self._pools[ctx.device_id] = _Pool(ctx)
        return pool.alloc(self.device, size)

    def free_workspace(self, ctx: Any, data: Any) -> None:
        """Give a buffer from :meth:`alloc_workspace` back to the pool."""
        pool = self._pools.get(ctx.device_id)
        if pool is None:
            raise RuntimeAPIError(f"no workspace pool for device {ctx.device_id}")
        pool.free(data)

    def release(self) -> None:
        """Hand every pooled buffer back to the device."""
        for device_id in list(self._pools):
            self._pools[device_id].release(self.device)
            del self._pools[device_id]

    def __enter__(self) -> "WorkspacePool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()