"""Device interfaces, the CPU device, and lookup of device implementations."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, NoReturn, Optional

from .dtypes import DataType
from .registry import RuntimeAPIError, get_global, register_global
from .workspace_pool import TEMP_ALLOCA_ALIGNMENT, WorkspacePool

__all__ = [
    "DeviceType",
    "DeviceAttrKind",
    "Context",
    "DeviceAPI",
    "CPUDeviceAPI",
    "RPC_SESS_MASK",
    "device_name",
    "get_device_api",
    "get_device_attr",
]

RPC_SESS_MASK = 128


class DeviceType(IntEnum):
    """Kind of device a tensor or call lives on."""

    CPU = 1
    GPU = 2
    CPU_PINNED = 3
    OPENCL = 4
    AOCL = 5
    SDACCEL = 6
    VULKAN = 7
    METAL = 8
    VPI = 9
    ROCM = 10
    OPENGL = 11
    EXT_DEV = 12


class DeviceAttrKind(IntEnum):
    """Attributes that can be queried from a device."""

    EXIST = 0
    MAX_THREADS_PER_BLOCK = 1
    WARP_SIZE = 2
    MAX_SHARED_MEMORY_PER_BLOCK = 3
    COMPUTE_VERSION = 4
    DEVICE_NAME = 5
    MAX_CLOCK_RATE = 6
    MULTI_PROCESSOR_COUNT = 7
    MAX_THREAD_DIMENSIONS = 8


_DEVICE_NAMES = {
    DeviceType.CPU: "cpu",
    DeviceType.GPU: "gpu",
    DeviceType.OPENCL: "opencl",
    DeviceType.SDACCEL: "sdaccel",
    DeviceType.AOCL: "aocl",
    DeviceType.VULKAN: "vulkan",
    DeviceType.METAL: "metal",
    DeviceType.VPI: "vpi",
    DeviceType.ROCM: "rocm",
    DeviceType.OPENGL: "opengl",
    DeviceType.EXT_DEV: "ext_dev",
}


def device_name(device_type: int) -> str:
    """Return the short name of a device type."""
    try:
        return _DEVICE_NAMES[DeviceType(int(device_type))]
    except (ValueError, KeyError):
        raise ValueError(f"unknown device type {device_type}") from None


@dataclass(frozen=True)
class Context:
    """A device type and the index of the device of that type."""

    device_type: int
    device_id: int = 0


_thread_state = threading.local()


def _no_stream_api(operation: str) -> NoReturn:
    raise RuntimeAPIError(f"Device does not support stream api. ({operation})")


class DeviceAPI(ABC):
    """Operations every device implementation provides."""

    @abstractmethod
    def set_device(self, ctx: Context) -> None:
        """Make ``ctx``'s device current."""

    @abstractmethod
    def get_attr(self, ctx: Context, kind: DeviceAttrKind) -> Any:
        """Return an attribute of the device, or None if it has none."""

    @abstractmethod
    def alloc_data_space(
        self, ctx: Context, nbytes: int, alignment: int, type_hint: DataType
    ) -> Any:
        """Allocate ``nbytes`` of device memory."""

    @abstractmethod
    def free_data_space(self, ctx: Context, ptr: Any) -> None:
        """Free memory from :meth:`alloc_data_space`."""

    @abstractmethod
    def copy_data_from_to(
        self,
        source: Any,
        source_offset: int,
        target: Any,
        target_offset: int,
        size: int,
        ctx_from: Context,
        ctx_to: Context,
        type_hint: DataType,
        stream: Any,
    ) -> None:
        """Copy ``size`` bytes between two buffers."""

    @abstractmethod
    def stream_sync(self, ctx: Context, stream: Any) -> None:
        """Wait until all work on ``stream`` has finished."""

    def set_stream(self, ctx: Context, stream: Any) -> None:
        """Record ``stream`` as the calling thread's stream for ``ctx``."""
        streams = getattr(_thread_state, "streams", None)
        if streams is None:
            streams = _thread_state.streams = {}
        streams[(int(ctx.device_type), int(ctx.device_id))] = stream

    def alloc_workspace(self, ctx: Context, size: int, type_hint: DataType) -> Any:
        """Allocate temporary memory; by default plain aligned data space."""
        return self.alloc_data_space(ctx, size, TEMP_ALLOCA_ALIGNMENT, type_hint)

    def free_workspace(self, ctx: Context, data: Any) -> None:
        """Free memory from :meth:`alloc_workspace`."""
        self.free_data_space(ctx, data)

    def create_stream(self, ctx: Context) -> Any:
        """Create a stream; unsupported by default."""
        _no_stream_api("create_stream")

    def free_stream(self, ctx: Context, stream: Any) -> None:
        """Free a stream; unsupported by default."""
        _no_stream_api("free_stream")

    def sync_stream_from_to(self, ctx: Context, event_src: Any, event_dst: Any) -> None:
        """Make one stream wait for another; unsupported by default."""
        _no_stream_api("sync_stream_from_to")


def _region(buffer: Any, offset: int, size: int, role: str) -> memoryview:
    view = memoryview(buffer).cast("B")[offset:offset + size]
    if offset < 0 or len(view) != size:
        raise ValueError(f"{role} buffer too small for {size} bytes at offset {offset}")
    return view


class CPUDeviceAPI(DeviceAPI):
    """Host memory backed by bytearrays, with a per-thread workspace pool."""

    def __init__(self) -> None:
        self._local = threading.local()
        self._copy_lock = threading.Lock()

    def set_device(self, ctx: Context) -> None:
        self._local.device_id = int(ctx.device_id)

    def get_attr(self, ctx: Context, kind: DeviceAttrKind) -> Any:
        if kind == DeviceAttrKind.EXIST:
            return 1
        return None

    def alloc_data_space(
        self, ctx: Context, nbytes: int, alignment: int, type_hint: DataType
    ) -> bytearray:
        if nbytes < 0 or alignment <= 0 or alignment & (alignment - 1):
            raise MemoryError(f"cannot allocate {nbytes} bytes aligned to {alignment}")
        return bytearray(nbytes)

    def free_data_space(self, ctx: Context, ptr: Any) -> None:
        if isinstance(ptr, bytearray):
            try:
                del ptr[:]
            except BufferError:
                # Still exported through a live view; the view keeps the memory.
                return

    def copy_data_from_to(
        self,
        source: Any,
        source_offset: int,
        target: Any,
        target_offset: int,
        size: int,
        ctx_from: Context,
        ctx_to: Context,
        type_hint: DataType,
        stream: Any,
    ) -> None:
        src = _region(source, source_offset, size, "source")
        dst = _region(target, target_offset, size, "target")
        with self._copy_lock:
            dst[:] = src

    def stream_sync(self, ctx: Context, stream: Any) -> None:
        # Host copies are synchronous; waiting on the lock drains any in flight.
        self._copy_lock.acquire()
        self._copy_lock.release()

    def _pool(self) -> WorkspacePool:
        pool = getattr(self._local, "pool", None)
        if pool is None:
            pool = self._local.pool = WorkspacePool(DeviceType.CPU, self)
        return pool

    def alloc_workspace(self, ctx: Context, size: int, type_hint: DataType) -> Any:
        return self._pool().alloc_workspace(ctx, size)

    def free_workspace(self, ctx: Context, data: Any) -> None:
        self._pool().free_workspace(ctx, data)


_CPU_API = CPUDeviceAPI()

_api_cache: dict[Any, DeviceAPI] = {}
_api_lock = threading.Lock()


def _lookup(name: str, allow_missing: bool) -> Optional[DeviceAPI]:
    factory = get_global("device_api." + name)
    if factory is None:
        if not allow_missing:
            raise RuntimeAPIError(f"Device API {name} is not enabled.")
        return None
    return factory()


def get_device_api(ctx: Context, allow_missing: bool = False) -> Optional[DeviceAPI]:
    """Return the implementation for ``ctx``'s device type.

    Raises RuntimeAPIError if none is registered, unless ``allow_missing``
    is true, in which case None is returned.
    """
    device_type = int(ctx.device_type)
    key = device_type if device_type < RPC_SESS_MASK else "rpc"
    api = _api_cache.get(key)
    if api is not None:
        return api
    with _api_lock:
        api = _api_cache.get(key)
        if api is not None:
            return api
        name = device_name(device_type) if key != "rpc" else "rpc"
        api = _lookup(name, allow_missing)
        if api is not None:
            _api_cache[key] = api
        return api


def get_device_attr(device_type: int, device_id: int, kind: int) -> Any:
    """Query an attribute; EXIST gives 0 for device types with no implementation."""
    ctx = Context(device_type, device_id)
    kind = DeviceAttrKind(int(kind))
    if kind == DeviceAttrKind.EXIST:
        api = get_device_api(ctx, allow_missing=True)
        return api.get_attr(ctx, kind) if api is not None else 0
    return get_device_api(ctx).get_attr(ctx, kind)


def _set_device(device_type: int, device_id: int) -> None:
    ctx = Context(device_type, device_id)
    get_device_api(ctx).set_device(ctx)


register_global("device_api.cpu", lambda: _CPU_API, override=True)
register_global("_GetDeviceAttr", get_device_attr, override=True)
register_global("__set_device", _set_device, override=True)