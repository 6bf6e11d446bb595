"""N-dimensional arrays backed by device memory."""

from __future__ import annotations

import math
from typing import Any, Optional, Sequence

from .device_api import Context, DeviceType, get_device_api
from .dtypes import DataType
from .registry import RuntimeAPIError

__all__ = ["NDArray", "ALLOC_ALIGNMENT", "get_data_size", "get_data_alignment"]

ALLOC_ALIGNMENT = 64

_CPU_CTX = Context(DeviceType.CPU, 0)


def get_data_size(shape: Sequence[int], dtype: DataType) -> int:
    """Return the number of bytes taken by a compact array of ``shape``."""
    return math.prod(int(dim) for dim in shape) * dtype.itemsize()


def get_data_alignment(dtype: DataType) -> int:
    """Return the alignment used when allocating an array of ``dtype``."""
    return max((dtype.bits // 8) * dtype.lanes, ALLOC_ALIGNMENT)


class NDArray:
    """A tensor: a buffer on some device plus shape, element type and offset.

    Views share the buffer of the array they were taken from, which is kept
    in ``base``.
    """

    def __init__(
        self,
        data: Any,
        shape: Sequence[int],
        dtype: DataType,
        ctx: Context = _CPU_CTX,
        byte_offset: int = 0,
        strides: Optional[Sequence[int]] = None,
        base: Optional["NDArray"] = None,
    ) -> None:
        self.data = data
        self.shape = tuple(int(dim) for dim in shape)
        self.dtype = dtype
        self.ctx = ctx
        self.byte_offset = byte_offset
        self.strides = None if strides is None else tuple(strides)
        self.base = base

    @property
    def ndim(self) -> int:
        """Number of dimensions."""
        return len(self.shape)

    def nbytes(self) -> int:
        """Number of bytes covered by this array."""
        return get_data_size(self.shape, self.dtype)

    def __repr__(self) -> str:
        return (
            f"NDArray(shape={self.shape}, dtype={self.dtype}, "
            f"ctx={self.ctx}, byte_offset={self.byte_offset})"
        )

    @classmethod
    def empty(
        cls, shape: Sequence[int], dtype: DataType, ctx: Context = _CPU_CTX
    ) -> "NDArray":
        """Allocate an uninitialised array on ``ctx``'s device."""
        dtype.verify()
        size = get_data_size(shape, dtype)
        api = get_device_api(ctx)
        data = api.alloc_data_space(ctx, size, get_data_alignment(dtype), dtype)
        return cls(data, shape, dtype, ctx)

    def _view(self, shape: Sequence[int], dtype: DataType, byte_offset: int) -> "NDArray":
        dtype.verify()
        return NDArray(self.data, shape, dtype, self.ctx, byte_offset, base=self)

    def create_view(self, shape: Sequence[int], dtype: DataType) -> "NDArray":
        """Return a view of the same memory with another shape and type."""
        if self.strides is not None:
            raise RuntimeAPIError("Can only create view for compact tensor")
        view = self._view(shape, dtype, self.byte_offset)
        if view.nbytes() > self.nbytes():
            raise RuntimeAPIError(
                "Tries to create a view that has bigger memory than current one"
            )
        return view

    def create_offset_view(
        self, shape: Sequence[int], dtype: DataType, offset: int
    ) -> tuple["NDArray", int]:
        """Return a view starting ``offset`` bytes in, and the offset just past it."""
        if self.strides is not None:
            raise RuntimeAPIError("Can only create offset view for compact tensor")
        view = self._view(shape, dtype, self.byte_offset + offset)
        view_size = view.nbytes()
        if view_size + offset > self.nbytes():
            raise RuntimeAPIError(
                "Tries to create a view that has bigger memory than current one "
                f"with offset: {offset}"
            )
        return view, offset + view_size

    @staticmethod
    def copy_from_to(source: "NDArray", target: "NDArray", stream: Any = None) -> None:
        """Copy the content of ``source`` into ``target``; sizes must match."""
        from_size = source.nbytes()
        if from_size != target.nbytes():
            raise RuntimeAPIError("ArrayCopyFromTo: The size must exactly match")
        from_type = int(source.ctx.device_type)
        to_type = int(target.ctx.device_type)
        cpu = int(DeviceType.CPU)
        if not (from_type == to_type or from_type == cpu or to_type == cpu):
            raise RuntimeAPIError("Can not copy across different ctx types directly")
        ctx = source.ctx if from_type != cpu else target.ctx
        get_device_api(ctx).copy_data_from_to(
            source.data, source.byte_offset,
            target.data, target.byte_offset,
            from_size, source.ctx, target.ctx, source.dtype, stream,
        )

    def copy_from_bytes(self, data: Any) -> None:
        """Fill this array from a host buffer of exactly :meth:`nbytes` bytes."""
        view = memoryview(data).cast("B")
        if view.nbytes != self.nbytes():
            raise RuntimeAPIError("ArrayCopyFromBytes: size mismatch")
        get_device_api(self.ctx).copy_data_from_to(
            view, 0, self.data, self.byte_offset,
            view.nbytes, _CPU_CTX, self.ctx, self.dtype, None,
        )

    def copy_to_bytes(self) -> bytes:
        """Return the content of this array as host bytes."""
        size = self.nbytes()
        out = bytearray(size)
        get_device_api(self.ctx).copy_data_from_to(
            self.data, self.byte_offset, out, 0,
            size, self.ctx, _CPU_CTX, self.dtype, None,
        )
        return bytes(out)