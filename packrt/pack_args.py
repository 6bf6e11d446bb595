"""Adapt a call's arguments to the calling conventions of device functions.

Three conventions are supported:

* every argument passed one by one, narrowed to its declared width;
* only the non-buffer arguments, each narrowed to a 32-bit slot;
* every argument packed into one contiguous little-endian byte block.
"""

from __future__ import annotations

import math
import struct
from enum import Enum
from typing import Any, Callable, Sequence

from .dtypes import DataType, TypeCode

__all__ = [
    "ArgConvertCode",
    "get_arg_convert_code",
    "num_buffer_args",
    "pack_func_void_addr",
    "pack_func_non_buffer_arg",
    "pack_func_packed_arg",
]


class ArgConvertCode(Enum):
    """How one argument is converted before it reaches the device function."""

    INT64_TO_INT64 = 0
    INT64_TO_INT32 = 1
    INT64_TO_UINT32 = 2
    FLOAT64_TO_FLOAT32 = 3
    FLOAT64_TO_FLOAT64 = 4
    HANDLE_TO_HANDLE = 5


_INT_CODES = {64: ArgConvertCode.INT64_TO_INT64, 32: ArgConvertCode.INT64_TO_INT32}
_UINT_CODES = {32: ArgConvertCode.INT64_TO_UINT32}
_FLOAT_CODES = {64: ArgConvertCode.FLOAT64_TO_FLOAT64, 32: ArgConvertCode.FLOAT64_TO_FLOAT32}


def get_arg_convert_code(dtype: DataType) -> ArgConvertCode:
    """Return the conversion used for an argument of type ``dtype``."""
    if dtype.lanes != 1:
        raise ValueError("Cannot pass vector type argument to device function for now")
    code = None
    if dtype.code == TypeCode.INT:
        code = _INT_CODES.get(dtype.bits)
    elif dtype.code == TypeCode.UINT:
        code = _UINT_CODES.get(dtype.bits)
    elif dtype.code == TypeCode.FLOAT:
        code = _FLOAT_CODES.get(dtype.bits)
    elif dtype.code == TypeCode.HANDLE:
        code = ArgConvertCode.HANDLE_TO_HANDLE
    if code is None:
        raise ValueError(f"Cannot handle {dtype} as device function argument")
    return code


def num_buffer_args(arg_types: Sequence[DataType]) -> int:
    """Count the leading handle arguments; no handle may follow a non-handle."""
    base = next(
        (i for i, dtype in enumerate(arg_types) if dtype.code != TypeCode.HANDLE),
        len(arg_types),
    )
    if any(dtype.code == TypeCode.HANDLE for dtype in arg_types[base:]):
        raise ValueError("Device function need to be organized")
    return base


def _wrap_int(value: int, bits: int, signed: bool) -> int:
    value = int(value) % (1 << bits)
    if signed and value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _to_float32(value: float) -> float:
    try:
        return struct.unpack("<f", struct.pack("<f", float(value)))[0]
    except OverflowError:
        return math.copysign(math.inf, float(value))


def _convert(code: ArgConvertCode, value: Any) -> Any:
    if code is ArgConvertCode.INT64_TO_INT64:
        return _wrap_int(value, 64, True)
    if code is ArgConvertCode.INT64_TO_INT32:
        return _wrap_int(value, 32, True)
    if code is ArgConvertCode.INT64_TO_UINT32:
        return _wrap_int(value, 32, False)
    if code is ArgConvertCode.FLOAT64_TO_FLOAT32:
        return _to_float32(value)
    if code is ArgConvertCode.FLOAT64_TO_FLOAT64:
        return float(value)
    return value


def _check_count(args: Sequence[Any], needed: int) -> None:
    if len(args) < needed:
        raise TypeError(f"device function expects {needed} arguments, got {len(args)}")


def pack_func_void_addr(
    func: Callable[[tuple, list], Any], arg_types: Sequence[DataType]
) -> Callable[..., Any]:
    """Wrap ``func(args, converted)`` where every argument is narrowed to its type."""
    codes = [get_arg_convert_code(dtype) for dtype in arg_types]

    def packed(*args: Any) -> Any:
        _check_count(args, len(codes))
        converted = [_convert(code, value) for code, value in zip(codes, args)]
        return func(args, converted)

    return packed


def pack_func_non_buffer_arg(
    func: Callable[[tuple, list], Any], arg_types: Sequence[DataType]
) -> Callable[..., Any]:
    """Wrap ``func(args, values)`` where ``values`` holds the 32-bit non-buffer arguments."""
    base = num_buffer_args(arg_types)
    codes = [get_arg_convert_code(dtype) for dtype in arg_types[base:]]

    def packed(*args: Any) -> Any:
        _check_count(args, base + len(codes))
        values = []
        for code, value in zip(codes, args[base:]):
            if code in (ArgConvertCode.INT64_TO_INT64, ArgConvertCode.FLOAT64_TO_FLOAT64):
                raise ValueError("Do not support 64bit argument to device function")
            values.append(_convert(code, value))
        return func(args, values)

    return packed


_PACK_FORMATS = {
    ArgConvertCode.HANDLE_TO_HANDLE: "<Q",
    ArgConvertCode.INT64_TO_INT64: "<q",
    ArgConvertCode.FLOAT64_TO_FLOAT64: "<d",
    ArgConvertCode.INT64_TO_INT32: "<i",
    ArgConvertCode.INT64_TO_UINT32: "<I",
    ArgConvertCode.FLOAT64_TO_FLOAT32: "<f",
}


def _handle_value(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return _wrap_int(value, 64, False)
    raise TypeError(f"cannot pack handle argument of type {type(value).__name__}")


def pack_func_packed_arg(
    func: Callable[[tuple, bytes], Any], arg_types: Sequence[DataType]
) -> Callable[..., Any]:
    """Wrap ``func(args, block)`` where ``block`` packs all arguments contiguously."""
    codes = [get_arg_convert_code(dtype) for dtype in arg_types]

    def packed(*args: Any) -> Any:
        _check_count(args, len(codes))
        parts = []
        for code, value in zip(codes, args):
            if code is ArgConvertCode.HANDLE_TO_HANDLE:
                converted = _handle_value(value)
            else:
                converted = _convert(code, value)
            parts.append(struct.pack(_PACK_FORMATS[code], converted))
        return func(args, b"".join(parts))

    return packed