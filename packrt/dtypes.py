"""Element data types of tensors."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum

__all__ = ["TypeCode", "DataType"]


class TypeCode(IntEnum):
    """Kind of element stored in a tensor."""

    INT = 0
    UINT = 1
    FLOAT = 2
    HANDLE = 3


_NAMES = {
    TypeCode.INT: "int",
    TypeCode.UINT: "uint",
    TypeCode.FLOAT: "float",
    TypeCode.HANDLE: "handle",
}

_PATTERN = re.compile(r"(uint|int|float|handle)(\d*)(?:x(\d+))?")


@dataclass(frozen=True)
class DataType:
    """An element type: kind, bit width and vector lanes."""

    code: TypeCode
    bits: int
    lanes: int = 1

    @classmethod
    def parse(cls, text: str) -> "DataType":
        """Parse names such as ``int32``, ``float32x4``, ``handle`` or ``bool``."""
        if text == "bool":
            return cls(TypeCode.UINT, 1, 1)
        match = _PATTERN.fullmatch(text)
        if not match:
            raise ValueError(f"unknown data type {text!r}")
        kind, bits, lanes = match.groups()
        code = {
            "int": TypeCode.INT,
            "uint": TypeCode.UINT,
            "float": TypeCode.FLOAT,
            "handle": TypeCode.HANDLE,
        }[kind]
        default_bits = 64 if code is TypeCode.HANDLE else 32
        return cls(code, int(bits) if bits else default_bits, int(lanes) if lanes else 1)

    def verify(self) -> None:
        """Raise ValueError unless this type can back a tensor."""
        if self.lanes < 1:
            raise ValueError(f"lanes must be at least 1, got {self.lanes}")
        allow_bool = self.code == TypeCode.UINT and self.bits == 1
        if not allow_bool and self.bits % 8 != 0:
            raise ValueError(f"bits must be a multiple of 8, got {self.bits}")
        if self.bits & (self.bits - 1) != 0:
            raise ValueError(f"bits must be a power of two, got {self.bits}")

    def __str__(self) -> str:
        if self.code == TypeCode.UINT and self.bits == 1 and self.lanes == 1:
            return "bool"
        name = _NAMES[TypeCode(self.code)]
        if self.code == TypeCode.HANDLE:
            return name
        text = f"{name}{self.bits}"
        if self.lanes != 1:
            text += f"x{self.lanes}"
        return text

    def itemsize(self) -> int:
        """Bytes taken by one element, rounding bits up to whole bytes."""
        return (self.bits * self.lanes + 7) // 8