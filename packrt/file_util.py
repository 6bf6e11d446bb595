"""File helpers and function metadata used when loading and saving modules."""

from __future__ import annotations

import contextlib
import json
import os
import struct
from dataclasses import dataclass, field
from typing import BinaryIO, Mapping

from .dtypes import DataType, TypeCode
from .registry import RuntimeAPIError

__all__ = [
    "FunctionInfo",
    "get_file_format",
    "get_cache_dir",
    "get_file_basename",
    "get_meta_file_path",
    "load_binary_from_file",
    "save_binary_to_file",
    "save_metadata_to_file",
    "load_metadata_from_file",
    "remove_file",
]

META_SUFFIX = ".packrt_meta.json"
METADATA_VERSION = "0.6.0"

_U64 = struct.Struct("<Q")
_DTYPE = struct.Struct("<BBH")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if data is None or len(data) != size:
        raise EOFError(f"expected {size} bytes, stream ended early")
    return data


def _write_str(stream: BinaryIO, text: str) -> None:
    raw = text.encode("utf-8")
    stream.write(_U64.pack(len(raw)))
    stream.write(raw)


def _read_str(stream: BinaryIO) -> str:
    (size,) = _U64.unpack(_read_exact(stream, _U64.size))
    return _read_exact(stream, size).decode("utf-8")


@dataclass
class FunctionInfo:
    """What a device needs to know about one function."""

    name: str
    arg_types: list[DataType] = field(default_factory=list)
    thread_axis_tags: list[str] = field(default_factory=list)

    def to_json(self) -> dict:
        """Return a JSON-ready dict describing this function."""
        return {
            "name": self.name,
            "arg_types": [str(t) for t in self.arg_types],
            "thread_axis_tags": list(self.thread_axis_tags),
        }

    @classmethod
    def from_json(cls, obj: Mapping) -> "FunctionInfo":
        """Build from a dict as produced by :meth:`to_json`."""
        missing = {"name", "arg_types", "thread_axis_tags"} - set(obj)
        if missing:
            raise ValueError(f"missing fields in function info: {sorted(missing)}")
        return cls(
            name=str(obj["name"]),
            arg_types=[DataType.parse(t) for t in obj["arg_types"]],
            thread_axis_tags=[str(t) for t in obj["thread_axis_tags"]],
        )

    def save(self, stream: BinaryIO) -> None:
        """Write this function info to a binary stream."""
        _write_str(stream, self.name)
        stream.write(_U64.pack(len(self.arg_types)))
        for dtype in self.arg_types:
            stream.write(_DTYPE.pack(int(dtype.code), dtype.bits, dtype.lanes))
        stream.write(_U64.pack(len(self.thread_axis_tags)))
        for tag in self.thread_axis_tags:
            _write_str(stream, tag)

    @classmethod
    def load(cls, stream: BinaryIO) -> "FunctionInfo":
        """Read a function info written by :meth:`save`; EOFError if truncated."""
        name = _read_str(stream)
        (count,) = _U64.unpack(_read_exact(stream, _U64.size))
        arg_types = []
        for _ in range(count):
            code, bits, lanes = _DTYPE.unpack(_read_exact(stream, _DTYPE.size))
            arg_types.append(DataType(TypeCode(code), bits, lanes))
        (count,) = _U64.unpack(_read_exact(stream, _U64.size))
        tags = [_read_str(stream) for _ in range(count)]
        return cls(name, arg_types, tags)


def get_file_format(file_name: str, format: str) -> str:
    """Return ``format``, or deduce it from the extension of ``file_name``."""
    if format:
        return format
    if ".signed.so" in file_name:
        return "sgx"
    pos = file_name.rfind(".")
    if pos < 0:
        return ""
    return file_name[pos + 1:]


def get_cache_dir() -> str:
    """Return the directory where cached files are kept."""
    explicit = os.environ.get("PACKRT_CACHE_DIR")
    if explicit:
        return explicit
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return xdg + "/packrt"
    home = os.environ.get("HOME")
    if home:
        return home + "/.cache/packrt"
    return "."


def get_file_basename(file_name: str) -> str:
    """Return the part of ``file_name`` after the last slash."""
    return file_name.rpartition("/")[2]


def get_meta_file_path(file_name: str) -> str:
    """Return the path of the metadata file that goes with ``file_name``."""
    pos = file_name.rfind(".")
    if pos < 0:
        return file_name + META_SUFFIX
    return file_name[:pos] + META_SUFFIX


def load_binary_from_file(file_name: str) -> bytes:
    """Read the whole file as bytes."""
    try:
        with open(file_name, "rb") as fh:
            return fh.read()
    except OSError as exc:
        raise RuntimeAPIError(f"Cannot open {file_name}") from exc


def save_binary_to_file(file_name: str, data: bytes) -> None:
    """Write ``data`` to ``file_name``, replacing its content."""
    try:
        with open(file_name, "wb") as fh:
            fh.write(data)
    except OSError as exc:
        raise RuntimeAPIError(f"Cannot open {file_name}") from exc


def save_metadata_to_file(file_name: str, fmap: Mapping[str, FunctionInfo]) -> None:
    """Save a function-info map as JSON."""
    doc = {
        "packrt_version": METADATA_VERSION,
        "func_info": {name: info.to_json() for name, info in fmap.items()},
    }
    try:
        with open(file_name, "w", encoding="utf-8") as fh:
            json.dump(doc, fh)
    except OSError as exc:
        raise RuntimeAPIError(f"Cannot open file {file_name}") from exc


def load_metadata_from_file(file_name: str) -> dict[str, FunctionInfo]:
    """Load a function-info map saved by :func:`save_metadata_to_file`."""
    try:
        with open(file_name, encoding="utf-8") as fh:
            doc = json.load(fh)
    except OSError as exc:
        raise RuntimeAPIError(f"Cannot open file {file_name}") from exc
    missing = {"packrt_version", "func_info"} - set(doc)
    if missing:
        raise ValueError(f"missing fields in metadata: {sorted(missing)}")
    return {name: FunctionInfo.from_json(obj) for name, obj in doc["func_info"].items()}


def remove_file(file_name: str) -> None:
    """Remove a file, ignoring failures."""
    with contextlib.suppress(OSError):
        os.remove(file_name)