"""Modules: collections of named functions that can import one another."""

from __future__ import annotations

import io
import logging
import struct
import threading
from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Callable, Optional

from .file_util import get_file_format
from .registry import RuntimeAPIError, get_global, get_last_error, register_global

__all__ = [
    "ModuleNode",
    "Module",
    "SystemLibModule",
    "MODULE_MAIN_SYMBOL",
    "MODULE_CTX_SYMBOL",
    "DEV_MBLOB_SYMBOL",
    "runtime_enabled",
    "import_module_blob",
    "get_system_lib",
    "register_system_lib_symbol",
]

logger = logging.getLogger(__name__)

MODULE_MAIN_SYMBOL = "__packrt_main__"
MODULE_CTX_SYMBOL = "__packrt_module_ctx"
DEV_MBLOB_SYMBOL = "__packrt_dev_mblob"

_U64 = struct.Struct("<Q")


class ModuleNode(ABC):
    """The implementation behind a :class:`Module`."""

    def __init__(self) -> None:
        self._imports: list[Module] = []
        self._import_cache: dict[str, Callable] = {}

    @property
    @abstractmethod
    def type_key(self) -> str:
        """Short name of the kind of module."""

    @abstractmethod
    def get_function(self, name: str, module: "Module") -> Optional[Callable]:
        """Return the function ``name``, or None; ``module`` is the owner handle."""

    def save_to_file(self, file_name: str, format: str) -> None:
        """Save the module to a file; unsupported by default."""
        raise RuntimeAPIError(f"Module[{self.type_key}] does not support SaveToFile")

    def save_to_binary(self, stream: BinaryIO) -> None:
        """Serialise the module to a stream; unsupported by default."""
        raise RuntimeAPIError(f"Module[{self.type_key}] does not support SaveToBinary")

    def get_source(self, format: str = "") -> str:
        """Return the source of the module; unsupported by default."""
        raise RuntimeAPIError(f"Module[{self.type_key}] does not support GetSource")

    def get_func_from_env(self, name: str) -> Callable:
        """Find ``name`` among the imports, then in the global registry."""
        cached = self._import_cache.get(name)
        if cached is not None:
            return cached
        for module in self._imports:
            func = module.get_function(name, False)
            if func is not None:
                self._import_cache[name] = func
                return func
        func = get_global(name)
        if func is None:
            raise RuntimeAPIError(
                f"Cannot find function {name} in the imported modules or global registry"
            )
        return func


class Module:
    """A handle on a :class:`ModuleNode`; equal handles share one node."""

    __slots__ = ("node",)

    def __init__(self, node: ModuleNode) -> None:
        self.node = node

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Module) and other.node is self.node

    def __hash__(self) -> int:
        return id(self.node)

    def __repr__(self) -> str:
        return f"Module({self.node.type_key!r})"

    def import_module(self, other: "Module") -> None:
        """Add ``other`` to this module's imports; raise on a cycle."""
        if self.node.type_key == "rpc":
            fimport = get_global("rpc._ImportRemoteModule")
            if fimport is None:
                raise RuntimeAPIError("rpc._ImportRemoteModule is not registered")
            fimport(self, other)
            return
        visited = {id(other.node)}
        stack = [other.node]
        while stack:
            node = stack.pop()
            for module in node._imports:
                if id(module.node) in visited:
                    continue
                visited.add(id(module.node))
                stack.append(module.node)
        if id(self.node) in visited:
            raise RuntimeAPIError("Cyclic dependency detected during import")
        self.node._imports.append(other)

    @classmethod
    def load_from_file(cls, file_name: str, format: str = "") -> "Module":
        """Load a module with the loader registered for its format."""
        fmt = get_file_format(file_name, format)
        if not fmt:
            raise RuntimeAPIError(f"Cannot deduce format of file {file_name}")
        if fmt in ("dll", "dylib", "dso"):
            fmt = "so"
        load_f_name = "module.loadfile_" + fmt
        loader = get_global(load_f_name)
        if loader is None:
            raise RuntimeAPIError(f"Loader of {format}({load_f_name}) is not presented.")
        return _as_module(loader(file_name, format))

    def get_function(self, name: str, query_imports: bool = False) -> Optional[Callable]:
        """Return function ``name``, optionally searching direct imports too."""
        func = self.node.get_function(name, self)
        if func is not None or not query_imports:
            return func
        for module in self.node._imports:
            func = module.node.get_function(name, module)
            if func is not None:
                return func
        return None

    def imports(self) -> list["Module"]:
        """Return the modules this one imports."""
        return list(self.node._imports)

    def type_key(self) -> str:
        """Return the kind of the underlying node."""
        return self.node.type_key


def _as_module(value: Any) -> Module:
    return value if isinstance(value, Module) else Module(value)


def _wrap_backend_func(func: Callable[..., Any], module: Optional[Module]) -> Callable:
    """Wrap a function that reports failure by returning a non-zero status."""

    def packed(*args: Any) -> None:
        ret = func(*args)
        if ret:
            raise RuntimeAPIError(
                f"backend function returned {ret}: {get_last_error()}"
            )

    packed.module = module  # keeps the owning module alive with the function
    return packed


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if data is None or len(data) != size:
        raise RuntimeAPIError("module blob ended early")
    return data


def _read_u64(stream: BinaryIO) -> int:
    return _U64.unpack(_read_exact(stream, _U64.size))[0]


def import_module_blob(blob: bytes) -> list[Module]:
    """Load the modules packed in a blob.

    The blob starts with its payload size as a little-endian 64-bit integer.
    The payload holds a module count, then for each module a length-prefixed
    type key followed by whatever that type's ``module.loadbinary_<key>``
    loader reads from the stream.
    """
    if blob is None:
        raise RuntimeAPIError("module blob is missing")
    raw = bytes(blob)
    if len(raw) < _U64.size:
        raise RuntimeAPIError("module blob is too short")
    (nbytes,) = _U64.unpack_from(raw)
    stream = io.BytesIO(raw[_U64.size:_U64.size + nbytes])
    modules = []
    for _ in range(_read_u64(stream)):
        tkey = _read_exact(stream, _read_u64(stream)).decode("utf-8")
        fkey = "module.loadbinary_" + tkey
        loader = get_global(fkey)
        if loader is None:
            raise RuntimeAPIError(f"Loader of {tkey}({fkey}) is not presented.")
        modules.append(_as_module(loader(stream)))
    return modules


class SystemLibModule(ModuleNode):
    """Module of functions registered symbol by symbol at start-up."""

    type_key = "system_lib"

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._table: dict[str, Callable] = {}
        self._blob: Optional[bytes] = None

    def get_function(self, name: str, module: Module) -> Optional[Callable]:
        with self._lock:
            if self._blob is not None:
                self._imports.extend(import_module_blob(self._blob))
                self._blob = None
            func = self._table.get(name)
        return None if func is None else _wrap_backend_func(func, module)

    def register_symbol(self, name: str, func: Any) -> None:
        """Record a symbol.

        The module-context symbol is a callable that receives this module.
        The device-blob symbol carries a module blob, imported on the first
        function lookup. Every other symbol is a function returning a status.
        """
        with self._lock:
            if name == MODULE_CTX_SYMBOL:
                func(self)
            elif name == DEV_MBLOB_SYMBOL:
                if self._blob is not None:
                    raise RuntimeAPIError("Resetting module blob?")
                self._blob = bytes(func)
            else:
                old = self._table.get(name)
                if old is not None and old is not func:
                    logger.warning(
                        "SystemLib symbol %s get overriden to a different function", name
                    )
                self._table[name] = func


_SYSTEM_LIB = SystemLibModule()


def get_system_lib() -> Module:
    """Return the process-wide system library module."""
    return Module(_SYSTEM_LIB)


def register_system_lib_symbol(name: str, func: Any) -> None:
    """Register a symbol in the process-wide system library."""
    _SYSTEM_LIB.register_symbol(name, func)


_TARGET_FUNCS = {
    "cuda": "device_api.gpu",
    "gpu": "device_api.gpu",
    "cl": "device_api.opencl",
    "opencl": "device_api.opencl",
    "sdaccel": "device_api.opencl",
    "gl": "device_api.opengl",
    "opengl": "device_api.opengl",
    "mtl": "device_api.metal",
    "metal": "device_api.metal",
    "vulkan": "device_api.vulkan",
    "stackvm": "codegen.build_stackvm",
    "rpc": "device_api.rpc",
    "vpi": "device_api.vpi",
    "verilog": "device_api.vpi",
}


def runtime_enabled(target: str) -> bool:
    """Return whether the runtime for ``target`` is available."""
    if target == "cpu":
        return True
    f_name = _TARGET_FUNCS.get(target)
    if f_name is None:
        if target.startswith("nvptx"):
            f_name = "device_api.gpu"
        elif target.startswith("rocm"):
            f_name = "device_api.rocm"
        elif target.startswith("llvm"):
            check = get_global("codegen.llvm_target_enabled")
            return False if check is None else bool(check(target))
        else:
            raise RuntimeAPIError(f"Unknown optional runtime {target}")
    return get_global(f_name) is not None


def _get_import(module: Module, index: int) -> Module:
    imports = module.imports()
    if not 0 <= index < len(imports):
        raise IndexError(f"import index {index} out of range")
    return imports[index]


register_global("module._Enabled", runtime_enabled, override=True)
register_global(
    "module._GetSource", lambda module, fmt="": module.node.get_source(fmt), override=True
)
register_global("module._ImportsSize", lambda module: len(module.imports()), override=True)
register_global("module._GetImport", _get_import, override=True)
register_global("module._GetTypeKey", lambda module: module.type_key(), override=True)
register_global("module._LoadFromFile", Module.load_from_file, override=True)
register_global(
    "module._SaveToFile",
    lambda module, file_name, fmt: module.node.save_to_file(file_name, fmt),
    override=True,
)
register_global("module._GetSystemLib", get_system_lib, override=True)