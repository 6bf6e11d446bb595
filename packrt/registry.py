"""Global registry of named callables and per-thread error reporting."""

from __future__ import annotations

import threading
from typing import Callable, Optional

__all__ = [
    "RuntimeAPIError",
    "Registry",
    "register_global",
    "get_global",
    "remove_global",
    "list_global_names",
    "set_last_error",
    "get_last_error",
]


class RuntimeAPIError(RuntimeError):
    """Raised when a runtime call fails; the message is kept as the last error."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        set_last_error(message)


class Registry:
    """A thread-safe mapping from names to callables."""

    def __init__(self) -> None:
        self._funcs: dict[str, Callable] = {}
        self._lock = threading.Lock()

    def register(self, name: str, func: Callable, override: bool = False) -> Callable:
        """Register ``func`` under ``name`` and return it.

        Raises RuntimeAPIError if the name is taken and ``override`` is false.
        """
        with self._lock:
            if name in self._funcs and not override:
                raise RuntimeAPIError(f"Global PackedFunc {name} is already registered")
            self._funcs[name] = func
        return func

    def remove(self, name: str) -> bool:
        """Remove ``name``; return whether it was registered."""
        with self._lock:
            return self._funcs.pop(name, None) is not None

    def get(self, name: str) -> Optional[Callable]:
        """Return the callable registered under ``name``, or None."""
        with self._lock:
            return self._funcs.get(name)

    def list_names(self) -> list[str]:
        """Return all registered names."""
        with self._lock:
            return list(self._funcs)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._funcs

    def __len__(self) -> int:
        with self._lock:
            return len(self._funcs)


_GLOBAL = Registry()


def register_global(name: str, func: Callable, override: bool = False) -> Callable:
    """Register ``func`` in the global registry."""
    return _GLOBAL.register(name, func, override)


def get_global(name: str) -> Optional[Callable]:
    """Look up a callable in the global registry."""
    return _GLOBAL.get(name)


def remove_global(name: str) -> bool:
    """Remove a name from the global registry."""
    return _GLOBAL.remove(name)


def list_global_names() -> list[str]:
    """List the names in the global registry."""
    return _GLOBAL.list_names()


_thread_state = threading.local()


def set_last_error(message: str) -> None:
    """Record the last error message for the calling thread."""
    _thread_state.last_error = str(message)


def get_last_error() -> str:
    """Return the last error message recorded by the calling thread."""
    return getattr(_thread_state, "last_error", "")