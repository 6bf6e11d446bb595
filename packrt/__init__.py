"""A small runtime for packed functions, modules, arrays and parallel tasks."""

__version__ = "0.1.0"

__all__ = [
    "device_api",
    "dtypes",
    "file_util",
    "module",
    "ndarray",
    "pack_args",
    "registry",
    "str_util",
    "thread_pool",
    "thread_storage_scope",
    "threading_backend",
    "workspace_pool",
]