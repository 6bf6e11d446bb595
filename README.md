# packrt

`packrt` is a small runtime layer in pure Python, with no dependencies outside
the standard library. It provides:

- `packrt.registry`: a global **registry** of named callables
  (`register_global`, `get_global`, `remove_global`, `list_global_names`), a
  `Registry` class for private registries, `RuntimeAPIError`, and a per-thread
  last error (`set_last_error`, `get_last_error`);
- `packrt.dtypes`: element **data types** (`DataType`, `TypeCode`) with parsing
  of names such as `"float32"`, `"int8x4"`, `"handle"` or `"bool"`;
- `packrt.device_api`: the `DeviceAPI` interface, a bytearray-backed
  `CPUDeviceAPI` with a per-thread workspace pool, `Context`, `DeviceType`,
  `DeviceAttrKind`, `get_device_api` and `get_device_attr`;
- `packrt.workspace_pool`: `WorkspacePool`, page-aligned temporary buffers
  reused across allocations;
- `packrt.ndarray`: **n-dimensional arrays** (`NDArray`) with views, offset
  views and byte copies;
- `packrt.module`: **modules** (`Module`, `ModuleNode`) that import one another
  with cycle detection, look functions up through their imports and the global
  registry, a process-wide system library (`get_system_lib`,
  `register_system_lib_symbol`), `import_module_blob` and `runtime_enabled`;
- `packrt.file_util`: `FunctionInfo` metadata, JSON metadata files and
  file-name helpers;
- `packrt.pack_args`: wrappers that narrow or pack call arguments for
  device-function calling conventions;
- `packrt.thread_storage_scope`: storage and thread **scope** parsing and
  launch geometry (`ThreadAxisConfig`);
- `packrt.threading_backend` and `packrt.thread_pool`: worker thread groups and
  a **thread pool** for parallel tasks with a barrier between tasks;
- `packrt.str_util`: `split_string`, `get_env_or_default`,
  `parse_int_or_float`.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Examples

### Registry

```python
from packrt.registry import register_global, get_global, list_global_names

register_global("math.add", lambda a, b: a + b, False)
add = get_global("math.add")
assert add(2, 3) == 5
assert "math.add" in list_global_names()
```

Registering a name a second time without `override=True` raises
`RuntimeAPIError`.

### Arrays

```python
from packrt.dtypes import DataType
from packrt.device_api import Context, DeviceType
from packrt.ndarray import NDArray

cpu = Context(DeviceType.CPU, 0)
arr = NDArray.empty([2, 3], DataType.parse("float32"), cpu)
arr.copy_from_bytes(bytes(arr.nbytes()))
view = arr.create_view([6], DataType.parse("float32"))
assert view.copy_to_bytes() == arr.copy_to_bytes()
```

`create_offset_view(shape, dtype, offset)` returns the view together with the
offset just past it, so consecutive views can be carved out of one buffer.

### Modules and the system library

```python
from packrt.module import get_system_lib, register_system_lib_symbol

register_system_lib_symbol("my_kernel", lambda *args: 0)
func = get_system_lib().get_function("my_kernel")
func(1, 2)  # raises RuntimeAPIError if the function returns a non-zero status
```

`Module.import_module` raises `RuntimeAPIError` when an import would create a
cycle.

### Launch geometry

```python
from packrt.thread_storage_scope import ThreadAxisConfig

config = ThreadAxisConfig(0, ["blockIdx.x", "threadIdx.x"])
load = config.extract([8, 32])
assert load.grid_dim(0) == 8 and load.block_dim(0) == 32
assert config.work_dim() == 1
```

### Parallel tasks

```python
from packrt.thread_pool import ThreadPool

pool = ThreadPool(4)
results = [0] * 4

def task(task_id, env, cdata):
    cdata[task_id] = task_id * task_id
    return 0

pool.launch(task, results, 4, False)
pool.shutdown()
assert results == [0, 1, 4, 9]
```

A task that returns a non-zero value or raises makes `launch` raise
`ParallelLaunchError`, whose message lists each failing task. In a launch with
synchronisation, tasks can wait for one another with `parallel_barrier`.

### Environment variables

- `PACKRT_NUM_THREADS` or `OMP_NUM_THREADS` limit the number of worker threads.
- `PACKRT_BIND_THREADS` set to anything other than `1` turns off core binding.
- `PACKRT_CACHE_DIR`, `XDG_CACHE_HOME` and `HOME` decide the cache directory
  returned by `packrt.file_util.get_cache_dir()`.

## What the package does not do

- Only the CPU device is implemented. Other device types are known by name,
  but `get_device_api` raises `RuntimeAPIError` for them unless an
  implementation is registered under `device_api.<name>`.
- No module loaders are registered. `Module.load_from_file` and
  `import_module_blob` work only with loaders you register as
  `module.loadfile_<format>` and `module.loadbinary_<type>`; shared libraries
  are not loaded.
- It does not read or decode video or other media, and it has no command-line
  tool.