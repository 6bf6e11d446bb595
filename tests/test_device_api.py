import pytest

from packrt.device_api import (
    RPC_SESS_MASK,
    Context,
    CPUDeviceAPI,
    DeviceAPI,
    DeviceAttrKind,
    DeviceType,
    device_name,
    get_device_api,
    get_device_attr,
)
from packrt.dtypes import DataType
from packrt.registry import RuntimeAPIError, get_global, register_global
from packrt.workspace_pool import TEMP_ALLOCA_ALIGNMENT, WORKSPACE_PAGE_SIZE

CPU = Context(DeviceType.CPU, 0)
U8 = DataType.parse("uint8")


class RecordingDevice(DeviceAPI):
    def __init__(self):
        self.allocs = []
        self.freed = []

    def set_device(self, ctx):
        self.current = ctx

    def get_attr(self, ctx, kind):
        return 1 if kind == DeviceAttrKind.EXIST else 99

    def alloc_data_space(self, ctx, nbytes, alignment, type_hint):
        self.allocs.append((nbytes, alignment, type_hint))
        return bytearray(nbytes)

    def free_data_space(self, ctx, ptr):
        self.freed.append(ptr)

    def copy_data_from_to(self, source, source_offset, target, target_offset, size,
                          ctx_from, ctx_to, type_hint, stream):
        pass

    def stream_sync(self, ctx, stream):
        pass


def test_device_names():
    assert device_name(DeviceType.CPU) == "cpu"
    assert device_name(DeviceType.GPU) == "gpu"
    assert device_name(DeviceType.METAL) == "metal"


def test_unknown_device_name_raises():
    with pytest.raises(ValueError):
        device_name(99)


def test_cpu_api_is_registered_and_cached():
    api = get_device_api(CPU)
    assert isinstance(api, CPUDeviceAPI)
    assert get_device_api(Context(DeviceType.CPU, 3)) is api


def test_missing_device_api():
    with pytest.raises(RuntimeAPIError, match="metal"):
        get_device_api(Context(DeviceType.METAL))
    assert get_device_api(Context(DeviceType.METAL), allow_missing=True) is None


def test_registered_factory_is_used():
    fake = RecordingDevice()
    register_global("device_api.vulkan", lambda: fake, override=True)
    assert get_device_api(Context(DeviceType.VULKAN)) is fake
    assert get_device_attr(DeviceType.VULKAN, 0, DeviceAttrKind.WARP_SIZE) == 99


def test_rpc_types_share_one_api():
    fake = RecordingDevice()
    register_global("device_api.rpc", lambda: fake, override=True)
    assert get_device_api(Context(RPC_SESS_MASK + 1)) is fake
    assert get_device_api(Context(RPC_SESS_MASK + 2)) is fake


def test_device_attr_exist():
    assert get_device_attr(DeviceType.CPU, 0, DeviceAttrKind.EXIST) == 1
    assert get_device_attr(DeviceType.METAL, 0, DeviceAttrKind.EXIST) == 0
    with pytest.raises(RuntimeAPIError):
        get_device_attr(DeviceType.METAL, 0, DeviceAttrKind.WARP_SIZE)


def test_registered_attr_function():
    assert get_global("_GetDeviceAttr")(int(DeviceType.CPU), 0, 0) == 1


def test_cpu_other_attr_is_none():
    assert CPUDeviceAPI().get_attr(CPU, DeviceAttrKind.WARP_SIZE) is None


def test_cpu_alloc_is_zeroed():
    buf = CPUDeviceAPI().alloc_data_space(CPU, 16, 64, U8)
    assert buf == bytearray(16)


def test_cpu_alloc_bad_alignment():
    with pytest.raises(MemoryError):
        CPUDeviceAPI().alloc_data_space(CPU, 16, 3, U8)


def test_cpu_copy_with_offsets():
    api = CPUDeviceAPI()
    source = bytearray(b"abcdefgh")
    target = bytearray(b"........")
    api.copy_data_from_to(source, 2, target, 1, 3, CPU, CPU, U8, None)
    assert target == bytearray(b".cde....")


def test_cpu_copy_out_of_range():
    api = CPUDeviceAPI()
    with pytest.raises(ValueError):
        api.copy_data_from_to(bytearray(4), 2, bytearray(8), 0, 4, CPU, CPU, U8, None)
    with pytest.raises(ValueError):
        api.copy_data_from_to(bytearray(8), 0, bytearray(4), 2, 4, CPU, CPU, U8, None)


def test_cpu_workspace_is_reused():
    api = CPUDeviceAPI()
    first = api.alloc_workspace(CPU, 10, U8)
    assert len(first) == WORKSPACE_PAGE_SIZE
    api.free_workspace(CPU, first)
    second = api.alloc_workspace(CPU, 20, U8)
    assert second is first


def test_cpu_free_unknown_workspace_raises():
    api = CPUDeviceAPI()
    api.alloc_workspace(CPU, 10, U8)
    with pytest.raises(RuntimeAPIError):
        api.free_workspace(CPU, bytearray(10))


def test_cpu_streams_unsupported():
    api = CPUDeviceAPI()
    with pytest.raises(RuntimeAPIError, match="stream"):
        api.create_stream(CPU)
    with pytest.raises(RuntimeAPIError):
        api.free_stream(CPU, None)
    with pytest.raises(RuntimeAPIError):
        api.sync_stream_from_to(CPU, None, None)


def test_default_workspace_delegates_to_data_space():
    dev = RecordingDevice()
    data = dev.alloc_workspace(CPU, 100, U8)
    assert len(data) == 100
    assert dev.allocs == [(100, TEMP_ALLOCA_ALIGNMENT, U8)]
    dev.free_workspace(CPU, data)
    assert dev.freed == [data]


def test_set_device_registered():
    fake = RecordingDevice()
    register_global("device_api.opengl", lambda: fake, override=True)
    get_global("__set_device")(int(DeviceType.OPENGL), 2)
    assert fake.current == Context(DeviceType.OPENGL, 2)