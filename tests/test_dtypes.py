import pytest

from packrt.dtypes import DataType, TypeCode


def test_parse_int32():
    assert DataType.parse("int32") == DataType(TypeCode.INT, 32, 1)


def test_parse_vector_float():
    dtype = DataType.parse("float32x4")
    assert (dtype.code, dtype.bits, dtype.lanes) == (TypeCode.FLOAT, 32, 4)


def test_parse_bool_is_uint1():
    assert DataType.parse("bool") == DataType(TypeCode.UINT, 1, 1)


def test_parse_handle_default_bits():
    assert DataType.parse("handle") == DataType(TypeCode.HANDLE, 64, 1)


@pytest.mark.parametrize(
    "text", ["int8", "uint8", "int64", "float16", "float64", "float32x4", "uint16x2", "bool", "handle"]
)
def test_string_round_trip(text):
    assert str(DataType.parse(text)) == text


@pytest.mark.parametrize("text", ["int8", "uint8", "float32", "float64x2", "bool"])
def test_verify_accepts(text):
    dtype = DataType.parse(text)
    dtype.verify()
    assert dtype.lanes >= 1


@pytest.mark.parametrize(
    "dtype",
    [
        DataType(TypeCode.INT, 12),
        DataType(TypeCode.FLOAT, 1),
        DataType(TypeCode.INT, 1),
        DataType(TypeCode.INT, 24),
        DataType(TypeCode.UINT, 8, 0),
    ],
)
def test_verify_rejects(dtype):
    with pytest.raises(ValueError):
        dtype.verify()


def test_itemsize_matches_bits():
    for text in ["int8", "int16", "float32", "float64"]:
        dtype = DataType.parse(text)
        assert dtype.itemsize() * 8 == dtype.bits


def test_itemsize_scales_with_lanes():
    scalar = DataType.parse("float32")
    vector = DataType.parse("float32x4")
    assert vector.itemsize() == 4 * scalar.itemsize()


def test_bool_itemsize_rounds_up():
    assert DataType.parse("bool").itemsize() == 1