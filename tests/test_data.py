import numpy as np
import pytest

from tensordata import (
    ELEMENT_TYPES,
    CastError,
    Distribution,
    DType,
    TensorData,
    TypeMismatch,
    numpy_dtype,
)
from tensordata.data import _CONVERT_WINDOW


def _values_for(dtype):
    if dtype == DType.BOOL:
        return np.array([True, False, True, True, False, False])
    return np.arange(6, dtype=np.float32).astype(numpy_dtype(dtype))


# --- Construction & Extraction ---

@pytest.mark.parametrize("dtype", ELEMENT_TYPES, ids=repr)
def test_into_vec_matches_values_and_iter(dtype):
    """Every dtype round-trips through the byte buffer unchanged."""
    values = _values_for(dtype)
    data = TensorData(values, [2, 3])

    assert data.dtype == dtype
    iterated = np.array(list(data.iter(dtype)), dtype=numpy_dtype(dtype))
    extracted = data.into_vec(dtype)

    assert np.array_equal(extracted, values)
    assert np.array_equal(iterated, values)


@pytest.mark.parametrize("dtype", ELEMENT_TYPES, ids=repr)
def test_byte_length_matches_num_elements(dtype):
    data = TensorData.random([3, 5, 6], Distribution.default(), dtype=dtype)

    assert data.num_elements() == 3 * 5 * 6
    assert len(data.bytes) // dtype.size() == data.num_elements()
    assert len(data.as_slice(dtype)) == data.num_elements()


def test_random_with_seeded_generator_is_reproducible():
    a = TensorData.random([4, 4], rng=np.random.default_rng(7))
    b = TensorData.random([4, 4], rng=np.random.default_rng(7))
    assert a == b
    a.assert_within_range((0.0, 1.0))


def test_random_uniform_range():
    data = TensorData.random(
        [100], Distribution.uniform(-2.0, 3.0), np.random.default_rng(0)
    )
    data.assert_within_range((-2, 3))


def test_random_bernoulli_is_zero_or_one():
    data = TensorData.random(
        [64], Distribution.bernoulli(0.5), np.random.default_rng(0), dtype=DType.I32
    )
    assert set(data.to_vec(DType.I32).tolist()) <= {0, 1}


def test_zeros_ones_full():
    assert TensorData.zeros([2, 2]).to_vec(DType.F32).tolist() == [0.0] * 4
    assert TensorData.ones([3], DType.I64).to_vec(DType.I64).tolist() == [1, 1, 1]

    full = TensorData.full([2], np.int16(7))
    assert full.dtype == DType.I16
    assert full.to_vec(DType.I16).tolist() == [7, 7]


def test_scalar_shape_holds_one_element():
    data = TensorData([2.5], [], DType.F32)
    assert data.num_elements() == 1
    assert len(data.bytes) == 4


def test_should_have_right_shape():
    assert TensorData.from_array([[3.0, 5.0, 6.0]]).shape == (1, 3)
    assert TensorData.from_array([[4.0, 5.0, 8.0], [3.0, 5.0, 6.0]]).shape == (2, 3)
    assert TensorData.from_array([3.0, 5.0, 6.0]).shape == (3,)


def test_from_array_default_dtypes():
    assert TensorData.from_array([1, 2, 3]).dtype == DType.I64
    assert TensorData.from_array([1.0, 2.0]).dtype == DType.F64
    assert TensorData.from_array([1.0, 2.0], dtype=np.float16).dtype == DType.F16


def test_extra_values_are_truncated():
    data = TensorData([1, 2, 3, 4, 5], [2, 2], DType.I32)
    assert data.to_vec(DType.I32).tolist() == [1, 2, 3, 4]


def test_missing_values_are_rejected():
    with pytest.raises(ValueError, match="is invalid for input of size 3"):
        TensorData([1, 2, 3], [2, 2], DType.I32)


def test_unsupported_element_type():
    with pytest.raises(TypeError, match="Unsupported element type"):
        TensorData(np.zeros(4, dtype=np.complex64), [4])


# --- Typed Views ---

def test_as_slice_is_read_only_view():
    data = TensorData.from_array([1.0, 2.0], dtype=DType.F32)
    view = data.as_slice(np.float32)
    assert view.flags.writeable is False
    assert view.tolist() == [1.0, 2.0]


def test_as_mut_slice_writes_through():
    data = TensorData.zeros([2, 2])
    view = data.as_mut_slice(DType.F32)
    view[0] = 7.0
    assert data.to_vec(DType.F32)[0] == 7.0


def test_to_vec_is_a_copy():
    data = TensorData.zeros([2])
    vec = data.to_vec(DType.F32)
    vec[0] = 1.0
    assert data.to_vec(DType.F32)[0] == 0.0


@pytest.mark.parametrize("method", ["as_slice", "as_mut_slice", "to_vec", "into_vec"])
def test_wrong_element_type_is_a_type_mismatch(method):
    data = TensorData.random([3, 5, 6])
    with pytest.raises(TypeMismatch, match="Invalid target element type"):
        getattr(data, method)(DType.I32)


def test_invalid_bool_bytes_are_a_cast_error():
    data = TensorData.from_bytes(bytearray([0, 2, 1]), [3], DType.BOOL)
    with pytest.raises(CastError):
        data.as_slice(DType.BOOL)
    # bool is read as raw bytes when iterating as another kind
    assert list(data.iter(DType.U8)) == [0, 2, 1]


def test_from_bytes_checks_length():
    with pytest.raises(ValueError, match="Expected 8 bytes"):
        TensorData.from_bytes(b"\x00" * 6, [2], DType.F32)


# --- Conversion ---

@pytest.mark.parametrize("target", [DType.F32, DType.F16, DType.I64, DType.I32, DType.U32])
def test_should_convert_bytes_correctly(target):
    data = TensorData(np.arange(32), [32], DType.I32)
    converted = data.convert(target)
    assert converted.dtype == target
    for i, value in enumerate(converted.into_vec(target)):
        assert int(value) == i


def test_same_width_conversion_is_in_place():
    data = TensorData(np.arange(8), [8], DType.I32)
    converted = data.convert(DType.F32)
    assert converted is data
    assert len(converted.bytes) == 32
    assert converted.to_vec(DType.F32).tolist() == [float(i) for i in range(8)]


@pytest.mark.parametrize(
    "source, target", [(DType.I32, DType.F32), (DType.F32, DType.I32), (DType.U8, DType.I8)]
)
def test_in_place_conversion_spans_several_windows(source, target):
    count = 2 * _CONVERT_WINDOW + 10
    values = np.arange(count) % 100
    data = TensorData(values, [count], source)

    converted = data.convert(target)

    assert converted is data
    result = converted.to_vec(target)
    assert result.size == count
    np.testing.assert_array_equal(result, values.astype(numpy_dtype(target)))
    assert result[_CONVERT_WINDOW] == _CONVERT_WINDOW % 100
    assert result[-1] == (count - 1) % 100


def test_bool_conversion_takes_the_elementwise_path():
    data = TensorData([True, False, True], [3])
    converted = data.convert(DType.U8)
    assert converted is not data
    assert data.dtype == DType.BOOL
    assert converted.to_vec(DType.U8).tolist() == [1, 0, 1]


def test_conversion_to_bool_means_non_zero():
    data = TensorData([0, 2, 5], [3], DType.U8)
    assert data.convert(DType.BOOL).to_vec(DType.BOOL).tolist() == [False, True, True]


def test_float_to_int_truncates():
    data = TensorData([1.7, -1.7, 2.0], [3], DType.F32)
    assert data.convert(DType.I32).to_vec(DType.I32).tolist() == [1, -1, 2]


@pytest.mark.parametrize("source", [DType.F32, DType.I32, DType.F16, DType.BOOL])
@pytest.mark.parametrize("target", ELEMENT_TYPES, ids=repr)
def test_convert_is_idempotent(source, target):
    values = [0, 1, 1, 0, 1, 1]
    once = TensorData(values, [2, 3], source).convert(target)
    twice = TensorData(values, [2, 3], source).convert(target).convert(target)
    assert once.dtype == target
    assert once == twice


def test_iter_converts_lazily():
    data = TensorData(np.arange(10000), [10000], DType.I64)
    values = data.iter(DType.F32)
    assert next(values) == 0.0
    assert next(values) == 1.0
    assert sum(1 for _ in values) == 9998


# --- Wire Form ---

def test_record_round_trip():
    data = TensorData.from_array([[1, 2], [3, 4]], dtype=DType.U32)
    record = data.to_record()
    assert set(record) == {"bytes", "shape", "dtype"}
    assert TensorData.from_record(record) == data


def test_copy_is_independent():
    data = TensorData.ones([2])
    clone = data.copy()
    clone.as_mut_slice(DType.F32)[0] = 5.0
    assert data.to_vec(DType.F32).tolist() == [1.0, 1.0]


def test_display():
    assert str(TensorData([1, 2, 3], [3], DType.I32)) == "[1, 2, 3]"
    assert "dtype=F32" in repr(TensorData.zeros([2]))
