import math

import numpy as np
import pytest

from tensordata import (
    AffineQuantization,
    DType,
    PerTensorAffineInt8,
    PerTensorSymmetricInt8,
    SymmetricQuantization,
    TensorData,
)


# --- Approximate Equality ---

def test_assert_approx_eq_limit():
    data1 = TensorData.from_array([[3.0, 5.0, 6.0]])
    data2 = TensorData.from_array([[3.01, 5.0, 6.0]])
    data1.assert_approx_eq(data2, 2)


def test_assert_approx_eq_above_limit():
    data1 = TensorData.from_array([[3.0, 5.0, 6.0]])
    data2 = TensorData.from_array([[3.011, 5.0, 6.0]])
    with pytest.raises(AssertionError, match="Position 0"):
        data1.assert_approx_eq(data2, 2)


def test_assert_approx_eq_check_shape():
    data1 = TensorData.from_array([[3.0, 5.0, 6.0, 7.0]])
    data2 = TensorData.from_array([[3.0, 5.0, 6.0]])
    with pytest.raises(AssertionError, match="Shape is different"):
        data1.assert_approx_eq(data2, 2)


@pytest.mark.parametrize(
    "a, b",
    [(math.nan, math.nan), (math.inf, math.inf), (-math.inf, -math.inf)],
)
def test_special_values_compare_equal(a, b):
    TensorData.from_array([a, 1.0]).assert_approx_eq_diff(
        TensorData.from_array([b, 1.0]), 1e-6
    )


@pytest.mark.parametrize(
    "a, b",
    [(math.inf, -math.inf), (math.nan, 1.0), (math.inf, 1.0)],
)
def test_special_values_compare_unequal(a, b):
    with pytest.raises(AssertionError, match="not approx eq"):
        TensorData.from_array([a]).assert_approx_eq_diff(TensorData.from_array([b]), 1e-6)


def test_approx_eq_across_dtypes():
    data1 = TensorData.from_array([1.0, 2.0, 3.0], dtype=DType.F32)
    data2 = TensorData.from_array([1, 2, 3], dtype=DType.I32)
    data1.assert_approx_eq(data2, 3)


def test_reports_at_most_five_positions():
    data1 = TensorData.zeros([8])
    data2 = TensorData.ones([8])
    with pytest.raises(AssertionError) as info:
        data1.assert_approx_eq(data2, 3)
    message = str(info.value)
    assert "Position 4" in message
    assert "Position 5" not in message
    assert "3 more errors..." in message


# --- Exact Equality ---

def test_assert_eq_passes_on_identical_data():
    data = TensorData.from_array([[1, 2], [3, 4]], dtype=DType.I16)
    data.assert_eq(data.copy(), strict=True)


@pytest.mark.parametrize("dtype", [DType.F16, DType.BF16, DType.F32, DType.F64], ids=repr)
def test_assert_eq_nan_equals_itself(dtype):
    data = TensorData.from_array([math.nan, 1.0, math.inf], dtype=dtype)
    data.assert_eq(data.copy(), strict=True)


def test_assert_eq_distinguishes_signed_zero():
    data1 = TensorData.from_array([0.0, 1.0], dtype=DType.F32)
    data2 = TensorData.from_array([-0.0, 1.0], dtype=DType.F32)
    with pytest.raises(AssertionError, match="Position 0"):
        data1.assert_eq(data2)


def test_assert_eq_strict_checks_dtype():
    data1 = TensorData.from_array([1.0, 2.0], dtype=DType.F32)
    data2 = TensorData.from_array([1, 2], dtype=DType.I32)
    with pytest.raises(AssertionError, match="Data types differ"):
        data1.assert_eq(data2, strict=True)
    data1.assert_eq(data2, strict=False)


def test_assert_eq_reports_differences():
    data1 = TensorData(np.arange(10), [10], DType.I32)
    data2 = TensorData(np.arange(10) * 2, [10], DType.I32)
    with pytest.raises(AssertionError, match="Tensors are not eq") as info:
        data1.assert_eq(data2)
    message = str(info.value)
    assert "Position 1: 1 != 2" in message
    assert "Position 0" not in message
    assert "4 more errors..." in message


def test_assert_eq_bool():
    data = TensorData([True, False], [2])
    data.assert_eq(TensorData([True, False], [2]))
    with pytest.raises(AssertionError):
        data.assert_eq(TensorData([True, True], [2]))


def test_assert_eq_quantized_compares_codes():
    strategy = PerTensorAffineInt8(AffineQuantization(0.1, 0))
    data1 = TensorData.quantized([1, 2, 3], [3], strategy)
    data2 = TensorData.quantized([1, 2, 3], [3], PerTensorAffineInt8(AffineQuantization(0.2, 1)))
    data1.assert_eq(data2)

    with pytest.raises(AssertionError, match="Position 2: 3 != 4"):
        data1.assert_eq(TensorData.quantized([1, 2, 4], [3], strategy))


def test_assert_eq_quantized_against_float():
    data = TensorData.quantized([1, 2, 3], [3], PerTensorAffineInt8(AffineQuantization(0.1, 0)))
    other = TensorData.from_array([1, 2, 3], dtype=DType.I8)
    with pytest.raises(AssertionError, match="not quantized data"):
        data.assert_eq(other, strict=False)


def test_assert_eq_quantized_scheme_mismatch():
    data1 = TensorData.quantized([1], [1], PerTensorAffineInt8(AffineQuantization(0.1, 0)))
    data2 = TensorData.quantized([1], [1], PerTensorSymmetricInt8(SymmetricQuantization(0.1)))
    with pytest.raises(AssertionError, match="Quantization schemes differ"):
        data1.assert_eq(data2, strict=False)


# --- Range ---

def test_within_range_is_half_open():
    TensorData.from_array([0.0, 0.5, 0.999]).assert_within_range((0.0, 1.0))
    with pytest.raises(AssertionError, match="is not within range"):
        TensorData.from_array([0.0, 1.0]).assert_within_range((0.0, 1.0))
    with pytest.raises(AssertionError, match=r"Element \(-0.5\)"):
        TensorData.from_array([-0.5]).assert_within_range((0.0, 1.0))


def test_within_range_accepts_range_objects():
    TensorData.from_array([0, 5, 9], dtype=DType.I32).assert_within_range(range(0, 10))
    with pytest.raises(AssertionError):
        TensorData.from_array([10], dtype=DType.I32).assert_within_range(range(0, 10))
